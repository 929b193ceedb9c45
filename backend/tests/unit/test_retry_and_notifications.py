from __future__ import annotations

import json

import pytest

from circles.domain.common.errors import ConflictError, VersionConflict
from circles.domain.common.retry import run_with_cas_retry
from circles.infra.notifications import RedisStreamNotificationSink
from circles.infra.redis import RedisProxy


@pytest.mark.asyncio
async def test_retry_loop_reruns_cycle_until_it_commits():
	attempts: list[int] = []

	async def _cycle(attempt: int) -> str:
		attempts.append(attempt)
		if attempt < 2:
			raise VersionConflict("group", "g1", expected=1, actual=2)
		return "done"

	assert await run_with_cas_retry("test", _cycle) == "done"
	assert attempts == [0, 1, 2]


@pytest.mark.asyncio
async def test_retry_budget_exhaustion_surfaces_conflict_error():
	async def _cycle(attempt: int) -> None:
		raise VersionConflict("group", "g1", expected=1, actual=2)

	with pytest.raises(ConflictError) as excinfo:
		await run_with_cas_retry("test", _cycle, attempts=2, group_id="g1")

	error = excinfo.value
	assert not isinstance(error, VersionConflict)
	assert error.reason == "retry_budget_exhausted"
	assert error.context["attempts"] == 2
	assert error.context["group_id"] == "g1"


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
	calls = 0

	async def _cycle(attempt: int) -> None:
		nonlocal calls
		calls += 1
		raise KeyError("boom")

	with pytest.raises(KeyError):
		await run_with_cas_retry("test", _cycle)
	assert calls == 1


@pytest.mark.asyncio
async def test_stream_sink_appends_json_payload(fake_redis):
	sink = RedisStreamNotificationSink(stream="test:notifications")

	await sink.notify("u1", "friend.request", {"from_user_id": "u2"})

	entries = await fake_redis.xrange("test:notifications")
	assert len(entries) == 1
	_, fields = entries[0]
	assert fields["user_id"] == "u1"
	assert fields["type"] == "friend.request"
	assert json.loads(fields["payload"]) == {"from_user_id": "u2"}


class _BrokenClient:
	async def xadd(self, *args, **kwargs):
		raise RuntimeError("stream unavailable")


@pytest.mark.asyncio
async def test_stream_sink_never_raises():
	sink = RedisStreamNotificationSink(RedisProxy(_BrokenClient()), stream="test:notifications")

	await sink.notify("u1", "friend.request", {})
