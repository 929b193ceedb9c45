import sys
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from circles import container
from circles.infra import documents
from circles.infra.auth import AuthContext
from circles.infra.redis import redis_client, set_redis_client
from circles.main import app
from circles.settings import settings


class RecordingNotificationSink:
	"""Collects notifications instead of writing them to the stream."""

	def __init__(self) -> None:
		self.sent: list[tuple[str, str, dict[str, Any]]] = []

	async def notify(self, user_id: str, type: str, payload: Mapping[str, Any]) -> None:  # noqa: A002
		self.sent.append((user_id, type, dict(payload)))

	def types_for(self, user_id: str) -> list[str]:
		return [kind for recipient, kind, _ in self.sent if recipient == user_id]


class FlakyStore:
	"""Wraps a document store and fails the puts matched by ``fail_on``."""

	def __init__(
		self,
		inner: documents.DocumentStore,
		*,
		fail_on: Callable[[str, str, Mapping[str, Any]], bool],
		error: Optional[Callable[[], Exception]] = None,
	) -> None:
		self.inner = inner
		self.fail_on = fail_on
		self.error = error or (lambda: RedisConnectionError("injected write failure"))
		self.failures = 0

	async def put(self, kind: str, key: str, data: Mapping[str, Any], *, expected_version: Optional[int] = None) -> int:
		if self.fail_on(kind, key, data):
			self.failures += 1
			raise self.error()
		return await self.inner.put(kind, key, data, expected_version=expected_version)

	def __getattr__(self, item):
		return getattr(self.inner, item)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	documents.set_document_store(documents.RedisDocumentStore())
	try:
		yield client
	finally:
		documents.set_document_store(None)
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Dev mode so API tests can authenticate with X-User-Id headers; no retry sleeps."""
	names = ("environment", "cas_backoff_seconds", "cas_max_attempts", "relationship_repair_grace_seconds", "obs_metrics_public", "obs_admin_token")
	original = {name: getattr(settings, name) for name in names}
	settings.environment = "dev"
	settings.cas_backoff_seconds = 0.0
	settings.cas_max_attempts = 3
	settings.relationship_repair_grace_seconds = 5.0
	settings.obs_metrics_public = True
	settings.obs_admin_token = None
	try:
		yield settings
	finally:
		for name, value in original.items():
			setattr(settings, name, value)


@pytest.fixture(autouse=True)
def notifications():
	sink = RecordingNotificationSink()
	container.reset_container(notifications=sink)
	try:
		yield sink
	finally:
		container.reset_container()


@pytest.fixture
def store() -> documents.DocumentStore:
	return documents.get_document_store()


@pytest.fixture
def flaky_store(store):
	def _make(
		fail_on: Callable[[str, str, Mapping[str, Any]], bool],
		*,
		error: Optional[Callable[[], Exception]] = None,
	) -> FlakyStore:
		return FlakyStore(store, fail_on=fail_on, error=error)

	return _make


@pytest.fixture
def ctx():
	def _make(user_id: Optional[str], *roles: str) -> AuthContext:
		return AuthContext(user_id=user_id, roles=tuple(roles))

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
