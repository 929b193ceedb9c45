from __future__ import annotations

import pytest
import pytest_asyncio

from circles.communities.domain.posts_service import PostsService
from circles.communities.domain.services import MembershipEngine
from circles.domain.common.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from circles.moderation.domain.exceptions import (
	AlreadyClaimedError,
	DuplicateReportError,
	ReportNotClaimedError,
	ReportResolvedError,
)
from circles.moderation.domain.models import ModerationAction, Outcome, ReportStatus, TargetType
from circles.moderation.domain.reports_service import ModerationEngine


@pytest.fixture
def membership(notifications):
	return MembershipEngine(notifications=notifications)


@pytest.fixture
def posts(membership, notifications):
	return PostsService(membership=membership, notifications=notifications)


@pytest.fixture
def engine(membership, posts, notifications):
	return ModerationEngine(posts=posts, membership=membership, notifications=notifications)


@pytest.fixture
def moderator(ctx):
	return ctx("mod1", "moderator")


@pytest_asyncio.fixture
async def reported_post(membership, posts, ctx):
	group = await membership.create_group(ctx("creator"), name="Market")
	await membership.join(ctx("author"), group.id)
	return await posts.create_post(ctx("author"), group.id, "buy my stuff")


@pytest.mark.asyncio
async def test_submit_records_post_context_and_blocks_duplicates(engine, reported_post, ctx):
	report = await engine.submit(ctx("reporter"), "POST", reported_post.id, "spam")

	assert report.status is ReportStatus.PENDING
	assert report.author_id == "author"
	assert report.group_id == reported_post.group_id
	with pytest.raises(DuplicateReportError):
		await engine.submit(ctx("reporter"), TargetType.POST, reported_post.id, "spam again")

	other = await engine.submit(ctx("someone_else"), TargetType.POST, reported_post.id, "spam")
	assert other.id != report.id


@pytest.mark.asyncio
async def test_submit_validates_target(engine, ctx):
	with pytest.raises(ValidationError):
		await engine.submit(ctx("reporter"), "COMMENT", "c1", "spam")
	with pytest.raises(ValidationError):
		await engine.submit(ctx("reporter"), "USER", "reporter", "spam")
	with pytest.raises(NotFoundError):
		await engine.submit(ctx("reporter"), "POST", "missing", "spam")


@pytest.mark.asyncio
async def test_claim_rules(engine, ctx, moderator):
	report = await engine.submit(ctx("reporter"), "USER", "troll", "harassment")

	with pytest.raises(AuthorizationError):
		await engine.claim(ctx("reporter"), report.id)

	claimed = await engine.claim(moderator, report.id)
	assert claimed.status is ReportStatus.REVIEWING
	assert claimed.moderator_id == "mod1"

	again = await engine.claim(moderator, report.id)
	assert again.version == claimed.version

	with pytest.raises(AlreadyClaimedError):
		await engine.claim(ctx("mod2", "admin"), report.id)


@pytest.mark.asyncio
async def test_resolve_requires_claim_by_same_moderator(engine, ctx, moderator):
	report = await engine.submit(ctx("reporter"), "USER", "troll", "harassment")

	with pytest.raises(ReportNotClaimedError):
		await engine.resolve(moderator, report.id, "DISMISSED")

	await engine.claim(moderator, report.id)
	with pytest.raises(AlreadyClaimedError):
		await engine.resolve(ctx("mod2", "moderator"), report.id, "DISMISSED")
	with pytest.raises(ValidationError):
		await engine.resolve(moderator, report.id, "DISMISSED", "HIDE_CONTENT")
	with pytest.raises(ValidationError):
		await engine.resolve(moderator, report.id, "ACTION_TAKEN", "HIDE_CONTENT")


@pytest.mark.asyncio
async def test_terminal_reports_reject_claim_and_resolve(engine, ctx, moderator, notifications):
	report = await engine.submit(ctx("reporter"), "USER", "troll", "harassment")
	await engine.claim(moderator, report.id)

	result = await engine.resolve(moderator, report.id, Outcome.DISMISSED)

	assert result.report.status is ReportStatus.RESOLVED_DISMISSED
	assert result.partial_failure is None
	assert notifications.types_for("reporter") == ["report.resolved"]
	with pytest.raises(ReportResolvedError) as excinfo:
		await engine.claim(moderator, report.id)
	assert isinstance(excinfo.value, StateError)
	with pytest.raises(ReportResolvedError):
		await engine.resolve(moderator, report.id, "ACTION_TAKEN")

	# Resolution released the slot, so the reporter may report the target again.
	fresh = await engine.submit(ctx("reporter"), "USER", "troll", "harassment")
	assert fresh.id != report.id


@pytest.mark.asyncio
async def test_hide_content_action_hides_the_post(engine, posts, reported_post, ctx, moderator):
	report = await engine.submit(ctx("reporter"), "POST", reported_post.id, "spam")
	await engine.claim(moderator, report.id)

	result = await engine.resolve(moderator, report.id, "ACTION_TAKEN", ModerationAction.HIDE_CONTENT)

	assert result.report.status is ReportStatus.RESOLVED_ACTION_TAKEN
	assert result.report.action is ModerationAction.HIDE_CONTENT
	assert not result.partially_failed
	assert (await posts.get_post(reported_post.id)).is_hidden


@pytest.mark.asyncio
async def test_remove_member_action_removes_post_author(engine, membership, reported_post, ctx, moderator):
	report = await engine.submit(ctx("reporter"), "POST", reported_post.id, "scam")
	await engine.claim(moderator, report.id)

	result = await engine.resolve(moderator, report.id, "ACTION_TAKEN", "REMOVE_MEMBER")

	assert not result.partially_failed
	assert await membership.get_membership(reported_post.group_id, "author") is None


@pytest.mark.asyncio
async def test_failed_side_effect_keeps_report_terminal_and_flags_it(engine, membership, reported_post, ctx, moderator):
	report = await engine.submit(ctx("reporter"), "POST", reported_post.id, "scam")
	await engine.claim(moderator, report.id)
	await membership.leave(ctx("author"), reported_post.group_id)

	result = await engine.resolve(moderator, report.id, "ACTION_TAKEN", "REMOVE_MEMBER")

	assert result.partial_failure is not None
	assert result.partial_failure.failures == {"REMOVE_MEMBER": "member_not_found"}
	stored = await engine.get_report(moderator, report.id)
	assert stored.status is ReportStatus.RESOLVED_ACTION_TAKEN
	assert stored.action_partially_failed
	assert stored.failure_detail == "member_not_found"


@pytest.mark.asyncio
async def test_report_reads(engine, ctx, moderator):
	first = await engine.submit(ctx("reporter"), "USER", "troll", "harassment")
	second = await engine.submit(ctx("reporter"), "USER", "spammer", "spam")
	await engine.claim(moderator, second.id)

	queue = await engine.list_reports(moderator)
	pending = await engine.list_reports(moderator, "PENDING")
	mine = await engine.list_my_reports(ctx("reporter"))

	assert {report.id for report in queue} == {first.id, second.id}
	assert [report.id for report in pending] == [first.id]
	assert {report.id for report in mine} == {first.id, second.id}
	assert (await engine.get_report(ctx("reporter"), first.id)).id == first.id
	with pytest.raises(AuthorizationError):
		await engine.get_report(ctx("stranger"), first.id)
	with pytest.raises(AuthorizationError):
		await engine.list_reports(ctx("reporter"))
