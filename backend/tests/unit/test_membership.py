from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from circles.communities.domain import models
from circles.communities.domain.exceptions import (
	AlreadyMemberError,
	CreatorCannotLeaveError,
	GroupNotFoundError,
	JoinRequestNotPendingError,
	JoinRequestPendingError,
	MemberNotFoundError,
)
from circles.communities.domain.repo import CommunitiesRepository
from circles.communities.domain.services import MembershipEngine
from circles.domain.common.errors import AuthorizationError, InsufficientRoleError, ValidationError
from circles.infra import documents


@pytest.fixture
def engine(notifications):
	return MembershipEngine(notifications=notifications)


@pytest.fixture
def repo():
	return CommunitiesRepository()


async def _group(engine, ctx, **overrides):
	options = {"name": "Chess club", "description": "Weekly games"}
	options.update(overrides)
	return await engine.create_group(ctx("creator"), **options)


@pytest.mark.asyncio
async def test_create_group_writes_creator_membership(engine, repo, ctx):
	group = await _group(engine, ctx)

	assert group.member_count == 1
	assert group.status is models.GroupStatus.ACTIVE
	creator = await engine.get_membership(group.id, "creator")
	assert creator is not None and creator.role is models.Role.CREATOR
	assert [member.member_id for member in await engine.list_members(group.id)] == ["creator"]
	assert [item.id for item in await engine.list_groups()] == [group.id]


@pytest.mark.asyncio
async def test_create_group_rejects_unknown_enums(engine, ctx):
	with pytest.raises(ValidationError):
		await _group(engine, ctx, privacy="SECRET")
	with pytest.raises(ValidationError):
		await _group(engine, ctx, posting_permission="MODS")
	with pytest.raises(ValidationError):
		await _group(engine, ctx, name="   ")


@pytest.mark.asyncio
async def test_create_group_is_compensated_when_creator_membership_fails(ctx, flaky_store, notifications):
	flaky = flaky_store(lambda kind, key, data: kind == documents.MEMBERSHIP)
	engine = MembershipEngine(repository=CommunitiesRepository(flaky), notifications=notifications)

	with pytest.raises(RedisConnectionError):
		await engine.create_group(ctx("creator"), name="Doomed")

	assert await MembershipEngine(notifications=notifications).list_groups() == []


@pytest.mark.asyncio
async def test_admins_only_posting_scenario(engine, ctx):
	group = await _group(engine, ctx, posting_permission="ADMINS_ONLY")
	await engine.join(ctx("member"), group.id)

	denied = await engine.can_post(ctx("member"), group.id)
	assert not denied.allowed
	assert denied.reason == "admins_only"

	await engine.change_role(ctx("creator"), group.id, "member", "ADMIN")

	allowed = await engine.can_post(ctx("member"), group.id)
	assert allowed.allowed
	assert not allowed.requires_approval


@pytest.mark.asyncio
async def test_post_approval_applies_to_members_only(engine, ctx):
	group = await _group(engine, ctx, require_post_approval=True)
	await engine.join(ctx("member"), group.id)

	member = await engine.can_post(ctx("member"), group.id)
	creator = await engine.can_post(ctx("creator"), group.id)
	outsider = await engine.can_post(ctx("outsider"), group.id)

	assert member.allowed and member.requires_approval
	assert creator.allowed and not creator.requires_approval
	assert not outsider.allowed and outsider.reason == "membership_required"


@pytest.mark.asyncio
@pytest.mark.parametrize("actor", ["creator", "admin", "member"])
async def test_nobody_can_grant_creator(engine, ctx, actor):
	group = await _group(engine, ctx)
	await engine.join(ctx("admin"), group.id)
	await engine.join(ctx("member"), group.id)
	await engine.change_role(ctx("creator"), group.id, "admin", models.Role.ADMIN)

	with pytest.raises(InsufficientRoleError) as excinfo:
		await engine.change_role(ctx(actor), group.id, "member", "CREATOR")

	assert isinstance(excinfo.value, AuthorizationError)
	member = await engine.get_membership(group.id, "member")
	assert member is not None and member.role is models.Role.MEMBER


@pytest.mark.asyncio
async def test_only_creator_moves_members_in_and_out_of_admin(engine, ctx):
	group = await _group(engine, ctx)
	for user_id in ("admin", "other_admin", "member"):
		await engine.join(ctx(user_id), group.id)
	await engine.change_role(ctx("creator"), group.id, "admin", "ADMIN")
	await engine.change_role(ctx("creator"), group.id, "other_admin", "ADMIN")

	with pytest.raises(InsufficientRoleError):
		await engine.change_role(ctx("admin"), group.id, "member", "ADMIN")
	with pytest.raises(InsufficientRoleError):
		await engine.change_role(ctx("admin"), group.id, "other_admin", "MEMBER")
	with pytest.raises(InsufficientRoleError):
		await engine.change_role(ctx("member"), group.id, "admin", "MEMBER")

	demoted = await engine.change_role(ctx("creator"), group.id, "admin", "MEMBER")
	assert demoted.role is models.Role.MEMBER


@pytest.mark.asyncio
async def test_change_role_rejects_unknown_role(engine, ctx):
	group = await _group(engine, ctx)
	await engine.join(ctx("member"), group.id)

	with pytest.raises(ValidationError):
		await engine.change_role(ctx("creator"), group.id, "member", "OWNER")
	with pytest.raises(MemberNotFoundError):
		await engine.change_role(ctx("creator"), group.id, "ghost", "ADMIN")


@pytest.mark.asyncio
async def test_join_and_leave_keep_member_count(engine, ctx):
	group = await _group(engine, ctx)

	result = await engine.join(ctx("member"), group.id)
	assert result.status == "joined"
	assert (await engine.get_group(group.id)).member_count == 2

	with pytest.raises(AlreadyMemberError):
		await engine.join(ctx("member"), group.id)

	await engine.leave(ctx("member"), group.id)
	assert (await engine.get_group(group.id)).member_count == 1
	assert await engine.get_membership(group.id, "member") is None

	with pytest.raises(MemberNotFoundError):
		await engine.leave(ctx("member"), group.id)


@pytest.mark.asyncio
async def test_creator_cannot_leave_or_be_removed(engine, ctx):
	group = await _group(engine, ctx)

	with pytest.raises(CreatorCannotLeaveError):
		await engine.leave(ctx("creator"), group.id)
	with pytest.raises(CreatorCannotLeaveError):
		await engine.force_remove(group.id, "creator")

	assert (await engine.get_group(group.id)).member_count == 1


@pytest.mark.asyncio
async def test_private_group_join_goes_through_requests(engine, ctx, notifications):
	group = await _group(engine, ctx, privacy="PRIVATE")

	result = await engine.join(ctx("applicant"), group.id)
	assert result.status == "requested"
	assert result.join_request is not None
	assert await engine.get_membership(group.id, "applicant") is None
	assert notifications.types_for("creator") == ["group.join_requested"]

	with pytest.raises(JoinRequestPendingError):
		await engine.join(ctx("applicant"), group.id)
	with pytest.raises(InsufficientRoleError):
		await engine.approve_join_request(ctx("applicant"), group.id, "applicant")

	pending = await engine.list_join_requests(ctx("creator"), group.id)
	assert [request.user_id for request in pending] == ["applicant"]

	membership = await engine.approve_join_request(ctx("creator"), group.id, "applicant")

	assert membership.role is models.Role.MEMBER
	assert (await engine.get_group(group.id)).member_count == 2
	assert await engine.list_join_requests(ctx("creator"), group.id) == []
	assert notifications.types_for("applicant") == ["group.join_approved"]
	with pytest.raises(JoinRequestNotPendingError):
		await engine.reject_join_request(ctx("creator"), group.id, "applicant")


@pytest.mark.asyncio
async def test_rejected_applicant_can_ask_again(engine, ctx):
	group = await _group(engine, ctx, privacy="PRIVATE")
	await engine.join(ctx("applicant"), group.id)

	rejected = await engine.reject_join_request(ctx("creator"), group.id, "applicant")
	assert rejected.status is models.JoinRequestStatus.REJECTED

	again = await engine.join(ctx("applicant"), group.id)
	assert again.join_request is not None
	assert again.join_request.status is models.JoinRequestStatus.PENDING


@pytest.mark.asyncio
async def test_remove_member_requires_higher_rank(engine, ctx):
	group = await _group(engine, ctx)
	for user_id in ("admin", "m1", "m2"):
		await engine.join(ctx(user_id), group.id)
	await engine.change_role(ctx("creator"), group.id, "admin", "ADMIN")

	with pytest.raises(InsufficientRoleError):
		await engine.remove_member(ctx("m1"), group.id, "m2")
	with pytest.raises(InsufficientRoleError):
		await engine.remove_member(ctx("admin"), group.id, "creator")

	await engine.remove_member(ctx("admin"), group.id, "m2")

	assert await engine.get_membership(group.id, "m2") is None
	assert (await engine.get_group(group.id)).member_count == 3


@pytest.mark.asyncio
async def test_reconcile_count_repairs_drift(engine, repo, ctx):
	group = await _group(engine, ctx)
	await engine.join(ctx("member"), group.id)
	stored = await repo.get_group(group.id)
	await repo.save_group(stored, member_count=10)

	assert await engine.reconcile_count(group.id, tolerance=20) == 2
	assert (await repo.get_group(group.id)).member_count == 10

	assert await engine.reconcile_count(group.id) == 2
	assert (await repo.get_group(group.id)).member_count == 2

	with pytest.raises(GroupNotFoundError):
		await engine.reconcile_count("missing")


@pytest.mark.asyncio
async def test_delete_group_is_creator_only_soft_delete(engine, repo, ctx):
	group = await _group(engine, ctx)
	await engine.join(ctx("member"), group.id)

	with pytest.raises(InsufficientRoleError):
		await engine.delete_group(ctx("member"), group.id)

	deleted = await engine.delete_group(ctx("creator"), group.id)

	assert deleted.status is models.GroupStatus.DELETED
	assert (await repo.get_group(group.id)).status is models.GroupStatus.DELETED
	with pytest.raises(GroupNotFoundError):
		await engine.get_group(group.id)
	with pytest.raises(GroupNotFoundError):
		await engine.join(ctx("late"), group.id)
	denied = await engine.can_post(ctx("member"), group.id)
	assert not denied.allowed and denied.reason == "group_inactive"


class _RejectedMidApproval:
	"""Lets another admin reject the join request right before the approval write lands."""

	def __init__(self, inner: documents.DocumentStore) -> None:
		self.inner = inner
		self.fired = False

	async def put(self, kind, key, data, *, expected_version=None):
		if kind == documents.JOIN_REQUEST and data.get("status") == "APPROVED" and not self.fired:
			self.fired = True
			current = await self.inner.get(kind, key)
			rejected = dict(
				current.data,
				status="REJECTED",
				reviewed_by="other_admin",
				group_status=f"{current.data['group_id']}:REJECTED",
			)
			await self.inner.put(kind, key, rejected, expected_version=current.version)
		return await self.inner.put(kind, key, data, expected_version=expected_version)

	def __getattr__(self, item):
		return getattr(self.inner, item)


@pytest.mark.asyncio
async def test_approval_losing_to_reject_leaves_no_membership(engine, repo, ctx, store, notifications):
	group = await _group(engine, ctx, privacy="PRIVATE")
	await engine.join(ctx("applicant"), group.id)
	racing = MembershipEngine(repository=CommunitiesRepository(_RejectedMidApproval(store)), notifications=notifications)

	with pytest.raises(JoinRequestNotPendingError):
		await racing.approve_join_request(ctx("creator"), group.id, "applicant")

	request = await repo.get_join_request(group.id, "applicant")
	assert request.status is models.JoinRequestStatus.REJECTED
	assert await repo.get_member(group.id, "applicant") is None
	assert await repo.count_members(group.id) == 1
	assert (await repo.get_group(group.id)).member_count == 1
	assert notifications.types_for("applicant") == []
