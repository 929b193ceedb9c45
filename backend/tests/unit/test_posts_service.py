from __future__ import annotations

import pytest

from circles.communities.domain import models
from circles.communities.domain.exceptions import PostingNotAllowedError, PostNotFoundError, PostNotPendingError
from circles.communities.domain.posts_service import PostsService
from circles.communities.domain.services import MembershipEngine
from circles.domain.common.errors import AuthorizationError, InsufficientRoleError, ValidationError


@pytest.fixture
def membership(notifications):
	return MembershipEngine(notifications=notifications)


@pytest.fixture
def posts(membership, notifications):
	return PostsService(membership=membership, notifications=notifications)


@pytest.mark.asyncio
async def test_member_post_waits_for_approval_when_required(membership, posts, ctx, notifications):
	group = await membership.create_group(ctx("creator"), name="Book club", require_post_approval=True)
	await membership.join(ctx("member"), group.id)

	pending = await posts.create_post(ctx("member"), group.id, "First!")
	direct = await posts.create_post(ctx("creator"), group.id, "Welcome")

	assert pending.approval_status is models.ApprovalStatus.PENDING
	assert direct.approval_status is models.ApprovalStatus.APPROVED
	assert [post.id for post in await posts.list_posts(ctx("member"), group.id)] == [direct.id]
	assert [post.id for post in await posts.list_pending_posts(ctx("creator"), group.id)] == [pending.id]

	approved = await posts.review_post(ctx("creator"), pending.id, approve=True)

	assert approved.approval_status is models.ApprovalStatus.APPROVED
	assert approved.reviewed_by == "creator"
	assert notifications.types_for("member") == ["post.reviewed"]
	with pytest.raises(PostNotPendingError):
		await posts.review_post(ctx("creator"), pending.id, approve=False)


@pytest.mark.asyncio
async def test_posting_denied_outside_permission(membership, posts, ctx):
	group = await membership.create_group(ctx("creator"), name="Announcements", posting_permission="ADMINS_ONLY")
	await membership.join(ctx("member"), group.id)

	with pytest.raises(PostingNotAllowedError) as excinfo:
		await posts.create_post(ctx("member"), group.id, "hello")
	assert isinstance(excinfo.value, AuthorizationError)
	assert excinfo.value.context["denial"] == "admins_only"

	with pytest.raises(PostingNotAllowedError):
		await posts.create_post(ctx("outsider"), group.id, "hello")
	with pytest.raises(ValidationError):
		await posts.create_post(ctx("creator"), group.id, "   ")


@pytest.mark.asyncio
async def test_review_requires_admin(membership, posts, ctx):
	group = await membership.create_group(ctx("creator"), name="Garden", require_post_approval=True)
	await membership.join(ctx("member"), group.id)
	post = await posts.create_post(ctx("member"), group.id, "tomatoes")

	with pytest.raises(InsufficientRoleError):
		await posts.review_post(ctx("member"), post.id, approve=True)
	with pytest.raises(InsufficientRoleError):
		await posts.list_pending_posts(ctx("member"), group.id)


@pytest.mark.asyncio
async def test_hide_post_is_idempotent(membership, posts, ctx):
	group = await membership.create_group(ctx("creator"), name="Cycling")
	post = await posts.create_post(ctx("creator"), group.id, "ride on sunday")

	hidden = await posts.hide_post(post.id)
	again = await posts.hide_post(post.id)

	assert hidden.is_hidden and again.is_hidden
	assert again.version == hidden.version
	assert await posts.list_posts(ctx("creator"), group.id) == []
	with pytest.raises(PostNotFoundError):
		await posts.hide_post("missing")


@pytest.mark.asyncio
async def test_private_group_posts_need_membership(membership, posts, ctx):
	group = await membership.create_group(ctx("creator"), name="Inner circle", privacy="PRIVATE")
	await posts.create_post(ctx("creator"), group.id, "members only")

	with pytest.raises(AuthorizationError):
		await posts.list_posts(ctx("outsider"), group.id)
