"""Group posts gated by the membership engine's posting permission."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable
from uuid import uuid4

from circles.communities.domain import models, policies, repo as repo_module
from circles.communities.domain.exceptions import PostingNotAllowedError, PostNotFoundError, PostNotPendingError
from circles.communities.domain.services import MembershipEngine
from circles.domain.common import utcnow
from circles.domain.common.retry import run_with_cas_retry
from circles.domain.social.policy import clamp_limit
from circles.infra.auth import AuthContext
from circles.infra.notifications import NotificationSink, RedisStreamNotificationSink
from circles.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class PostsService:
	def __init__(
		self,
		*,
		repository: repo_module.CommunitiesRepository | None = None,
		membership: MembershipEngine | None = None,
		notifications: NotificationSink | None = None,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self.repo = repository or repo_module.CommunitiesRepository()
		self.notifications = notifications or RedisStreamNotificationSink()
		self.membership = membership or MembershipEngine(repository=self.repo, notifications=self.notifications, clock=clock)
		self._clock = clock

	async def create_post(self, ctx: AuthContext, group_id: str, text: str) -> models.Post:
		"""Create a post; it starts PENDING when the author's posts need approval."""
		author_id = ctx.require_user()
		body = policies.ensure_text(text, field="text", max_length=policies.POST_MAX_LENGTH)
		permission = await self.membership.can_post(ctx, group_id)
		if not permission.allowed:
			raise PostingNotAllowedError(group_id=group_id, user_id=author_id, denial=permission.reason)
		status = models.ApprovalStatus.PENDING if permission.requires_approval else models.ApprovalStatus.APPROVED
		post = await self.repo.create_post(
			models.Post(
				id=str(uuid4()),
				group_id=group_id,
				author_id=author_id,
				text=body,
				approval_status=status,
				created_at=self._clock(),
			)
		)
		obs_metrics.inc_post_created(status.value)
		logger.info("post created", extra={"post_id": post.id, "group_id": group_id, "approval_status": status.value})
		return post

	async def get_post(self, post_id: str) -> models.Post:
		post = await self.repo.get_post(post_id)
		if post is None:
			raise PostNotFoundError(post_id=post_id)
		return post

	async def list_posts(self, ctx: AuthContext, group_id: str, *, limit: int | None = None) -> list[models.Post]:
		"""Approved, visible posts; PRIVATE groups require membership."""
		user_id = ctx.require_user()
		group = await self.membership.get_group(group_id)
		if group.privacy is models.Privacy.PRIVATE and await self.repo.get_member(group_id, user_id) is None:
			raise PostingNotAllowedError("membership_required", group_id=group_id, user_id=user_id)
		posts = await self.repo.list_posts(group_id, approval_status=models.ApprovalStatus.APPROVED, limit=clamp_limit(limit))
		return [post for post in posts if not post.is_hidden]

	async def list_pending_posts(self, ctx: AuthContext, group_id: str, *, limit: int | None = None) -> list[models.Post]:
		actor_id = ctx.require_user()
		await self.membership.get_group(group_id)
		policies.assert_can_admin(policies.role_of(await self.repo.get_member(group_id, actor_id)))
		return await self.repo.list_posts(group_id, approval_status=models.ApprovalStatus.PENDING, limit=clamp_limit(limit))

	async def review_post(self, ctx: AuthContext, post_id: str, approve: bool) -> models.Post:
		actor_id = ctx.require_user()
		status = models.ApprovalStatus.APPROVED if approve else models.ApprovalStatus.REJECTED

		async def _cycle(attempt: int) -> models.Post:
			post = await self.get_post(post_id)
			policies.assert_can_admin(policies.role_of(await self.repo.get_member(post.group_id, actor_id)))
			if post.approval_status is not models.ApprovalStatus.PENDING:
				raise PostNotPendingError(post_id=post_id, status=post.approval_status.value)
			return await self.repo.save_post(post, approval_status=status, reviewed_by=actor_id)

		post = await run_with_cas_retry("review_post", _cycle, post_id=post_id)
		logger.info("post reviewed", extra={"post_id": post_id, "approval_status": status.value, "actor_id": actor_id})
		await self.notifications.notify(
			post.author_id,
			"post.reviewed",
			{"post_id": post_id, "group_id": post.group_id, "approval_status": status.value},
		)
		return post

	async def hide_post(self, post_id: str) -> models.Post:
		"""Hide a post from listings; hiding twice is a no-op."""

		async def _cycle(attempt: int) -> models.Post:
			post = await self.get_post(post_id)
			if post.is_hidden:
				return post
			return await self.repo.save_post(post, is_hidden=True)

		post = await run_with_cas_retry("hide_post", _cycle, post_id=post_id)
		logger.info("post hidden", extra={"post_id": post_id, "group_id": post.group_id})
		return post
