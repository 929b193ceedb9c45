"""Membership engine: groups, roles, join flows and the member counter.

Membership rows are authoritative. ``Group.member_count`` is a derived value
updated after each membership write under its own CAS; when that update runs
out of retries the drift is logged and left to ``reconcile_count``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from circles.communities.domain import models, policies, repo as repo_module
from circles.communities.domain.exceptions import (
	AlreadyMemberError,
	CreatorCannotLeaveError,
	GroupNotFoundError,
	JoinRequestNotFoundError,
	JoinRequestNotPendingError,
	JoinRequestPendingError,
	MemberNotFoundError,
)
from circles.domain.common import utcnow
from circles.domain.common.errors import ConflictError, VersionConflict
from circles.domain.common.retry import run_with_cas_retry
from circles.domain.social.policy import clamp_limit, normalise_user_id
from circles.infra.auth import AuthContext
from circles.infra.notifications import NotificationSink, RedisStreamNotificationSink
from circles.obs import metrics as obs_metrics
from circles.settings import settings

logger = logging.getLogger(__name__)


class MembershipEngine:
	"""Handles group lifecycle and every membership mutation."""

	def __init__(
		self,
		*,
		repository: repo_module.CommunitiesRepository | None = None,
		notifications: NotificationSink | None = None,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self.repo = repository or repo_module.CommunitiesRepository()
		self.notifications = notifications or RedisStreamNotificationSink()
		self._clock = clock

	# --- Groups -----------------------------------------------------------

	async def create_group(
		self,
		ctx: AuthContext,
		*,
		name: str,
		description: str | None = None,
		privacy: models.Privacy | str = models.Privacy.PUBLIC,
		posting_permission: models.PostingPermission | str = models.PostingPermission.EVERYONE,
		require_post_approval: bool = False,
	) -> models.Group:
		owner_id = ctx.require_user()
		now = self._clock()
		group = models.Group(
			id=str(uuid4()),
			name=policies.ensure_text(name, field="name", max_length=policies.NAME_MAX_LENGTH),
			description=policies.ensure_text(
				description,
				field="description",
				max_length=policies.DESCRIPTION_MAX_LENGTH,
				required=False,
			),
			owner_id=owner_id,
			privacy=policies.parse_enum(models.Privacy, privacy, reason="unknown_privacy"),
			posting_permission=policies.parse_enum(
				models.PostingPermission,
				posting_permission,
				reason="unknown_posting_permission",
			),
			require_post_approval=bool(require_post_approval),
			member_count=1,
			created_at=now,
			updated_at=now,
		)
		group = await self.repo.create_group(group)
		try:
			await self.repo.create_member(
				models.GroupMembership(group_id=group.id, member_id=owner_id, role=models.Role.CREATOR, joined_at=now)
			)
		except BaseException:
			await self._compensate_group(group)
			raise
		obs_metrics.inc_membership_transition("group_created")
		logger.info("group created", extra={"group_id": group.id, "owner_id": owner_id})
		return group

	async def _compensate_group(self, group: models.Group) -> None:
		try:
			await self.repo.delete_group_document(group)
		except Exception:
			obs_metrics.inc_compensation("create_group", "failed")
			logger.exception("failed to delete group after creator membership write failed", extra={"group_id": group.id})
			return
		obs_metrics.inc_compensation("create_group", "applied")
		logger.warning("deleted group after creator membership write failed", extra={"group_id": group.id})

	async def _compensate_membership(self, membership: models.GroupMembership, *, operation: str) -> None:
		try:
			await self.repo.delete_member(membership)
		except VersionConflict:
			obs_metrics.inc_compensation(operation, "superseded")
			logger.info(
				"membership changed before compensation",
				extra={"group_id": membership.group_id, "user_id": membership.member_id},
			)
			return
		except Exception:
			obs_metrics.inc_compensation(operation, "failed")
			logger.exception(
				"failed to delete membership after join request write failed",
				extra={"group_id": membership.group_id, "user_id": membership.member_id},
			)
			return
		obs_metrics.inc_compensation(operation, "applied")
		logger.warning(
			"deleted membership after join request write failed",
			extra={"group_id": membership.group_id, "user_id": membership.member_id},
		)

	async def get_group(self, group_id: str) -> models.Group:
		return policies.require_active(await self.repo.get_group(group_id), group_id)

	async def list_groups(self, *, limit: int | None = None) -> list[models.Group]:
		return await self.repo.list_groups(limit=clamp_limit(limit))

	async def list_members(self, group_id: str, *, limit: int | None = None) -> list[models.GroupMembership]:
		await self.get_group(group_id)
		return await self.repo.list_members(group_id, limit=clamp_limit(limit))

	async def get_membership(self, group_id: str, user_id: str) -> Optional[models.GroupMembership]:
		return await self.repo.get_member(group_id, normalise_user_id(user_id))

	async def delete_group(self, ctx: AuthContext, group_id: str) -> models.Group:
		actor_id = ctx.require_user()

		async def _cycle(attempt: int) -> models.Group:
			group = await self.get_group(group_id)
			membership = await self.repo.get_member(group_id, actor_id)
			policies.assert_is_creator(policies.role_of(membership))
			return await self.repo.save_group(group, status=models.GroupStatus.DELETED, updated_at=self._clock())

		group = await run_with_cas_retry("delete_group", _cycle, group_id=group_id, user_id=actor_id)
		obs_metrics.inc_membership_transition("group_deleted")
		logger.info("group deleted", extra={"group_id": group_id, "user_id": actor_id})
		return group

	# --- Member counter -----------------------------------------------------

	async def _adjust_count(self, group_id: str, delta: int, *, operation: str) -> None:
		async def _cycle(attempt: int) -> None:
			group = await self.repo.get_group(group_id)
			if group is None:
				return
			await self.repo.save_group(group, member_count=max(0, group.member_count + delta))

		try:
			await run_with_cas_retry(f"{operation}.member_count", _cycle, group_id=group_id)
		except ConflictError:
			obs_metrics.inc_member_count_deferred()
			logger.warning(
				"member_count update deferred to reconciliation",
				extra={"group_id": group_id, "delta": delta, "operation": operation},
			)

	async def reconcile_count(self, group_id: str, tolerance: int | None = None) -> int:
		"""Recompute ``member_count`` from the membership rows.

		The stored value is corrected when it is off by more than ``tolerance``.
		Returns the authoritative count.
		"""
		allowed_drift = settings.member_count_tolerance if tolerance is None else max(0, tolerance)

		async def _cycle(attempt: int) -> int:
			group = await self.repo.get_group(group_id)
			if group is None:
				raise GroupNotFoundError(group_id=group_id)
			actual = await self.repo.count_members(group_id)
			if abs(group.member_count - actual) > allowed_drift:
				await self.repo.save_group(group, member_count=actual)
				obs_metrics.inc_member_count_correction()
				logger.warning(
					"member_count corrected",
					extra={"group_id": group_id, "stored": group.member_count, "actual": actual},
				)
			return actual

		return await run_with_cas_retry("reconcile_count", _cycle, group_id=group_id)

	# --- Join flows -----------------------------------------------------------

	async def join(self, ctx: AuthContext, group_id: str) -> models.JoinResult:
		"""Join a PUBLIC group, or file a join request for a PRIVATE one."""
		user_id = ctx.require_user()

		async def _cycle(attempt: int) -> models.JoinResult:
			group = await self.get_group(group_id)
			if await self.repo.get_member(group_id, user_id) is not None:
				raise AlreadyMemberError(group_id=group_id, user_id=user_id)
			now = self._clock()
			if group.privacy is models.Privacy.PUBLIC:
				membership = await self.repo.create_member(
					models.GroupMembership(group_id=group_id, member_id=user_id, role=models.Role.MEMBER, joined_at=now)
				)
				return models.JoinResult(status="joined", membership=membership)
			existing = await self.repo.get_join_request(group_id, user_id)
			if existing is not None and existing.status is models.JoinRequestStatus.PENDING:
				raise JoinRequestPendingError(group_id=group_id, user_id=user_id)
			# A reviewed request is replaced by the new one.
			request = await self.repo.put_join_request(
				models.JoinRequest(group_id=group_id, user_id=user_id, created_at=now),
				expected_version=existing.version if existing else 0,
			)
			return models.JoinResult(status="requested", join_request=request)

		result = await run_with_cas_retry("join", _cycle, group_id=group_id, user_id=user_id)
		if result.status == "joined":
			await self._adjust_count(group_id, 1, operation="join")
			obs_metrics.inc_membership_transition("joined")
			logger.info("member joined", extra={"group_id": group_id, "user_id": user_id})
		else:
			obs_metrics.inc_membership_transition("join_requested")
			logger.info("join requested", extra={"group_id": group_id, "user_id": user_id})
			group = await self.repo.get_group(group_id)
			if group is not None:
				await self.notifications.notify(
					group.owner_id,
					"group.join_requested",
					{"group_id": group_id, "user_id": user_id},
				)
		return result

	async def list_join_requests(
		self,
		ctx: AuthContext,
		group_id: str,
		*,
		limit: int | None = None,
	) -> list[models.JoinRequest]:
		actor_id = ctx.require_user()
		await self.get_group(group_id)
		policies.assert_can_admin(policies.role_of(await self.repo.get_member(group_id, actor_id)))
		return await self.repo.list_join_requests(group_id, limit=clamp_limit(limit))

	async def _pending_request(self, group_id: str, user_id: str) -> models.JoinRequest:
		request = await self.repo.get_join_request(group_id, user_id)
		if request is None:
			raise JoinRequestNotFoundError(group_id=group_id, user_id=user_id)
		if request.status is not models.JoinRequestStatus.PENDING:
			raise JoinRequestNotPendingError(group_id=group_id, user_id=user_id, status=request.status.value)
		return request

	async def approve_join_request(self, ctx: AuthContext, group_id: str, user_id: str) -> models.GroupMembership:
		"""Create the membership, then mark the request approved.

		A membership written by this cycle is deleted again when the request
		cannot be marked approved, e.g. because it was rejected concurrently.
		"""
		actor_id = ctx.require_user()
		user_id = normalise_user_id(user_id)
		created = False

		async def _cycle(attempt: int) -> models.GroupMembership:
			nonlocal created
			await self.get_group(group_id)
			policies.assert_can_admin(policies.role_of(await self.repo.get_member(group_id, actor_id)))
			request = await self._pending_request(group_id, user_id)
			now = self._clock()
			membership = await self.repo.get_member(group_id, user_id)
			fresh = membership is None
			if membership is None:
				membership = await self.repo.create_member(
					models.GroupMembership(group_id=group_id, member_id=user_id, role=models.Role.MEMBER, joined_at=now)
				)
			try:
				await self.repo.put_join_request(
					request.model_copy(
						update={"status": models.JoinRequestStatus.APPROVED, "reviewed_by": actor_id, "reviewed_at": now}
					),
					expected_version=request.version,
				)
			except BaseException:
				if fresh:
					await self._compensate_membership(membership, operation="approve_join_request")
				raise
			created = fresh
			return membership

		membership = await run_with_cas_retry("approve_join_request", _cycle, group_id=group_id, user_id=user_id)
		if created:
			await self._adjust_count(group_id, 1, operation="approve_join_request")
		obs_metrics.inc_membership_transition("join_approved")
		logger.info("join request approved", extra={"group_id": group_id, "user_id": user_id, "actor_id": actor_id})
		await self.notifications.notify(user_id, "group.join_approved", {"group_id": group_id})
		return membership

	async def reject_join_request(self, ctx: AuthContext, group_id: str, user_id: str) -> models.JoinRequest:
		actor_id = ctx.require_user()
		user_id = normalise_user_id(user_id)

		async def _cycle(attempt: int) -> models.JoinRequest:
			await self.get_group(group_id)
			policies.assert_can_admin(policies.role_of(await self.repo.get_member(group_id, actor_id)))
			request = await self._pending_request(group_id, user_id)
			return await self.repo.put_join_request(
				request.model_copy(
					update={
						"status": models.JoinRequestStatus.REJECTED,
						"reviewed_by": actor_id,
						"reviewed_at": self._clock(),
					}
				),
				expected_version=request.version,
			)

		request = await run_with_cas_retry("reject_join_request", _cycle, group_id=group_id, user_id=user_id)
		obs_metrics.inc_membership_transition("join_rejected")
		logger.info("join request rejected", extra={"group_id": group_id, "user_id": user_id, "actor_id": actor_id})
		return request

	# --- Leaving and removal ----------------------------------------------------

	async def _remove(
		self,
		group_id: str,
		member_id: str,
		*,
		operation: str,
		guard: Callable[[models.GroupMembership], Awaitable[None]],
	) -> None:
		async def _cycle(attempt: int) -> None:
			membership = await self.repo.get_member(group_id, member_id)
			if membership is None:
				raise MemberNotFoundError(group_id=group_id, user_id=member_id)
			await guard(membership)
			await self.repo.delete_member(membership)

		await run_with_cas_retry(operation, _cycle, group_id=group_id, user_id=member_id)
		await self._adjust_count(group_id, -1, operation=operation)
		obs_metrics.inc_membership_transition(operation)
		logger.info("member removed", extra={"group_id": group_id, "user_id": member_id, "operation": operation})

	async def leave(self, ctx: AuthContext, group_id: str) -> None:
		user_id = ctx.require_user()

		async def _guard(membership: models.GroupMembership) -> None:
			if membership.role is models.Role.CREATOR:
				raise CreatorCannotLeaveError(group_id=group_id, user_id=user_id)

		await self._remove(group_id, user_id, operation="left", guard=_guard)

	async def remove_member(self, ctx: AuthContext, group_id: str, member_id: str) -> None:
		actor_id = ctx.require_user()
		member_id = normalise_user_id(member_id)

		async def _guard(membership: models.GroupMembership) -> None:
			actor = await self.repo.get_member(group_id, actor_id)
			policies.ensure_can_remove(policies.role_of(actor), membership.role)

		await self._remove(group_id, member_id, operation="removed", guard=_guard)

	async def force_remove(self, group_id: str, member_id: str) -> None:
		"""Remove a member without an actor check; used by moderation actions."""

		async def _guard(membership: models.GroupMembership) -> None:
			if membership.role is models.Role.CREATOR:
				raise CreatorCannotLeaveError("creator_cannot_be_removed", group_id=group_id, user_id=member_id)

		await self._remove(group_id, normalise_user_id(member_id), operation="force_removed", guard=_guard)

	# --- Roles and permissions --------------------------------------------------

	async def change_role(
		self,
		ctx: AuthContext,
		group_id: str,
		target_id: str,
		new_role: models.Role | str,
	) -> models.GroupMembership:
		actor_id = ctx.require_user()
		target_id = normalise_user_id(target_id)
		role = policies.parse_role(new_role)

		async def _cycle(attempt: int) -> models.GroupMembership:
			await self.get_group(group_id)
			actor = await self.repo.get_member(group_id, actor_id)
			target = await self.repo.get_member(group_id, target_id)
			if target is None:
				raise MemberNotFoundError(group_id=group_id, user_id=target_id)
			policies.ensure_role_transition(policies.role_of(actor), target.role, role)
			if target.role is role:
				return target
			return await self.repo.save_member(target, role=role)

		membership = await run_with_cas_retry("change_role", _cycle, group_id=group_id, user_id=target_id)
		obs_metrics.inc_membership_transition("role_changed")
		logger.info(
			"member role changed",
			extra={"group_id": group_id, "user_id": target_id, "role": role.value, "actor_id": actor_id},
		)
		await self.notifications.notify(target_id, "group.role_changed", {"group_id": group_id, "role": role.value})
		return membership

	async def can_post(self, ctx: AuthContext, group_id: str) -> models.PostPermission:
		user_id = ctx.require_user()
		group = await self.repo.get_group(group_id)
		membership = await self.repo.get_member(group_id, user_id) if group is not None else None
		return policies.evaluate_post_permission(group, membership)
