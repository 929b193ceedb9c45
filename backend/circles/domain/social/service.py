"""Friend request state machine over per-user edge documents.

Each relationship is stored twice, once under each user, and the store offers
no transaction spanning both documents. Mutations therefore follow one pattern:
read both edges, decide, write the first edge, write the second, and when the
second write fails undo the first before surfacing the error or retrying the
whole cycle. Readers that observe an asymmetric pair repair it instead of
trusting either side alone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from circles.domain.common import utcnow
from circles.domain.common.errors import VersionConflict
from circles.domain.common.retry import run_with_cas_retry
from circles.domain.social import policy
from circles.domain.social.exceptions import (
	AlreadyFriendsError,
	NoSuchRequestError,
	NotFriendsError,
	RequestAlreadyPendingError,
)
from circles.domain.social.models import EdgeState, FriendEdge, RelationshipView, edge_key
from circles.domain.social.repo import RelationshipStore
from circles.infra import documents
from circles.infra.auth import AuthContext
from circles.infra.notifications import NotificationSink, RedisStreamNotificationSink
from circles.obs import metrics as obs_metrics
from circles.settings import settings

logger = logging.getLogger(__name__)

_ACCEPTED = EdgeState.ACCEPTED
_PENDING_IN = EdgeState.PENDING_IN
_PENDING_OUT = EdgeState.PENDING_OUT


def _is(edge: Optional[FriendEdge], state: EdgeState) -> bool:
	return edge is not None and edge.state is state


class FriendGraphEngine:
	"""Owns the symmetric-friendship and unique-pending-request invariants."""

	def __init__(
		self,
		*,
		store: RelationshipStore | None = None,
		notifications: NotificationSink | None = None,
		clock: Callable[[], datetime] = utcnow,
	) -> None:
		self.store = store or RelationshipStore()
		self.notifications = notifications or RedisStreamNotificationSink()
		self._clock = clock

	# ------------------------------------------------------------------
	# Compensation helpers

	async def _compensate(self, written: FriendEdge, previous: Optional[FriendEdge], *, operation: str) -> None:
		"""Undo a first write whose partner write did not land.

		Losing the CAS here means another operation already moved the edge on,
		which supersedes the undo. Any other failure leaves the pair to read-repair.
		"""
		try:
			await self.store.restore(written, previous)
		except VersionConflict:
			obs_metrics.inc_compensation(operation, "superseded")
			logger.info("compensation superseded", extra={"operation": operation, "edge": written.key})
			return
		except Exception:
			obs_metrics.inc_compensation(operation, "failed")
			logger.exception("compensation failed, pair left to read-repair", extra={"operation": operation, "edge": written.key})
			return
		obs_metrics.inc_compensation(operation, "applied")
		logger.warning("compensated partial write", extra={"operation": operation, "edge": written.key})

	async def _notify(self, user_id: str, kind: str, payload: dict) -> None:
		await self.notifications.notify(user_id, kind, payload)

	# ------------------------------------------------------------------
	# Mutations

	async def send_request(self, ctx: AuthContext, receiver_id: str) -> FriendEdge:
		"""Send a friend request; returns the caller's edge.

		If the receiver already requested the caller, the call is an accept and the
		returned edge is ACCEPTED.
		"""
		sender_id = ctx.require_user()
		receiver_id = policy.normalise_user_id(receiver_id)
		policy.guard_not_self(sender_id, receiver_id)

		async def _cycle(attempt: int) -> FriendEdge:
			mine, theirs = await self.store.get_pair(sender_id, receiver_id)
			if _is(mine, _ACCEPTED) and _is(theirs, _ACCEPTED) and attempt > 0:
				# A concurrent request from the receiver converged the pair.
				return mine  # type: ignore[return-value]
			if _is(mine, _ACCEPTED) or _is(theirs, _ACCEPTED):
				raise AlreadyFriendsError(user_id=sender_id, other_id=receiver_id)
			if _is(theirs, _PENDING_OUT):
				obs_metrics.inc_friend_transition("send_as_accept")
				return await self._accept_pair(sender_id, receiver_id, mine, theirs)
			if mine is not None or theirs is not None:
				raise RequestAlreadyPendingError(
					user_id=sender_id,
					other_id=receiver_id,
					state=policy.status_from_pair(mine, theirs).value,
				)
			# Last look at the counterpart before committing to PENDING_OUT.
			theirs = await self.store.get_edge(receiver_id, sender_id)
			if theirs is not None:
				raise VersionConflict(documents.FRIEND_EDGE, edge_key(receiver_id, sender_id), expected=0, actual=theirs.version)
			now = self._clock()
			outgoing = await self.store.create_edge(sender_id, receiver_id, _PENDING_OUT, now=now)
			try:
				await self.store.create_edge(receiver_id, sender_id, _PENDING_IN, now=now)
			except BaseException:
				await self._compensate(outgoing, None, operation="send_request")
				raise
			return outgoing

		edge = await run_with_cas_retry("send_request", _cycle, user_id=sender_id, other_id=receiver_id)
		if edge.state is _PENDING_OUT:
			obs_metrics.inc_friend_transition("requested")
			logger.info("friend request sent", extra={"sender": sender_id, "receiver": receiver_id})
			await self._notify(receiver_id, "friend.request", {"from_user_id": sender_id})
		return edge

	async def _accept_pair(
		self,
		accepter_id: str,
		requester_id: str,
		mine: Optional[FriendEdge],
		theirs: Optional[FriendEdge],
	) -> FriendEdge:
		"""One accept attempt against the pair as read; raises VersionConflict to retry."""
		if _is(mine, _ACCEPTED) and _is(theirs, _ACCEPTED):
			return mine  # type: ignore[return-value]
		now = self._clock()
		if _is(mine, _ACCEPTED) and theirs is not None:
			# Half-finished accept: finish it.
			await self.store.write_state(theirs, requester_id, accepter_id, _ACCEPTED, now=now)
			obs_metrics.inc_read_repair("roll_forward_accept")
			return mine  # type: ignore[return-value]
		if not _is(theirs, _PENDING_OUT) or _is(mine, _ACCEPTED):
			if _is(mine, _PENDING_IN) and theirs is None:
				# The requester withdrew; drop the stale incoming edge.
				await self.store.delete_edge(mine)  # type: ignore[arg-type]
				obs_metrics.inc_read_repair("stale_half")
			raise NoSuchRequestError(
				user_id=accepter_id,
				other_id=requester_id,
				state=policy.status_from_pair(mine, theirs).value,
			)

		accepted = await self.store.write_state(mine, accepter_id, requester_id, _ACCEPTED, now=now)
		try:
			await self.store.write_state(theirs, requester_id, accepter_id, _ACCEPTED, now=now)
		except VersionConflict:
			current = await self.store.get_edge(requester_id, accepter_id)
			if _is(current, _ACCEPTED):
				return accepted
			await self._compensate(accepted, mine, operation="accept_request")
			raise
		except BaseException:
			await self._compensate(accepted, mine, operation="accept_request")
			raise
		obs_metrics.inc_friend_transition("accepted")
		logger.info("friend request accepted", extra={"accepter": accepter_id, "requester": requester_id})
		await self._notify(requester_id, "friend.accepted", {"by_user_id": accepter_id})
		return accepted

	async def accept_request(self, ctx: AuthContext, requester_id: str) -> FriendEdge:
		"""Accept a pending request from ``requester_id``; accepting twice is a no-op."""
		accepter_id = ctx.require_user()
		requester_id = policy.normalise_user_id(requester_id)
		policy.guard_not_self(accepter_id, requester_id)

		async def _cycle(attempt: int) -> FriendEdge:
			mine, theirs = await self.store.get_pair(accepter_id, requester_id)
			return await self._accept_pair(accepter_id, requester_id, mine, theirs)

		return await run_with_cas_retry("accept_request", _cycle, user_id=accepter_id, other_id=requester_id)

	async def _withdraw(
		self,
		user_id: str,
		other_id: str,
		*,
		mine_state: EdgeState,
		theirs_state: EdgeState,
		operation: str,
	) -> None:
		async def _cycle(attempt: int) -> None:
			mine, theirs = await self.store.get_pair(user_id, other_id)
			if _is(mine, _ACCEPTED) or _is(theirs, _ACCEPTED):
				raise AlreadyFriendsError(user_id=user_id, other_id=other_id)
			mine_pending = _is(mine, mine_state)
			theirs_pending = _is(theirs, theirs_state)
			if not mine_pending and not theirs_pending:
				raise NoSuchRequestError(
					user_id=user_id,
					other_id=other_id,
					state=policy.status_from_pair(mine, theirs).value,
				)
			# Both edges pointing the same way have no mirror; the pair is dropped whole.
			same_direction = mine_pending and _is(theirs, mine_state)
			if same_direction:
				obs_metrics.inc_read_repair("orphaned_incoming" if mine_state is _PENDING_IN else "mutual_request")
				logger.warning(
					"dropping same-direction request pair",
					extra={"operation": operation, "user_id": user_id, "other_id": other_id},
				)
			elif mine_pending != theirs_pending:
				obs_metrics.inc_read_repair("stale_half")
				logger.warning(
					"repairing half-withdrawn request",
					extra={"operation": operation, "user_id": user_id, "other_id": other_id},
				)
			# Deleting is the goal, so a partial delete is finished by the next cycle
			# rather than compensated.
			if mine_pending:
				await self.store.delete_edge(mine)  # type: ignore[arg-type]
			if theirs_pending or same_direction:
				await self.store.delete_edge(theirs)  # type: ignore[arg-type]

		await run_with_cas_retry(operation, _cycle, user_id=user_id, other_id=other_id)
		obs_metrics.inc_friend_transition(operation)

	async def reject_request(self, ctx: AuthContext, requester_id: str) -> None:
		receiver_id = ctx.require_user()
		requester_id = policy.normalise_user_id(requester_id)
		policy.guard_not_self(receiver_id, requester_id)
		await self._withdraw(
			receiver_id,
			requester_id,
			mine_state=_PENDING_IN,
			theirs_state=_PENDING_OUT,
			operation="reject_request",
		)
		logger.info("friend request rejected", extra={"receiver": receiver_id, "requester": requester_id})

	async def cancel_request(self, ctx: AuthContext, receiver_id: str) -> None:
		sender_id = ctx.require_user()
		receiver_id = policy.normalise_user_id(receiver_id)
		policy.guard_not_self(sender_id, receiver_id)
		await self._withdraw(
			sender_id,
			receiver_id,
			mine_state=_PENDING_OUT,
			theirs_state=_PENDING_IN,
			operation="cancel_request",
		)
		logger.info("friend request cancelled", extra={"sender": sender_id, "receiver": receiver_id})

	async def remove_friend(self, ctx: AuthContext, other_id: str) -> None:
		user_id = ctx.require_user()
		other_id = policy.normalise_user_id(other_id)
		policy.guard_not_self(user_id, other_id)

		async def _cycle(attempt: int) -> None:
			mine, theirs = await self.store.get_pair(user_id, other_id)
			if not _is(mine, _ACCEPTED) and not _is(theirs, _ACCEPTED):
				raise NotFriendsError(
					user_id=user_id,
					other_id=other_id,
					state=policy.status_from_pair(mine, theirs).value,
				)
			if not policy.is_consistent(mine, theirs):
				obs_metrics.inc_read_repair("stale_half")
				logger.warning("repairing half-removed friendship", extra={"user_id": user_id, "other_id": other_id})
			if mine is not None:
				await self.store.delete_edge(mine)
			if theirs is not None:
				await self.store.delete_edge(theirs)

		await run_with_cas_retry("remove_friend", _cycle, user_id=user_id, other_id=other_id)
		obs_metrics.inc_friend_transition("removed")
		logger.info("friend removed", extra={"user_id": user_id, "other_id": other_id})

	# ------------------------------------------------------------------
	# Reads

	async def get_relationship(self, ctx: AuthContext, other_id: str) -> RelationshipView:
		"""Read the pair, repairing an asymmetry that is no longer in flight."""
		user_id = ctx.require_user()
		other_id = policy.normalise_user_id(other_id)
		policy.guard_not_self(user_id, other_id)

		async def _cycle(attempt: int) -> RelationshipView:
			mine, theirs = await self.store.get_pair(user_id, other_id)
			plan = policy.plan_repair(
				mine,
				theirs,
				now=self._clock(),
				grace_seconds=settings.relationship_repair_grace_seconds,
			)
			if plan is None:
				return RelationshipView(
					user_id=user_id,
					other_id=other_id,
					status=policy.status_from_pair(mine, theirs),
					consistent=policy.is_consistent(mine, theirs),
					since=mine.updated_at if mine else None,
				)
			now = self._clock()
			repaired_mine = await self._apply(mine, user_id, other_id, plan.mine, now=now)
			repaired_theirs = await self._apply(theirs, other_id, user_id, plan.theirs, now=now)
			obs_metrics.inc_read_repair(plan.rule)
			logger.warning(
				"read-repaired friend edges",
				extra={"rule": plan.rule, "user_id": user_id, "other_id": other_id},
			)
			return RelationshipView(
				user_id=user_id,
				other_id=other_id,
				status=policy.status_from_pair(repaired_mine, repaired_theirs),
				consistent=True,
				repaired=plan.rule,
				since=repaired_mine.updated_at if repaired_mine else None,
			)

		return await run_with_cas_retry("get_relationship", _cycle, user_id=user_id, other_id=other_id)

	async def _apply(
		self,
		edge: Optional[FriendEdge],
		owner_id: str,
		other_id: str,
		target: Optional[EdgeState],
		*,
		now: datetime,
	) -> Optional[FriendEdge]:
		if target is None:
			if edge is not None:
				await self.store.delete_edge(edge)
			return None
		if edge is not None and edge.state is target:
			return edge
		return await self.store.write_state(edge, owner_id, other_id, target, now=now)

	async def list_friends(
		self,
		ctx: AuthContext,
		user_id: str | None = None,
		*,
		limit: int | None = None,
	) -> list[FriendEdge]:
		caller = ctx.require_user()
		owner = policy.normalise_user_id(user_id) if user_id else caller
		return await self.store.list_by_state(owner, _ACCEPTED, limit=policy.clamp_limit(limit))

	async def list_incoming_requests(self, ctx: AuthContext, *, limit: int | None = None) -> list[FriendEdge]:
		owner = ctx.require_user()
		return await self.store.list_by_state(owner, _PENDING_IN, limit=policy.clamp_limit(limit))

	async def list_outgoing_requests(self, ctx: AuthContext, *, limit: int | None = None) -> list[FriendEdge]:
		owner = ctx.require_user()
		return await self.store.list_by_state(owner, _PENDING_OUT, limit=policy.clamp_limit(limit))
