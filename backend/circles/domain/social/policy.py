"""Policy helpers and guard checks for friend requests & friendships."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from circles.domain.common.errors import ValidationError
from circles.domain.social.exceptions import SelfRequestError
from circles.domain.social.models import EdgeState, FriendEdge, MIRROR_STATE, RelationshipStatus
from circles.settings import settings


def normalise_user_id(raw: object) -> str:
	value = str(raw or "").strip()
	if not value or ":" in value:
		raise ValidationError("invalid_user_id", user_id=str(raw))
	return value


def guard_not_self(user_id: str, target_id: str) -> None:
	if str(user_id) == str(target_id):
		raise SelfRequestError(user_id=user_id)


def clamp_limit(limit: Optional[int]) -> int:
	if limit is None:
		return settings.list_default_limit
	if limit < 1 or limit > settings.list_max_limit:
		raise ValidationError("limit_out_of_range", limit=limit)
	return limit


def state_of(edge: Optional[FriendEdge]) -> Optional[EdgeState]:
	return edge.state if edge is not None else None


def is_consistent(mine: Optional[FriendEdge], theirs: Optional[FriendEdge]) -> bool:
	"""Whether the two directed edges are images of one logical relationship."""
	if mine is None or theirs is None:
		return mine is None and theirs is None
	return MIRROR_STATE[mine.state] is theirs.state


def status_from_pair(mine: Optional[FriendEdge], theirs: Optional[FriendEdge]) -> RelationshipStatus:
	"""Caller-side status; for an inconsistent pair the caller's own edge wins."""
	if mine is not None:
		return RelationshipStatus(mine.state.value)
	if theirs is not None:
		return RelationshipStatus(MIRROR_STATE[theirs.state].value)
	return RelationshipStatus.NONE


@dataclass(slots=True, frozen=True)
class RepairPlan:
	"""Target states for (mine, theirs); ``None`` means the edge is deleted."""

	rule: str
	mine: Optional[EdgeState]
	theirs: Optional[EdgeState]


def _settled(edge: FriendEdge, now: datetime, grace_seconds: float) -> bool:
	return now - edge.updated_at >= timedelta(seconds=grace_seconds)


def plan_repair(
	mine: Optional[FriendEdge],
	theirs: Optional[FriendEdge],
	*,
	now: datetime,
	grace_seconds: float,
) -> Optional[RepairPlan]:
	"""Decide how to converge an asymmetric pair, or ``None`` to leave it as is.

	Roll-forward rules apply immediately: both users already expressed the
	intent. Deletions only apply once every present edge is older than the grace
	period, since a younger asymmetry may be an operation still in flight.
	"""
	if is_consistent(mine, theirs):
		return None
	states = {state_of(mine), state_of(theirs)}
	if EdgeState.ACCEPTED in states and None not in states:
		return RepairPlan("roll_forward_accept", EdgeState.ACCEPTED, EdgeState.ACCEPTED)
	if states == {EdgeState.PENDING_OUT}:
		return RepairPlan("mutual_request", EdgeState.ACCEPTED, EdgeState.ACCEPTED)
	present = [edge for edge in (mine, theirs) if edge is not None]
	if not all(_settled(edge, now, grace_seconds) for edge in present):
		return None
	if states == {EdgeState.PENDING_IN}:
		return RepairPlan("orphaned_incoming", None, None)
	return RepairPlan("stale_half", None, None)
