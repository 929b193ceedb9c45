"""Authorization policies for group operations."""

from __future__ import annotations

from enum import Enum
from typing import Optional, TypeVar

from circles.communities.domain import models
from circles.communities.domain.exceptions import GroupNotFoundError
from circles.domain.common.errors import InsufficientRoleError, ValidationError

E = TypeVar("E", bound=Enum)

NAME_MAX_LENGTH = 120
DESCRIPTION_MAX_LENGTH = 2_000
POST_MAX_LENGTH = 10_000


def parse_enum(enum_cls: type[E], raw: object, *, reason: str) -> E:
	"""Closed-set parsing; unknown strings are rejected at the boundary."""
	if isinstance(raw, enum_cls):
		return raw
	try:
		return enum_cls(str(raw).strip().upper())
	except ValueError:
		raise ValidationError(reason, value=str(raw)) from None


def parse_role(raw: object) -> models.Role:
	return parse_enum(models.Role, raw, reason="unknown_role")


def rank(role: Optional[models.Role]) -> int:
	return models.ROLE_RANK.get(role, 0) if role is not None else 0


def role_of(membership: Optional[models.GroupMembership]) -> Optional[models.Role]:
	return membership.role if membership is not None else None


def require_active(group: Optional[models.Group], group_id: str) -> models.Group:
	if group is None or not group.is_active:
		raise GroupNotFoundError(group_id=group_id)
	return group


def assert_can_admin(role: Optional[models.Role]) -> None:
	if rank(role) < rank(models.Role.ADMIN):
		raise InsufficientRoleError("admin_role_required", role=role.value if role else None)


def assert_is_creator(role: Optional[models.Role]) -> None:
	if role is not models.Role.CREATOR:
		raise InsufficientRoleError("creator_role_required", role=role.value if role else None)


def ensure_can_remove(actor_role: Optional[models.Role], target_role: models.Role) -> None:
	assert_can_admin(actor_role)
	if rank(actor_role) <= rank(target_role):
		raise InsufficientRoleError("insufficient_role_rank", role=actor_role.value if actor_role else None, target_role=target_role.value)


def ensure_role_transition(
	actor_role: Optional[models.Role],
	target_role: models.Role,
	new_role: models.Role,
) -> None:
	"""Actor must outrank the target and reach the new role.

	CREATOR is assigned once at creation and is never granted here; moving a
	member into or out of ADMIN is reserved to the creator.
	"""
	context = {
		"role": actor_role.value if actor_role else None,
		"target_role": target_role.value,
		"new_role": new_role.value,
	}
	if new_role is models.Role.CREATOR:
		raise InsufficientRoleError("creator_role_immutable", **context)
	if rank(actor_role) <= rank(target_role) or rank(actor_role) < rank(new_role):
		raise InsufficientRoleError("insufficient_role_rank", **context)
	if models.Role.ADMIN in (target_role, new_role) and actor_role is not models.Role.CREATOR:
		raise InsufficientRoleError("creator_role_required", **context)


def evaluate_post_permission(
	group: Optional[models.Group],
	membership: Optional[models.GroupMembership],
) -> models.PostPermission:
	if group is None or not group.is_active:
		return models.PostPermission(allowed=False, reason="group_inactive")
	if membership is None:
		return models.PostPermission(allowed=False, reason="membership_required")
	if group.posting_permission is models.PostingPermission.ADMINS_ONLY and rank(membership.role) < rank(models.Role.ADMIN):
		return models.PostPermission(allowed=False, reason="admins_only")
	return models.PostPermission(
		allowed=True,
		requires_approval=group.require_post_approval and membership.role is models.Role.MEMBER,
	)


def ensure_text(value: Optional[str], *, field: str, max_length: int, required: bool = True) -> str:
	text = (value or "").strip()
	if required and not text:
		raise ValidationError(f"{field}_required")
	if len(text) > max_length:
		raise ValidationError(f"{field}_too_long", max_length=max_length)
	return text
