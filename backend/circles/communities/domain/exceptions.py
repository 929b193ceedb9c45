"""Custom exceptions for communities services."""

from __future__ import annotations

from circles.domain.common.errors import AuthorizationError, NotFoundError, StateError


class GroupNotFoundError(NotFoundError):
	reason = "group_not_found"


class MemberNotFoundError(NotFoundError):
	reason = "member_not_found"


class JoinRequestNotFoundError(NotFoundError):
	reason = "join_request_not_found"


class PostNotFoundError(NotFoundError):
	reason = "post_not_found"


class CreatorCannotLeaveError(StateError):
	"""The creator role is permanent, so the creator's row is never deleted."""

	reason = "creator_cannot_leave"


class AlreadyMemberError(StateError):
	reason = "already_member"


class JoinRequestPendingError(StateError):
	reason = "join_request_pending"


class JoinRequestNotPendingError(StateError):
	reason = "join_request_not_pending"


class PostNotPendingError(StateError):
	reason = "post_not_pending"


class PostingNotAllowedError(AuthorizationError):
	reason = "posting_not_allowed"
