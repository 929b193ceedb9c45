"""Domain-level exceptions for friend requests & friendships."""

from __future__ import annotations

from circles.domain.common.errors import StateError, ValidationError


class SelfRequestError(ValidationError):
	reason = "self_request"


class AlreadyFriendsError(StateError):
	reason = "already_friends"


class RequestAlreadyPendingError(StateError):
	reason = "request_already_pending"


class NoSuchRequestError(StateError):
	reason = "no_such_request"


class NotFriendsError(StateError):
	reason = "not_friends"
