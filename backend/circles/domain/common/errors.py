"""Error taxonomy shared by the friend graph, membership and moderation engines."""

from __future__ import annotations

from typing import Any, Mapping

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY


class CirclesError(Exception):
	"""Base class for every error an engine surfaces to its caller.

	``reason`` is a stable machine-readable code, ``context`` carries the entity
	ids and the state observed when the error was raised so the caller can decide
	whether retrying makes sense.
	"""

	status_code: int = status.HTTP_400_BAD_REQUEST
	reason: str = "error"

	def __init__(self, reason: str | None = None, **context: Any) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason
		self.context: dict[str, Any] = {key: value for key, value in context.items() if value is not None}

	def to_dict(self) -> dict[str, Any]:
		return {"reason": self.reason, "context": dict(self.context)}


class ValidationError(CirclesError):
	"""Malformed input, e.g. a self friend request or an unknown role."""

	status_code = _HTTP_422
	reason = "validation_error"


class NotFoundError(CirclesError):
	status_code = status.HTTP_404_NOT_FOUND
	reason = "not_found"


class ConflictError(CirclesError):
	"""Optimistic concurrency failure that outlived the retry budget."""

	status_code = status.HTTP_409_CONFLICT
	reason = "conflict"


class VersionConflict(ConflictError):
	"""A single compare-and-swap precondition failed in the document store.

	Engines catch this inside their retry loops; only ``ConflictError`` proper
	reaches callers.
	"""

	reason = "version_conflict"

	def __init__(
		self,
		kind: str,
		key: str,
		*,
		expected: int | None = None,
		actual: int | None = None,
	) -> None:
		super().__init__(self.reason, kind=kind, key=key, expected=expected, actual=actual)
		self.kind = kind
		self.key = key
		self.expected = expected
		self.actual = actual


class AuthorizationError(CirclesError):
	status_code = status.HTTP_403_FORBIDDEN
	reason = "forbidden"


class UnauthorizedError(AuthorizationError):
	"""No authenticated caller on the request context."""

	status_code = status.HTTP_401_UNAUTHORIZED
	reason = "unauthenticated"


class InsufficientRoleError(AuthorizationError):
	reason = "insufficient_role"


class StateError(CirclesError):
	"""Operation is not valid for the entity's current lifecycle state."""

	status_code = status.HTTP_409_CONFLICT
	reason = "invalid_state"


class PartialFailureError(CirclesError):
	"""A side effect failed after the primary transition committed.

	Never raised past an engine boundary: it is returned next to the committed
	result so the caller and the audit trail can reconcile.
	"""

	status_code = status.HTTP_200_OK
	reason = "partial_failure"

	def __init__(self, reason: str | None = None, *, failures: Mapping[str, str] | None = None, **context: Any) -> None:
		super().__init__(reason, **context)
		self.failures: dict[str, str] = dict(failures or {})

	def to_dict(self) -> dict[str, Any]:
		payload = super().to_dict()
		payload["failures"] = dict(self.failures)
		return payload
