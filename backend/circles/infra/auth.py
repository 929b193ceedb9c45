"""Caller identity passed explicitly into every engine call.

Bearer-token verification happens upstream; this module only carries the
resolved identity. In development the API accepts ``X-User-Id`` and
``X-User-Roles`` headers, everywhere else an anonymous context is produced and
the engines reject it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Header, Request

from circles.domain.common.errors import UnauthorizedError
from circles.settings import settings

MODERATOR_ROLES = frozenset({"moderator", "admin"})


@dataclass(slots=True, frozen=True)
class AuthContext:
	user_id: Optional[str] = None
	roles: Tuple[str, ...] = ()
	request_id: Optional[str] = None

	def current_user_id(self) -> Optional[str]:
		return self.user_id

	def has_role(self, role: str) -> bool:
		return role in self.roles

	def is_moderator(self) -> bool:
		return any(role in MODERATOR_ROLES for role in self.roles)

	def require_user(self) -> str:
		user_id = self.current_user_id()
		if not user_id:
			raise UnauthorizedError()
		return user_id


ANONYMOUS = AuthContext()


def _split_roles(raw: Optional[str]) -> Tuple[str, ...]:
	if not raw:
		return ()
	return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


async def get_auth_context(
	request: Request,
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
) -> AuthContext:
	"""Resolve the caller for an API request."""
	request_id = getattr(request.state, "request_id", None)
	if settings.is_dev() and x_user_id and x_user_id.strip():
		return AuthContext(user_id=x_user_id.strip(), roles=_split_roles(x_user_roles), request_id=request_id)
	return AuthContext(request_id=request_id)
