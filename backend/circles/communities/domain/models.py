"""Domain models for groups, memberships, join requests and posts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel

from circles.domain.common.models import StoredModel


class Role(str, Enum):
	CREATOR = "CREATOR"
	ADMIN = "ADMIN"
	MEMBER = "MEMBER"


ROLE_RANK = {Role.CREATOR: 3, Role.ADMIN: 2, Role.MEMBER: 1}


class Privacy(str, Enum):
	PUBLIC = "PUBLIC"
	PRIVATE = "PRIVATE"


class PostingPermission(str, Enum):
	EVERYONE = "EVERYONE"
	ADMINS_ONLY = "ADMINS_ONLY"


class GroupStatus(str, Enum):
	ACTIVE = "ACTIVE"
	DELETED = "DELETED"


class JoinRequestStatus(str, Enum):
	PENDING = "PENDING"
	APPROVED = "APPROVED"
	REJECTED = "REJECTED"


class ApprovalStatus(str, Enum):
	PENDING = "PENDING"
	APPROVED = "APPROVED"
	REJECTED = "REJECTED"


def membership_key(group_id: str, member_id: str) -> str:
	return f"{group_id}:{member_id}"


class Group(StoredModel):
	"""Represents a group; ``member_count`` is derived from the membership rows."""

	id: str
	name: str
	description: str = ""
	owner_id: str
	privacy: Privacy
	posting_permission: PostingPermission
	require_post_approval: bool = False
	member_count: int = 0
	status: GroupStatus = GroupStatus.ACTIVE
	created_at: datetime
	updated_at: datetime

	@property
	def is_active(self) -> bool:
		return self.status is GroupStatus.ACTIVE


class GroupMembership(StoredModel):
	"""Row existence is the membership."""

	group_id: str
	member_id: str
	role: Role
	joined_at: datetime

	@property
	def key(self) -> str:
		return membership_key(self.group_id, self.member_id)


class JoinRequest(StoredModel):
	group_id: str
	user_id: str
	status: JoinRequestStatus = JoinRequestStatus.PENDING
	created_at: datetime
	reviewed_by: Optional[str] = None
	reviewed_at: Optional[datetime] = None

	@property
	def key(self) -> str:
		return membership_key(self.group_id, self.user_id)

	def derived_fields(self) -> dict[str, Any]:
		return {"group_status": f"{self.group_id}:{self.status.value}"}


class Post(StoredModel):
	id: str
	group_id: str
	author_id: str
	text: str
	approval_status: ApprovalStatus
	is_hidden: bool = False
	created_at: datetime
	reviewed_by: Optional[str] = None

	def derived_fields(self) -> dict[str, Any]:
		return {"group_approval": f"{self.group_id}:{self.approval_status.value}"}


class PostPermission(BaseModel):
	allowed: bool
	requires_approval: bool = False
	reason: Optional[str] = None


class JoinResult(BaseModel):
	"""Outcome of ``join``: an immediate membership or a pending request."""

	status: Literal["joined", "requested"]
	membership: Optional[GroupMembership] = None
	join_request: Optional[JoinRequest] = None
