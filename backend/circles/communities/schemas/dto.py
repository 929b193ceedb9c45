"""Pydantic request schemas for the communities API.

Enum-valued fields are accepted as plain strings and parsed by the engines, so
unknown values surface as the domain ``ValidationError``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class GroupCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=120)
	description: Optional[str] = Field(default=None, max_length=2000)
	privacy: str = "PUBLIC"
	posting_permission: str = "EVERYONE"
	require_post_approval: bool = False


class RoleChangeRequest(BaseModel):
	role: str


class PostCreateRequest(BaseModel):
	text: str = Field(..., min_length=1)


class PostReviewRequest(BaseModel):
	approve: bool


class MemberCountResponse(BaseModel):
	group_id: str
	member_count: int
