"""Pydantic schemas for friend requests and friendships."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from circles.domain.social.models import EdgeState, FriendEdge, RelationshipStatus, RelationshipView


class FriendRequestPayload(BaseModel):
	to_user_id: str = Field(..., min_length=1, description="Target user for the request")


class FriendEdgeOut(BaseModel):
	user_id: str
	other_id: str
	state: EdgeState
	created_at: datetime
	updated_at: datetime

	@classmethod
	def from_edge(cls, edge: FriendEdge) -> "FriendEdgeOut":
		return cls(
			user_id=edge.owner_id,
			other_id=edge.other_id,
			state=edge.state,
			created_at=edge.created_at,
			updated_at=edge.updated_at,
		)


class RelationshipOut(BaseModel):
	user_id: str
	other_id: str
	status: RelationshipStatus
	consistent: bool
	repaired: Optional[str] = None
	since: Optional[datetime] = None

	@classmethod
	def from_view(cls, view: RelationshipView) -> "RelationshipOut":
		return cls(
			user_id=view.user_id,
			other_id=view.other_id,
			status=view.status,
			consistent=view.consistent,
			repaired=view.repaired,
			since=view.since,
		)
