"""Domain models for directed friend edges."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from circles.infra.documents import Document


class EdgeState(str, Enum):
	"""State of one directed edge as stored under its owner.

	Absence of the document is the implicit ABSENT state.
	"""

	PENDING_OUT = "PENDING_OUT"
	PENDING_IN = "PENDING_IN"
	ACCEPTED = "ACCEPTED"


class RelationshipStatus(str, Enum):
	"""Relationship between the caller and another user, seen from the caller."""

	NONE = "NONE"
	PENDING_OUT = "PENDING_OUT"
	PENDING_IN = "PENDING_IN"
	ACCEPTED = "ACCEPTED"


MIRROR_STATE = {
	EdgeState.PENDING_OUT: EdgeState.PENDING_IN,
	EdgeState.PENDING_IN: EdgeState.PENDING_OUT,
	EdgeState.ACCEPTED: EdgeState.ACCEPTED,
}


def edge_key(owner_id: str, other_id: str) -> str:
	return f"{owner_id}:{other_id}"


@dataclass(slots=True)
class FriendEdge:
	"""One directed friend-relationship record stored under ``owner_id``."""

	owner_id: str
	other_id: str
	state: EdgeState
	created_at: datetime
	updated_at: datetime
	version: int = 0

	@property
	def key(self) -> str:
		return edge_key(self.owner_id, self.other_id)

	@classmethod
	def from_document(cls, document: Document) -> "FriendEdge":
		data = document.data
		return cls(
			owner_id=str(data["owner_id"]),
			other_id=str(data["other_id"]),
			state=EdgeState(data["state"]),
			created_at=datetime.fromisoformat(data["created_at"]),
			updated_at=datetime.fromisoformat(data["updated_at"]),
			version=document.version,
		)

	def to_record(self) -> dict[str, Any]:
		return {
			"owner_id": self.owner_id,
			"other_id": self.other_id,
			"state": self.state.value,
			"owner_state": f"{self.owner_id}:{self.state.value}",
			"created_at": self.created_at.isoformat(),
			"updated_at": self.updated_at.isoformat(),
		}


@dataclass(slots=True)
class RelationshipView:
	"""The pair (caller→other, other→caller) after read-repair."""

	user_id: str
	other_id: str
	status: RelationshipStatus
	consistent: bool
	repaired: Optional[str] = None
	since: Optional[datetime] = None
