"""Per-user friend edge storage.

Exposes the atomic-intent primitives the friend graph engine composes: every
write is a single-document compare-and-swap against the version the caller
read, so a concurrent change surfaces as ``VersionConflict``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from circles.domain.social.models import EdgeState, FriendEdge, edge_key
from circles.infra import documents
from circles.infra.documents import DocumentStore


class RelationshipStore:
	def __init__(self, store: DocumentStore | None = None) -> None:
		self._store = store

	@property
	def store(self) -> DocumentStore:
		return self._store or documents.get_document_store()

	async def get_edge(self, owner_id: str, other_id: str) -> Optional[FriendEdge]:
		document = await self.store.get(documents.FRIEND_EDGE, edge_key(owner_id, other_id))
		return FriendEdge.from_document(document) if document else None

	async def get_pair(self, user_id: str, other_id: str) -> tuple[Optional[FriendEdge], Optional[FriendEdge]]:
		mine, theirs = await asyncio.gather(self.get_edge(user_id, other_id), self.get_edge(other_id, user_id))
		return mine, theirs

	async def create_edge(self, owner_id: str, other_id: str, state: EdgeState, *, now: datetime) -> FriendEdge:
		"""Create-only write; fails if any edge already exists for the direction."""
		edge = FriendEdge(owner_id=owner_id, other_id=other_id, state=state, created_at=now, updated_at=now)
		edge.version = await self.store.put(documents.FRIEND_EDGE, edge.key, edge.to_record(), expected_version=0)
		return edge

	async def write_state(
		self,
		current: Optional[FriendEdge],
		owner_id: str,
		other_id: str,
		state: EdgeState,
		*,
		now: datetime,
	) -> FriendEdge:
		"""Move the edge to ``state`` if it is still at the version ``current`` was read at."""
		edge = FriendEdge(
			owner_id=owner_id,
			other_id=other_id,
			state=state,
			created_at=current.created_at if current else now,
			updated_at=now,
		)
		expected = current.version if current else 0
		edge.version = await self.store.put(documents.FRIEND_EDGE, edge.key, edge.to_record(), expected_version=expected)
		return edge

	async def restore(self, written: FriendEdge, previous: Optional[FriendEdge]) -> None:
		"""Undo ``written`` back to ``previous`` (or absence) if nobody moved it since."""
		if previous is None:
			await self.store.delete(documents.FRIEND_EDGE, written.key, expected_version=written.version)
			return
		await self.store.put(documents.FRIEND_EDGE, written.key, previous.to_record(), expected_version=written.version)

	async def delete_edge(self, edge: FriendEdge) -> None:
		await self.store.delete(documents.FRIEND_EDGE, edge.key, expected_version=edge.version)

	async def list_by_state(self, owner_id: str, state: EdgeState, *, limit: int) -> list[FriendEdge]:
		rows = await self.store.query_by_field(
			documents.FRIEND_EDGE,
			"owner_state",
			f"{owner_id}:{state.value}",
			limit=limit,
		)
		edges = [FriendEdge.from_document(row) for row in rows]
		edges.sort(key=lambda edge: edge.updated_at, reverse=True)
		return edges
