"""Async repository helpers for the communities domain.

Each method touches exactly one document. Writes take the version the caller
read and fail with ``VersionConflict`` if the row moved on in between.
"""

from __future__ import annotations

from typing import Optional

from circles.communities.domain import models
from circles.domain.common.models import StoredModel
from circles.infra import documents
from circles.infra.documents import DocumentStore


class CommunitiesRepository:
	"""Thin data-access layer around the document store."""

	def __init__(self, store: DocumentStore | None = None) -> None:
		self._store = store

	@property
	def store(self) -> DocumentStore:
		return self._store or documents.get_document_store()

	async def _write(self, kind: str, key: str, entity: StoredModel, *, expected_version: Optional[int]):
		version = await self.store.put(kind, key, entity.to_record(), expected_version=expected_version)
		return entity.at_version(version)

	# --- Group operations -------------------------------------------------

	async def get_group(self, group_id: str) -> Optional[models.Group]:
		document = await self.store.get(documents.GROUP, group_id)
		return models.Group.from_document(document) if document else None

	async def create_group(self, group: models.Group) -> models.Group:
		return await self._write(documents.GROUP, group.id, group, expected_version=0)

	async def save_group(self, group: models.Group, **changes) -> models.Group:
		updated = group.model_copy(update=changes)
		return await self._write(documents.GROUP, group.id, updated, expected_version=group.version)

	async def delete_group_document(self, group: models.Group) -> None:
		await self.store.delete(documents.GROUP, group.id, expected_version=group.version)

	async def list_groups(self, *, limit: int) -> list[models.Group]:
		rows = await self.store.query_by_field(documents.GROUP, "status", models.GroupStatus.ACTIVE.value, limit=limit)
		groups = [models.Group.from_document(row) for row in rows]
		groups.sort(key=lambda group: group.created_at, reverse=True)
		return groups

	# --- Member operations ------------------------------------------------

	async def get_member(self, group_id: str, member_id: str) -> Optional[models.GroupMembership]:
		document = await self.store.get(documents.MEMBERSHIP, models.membership_key(group_id, member_id))
		return models.GroupMembership.from_document(document) if document else None

	async def create_member(self, membership: models.GroupMembership) -> models.GroupMembership:
		return await self._write(documents.MEMBERSHIP, membership.key, membership, expected_version=0)

	async def save_member(self, membership: models.GroupMembership, **changes) -> models.GroupMembership:
		updated = membership.model_copy(update=changes)
		return await self._write(documents.MEMBERSHIP, membership.key, updated, expected_version=membership.version)

	async def delete_member(self, membership: models.GroupMembership) -> None:
		await self.store.delete(documents.MEMBERSHIP, membership.key, expected_version=membership.version)

	async def list_members(self, group_id: str, *, limit: int) -> list[models.GroupMembership]:
		rows = await self.store.query_by_field(documents.MEMBERSHIP, "group_id", group_id, limit=limit)
		members = [models.GroupMembership.from_document(row) for row in rows]
		members.sort(key=lambda member: (-models.ROLE_RANK[member.role], member.joined_at))
		return members

	async def count_members(self, group_id: str) -> int:
		return await self.store.count_by_field(documents.MEMBERSHIP, "group_id", group_id)

	# --- Join requests ----------------------------------------------------

	async def get_join_request(self, group_id: str, user_id: str) -> Optional[models.JoinRequest]:
		document = await self.store.get(documents.JOIN_REQUEST, models.membership_key(group_id, user_id))
		return models.JoinRequest.from_document(document) if document else None

	async def put_join_request(self, request: models.JoinRequest, *, expected_version: int) -> models.JoinRequest:
		return await self._write(documents.JOIN_REQUEST, request.key, request, expected_version=expected_version)

	async def list_join_requests(
		self,
		group_id: str,
		*,
		status: models.JoinRequestStatus = models.JoinRequestStatus.PENDING,
		limit: int,
	) -> list[models.JoinRequest]:
		rows = await self.store.query_by_field(
			documents.JOIN_REQUEST,
			"group_status",
			f"{group_id}:{status.value}",
			limit=limit,
		)
		requests = [models.JoinRequest.from_document(row) for row in rows]
		requests.sort(key=lambda request: request.created_at)
		return requests

	# --- Posts --------------------------------------------------------------

	async def get_post(self, post_id: str) -> Optional[models.Post]:
		document = await self.store.get(documents.POST, post_id)
		return models.Post.from_document(document) if document else None

	async def create_post(self, post: models.Post) -> models.Post:
		return await self._write(documents.POST, post.id, post, expected_version=0)

	async def save_post(self, post: models.Post, **changes) -> models.Post:
		updated = post.model_copy(update=changes)
		return await self._write(documents.POST, post.id, updated, expected_version=post.version)

	async def list_posts(
		self,
		group_id: str,
		*,
		approval_status: models.ApprovalStatus,
		limit: int,
	) -> list[models.Post]:
		rows = await self.store.query_by_field(
			documents.POST,
			"group_approval",
			f"{group_id}:{approval_status.value}",
			limit=limit,
		)
		posts = [models.Post.from_document(row) for row in rows]
		posts.sort(key=lambda post: post.created_at, reverse=True)
		return posts
