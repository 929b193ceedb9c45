"""Versioned document store on Redis.

Every document lives in a hash ``doc:{kind}:{key}`` holding a monotonically
increasing ``version`` and a JSON ``body``. Writes may carry an expected version
and are applied with WATCH/MULTI/EXEC, so a write whose precondition no longer
holds fails with ``VersionConflict`` instead of silently overwriting. This is
the only concurrency primitive the engines rely on: there are no multi-key
transactions above it.

Single-field equality queries are served from sets ``idx:{kind}:{field}:{value}``
that are updated inside the same MULTI as the document, so an index entry never
outlives or predates the committed document it points at.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Sequence

from redis.exceptions import WatchError

from circles.domain.common.errors import VersionConflict
from circles.infra.redis import RedisProxy, redis_client
from circles.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

FRIEND_EDGE = "friend_edge"
GROUP = "group"
MEMBERSHIP = "membership"
JOIN_REQUEST = "join_request"
POST = "post"
REPORT = "report"
REPORT_SLOT = "report_slot"

INDEXED_FIELDS: dict[str, tuple[str, ...]] = {
	FRIEND_EDGE: ("owner_state", "owner_id"),
	GROUP: ("status", "owner_id"),
	MEMBERSHIP: ("group_id", "member_id"),
	JOIN_REQUEST: ("group_status",),
	POST: ("group_approval", "author_id"),
	REPORT: ("status", "reporter_id", "target_key"),
	REPORT_SLOT: (),
}


@dataclass(slots=True)
class Document:
	"""A committed document and the version it was read at."""

	kind: str
	key: str
	version: int
	data: dict[str, Any] = field(default_factory=dict)


class DocumentStore(Protocol):
	"""Storage contract consumed by the engines.

	``expected_version`` semantics: ``None`` writes unconditionally, ``0`` requires
	the document to be absent (create-only), ``n > 0`` requires the stored version
	to equal ``n``.
	"""

	async def get(self, kind: str, key: str) -> Optional[Document]:
		...

	async def put(
		self,
		kind: str,
		key: str,
		data: Mapping[str, Any],
		*,
		expected_version: Optional[int] = None,
	) -> int:
		...

	async def delete(self, kind: str, key: str, *, expected_version: Optional[int] = None) -> None:
		...

	async def query_by_field(self, kind: str, field: str, value: Any, *, limit: int) -> list[Document]:
		...

	async def count_by_field(self, kind: str, field: str, value: Any) -> int:
		...


def _index_value(value: Any) -> str:
	if isinstance(value, bool):
		return "1" if value else "0"
	return str(value)


class RedisDocumentStore:
	"""``DocumentStore`` implementation backed by Redis hashes and sets."""

	def __init__(
		self,
		client: RedisProxy | None = None,
		*,
		indexed_fields: Mapping[str, Sequence[str]] | None = None,
		namespace: str = "circles",
	) -> None:
		self._redis = client or redis_client
		self._indexed = {kind: tuple(fields) for kind, fields in (indexed_fields or INDEXED_FIELDS).items()}
		self._ns = namespace

	def _doc_key(self, kind: str, key: str) -> str:
		return f"{self._ns}:doc:{kind}:{key}"

	def _index_key(self, kind: str, field_name: str, value: Any) -> str:
		return f"{self._ns}:idx:{kind}:{field_name}:{_index_value(value)}"

	@staticmethod
	def _decode(kind: str, key: str, raw: Mapping[Any, Any]) -> Optional[Document]:
		if not raw:
			return None
		values = {
			(k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
			for k, v in raw.items()
		}
		return Document(kind=kind, key=key, version=int(values["version"]), data=json.loads(values["body"]))

	def _conflict(self, kind: str, key: str, op: str, *, expected: int | None, actual: int | None) -> VersionConflict:
		obs_metrics.inc_store_conflict(kind, op)
		return VersionConflict(kind, key, expected=expected, actual=actual)

	async def get(self, kind: str, key: str) -> Optional[Document]:
		raw = await self._redis.hgetall(self._doc_key(kind, key))
		return self._decode(kind, key, raw)

	async def put(
		self,
		kind: str,
		key: str,
		data: Mapping[str, Any],
		*,
		expected_version: Optional[int] = None,
	) -> int:
		doc_key = self._doc_key(kind, key)
		body = dict(data)
		async with self._redis.pipeline(transaction=True) as pipe:
			try:
				await pipe.watch(doc_key)
				current = self._decode(kind, key, await pipe.hgetall(doc_key))
				current_version = current.version if current else 0
				if expected_version is not None and current_version != expected_version:
					raise self._conflict(kind, key, "put", expected=expected_version, actual=current_version)
				new_version = current_version + 1
				pipe.multi()
				pipe.hset(doc_key, mapping={"version": new_version, "body": json.dumps(body, default=str)})
				for field_name in self._indexed.get(kind, ()):
					old_value = current.data.get(field_name) if current else None
					new_value = body.get(field_name)
					if old_value is not None and old_value != new_value:
						pipe.srem(self._index_key(kind, field_name, old_value), key)
					if new_value is not None:
						pipe.sadd(self._index_key(kind, field_name, new_value), key)
				await pipe.execute()
			except WatchError as exc:
				raise self._conflict(kind, key, "put", expected=expected_version, actual=None) from exc
		return new_version

	async def delete(self, kind: str, key: str, *, expected_version: Optional[int] = None) -> None:
		doc_key = self._doc_key(kind, key)
		async with self._redis.pipeline(transaction=True) as pipe:
			try:
				await pipe.watch(doc_key)
				current = self._decode(kind, key, await pipe.hgetall(doc_key))
				if current is None:
					if expected_version:
						raise self._conflict(kind, key, "delete", expected=expected_version, actual=0)
					return
				if expected_version is not None and current.version != expected_version:
					raise self._conflict(kind, key, "delete", expected=expected_version, actual=current.version)
				pipe.multi()
				pipe.delete(doc_key)
				for field_name in self._indexed.get(kind, ()):
					value = current.data.get(field_name)
					if value is not None:
						pipe.srem(self._index_key(kind, field_name, value), key)
				await pipe.execute()
			except WatchError as exc:
				raise self._conflict(kind, key, "delete", expected=expected_version, actual=None) from exc

	async def query_by_field(self, kind: str, field: str, value: Any, *, limit: int) -> list[Document]:
		if field not in self._indexed.get(kind, ()):
			raise ValueError(f"{kind}.{field} is not indexed")
		members = sorted(await self._redis.smembers(self._index_key(kind, field, value)))
		if not members or limit <= 0:
			return []
		async with self._redis.pipeline(transaction=False) as pipe:
			for member in members:
				pipe.hgetall(self._doc_key(kind, member))
			rows = await pipe.execute()
		documents: list[Document] = []
		expected = _index_value(value)
		for member, raw in zip(members, rows):
			document = self._decode(kind, member, raw)
			# A write may have committed between SMEMBERS and the reads above.
			if document is None or _index_value(document.data.get(field)) != expected:
				continue
			documents.append(document)
			if len(documents) >= limit:
				break
		return documents

	async def count_by_field(self, kind: str, field: str, value: Any) -> int:
		if field not in self._indexed.get(kind, ()):
			raise ValueError(f"{kind}.{field} is not indexed")
		return int(await self._redis.scard(self._index_key(kind, field, value)))


_store: DocumentStore | None = None


def get_document_store() -> DocumentStore:
	global _store
	if _store is None:
		_store = RedisDocumentStore()
	return _store


def set_document_store(store: DocumentStore | None) -> None:
	global _store
	_store = store
