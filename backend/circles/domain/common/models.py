"""Base model for entities persisted in the document store."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from circles.infra.documents import Document

M = TypeVar("M", bound="StoredModel")


class StoredModel(BaseModel):
	"""Pydantic entity that round-trips through a versioned ``Document``.

	``version`` is the store version the instance was read or written at; it is
	never part of the stored body.
	"""

	model_config = ConfigDict(extra="ignore")

	version: int = Field(default=0, exclude=True)

	def derived_fields(self) -> dict[str, Any]:
		"""Denormalised values written next to the body for index lookups."""
		return {}

	def to_record(self) -> dict[str, Any]:
		record = self.model_dump(mode="json")
		record.update(self.derived_fields())
		return record

	@classmethod
	def from_document(cls: type[M], document: Document) -> M:
		return cls.model_validate({**document.data, "version": document.version})

	def at_version(self: M, version: int) -> M:
		return self.model_copy(update={"version": version})
