"""Report and report-slot persistence."""

from __future__ import annotations

from typing import Optional

from circles.infra import documents
from circles.infra.documents import DocumentStore
from circles.moderation.domain.models import Report, ReportSlot, ReportStatus


class ReportsRepository:
    def __init__(self, store: DocumentStore | None = None) -> None:
        self._store = store

    @property
    def store(self) -> DocumentStore:
        return self._store or documents.get_document_store()

    async def get_report(self, report_id: str) -> Optional[Report]:
        document = await self.store.get(documents.REPORT, report_id)
        return Report.from_document(document) if document else None

    async def create_report(self, report: Report) -> Report:
        version = await self.store.put(documents.REPORT, report.id, report.to_record(), expected_version=0)
        return report.at_version(version)

    async def save_report(self, report: Report, **changes) -> Report:
        updated = report.model_copy(update=changes)
        version = await self.store.put(documents.REPORT, report.id, updated.to_record(), expected_version=report.version)
        return updated.at_version(version)

    async def list_reports(self, *, field: str, value: str, limit: int) -> list[Report]:
        rows = await self.store.query_by_field(documents.REPORT, field, value, limit=limit)
        reports = [Report.from_document(row) for row in rows]
        reports.sort(key=lambda report: report.created_at)
        return reports

    async def list_by_status(self, status: ReportStatus, *, limit: int) -> list[Report]:
        return await self.list_reports(field="status", value=status.value, limit=limit)

    async def get_slot(self, key: str) -> Optional[ReportSlot]:
        document = await self.store.get(documents.REPORT_SLOT, key)
        return ReportSlot.from_document(document) if document else None

    async def put_slot(self, slot: ReportSlot, *, expected_version: int) -> ReportSlot:
        version = await self.store.put(documents.REPORT_SLOT, slot.key, slot.to_record(), expected_version=expected_version)
        return slot.at_version(version)

    async def delete_slot(self, slot: ReportSlot) -> None:
        await self.store.delete(documents.REPORT_SLOT, slot.key, expected_version=slot.version)
