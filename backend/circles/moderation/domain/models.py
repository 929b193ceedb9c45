"""Report entities and the moderation state machine's vocabulary."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from circles.domain.common.errors import PartialFailureError
from circles.domain.common.models import StoredModel


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    RESOLVED_ACTION_TAKEN = "RESOLVED_ACTION_TAKEN"
    RESOLVED_DISMISSED = "RESOLVED_DISMISSED"


TERMINAL_STATUSES = frozenset({ReportStatus.RESOLVED_ACTION_TAKEN, ReportStatus.RESOLVED_DISMISSED})


class TargetType(str, Enum):
    USER = "USER"
    POST = "POST"
    GROUP = "GROUP"


class Outcome(str, Enum):
    ACTION_TAKEN = "ACTION_TAKEN"
    DISMISSED = "DISMISSED"


OUTCOME_STATUS = {
    Outcome.ACTION_TAKEN: ReportStatus.RESOLVED_ACTION_TAKEN,
    Outcome.DISMISSED: ReportStatus.RESOLVED_DISMISSED,
}


class ModerationAction(str, Enum):
    HIDE_CONTENT = "HIDE_CONTENT"
    REMOVE_MEMBER = "REMOVE_MEMBER"


def slot_key(reporter_id: str, target_type: TargetType, target_id: str) -> str:
    return f"{reporter_id}:{target_type.value}:{target_id}"


class Report(StoredModel):
    id: str
    target_id: str
    target_type: TargetType
    reporter_id: str
    status: ReportStatus = ReportStatus.PENDING
    reason: str
    description: Optional[str] = None
    group_id: Optional[str] = None
    author_id: Optional[str] = None
    moderator_id: Optional[str] = None
    outcome: Optional[Outcome] = None
    action: Optional[ModerationAction] = None
    action_partially_failed: bool = False
    failure_detail: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def slot_key(self) -> str:
        return slot_key(self.reporter_id, self.target_type, self.target_id)

    def derived_fields(self) -> dict[str, Any]:
        return {"target_key": f"{self.target_type.value}:{self.target_id}"}


class ReportSlot(StoredModel):
    """Points at the reporter's open report against one target."""

    reporter_id: str
    target_type: TargetType
    target_id: str
    report_id: str
    created_at: datetime

    @property
    def key(self) -> str:
        return slot_key(self.reporter_id, self.target_type, self.target_id)


@dataclass
class ResolutionResult:
    """The committed terminal report plus any side effect that did not apply."""

    report: Report
    partial_failure: Optional[PartialFailureError] = None

    @property
    def partially_failed(self) -> bool:
        return self.partial_failure is not None
