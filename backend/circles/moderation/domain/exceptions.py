"""Moderation workflow failures."""

from __future__ import annotations

from circles.domain.common.errors import NotFoundError, StateError


class ReportNotFoundError(NotFoundError):
    reason = "report_not_found"


class DuplicateReportError(StateError):
    reason = "duplicate_report"


class AlreadyClaimedError(StateError):
    reason = "already_claimed"


class ReportNotClaimedError(StateError):
    reason = "report_not_claimed"


class ReportResolvedError(StateError):
    """Terminal reports accept neither claim nor resolve."""

    reason = "report_resolved"
