"""Report workflow: submission, claiming and resolution.

A report moves PENDING -> REVIEWING -> RESOLVED_*; the resolved states are
terminal and every transition is a single CAS on the report document. The
"one open report per reporter and target" rule is enforced by a create-only
slot document written before the report itself.

Resolution commits the terminal status first. Hiding content or removing a
member runs afterwards and is best-effort: a failure is recorded on the report
and returned to the caller, it never reopens the report.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from circles.communities.domain.posts_service import PostsService
from circles.communities.domain.services import MembershipEngine
from circles.domain.common import utcnow
from circles.domain.common.errors import (
    AuthorizationError,
    CirclesError,
    ConflictError,
    PartialFailureError,
    ValidationError,
    VersionConflict,
)
from circles.domain.common.retry import run_with_cas_retry
from circles.domain.social.policy import clamp_limit, normalise_user_id
from circles.infra.auth import AuthContext
from circles.infra.notifications import NotificationSink, RedisStreamNotificationSink
from circles.moderation.domain.exceptions import (
    AlreadyClaimedError,
    DuplicateReportError,
    ReportNotClaimedError,
    ReportNotFoundError,
    ReportResolvedError,
)
from circles.moderation.domain.models import (
    OUTCOME_STATUS,
    ModerationAction,
    Outcome,
    Report,
    ReportSlot,
    ReportStatus,
    ResolutionResult,
    TargetType,
    slot_key,
)
from circles.moderation.domain.repo import ReportsRepository
from circles.obs import metrics as obs_metrics
from circles.settings import settings

logger = logging.getLogger(__name__)

REASON_MAX_LENGTH = 64
DESCRIPTION_MAX_LENGTH = 2_000


def _parse(enum_cls, raw, *, reason: str):
    if raw is None or isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw).strip().upper())
    except ValueError:
        raise ValidationError(reason, value=str(raw)) from None


def _require_moderator(ctx: AuthContext) -> str:
    user_id = ctx.require_user()
    if not ctx.is_moderator():
        raise AuthorizationError("moderator_role_required", user_id=user_id)
    return user_id


class ModerationEngine:
    """Owns the report state machine and its enforcement side effects."""

    def __init__(
        self,
        *,
        repository: ReportsRepository | None = None,
        posts: PostsService | None = None,
        membership: MembershipEngine | None = None,
        notifications: NotificationSink | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repo = repository or ReportsRepository()
        self.notifications = notifications or RedisStreamNotificationSink()
        self.membership = membership or MembershipEngine(notifications=self.notifications, clock=clock)
        self.posts = posts or PostsService(membership=self.membership, notifications=self.notifications, clock=clock)
        self._clock = clock

    async def _load(self, report_id: str) -> Report:
        report = await self.repo.get_report(report_id)
        if report is None:
            raise ReportNotFoundError(report_id=report_id)
        return report

    # ------------------------------------------------------------------ submit

    async def submit(
        self,
        ctx: AuthContext,
        target_type: TargetType | str,
        target_id: str,
        reason: str,
        description: str | None = None,
        group_id: str | None = None,
    ) -> Report:
        reporter_id = ctx.require_user()
        kind = _parse(TargetType, target_type, reason="unknown_target_type")
        if kind is None:
            raise ValidationError("target_type_required")
        target_id = normalise_user_id(target_id) if kind is TargetType.USER else str(target_id or "").strip()
        if not target_id:
            raise ValidationError("target_id_required")
        if kind is TargetType.USER and target_id == reporter_id:
            raise ValidationError("self_report", user_id=reporter_id)
        reason = (reason or "").strip()
        if not reason or len(reason) > REASON_MAX_LENGTH:
            raise ValidationError("invalid_reason", max_length=REASON_MAX_LENGTH)
        if description and len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError("description_too_long", max_length=DESCRIPTION_MAX_LENGTH)

        author_id: Optional[str] = None
        if kind is TargetType.POST:
            post = await self.posts.get_post(target_id)
            author_id, group_id = post.author_id, post.group_id
        elif kind is TargetType.GROUP:
            await self.membership.get_group(target_id)
            group_id = target_id

        async def _cycle(attempt: int) -> Report:
            now = self._clock()
            slot = await self._claim_slot(reporter_id, kind, target_id, now=now)
            report = Report(
                id=slot.report_id,
                target_id=target_id,
                target_type=kind,
                reporter_id=reporter_id,
                reason=reason,
                description=description or None,
                group_id=group_id,
                author_id=author_id,
                created_at=now,
                updated_at=now,
            )
            try:
                return await self.repo.create_report(report)
            except BaseException:
                await self._release_slot(slot, operation="submit")
                raise

        report = await run_with_cas_retry("submit_report", _cycle, reporter_id=reporter_id, target_id=target_id)
        obs_metrics.inc_report_transition("submitted")
        logger.info(
            "report submitted",
            extra={"report_id": report.id, "target_type": kind.value, "target_id": target_id},
        )
        return report

    async def _claim_slot(self, reporter_id: str, kind: TargetType, target_id: str, *, now: datetime) -> ReportSlot:
        """Reserve the reporter's slot for the target or raise ``DuplicateReportError``."""
        key = slot_key(reporter_id, kind, target_id)
        existing = await self.repo.get_slot(key)
        expected = 0
        if existing is not None:
            current = await self.repo.get_report(existing.report_id)
            if current is not None and not current.is_terminal:
                raise DuplicateReportError(report_id=current.id, reporter_id=reporter_id, target_id=target_id)
            if current is None and now - existing.created_at < timedelta(seconds=settings.report_slot_grace_seconds):
                # Slot written by a submission that has not created its report yet.
                raise DuplicateReportError(report_id=existing.report_id, reporter_id=reporter_id, target_id=target_id)
            logger.info("taking over stale report slot", extra={"slot": key, "report_id": existing.report_id})
            expected = existing.version
        slot = ReportSlot(
            reporter_id=reporter_id,
            target_type=kind,
            target_id=target_id,
            report_id=str(uuid4()),
            created_at=now,
        )
        return await self.repo.put_slot(slot, expected_version=expected)

    async def _release_slot(self, slot: ReportSlot, *, operation: str) -> None:
        try:
            await self.repo.delete_slot(slot)
        except VersionConflict:
            logger.info("report slot already replaced", extra={"slot": slot.key, "operation": operation})
        except Exception:
            logger.exception("failed to release report slot", extra={"slot": slot.key, "operation": operation})

    # ------------------------------------------------------------------- claim

    async def claim(self, ctx: AuthContext, report_id: str) -> Report:
        moderator_id = _require_moderator(ctx)
        claimed = False

        async def _cycle(attempt: int) -> Report:
            nonlocal claimed
            report = await self._load(report_id)
            if report.is_terminal:
                raise ReportResolvedError(report_id=report_id, status=report.status.value)
            if report.status is ReportStatus.REVIEWING:
                if report.moderator_id == moderator_id:
                    return report
                raise AlreadyClaimedError(report_id=report_id, moderator_id=report.moderator_id)
            claimed = True
            return await self.repo.save_report(
                report,
                status=ReportStatus.REVIEWING,
                moderator_id=moderator_id,
                updated_at=self._clock(),
            )

        report = await run_with_cas_retry("claim_report", _cycle, report_id=report_id)
        if claimed:
            obs_metrics.inc_report_transition("claimed")
            logger.info("report claimed", extra={"report_id": report_id, "moderator_id": moderator_id})
        return report

    # ----------------------------------------------------------------- resolve

    def _check_action(self, report: Report, action: ModerationAction) -> None:
        if action is ModerationAction.HIDE_CONTENT and report.target_type is not TargetType.POST:
            raise ValidationError("action_not_applicable", action=action.value, target_type=report.target_type.value)
        if action is ModerationAction.REMOVE_MEMBER:
            if report.target_type is TargetType.GROUP or not report.group_id:
                raise ValidationError("action_not_applicable", action=action.value, target_type=report.target_type.value)

    async def resolve(
        self,
        ctx: AuthContext,
        report_id: str,
        outcome: Outcome | str,
        action: ModerationAction | str | None = None,
    ) -> ResolutionResult:
        moderator_id = _require_moderator(ctx)
        verdict = _parse(Outcome, outcome, reason="unknown_outcome")
        if verdict is None:
            raise ValidationError("outcome_required")
        chosen = _parse(ModerationAction, action, reason="unknown_action")
        if chosen is not None and verdict is not Outcome.ACTION_TAKEN:
            raise ValidationError("action_requires_action_taken", action=chosen.value, outcome=verdict.value)

        async def _cycle(attempt: int) -> Report:
            report = await self._load(report_id)
            if report.is_terminal:
                raise ReportResolvedError(report_id=report_id, status=report.status.value)
            if report.status is ReportStatus.PENDING:
                raise ReportNotClaimedError(report_id=report_id)
            if report.moderator_id != moderator_id:
                raise AlreadyClaimedError(report_id=report_id, moderator_id=report.moderator_id)
            if chosen is not None:
                self._check_action(report, chosen)
            now = self._clock()
            return await self.repo.save_report(
                report,
                status=OUTCOME_STATUS[verdict],
                outcome=verdict,
                action=chosen,
                updated_at=now,
                resolved_at=now,
            )

        report = await run_with_cas_retry("resolve_report", _cycle, report_id=report_id)
        obs_metrics.inc_report_transition(report.status.value.lower())
        logger.info(
            "report resolved",
            extra={"report_id": report_id, "status": report.status.value, "moderator_id": moderator_id},
        )

        partial: Optional[PartialFailureError] = None
        if chosen is not None:
            failure = await self._apply_action(report, chosen)
            if failure is not None:
                partial = PartialFailureError(
                    "side_effect_failed",
                    failures={chosen.value: failure},
                    report_id=report_id,
                )
                report = await self._flag_partial_failure(report, failure)

        await self._release_report_slot(report)
        await self.notifications.notify(
            report.reporter_id,
            "report.resolved",
            {"report_id": report.id, "status": report.status.value},
        )
        return ResolutionResult(report=report, partial_failure=partial)

    async def _apply_action(self, report: Report, action: ModerationAction) -> Optional[str]:
        """Run the enforcement side effect; returns a failure description or ``None``."""
        try:
            if action is ModerationAction.HIDE_CONTENT:
                await self.posts.hide_post(report.target_id)
            else:
                member_id = report.author_id if report.target_type is TargetType.POST else report.target_id
                await self.membership.force_remove(report.group_id or "", member_id or "")
        except Exception as exc:  # noqa: BLE001 - the report is already terminal
            detail = exc.reason if isinstance(exc, CirclesError) else type(exc).__name__
            obs_metrics.inc_report_side_effect_failure(action.value)
            logger.warning(
                "moderation side effect failed",
                extra={"report_id": report.id, "action": action.value, "detail": detail},
                exc_info=True,
            )
            return detail
        return None

    async def _flag_partial_failure(self, report: Report, detail: str) -> Report:
        async def _cycle(attempt: int) -> Report:
            current = await self._load(report.id)
            return await self.repo.save_report(
                current,
                action_partially_failed=True,
                failure_detail=detail,
                updated_at=self._clock(),
            )

        try:
            return await run_with_cas_retry("flag_partial_failure", _cycle, report_id=report.id)
        except ConflictError:
            logger.warning("could not record partial failure on report", extra={"report_id": report.id})
            return report.model_copy(update={"action_partially_failed": True, "failure_detail": detail})

    async def _release_report_slot(self, report: Report) -> None:
        slot = await self.repo.get_slot(report.slot_key)
        if slot is not None and slot.report_id == report.id:
            await self._release_slot(slot, operation="resolve")

    # ------------------------------------------------------------------- reads

    async def get_report(self, ctx: AuthContext, report_id: str) -> Report:
        user_id = ctx.require_user()
        report = await self._load(report_id)
        if report.reporter_id != user_id and not ctx.is_moderator():
            raise AuthorizationError("moderator_role_required", user_id=user_id)
        return report

    async def list_reports(
        self,
        ctx: AuthContext,
        status: ReportStatus | str | None = None,
        *,
        limit: int | None = None,
    ) -> list[Report]:
        """Moderation queue; without a status the open reports are listed."""
        _require_moderator(ctx)
        wanted = _parse(ReportStatus, status, reason="unknown_status")
        size = clamp_limit(limit)
        statuses = [wanted] if wanted is not None else [ReportStatus.PENDING, ReportStatus.REVIEWING]
        reports: list[Report] = []
        for item in statuses:
            reports.extend(await self.repo.list_by_status(item, limit=size))
        reports.sort(key=lambda report: report.created_at)
        return reports[:size]

    async def list_my_reports(self, ctx: AuthContext, *, limit: int | None = None) -> list[Report]:
        reporter_id = ctx.require_user()
        return await self.repo.list_reports(field="reporter_id", value=reporter_id, limit=clamp_limit(limit))
