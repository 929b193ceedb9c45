"""Reports API surface for moderation."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from circles.api._errors import to_http_error
from circles.container import get_moderation_engine
from circles.domain.common.errors import CirclesError
from circles.infra.auth import AuthContext, get_auth_context
from circles.moderation.domain.models import Report, ResolutionResult
from circles.moderation.domain.reports_service import ModerationEngine

router = APIRouter(prefix="/api/v1/reports", tags=["moderation-reports"])


class ReportIn(BaseModel):
    target_type: str
    target_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=64)
    description: Optional[str] = None
    group_id: Optional[str] = None


class ResolveIn(BaseModel):
    outcome: str
    action: Optional[str] = None


class ResolutionOut(BaseModel):
    report: Report
    partial_failure: Optional[dict[str, Any]] = None

    @classmethod
    def from_result(cls, result: ResolutionResult) -> "ResolutionOut":
        return cls(
            report=result.report,
            partial_failure=result.partial_failure.to_dict() if result.partial_failure else None,
        )


@router.post("", response_model=Report, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportIn,
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> Report:
    try:
        return await engine.submit(
            ctx,
            payload.target_type,
            payload.target_id,
            payload.reason,
            description=payload.description,
            group_id=payload.group_id,
        )
    except CirclesError as exc:
        raise to_http_error(exc) from exc


@router.get("", response_model=list[Report])
async def list_reports(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    limit: Optional[int] = Query(default=None),
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> list[Report]:
    try:
        return await engine.list_reports(ctx, status_filter, limit=limit)
    except CirclesError as exc:
        raise to_http_error(exc) from exc


@router.get("/mine", response_model=list[Report])
async def my_reports(
    limit: Optional[int] = Query(default=None),
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> list[Report]:
    try:
        return await engine.list_my_reports(ctx, limit=limit)
    except CirclesError as exc:
        raise to_http_error(exc) from exc


@router.get("/{report_id}", response_model=Report)
async def get_report(
    report_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> Report:
    try:
        return await engine.get_report(ctx, report_id)
    except CirclesError as exc:
        raise to_http_error(exc) from exc


@router.post("/{report_id}/claim", response_model=Report)
async def claim_report(
    report_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> Report:
    try:
        return await engine.claim(ctx, report_id)
    except CirclesError as exc:
        raise to_http_error(exc) from exc


@router.post("/{report_id}/resolve", response_model=ResolutionOut)
async def resolve_report(
    report_id: str,
    payload: ResolveIn,
    ctx: AuthContext = Depends(get_auth_context),
    engine: ModerationEngine = Depends(get_moderation_engine),
) -> ResolutionOut:
    try:
        result = await engine.resolve(ctx, report_id, payload.outcome, payload.action)
    except CirclesError as exc:
        raise to_http_error(exc) from exc
    return ResolutionOut.from_result(result)
