"""Operations endpoints: health checks, metrics and admin repairs."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError

from circles.api._errors import to_http_error
from circles.communities.domain.services import MembershipEngine
from circles.communities.schemas.dto import MemberCountResponse
from circles.container import get_membership_engine
from circles.domain.common.errors import CirclesError
from circles.infra.redis import redis_client
from circles.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_admin(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	token = settings.obs_admin_token
	if not token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	if _resolve_token(X_Admin_Token, authorization) != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	await require_admin(X_Admin_Token=X_Admin_Token, authorization=authorization)


@router.get("/health")
@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name, "commit": settings.git_commit}


@router.get("/health/ready")
async def health_ready() -> Response:
	try:
		await redis_client.ping()
	except RedisError:
		logger.warning("readiness check failed: redis unavailable", exc_info=True)
		return JSONResponse(status_code=503, content={"status": "unavailable", "redis": "down"})
	return JSONResponse(status_code=200, content={"status": "ok", "redis": "up"})


@router.get("/metrics", dependencies=[Depends(require_metrics_access)])
async def metrics() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.post(
	"/ops/groups/{group_id}/reconcile-count",
	response_model=MemberCountResponse,
	dependencies=[Depends(require_admin)],
)
async def reconcile_member_count(
	group_id: str,
	tolerance: Optional[int] = None,
	engine: MembershipEngine = Depends(get_membership_engine),
) -> MemberCountResponse:
	try:
		count = await engine.reconcile_count(group_id, tolerance)
	except CirclesError as exc:
		raise to_http_error(exc) from exc
	return MemberCountResponse(group_id=group_id, member_count=count)
