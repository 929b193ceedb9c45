"""Groups, membership and join-request routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from circles.api._errors import to_http_error
from circles.communities.domain import models
from circles.communities.domain.services import MembershipEngine
from circles.communities.schemas import dto
from circles.container import get_membership_engine
from circles.domain.common.errors import CirclesError
from circles.infra.auth import AuthContext, get_auth_context

router = APIRouter(tags=["communities:groups"])


@router.post("/groups", response_model=models.Group, status_code=201)
async def create_group_endpoint(
	payload: dto.GroupCreateRequest,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.Group:
	try:
		return await engine.create_group(
			ctx,
			name=payload.name,
			description=payload.description,
			privacy=payload.privacy,
			posting_permission=payload.posting_permission,
			require_post_approval=payload.require_post_approval,
		)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups", response_model=List[models.Group])
async def list_groups_endpoint(
	limit: Optional[int] = Query(default=None),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> List[models.Group]:
	try:
		return await engine.list_groups(limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}", response_model=models.Group)
async def get_group_endpoint(
	group_id: str,
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.Group:
	try:
		return await engine.get_group(group_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.delete("/groups/{group_id}", response_model=models.Group)
async def delete_group_endpoint(
	group_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.Group:
	try:
		return await engine.delete_group(ctx, group_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/members", response_model=List[models.GroupMembership])
async def list_members_endpoint(
	group_id: str,
	limit: Optional[int] = Query(default=None),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> List[models.GroupMembership]:
	try:
		return await engine.list_members(group_id, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/join", response_model=models.JoinResult)
async def join_group_endpoint(
	group_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.JoinResult:
	try:
		return await engine.join(ctx, group_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/leave", status_code=204, response_class=Response, response_model=None)
async def leave_group_endpoint(
	group_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> Response:
	try:
		await engine.leave(ctx, group_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc
	return Response(status_code=204)


@router.delete(
	"/groups/{group_id}/members/{member_id}",
	status_code=204,
	response_class=Response,
	response_model=None,
)
async def remove_member_endpoint(
	group_id: str,
	member_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> Response:
	try:
		await engine.remove_member(ctx, group_id, member_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc
	return Response(status_code=204)


@router.put("/groups/{group_id}/members/{member_id}/role", response_model=models.GroupMembership)
async def change_role_endpoint(
	group_id: str,
	member_id: str,
	payload: dto.RoleChangeRequest,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.GroupMembership:
	try:
		return await engine.change_role(ctx, group_id, member_id, payload.role)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/permissions/post", response_model=models.PostPermission)
async def post_permission_endpoint(
	group_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.PostPermission:
	try:
		return await engine.can_post(ctx, group_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/join-requests", response_model=List[models.JoinRequest])
async def list_join_requests_endpoint(
	group_id: str,
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> List[models.JoinRequest]:
	try:
		return await engine.list_join_requests(ctx, group_id, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/join-requests/{user_id}/approve", response_model=models.GroupMembership)
async def approve_join_request_endpoint(
	group_id: str,
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.GroupMembership:
	try:
		return await engine.approve_join_request(ctx, group_id, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.post("/groups/{group_id}/join-requests/{user_id}/reject", response_model=models.JoinRequest)
async def reject_join_request_endpoint(
	group_id: str,
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: MembershipEngine = Depends(get_membership_engine),
) -> models.JoinRequest:
	try:
		return await engine.reject_join_request(ctx, group_id, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc
