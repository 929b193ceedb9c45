"""REST API surface for friend requests and friendships."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from circles.api._errors import to_http_error
from circles.container import get_friend_engine
from circles.domain.common.errors import CirclesError
from circles.domain.social.schemas import FriendEdgeOut, FriendRequestPayload, RelationshipOut
from circles.domain.social.service import FriendGraphEngine
from circles.infra.auth import AuthContext, get_auth_context

router = APIRouter(prefix="/api/v1/friends", tags=["friends"])


@router.post("/requests", response_model=FriendEdgeOut, status_code=status.HTTP_201_CREATED)
async def send_request(
	payload: FriendRequestPayload,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> FriendEdgeOut:
	try:
		edge = await engine.send_request(ctx, payload.to_user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return FriendEdgeOut.from_edge(edge)


@router.post("/requests/{user_id}/accept", response_model=FriendEdgeOut)
async def accept_request(
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> FriendEdgeOut:
	try:
		edge = await engine.accept_request(ctx, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return FriendEdgeOut.from_edge(edge)


@router.post("/requests/{user_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
async def reject_request(
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> Response:
	try:
		await engine.reject_request(ctx, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/requests/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_request(
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> Response:
	try:
		await engine.cancel_request(ctx, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/requests/incoming", response_model=List[FriendEdgeOut])
async def incoming_requests(
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> List[FriendEdgeOut]:
	try:
		edges = await engine.list_incoming_requests(ctx, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return [FriendEdgeOut.from_edge(edge) for edge in edges]


@router.get("/requests/outgoing", response_model=List[FriendEdgeOut])
async def outgoing_requests(
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> List[FriendEdgeOut]:
	try:
		edges = await engine.list_outgoing_requests(ctx, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return [FriendEdgeOut.from_edge(edge) for edge in edges]


@router.get("", response_model=List[FriendEdgeOut])
async def list_friends(
	user_id: Optional[str] = Query(default=None),
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> List[FriendEdgeOut]:
	try:
		edges = await engine.list_friends(ctx, user_id, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return [FriendEdgeOut.from_edge(edge) for edge in edges]


@router.get("/{user_id}/relationship", response_model=RelationshipOut)
async def relationship(
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> RelationshipOut:
	try:
		view = await engine.get_relationship(ctx, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return RelationshipOut.from_view(view)


@router.delete("/requests", include_in_schema=False)
async def delete_requests_collection() -> Response:
	# Keeps "requests" from being routed to remove_friend as a user id.
	raise HTTPException(
		status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
		detail="method_not_allowed",
		headers={"Allow": "POST"},
	)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_friend(
	user_id: str,
	ctx: AuthContext = Depends(get_auth_context),
	engine: FriendGraphEngine = Depends(get_friend_engine),
) -> Response:
	try:
		await engine.remove_friend(ctx, user_id)
	except CirclesError as exc:
		raise to_http_error(exc) from None
	return Response(status_code=status.HTTP_204_NO_CONTENT)
