"""Group post routes."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from circles.api._errors import to_http_error
from circles.communities.domain import models
from circles.communities.domain.posts_service import PostsService
from circles.communities.schemas import dto
from circles.container import get_posts_service
from circles.domain.common.errors import CirclesError
from circles.infra.auth import AuthContext, get_auth_context

router = APIRouter(tags=["communities:posts"])


@router.post("/groups/{group_id}/posts", response_model=models.Post, status_code=201)
async def create_post_endpoint(
	group_id: str,
	payload: dto.PostCreateRequest,
	ctx: AuthContext = Depends(get_auth_context),
	service: PostsService = Depends(get_posts_service),
) -> models.Post:
	try:
		return await service.create_post(ctx, group_id, payload.text)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/posts", response_model=List[models.Post])
async def list_posts_endpoint(
	group_id: str,
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	service: PostsService = Depends(get_posts_service),
) -> List[models.Post]:
	try:
		return await service.list_posts(ctx, group_id, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/groups/{group_id}/posts/pending", response_model=List[models.Post])
async def list_pending_posts_endpoint(
	group_id: str,
	limit: Optional[int] = Query(default=None),
	ctx: AuthContext = Depends(get_auth_context),
	service: PostsService = Depends(get_posts_service),
) -> List[models.Post]:
	try:
		return await service.list_pending_posts(ctx, group_id, limit=limit)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.get("/posts/{post_id}", response_model=models.Post)
async def get_post_endpoint(
	post_id: str,
	service: PostsService = Depends(get_posts_service),
) -> models.Post:
	try:
		return await service.get_post(post_id)
	except CirclesError as exc:
		raise to_http_error(exc) from exc


@router.post("/posts/{post_id}/review", response_model=models.Post)
async def review_post_endpoint(
	post_id: str,
	payload: dto.PostReviewRequest,
	ctx: AuthContext = Depends(get_auth_context),
	service: PostsService = Depends(get_posts_service),
) -> models.Post:
	try:
		return await service.review_post(ctx, post_id, payload.approve)
	except CirclesError as exc:
		raise to_http_error(exc) from exc
