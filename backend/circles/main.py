"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from circles.api import friends, ops
from circles.communities.api import router as communities_router
from circles.infra.redis import redis_client
from circles.moderation.api import reports as moderation_reports
from circles.obs import init as obs_init
from circles.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	logger.info("starting %s", settings.service_name, extra={"environment": settings.environment})
	try:
		yield
	finally:
		await redis_client.aclose()


app = FastAPI(title="Circles", lifespan=lifespan)

obs_init(app)

app.include_router(ops.router)
app.include_router(friends.router)
app.include_router(communities_router)
app.include_router(moderation_reports.router)
