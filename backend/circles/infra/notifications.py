"""Fire-and-forget notification sinks.

Notifications are advisory: a sink never propagates a delivery failure back to
the engine that produced the notification.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Protocol

from circles.infra.redis import RedisProxy, redis_client
from circles.obs import metrics as obs_metrics
from circles.settings import settings

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
	async def notify(self, user_id: str, type: str, payload: Mapping[str, Any]) -> None:  # noqa: A002
		...


class NullNotificationSink:
	async def notify(self, user_id: str, type: str, payload: Mapping[str, Any]) -> None:  # noqa: A002
		obs_metrics.inc_notification(type, "dropped")


class RedisStreamNotificationSink:
	"""Append notifications to a capped Redis stream for the delivery workers."""

	def __init__(self, client: RedisProxy | None = None, *, stream: str | None = None) -> None:
		self._redis = client or redis_client
		self._stream = stream or settings.notifications_stream

	async def notify(self, user_id: str, type: str, payload: Mapping[str, Any]) -> None:  # noqa: A002
		fields = {
			"user_id": user_id,
			"type": type,
			"payload": json.dumps(dict(payload), default=str),
		}
		try:
			await self._redis.xadd_capped(self._stream, fields, maxlen=settings.notifications_stream_maxlen)
		except Exception:  # noqa: BLE001 - notification failures never block the caller
			obs_metrics.inc_notification(type, "failed")
			logger.exception("failed to enqueue notification", extra={"recipient": user_id, "type": type})
			return
		obs_metrics.inc_notification(type, "queued")
