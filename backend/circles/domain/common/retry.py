"""Bounded read-decide-write retry loop around compare-and-swap conflicts."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from circles.domain.common.errors import ConflictError, VersionConflict
from circles.obs import metrics as obs_metrics
from circles.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def backoff(attempt: int) -> None:
	base = max(0.0, settings.cas_backoff_seconds)
	if base:
		await asyncio.sleep(base * (attempt + 1) * random.uniform(0.5, 1.5))


async def run_with_cas_retry(
	operation: str,
	cycle: Callable[[int], Awaitable[T]],
	*,
	attempts: int | None = None,
	**context: object,
) -> T:
	"""Run ``cycle(attempt)`` until it completes without a version conflict.

	Each cycle must re-read everything it decides on. After the last attempt the
	conflict surfaces as ``ConflictError`` carrying the operation context.
	"""
	budget = max(1, attempts or settings.cas_max_attempts)
	last: VersionConflict | None = None
	for attempt in range(budget):
		try:
			return await cycle(attempt)
		except VersionConflict as exc:
			last = exc
			if attempt + 1 >= budget:
				break
			obs_metrics.inc_cas_retry(operation)
			logger.debug(
				"cas conflict, retrying",
				extra={"operation": operation, "attempt": attempt + 1, "kind": exc.kind, "key": exc.key},
			)
			await backoff(attempt)
	obs_metrics.inc_cas_exhausted(operation)
	logger.warning("cas retry budget exhausted", extra={"operation": operation, "attempts": budget})
	raise ConflictError(
		"retry_budget_exhausted",
		operation=operation,
		attempts=budget,
		kind=last.kind if last else None,
		key=last.key if last else None,
		**context,
	) from last
