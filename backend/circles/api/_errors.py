"""Error translation helpers for the HTTP surface."""

from __future__ import annotations

from fastapi import HTTPException, status

from circles.domain.common.errors import CirclesError


def to_http_error(exc: Exception) -> HTTPException:
	"""Translate domain exceptions to FastAPI HTTP errors."""
	if isinstance(exc, CirclesError):
		return HTTPException(status_code=exc.status_code, detail=exc.reason)
	return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
