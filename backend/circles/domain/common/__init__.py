"""Cross-domain helpers: error taxonomy, retry loop and time utilities."""

from datetime import datetime, timezone


def utcnow() -> datetime:
	return datetime.now(timezone.utc)
