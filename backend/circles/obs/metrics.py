"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
	"circles_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"circles_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0),
)

STORE_CONFLICTS = Counter(
	"circles_store_conflicts_total",
	"Optimistic concurrency failures detected by the document store",
	["kind", "op"],
)

CAS_RETRIES = Counter(
	"circles_cas_retries_total",
	"Read-decide-write cycles restarted after a version conflict",
	["operation"],
)

CAS_EXHAUSTED = Counter(
	"circles_cas_exhausted_total",
	"Operations that surfaced a conflict after the retry budget ran out",
	["operation"],
)

COMPENSATIONS = Counter(
	"circles_compensations_total",
	"Compensating writes issued to undo a partially applied mutation",
	["operation", "result"],
)

READ_REPAIRS = Counter(
	"circles_read_repairs_total",
	"Asymmetric friend edge pairs corrected on read",
	["rule"],
)

FRIEND_TRANSITIONS = Counter(
	"circles_friend_transitions_total",
	"Friend graph state transitions",
	["transition"],
)

MEMBERSHIP_TRANSITIONS = Counter(
	"circles_membership_transitions_total",
	"Group membership transitions",
	["transition"],
)

MEMBER_COUNT_CORRECTIONS = Counter(
	"circles_member_count_corrections_total",
	"member_count values rewritten by reconciliation",
)

MEMBER_COUNT_DEFERRED = Counter(
	"circles_member_count_deferred_total",
	"member_count adjustments left to reconciliation after conflicts",
)

POSTS_CREATED = Counter(
	"circles_posts_created_total",
	"Group posts created",
	["approval_status"],
)

REPORT_TRANSITIONS = Counter(
	"circles_report_transitions_total",
	"Moderation report lifecycle transitions",
	["transition"],
)

REPORT_SIDE_EFFECT_FAILURES = Counter(
	"circles_report_side_effect_failures_total",
	"Moderation side effects that failed after the report was resolved",
	["action"],
)

NOTIFICATIONS = Counter(
	"circles_notifications_total",
	"Advisory notifications handed to the sink",
	["type", "result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_store_conflict(kind: str, op: str) -> None:
	STORE_CONFLICTS.labels(kind=kind, op=op).inc()


def inc_cas_retry(operation: str) -> None:
	CAS_RETRIES.labels(operation=operation).inc()


def inc_cas_exhausted(operation: str) -> None:
	CAS_EXHAUSTED.labels(operation=operation).inc()


def inc_compensation(operation: str, result: str) -> None:
	COMPENSATIONS.labels(operation=operation, result=result).inc()


def inc_read_repair(rule: str) -> None:
	READ_REPAIRS.labels(rule=rule).inc()


def inc_friend_transition(transition: str) -> None:
	FRIEND_TRANSITIONS.labels(transition=transition).inc()


def inc_membership_transition(transition: str) -> None:
	MEMBERSHIP_TRANSITIONS.labels(transition=transition).inc()


def inc_member_count_correction() -> None:
	MEMBER_COUNT_CORRECTIONS.inc()


def inc_member_count_deferred() -> None:
	MEMBER_COUNT_DEFERRED.inc()


def inc_post_created(approval_status: str) -> None:
	POSTS_CREATED.labels(approval_status=approval_status).inc()


def inc_report_transition(transition: str) -> None:
	REPORT_TRANSITIONS.labels(transition=transition).inc()


def inc_report_side_effect_failure(action: str) -> None:
	REPORT_SIDE_EFFECT_FAILURES.labels(action=action).inc()


def inc_notification(kind: str, result: str) -> None:
	NOTIFICATIONS.labels(type=kind, result=result).inc()
