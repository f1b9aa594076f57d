"""Central registry for Prometheus metrics used across the service."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"creditgate_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"creditgate_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

GATE_DECISIONS_TOTAL = Counter(
	"creditgate_gate_decisions_total",
	"Admission decisions by outcome",
	["decision"],
)

GATE_FAIL_CLOSED_TOTAL = Counter(
	"creditgate_gate_fail_closed_total",
	"Admission checks denied because committed state could not be read",
)

EVALUATIONS_TOTAL = Counter(
	"creditgate_evaluations_total",
	"Quality evaluations by routing outcome",
	["outcome"],
)

EVALUATOR_LATENCY = Histogram(
	"creditgate_evaluator_duration_seconds",
	"External evaluator call latency in seconds",
	["provider"],
	buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

EVALUATIONS_IN_FLIGHT = Gauge(
	"creditgate_evaluations_in_flight",
	"Evaluations holding a concurrency slot",
)

EVALUATIONS_WAITING = Gauge(
	"creditgate_evaluations_waiting",
	"Evaluations waiting for a concurrency slot",
)

LEDGER_COMMITS_TOTAL = Counter(
	"creditgate_ledger_commits_total",
	"Credit events committed",
	["event_kind"],
)

BLACKLIST_TRANSITIONS_TOTAL = Counter(
	"creditgate_blacklist_transitions_total",
	"Blacklist flag changes",
	["source"],
)

STORE_CONFLICTS_TOTAL = Counter(
	"creditgate_store_conflicts_total",
	"Conditional writes rejected because the version token moved",
	["backend"],
)

STORE_CONFLICTS_EXHAUSTED_TOTAL = Counter(
	"creditgate_store_conflicts_exhausted_total",
	"Mutations abandoned after exhausting conflict retries",
	["backend"],
)

REVIEW_TRANSITIONS_TOTAL = Counter(
	"creditgate_review_transitions_total",
	"Review queue transitions",
	["transition"],
)

SHADOW_DENIALS_SCHEDULED_TOTAL = Counter(
	"creditgate_shadow_denials_scheduled_total",
	"Delayed denials scheduled",
)

SHADOW_DENIALS_EXECUTED_TOTAL = Counter(
	"creditgate_shadow_denials_executed_total",
	"Delayed denials executed by outcome",
	["outcome"],
)

SCOPE_CONFIG_FALLBACKS_TOTAL = Counter(
	"creditgate_scope_config_fallbacks_total",
	"Scope config resolutions that fell back to a prior or default value",
	["reason"],
)
