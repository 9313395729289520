from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

ORCHESTRATION_EVENTS_TOTAL = Counter(
    "agentrelay_events_total",
    "Orchestration events recorded in the event log",
    labelnames=("type",),
)

HANDOFFS_TOTAL = Counter(
    "agentrelay_handoffs_total",
    "Handoff requests grouped by outcome",
    labelnames=("outcome",),
)

ESCALATIONS_TOTAL = Counter(
    "agentrelay_escalations_total",
    "Escalation decisions grouped by trigger and target",
    labelnames=("trigger", "target"),
)

TOOL_INVOCATIONS_TOTAL = Counter(
    "agentrelay_tool_invocations_total",
    "Tool invocations inside the resolution loop grouped by outcome",
    labelnames=("tool", "outcome"),
)

TOOL_LATENCY_SECONDS = Histogram(
    "agentrelay_tool_latency_seconds",
    "Latency distribution for tool handler executions",
    labelnames=("tool",),
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, float("inf")),
)

TOOL_LOOP_RUNS_TOTAL = Counter(
    "agentrelay_tool_loop_runs_total",
    "Tool-resolution loop runs grouped by outcome",
    labelnames=("outcome",),
)

TOOL_LOOP_ROUND_TRIPS = Histogram(
    "agentrelay_tool_loop_round_trips",
    "Backend round-trips issued per tool-resolution loop run",
    labelnames=("outcome",),
    buckets=(0, 1, 2, 3, 4, 5, 8, 13),
)

BACKEND_REQUESTS_TOTAL = Counter(
    "agentrelay_backend_requests_total",
    "Reasoning backend requests grouped by outcome",
    labelnames=("outcome",),
)

BACKEND_LATENCY_SECONDS = Histogram(
    "agentrelay_backend_latency_seconds",
    "Reasoning backend round-trip latency",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")),
)

ACTIVE_CONTEXTS = Gauge(
    "agentrelay_active_contexts",
    "Conversation contexts currently held in memory",
)

CONTEXTS_EXPIRED_TOTAL = Counter(
    "agentrelay_contexts_expired_total",
    "Conversation contexts removed by the expiry sweep",
)

SUBSCRIBER_FAILURES_TOTAL = Counter(
    "agentrelay_subscriber_failures_total",
    "Synchronizer subscriber callbacks that raised",
    labelnames=("event",),
)


def increment_event(*, event_type: str) -> None:
    ORCHESTRATION_EVENTS_TOTAL.labels(type=event_type).inc()


def increment_handoff(*, outcome: str) -> None:
    HANDOFFS_TOTAL.labels(outcome=outcome).inc()


def increment_escalation(*, trigger: str | None, target: str | None) -> None:
    ESCALATIONS_TOTAL.labels(trigger=trigger or "none", target=target or "none").inc()


def observe_tool_invocation(*, tool: str, outcome: str, latency: float | None = None) -> None:
    TOOL_INVOCATIONS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    if latency is not None:
        TOOL_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))


def observe_tool_loop(*, outcome: str, round_trips: int) -> None:
    TOOL_LOOP_RUNS_TOTAL.labels(outcome=outcome).inc()
    TOOL_LOOP_ROUND_TRIPS.labels(outcome=outcome).observe(max(0, round_trips))


def observe_backend_request(*, outcome: str, latency: float | None = None) -> None:
    BACKEND_REQUESTS_TOTAL.labels(outcome=outcome).inc()
    if latency is not None:
        BACKEND_LATENCY_SECONDS.observe(max(0.0, latency))


def set_active_contexts(count: int) -> None:
    ACTIVE_CONTEXTS.set(max(0, count))


def increment_contexts_expired(count: int) -> None:
    if count:
        CONTEXTS_EXPIRED_TOTAL.inc(count)


def increment_subscriber_failure(*, event: str) -> None:
    SUBSCRIBER_FAILURES_TOTAL.labels(event=event).inc()


__all__ = [
    "increment_event",
    "increment_handoff",
    "increment_escalation",
    "observe_tool_invocation",
    "observe_tool_loop",
    "observe_backend_request",
    "set_active_contexts",
    "increment_contexts_expired",
    "increment_subscriber_failure",
]
