"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
ask_answer_requests_total = Counter(
    "ask_answer_requests_total",
    "Total ask/answer queries",
    ["provider", "status"],
)

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total provider turns",
    ["provider", "model", "status"],
)

llm_call_duration = Histogram(
    "llm_call_duration_seconds",
    "Provider turn duration in seconds",
    ["provider", "model"],
)

# Tool metrics
tool_calls_total = Counter(
    "tool_calls_total",
    "Total tool calls",
    ["tool_name", "family", "status"],
)

tool_call_duration = Histogram(
    "tool_call_duration_seconds",
    "Tool call duration in seconds",
    ["tool_name", "family"],
)

tool_iterations = Histogram(
    "tool_iterations",
    "Tool rounds per ask/answer query",
    buckets=(0, 1, 2, 3, 4, 5, 10),
)

# OAuth connection lookups
connection_lookups_total = Counter(
    "connection_lookups_total",
    "OAuth connection lookups",
    ["provider", "status"],  # status: found, missing, error
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
