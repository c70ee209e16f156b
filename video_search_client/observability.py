"""Observability utilities: logging setup, trace IDs, and backend metrics.

This module provides:
- structlog configuration shared by the CLI and library callers
- Trace ID generation and propagation via context vars
- Prometheus metrics for backend calls, uploads and job polling
"""

import logging
import secrets
import sys
from contextvars import ContextVar

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Logging
# =============================================================================


def configure_logging(level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Minimum log level name.
        json_logs: Render JSON lines; console rendering otherwise.
    """
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# Trace ID Context
# =============================================================================

# Context variable for trace ID propagation across async calls
trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


def ensure_trace_id() -> str:
    """Return the current trace ID, generating one if none is set."""
    trace_id = get_trace_id()
    if not trace_id:
        trace_id = generate_trace_id()
        set_trace_id(trace_id)
    return trace_id


# =============================================================================
# Prometheus Metrics
# =============================================================================

backend_requests_total = Counter(
    "video_search_backend_requests_total",
    "Total backend API requests",
    ["operation", "outcome"],  # outcome: ok, http_error, transport_error, protocol_error
)

backend_latency_seconds = Histogram(
    "video_search_backend_latency_seconds",
    "Backend request latency in seconds",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 120.0],
)

upload_bytes_total = Counter(
    "video_search_upload_bytes_total",
    "Bytes sent per upload leg",
    ["leg"],  # values: durable, processing
)

upload_legs_total = Counter(
    "video_search_upload_legs_total",
    "Upload leg outcomes",
    ["leg", "outcome"],
)

job_polls_total = Counter(
    "video_search_job_polls_total",
    "Job status polls by observed state",
    ["state"],
)

active_job_watches = Gauge(
    "video_search_active_job_watches",
    "Jobs currently being polled",
)
