"""Prometheus metrics for data source opens."""

from __future__ import annotations

import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

LOGGER = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

OPEN_ATTEMPTS = Counter(
    "httpsource_opens_total",
    "Number of HTTP data source opens grouped by outcome.",
    labelnames=["outcome"],
    registry=_REGISTRY,
)
OPEN_DURATION = Histogram(
    "httpsource_open_duration_seconds",
    "Histogram of time spent resolving, connecting and validating an open.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
    registry=_REGISTRY,
)


def record_open_started(uri: str) -> None:
    """Emit a metrics event for an open attempt."""

    LOGGER.debug("metrics.open_started", extra={"event": "open.started", "uri": uri})
    OPEN_ATTEMPTS.labels(outcome="started").inc()


def record_open_completed(uri: str, duration: float, response_code: int) -> None:
    LOGGER.debug(
        "metrics.open_completed",
        extra={
            "event": "open.completed",
            "uri": uri,
            "duration": duration,
            "status": response_code,
        },
    )
    OPEN_ATTEMPTS.labels(outcome="completed").inc()
    OPEN_DURATION.observe(duration)


def record_open_failed(uri: str, reason: str) -> None:
    """Record a failed open; ``reason`` becomes the outcome label."""

    LOGGER.debug(
        "metrics.open_failed",
        extra={"event": "open.failed", "uri": uri, "reason": reason},
    )
    OPEN_ATTEMPTS.labels(outcome=reason).inc()


def metrics_payload() -> tuple[bytes, str]:
    """Return the Prometheus exposition payload and its content type."""

    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "metrics_payload",
    "record_open_completed",
    "record_open_failed",
    "record_open_started",
]
