"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INGEST_ATTEMPTS = Counter(
    "ragdesk_ingest_attempts_total",
    "Ingestion attempts by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INGEST_DURATION = Histogram(
    "ragdesk_ingest_duration_seconds",
    "Duration of a single ingestion attempt",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INGEST_CHUNKS = Counter(
    "ragdesk_ingest_chunks_total",
    "Chunks persisted by completed attempts",
    registry=REGISTRY,
)

CHAT_TURNS = Counter(
    "ragdesk_chat_turns_total",
    "Chat turns by terminal outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

CHAT_LATENCY = Histogram(
    "ragdesk_chat_latency_seconds",
    "Provider streaming latency of completed chat turns",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "INGEST_ATTEMPTS",
    "INGEST_DURATION",
    "INGEST_CHUNKS",
    "CHAT_TURNS",
    "CHAT_LATENCY",
    "metrics_response",
]
