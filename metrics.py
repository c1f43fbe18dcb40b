"""Prometheus metrics helpers shared across the web service and the kiosk client."""
from __future__ import annotations

import os
import time
from typing import Iterable

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

REGISTRY = CollectorRegistry()

_ENV = (os.getenv("APP_ENV") or "prod").strip() or "prod"


def labels(service: str) -> dict[str, str]:
    return {"env": _ENV, "service": service}


generation_requests_total = Counter(
    "goat_generation_requests_total",
    "Song generation requests grouped by outcome",
    labelnames=("result", "mode", "env", "service"),
    registry=REGISTRY,
)

upstream_requests_total = Counter(
    "goat_upstream_requests_total",
    "Requests sent to the music generation API",
    labelnames=("op", "result"),
    registry=REGISTRY,
)

upstream_latency_seconds = Histogram(
    "goat_upstream_latency_seconds",
    "Latency of music generation API calls",
    labelnames=("op",),
    registry=REGISTRY,
)

lyrics_poll_attempts = Histogram(
    "goat_lyrics_poll_attempts",
    "Number of record-info polls needed for a lyrics task",
    buckets=(1, 2, 3, 5, 8, 13, 21, 30, 60),
    registry=REGISTRY,
)

task_status_total = Counter(
    "goat_task_status_total",
    "Song task status snapshots served to the kiosk",
    labelnames=("status",),
    registry=REGISTRY,
)

download_total = Counter(
    "goat_download_total",
    "Audio download proxy requests grouped by outcome",
    labelnames=("result",),
    registry=REGISTRY,
)

survey_submissions_total = Counter(
    "goat_survey_submissions_total",
    "Lead-capture survey submissions grouped by outcome",
    labelnames=("result",),
    registry=REGISTRY,
)

process_uptime_seconds = Gauge(
    "process_uptime_seconds",
    "Process uptime in seconds",
    registry=REGISTRY,
)

_START_TIME = time.time()


def render_metrics() -> bytes:
    """Return the current metrics payload in Prometheus text format."""

    process_uptime_seconds.set(max(0.0, time.time() - _START_TIME))
    return generate_latest(REGISTRY)


__all__: Iterable[str] = [
    "REGISTRY",
    "labels",
    "generation_requests_total",
    "upstream_requests_total",
    "upstream_latency_seconds",
    "lyrics_poll_attempts",
    "task_status_total",
    "download_total",
    "survey_submissions_total",
    "process_uptime_seconds",
    "render_metrics",
]
