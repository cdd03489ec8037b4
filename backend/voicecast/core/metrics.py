"""Prometheus metrics for broadcast fan-out activity."""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    generate_latest,
    multiprocess,
)

REGISTRY = CollectorRegistry()

# Gunicorn / multi-worker deployments
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


APP_INFO = Info(
    "voicecast_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Broadcast Fan-out Metrics
# ============================================
BROADCASTS_CREATED_TOTAL = Counter(
    "broadcasts_created_total",
    "Broadcasts committed with their recipients",
    registry=REGISTRY,
)

BROADCAST_REJECTIONS_TOTAL = Counter(
    "broadcast_rejections_total",
    "Broadcast attempts rejected before persistence",
    ["reason"],
    registry=REGISTRY,
)

BROADCAST_RECIPIENTS_SELECTED = Histogram(
    "broadcast_recipients_selected",
    "Number of recipients selected per broadcast",
    buckets=[0, 1, 2, 3, 5, 10, 20, 50, 100],
    registry=REGISTRY,
)

BROADCAST_NOTIFICATIONS_TOTAL = Counter(
    "broadcast_notifications_total",
    "Push notification attempts made after commit",
    ["kind", "status"],
    registry=REGISTRY,
)

BROADCAST_FANOUT_DURATION_SECONDS = Histogram(
    "broadcast_fanout_duration_seconds",
    "Time spent in the transactional fan-out phase",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    APP_INFO.info({"version": version, "environment": environment})
