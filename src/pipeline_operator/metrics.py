from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RECONCILE_TOTAL = Counter(
    "pipeline_operator_reconcile_total",
    "Number of pipeline reconciliations",
    labelnames=("kind", "result"),
)

RECONCILE_DURATION = Histogram(
    "pipeline_operator_reconcile_duration_seconds",
    "Duration of pipeline reconciliations in seconds",
    labelnames=("kind",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

WORKQUEUE_DEPTH = Gauge(
    "pipeline_operator_workqueue_depth",
    "Current depth of the workqueue",
    labelnames=("name",),
)

WORKQUEUE_ADDS = Counter(
    "pipeline_operator_workqueue_adds_total",
    "Total number of adds handled by the workqueue",
    labelnames=("name",),
)

WORKQUEUE_RETRIES = Counter(
    "pipeline_operator_workqueue_retries_total",
    "Total number of rate-limited retries handled by the workqueue",
    labelnames=("name",),
)

REMOTE_CALLS_TOTAL = Counter(
    "pipeline_operator_devops_requests_total",
    "Requests made to the DevOps pipeline service",
    labelnames=("operation", "result"),
)
