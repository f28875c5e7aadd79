"""Prometheus metric definitions for traffic-light self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

from traffic_light.models import TrafficLightColor

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0)
FACT_FETCH_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "traffic_light_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "traffic_light_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

REQUESTS_IN_PROGRESS = Gauge(
    "traffic_light_requests_in_progress",
    "Number of requests currently being processed",
    labelnames=["endpoint"],
)

# ---------------------------------------------------------------------------
# Fact retrieval and evaluation
# ---------------------------------------------------------------------------

FACT_FETCH_DURATION = Histogram(
    "traffic_light_fact_fetch_duration_seconds",
    "Duration of per-entity fact fetches in seconds",
    labelnames=["source"],
    buckets=FACT_FETCH_DURATION_BUCKETS,
)

FACT_FETCHES_TOTAL = Counter(
    "traffic_light_fact_fetches_total",
    "Total per-entity fact fetches",
    labelnames=["source", "status"],  # status: success | error | timeout
)

CHECK_EVALUATIONS_TOTAL = Counter(
    "traffic_light_check_evaluations_total",
    "Total check evaluations",
    labelnames=["check_id", "result"],  # result: passed | failed
)

RETRIEVER_RUNS_TOTAL = Counter(
    "traffic_light_retriever_runs_total",
    "Total fact retriever runs",
    labelnames=["retriever_id", "status"],
)

# ---------------------------------------------------------------------------
# Status metrics
# ---------------------------------------------------------------------------

GROUP_STATUS = Gauge(
    "traffic_light_group_status",
    "Latest aggregated color per group and signal (1 for the current color, 0 otherwise)",
    labelnames=["group", "signal", "color"],
)

COMPONENT_HEALTHY = Gauge(
    "traffic_light_component_healthy",
    "Whether a dependency component is healthy (1=healthy, 0=unhealthy)",
    labelnames=["component"],
)

APP_INFO = Info(
    "traffic_light",
    "traffic-light build information",
)


def record_group_status(group: str, signal: str, color: TrafficLightColor) -> None:
    """Set the gauge for ``color`` to 1 and every other color for the group to 0."""
    for candidate in TrafficLightColor:
        GROUP_STATUS.labels(group=group, signal=signal, color=candidate.value).set(
            1 if candidate is color else 0
        )
