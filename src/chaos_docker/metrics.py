"""
Prometheus metrics for the container execution engine.
"""

import logging
import time
from contextlib import contextmanager

from prometheus_client import REGISTRY, Counter, Histogram

logger = logging.getLogger(__name__)

# Cache for metrics to avoid repeated registry lookups
_metric_cache = {}


def _safe_create_metric(metric_class, name, *args, **kwargs):
    """Create a metric, reusing an existing collector on duplicate registration."""
    if name in _metric_cache:
        return _metric_cache[name]

    try:
        metric = metric_class(name, *args, **kwargs)
    except ValueError as e:
        if "Duplicated timeseries" not in str(e):
            logger.error(f"ValueError creating metric {name}: {e}")
            raise
        logger.warning(f"Metric {name} already exists, retrieving it from registry")
        metric = REGISTRY._names_to_collectors.get(name) or REGISTRY._names_to_collectors.get(f"{name}_total")
        if metric is None:
            raise
    _metric_cache[name] = metric
    return metric


EXECUTIONS = _safe_create_metric(
    Counter,
    "chaos_docker_executions",
    "Experiment invocations by category, phase, strategy and outcome",
    ["category", "phase", "strategy", "outcome"],
)

EXECUTION_LATENCY = _safe_create_metric(
    Histogram,
    "chaos_docker_execution_duration_seconds",
    "Experiment invocation latency",
    ["category", "phase", "strategy"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

SIDECAR_EVENTS = _safe_create_metric(
    Counter,
    "chaos_docker_sidecar_events",
    "Sidecar container lifecycle events",
    ["event"],
)

TOOL_DEPLOYMENTS = _safe_create_metric(
    Counter,
    "chaos_docker_tool_deployments",
    "Tool deployments into target containers by result",
    ["result"],
)


def record_sidecar_event(event: str) -> None:
    SIDECAR_EVENTS.labels(event=event).inc()


def record_deployment(result: str) -> None:
    TOOL_DEPLOYMENTS.labels(result=result).inc()


@contextmanager
def track_execution(category: str, phase: str, strategy: str):
    """
    Time an invocation and count its outcome.

    The yielded dict must have ``outcome`` set by the caller; it defaults
    to ``error`` when the block raises.
    """
    labels = {"outcome": "error"}
    start = time.time()
    try:
        yield labels
    finally:
        EXECUTION_LATENCY.labels(category=category, phase=phase, strategy=strategy).observe(
            time.time() - start
        )
        EXECUTIONS.labels(
            category=category, phase=phase, strategy=strategy, outcome=labels["outcome"]
        ).inc()
