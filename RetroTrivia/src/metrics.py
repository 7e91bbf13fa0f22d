"""Prometheus metrics for the question supply."""
from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

REGISTRY = CollectorRegistry()

SOURCE_REQUESTS = Counter(
    "trivia_source_requests_total",
    "Question source attempts by outcome",
    ["source", "outcome"],
    registry=REGISTRY,
)
POOL_SIZE = Gauge("trivia_pool_size", "Questions currently in the pool", registry=REGISTRY)
CACHE_WRITES = Counter(
    "trivia_cache_writes_total", "Question batches written to the local cache", registry=REGISTRY
)


def record_source(source: str, outcome: str) -> None:
    """Count one attempt against ``source`` ending with ``outcome``."""

    SOURCE_REQUESTS.labels(source, outcome).inc()


def render_metrics() -> bytes:
    """Return the metrics in the Prometheus text exposition format."""

    return generate_latest(REGISTRY)


__all__ = ["REGISTRY", "SOURCE_REQUESTS", "POOL_SIZE", "CACHE_WRITES", "record_source", "render_metrics"]
