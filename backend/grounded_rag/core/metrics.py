"""Prometheus metrics instrumentation."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INGEST_DURATION = Histogram(
    "grag_ingest_duration_seconds",
    "Ingestion workflow duration",
    registry=REGISTRY,
)

INGEST_WORKFLOWS = Counter(
    "grag_ingest_workflows_total",
    "Ingestion workflows by terminal status",
    labelnames=("status",),
    registry=REGISTRY,
)

WORKFLOW_STEPS = Counter(
    "grag_workflow_steps_total",
    "Workflow step executions",
    labelnames=("step", "status"),
    registry=REGISTRY,
)

QUERY_LATENCY = Histogram(
    "grag_query_latency_seconds",
    "Latency of query pipeline steps",
    labelnames=("step",),
    registry=REGISTRY,
)

QUERY_COUNT = Counter(
    "grag_queries_total",
    "Answered questions by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

EMBEDDING_CACHE = Counter(
    "grag_embedding_cache_total",
    "Query embedding cache lookups",
    labelnames=("result",),
    registry=REGISTRY,
)

INDEX_SIZE = Gauge(
    "grag_index_vectors",
    "Number of vectors stored in the index",
    registry=REGISTRY,
)


def render_metrics() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = [
    "REGISTRY",
    "INGEST_DURATION",
    "INGEST_WORKFLOWS",
    "WORKFLOW_STEPS",
    "QUERY_LATENCY",
    "QUERY_COUNT",
    "EMBEDDING_CACHE",
    "INDEX_SIZE",
    "render_metrics",
]
