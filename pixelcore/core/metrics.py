"""
Prometheus Metrics for Observability

Tracks pipeline performance, admission control and surface usage.
Exposes /api/v1/metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Per-stage latency
stage_latency_seconds = Histogram(
    "pixelcore_stage_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# End-to-end operation duration
operation_duration_seconds = Histogram(
    "pixelcore_pipeline_duration_seconds",
    "Wall time of one background removal or upscale operation",
    labelnames=["pipeline", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

# Operations Counter
operations_total = Counter(
    "pixelcore_operations_total",
    "Total number of processing operations",
    labelnames=["pipeline", "status", "failure_kind"]
)

# Governor State
active_operations_gauge = Gauge(
    "pixelcore_active_operations",
    "Number of currently admitted operations"
)

active_handles_gauge = Gauge(
    "pixelcore_active_handles",
    "Number of currently acquired processing surfaces"
)

admission_rejections_total = Counter(
    "pixelcore_admission_rejections_total",
    "Operations rejected by admission control",
    labelnames=["operation"]
)

forced_releases_total = Counter(
    "pixelcore_forced_releases_total",
    "Surfaces force-released by the periodic sweep",
    labelnames=["reason"]
)

# Algorithm Selection
algorithm_selections_total = Counter(
    "pixelcore_algorithm_selections_total",
    "Upscaling and masking strategies chosen",
    labelnames=["pipeline", "algorithm"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Application Info
app_info = Info(
    "pixelcore_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("mask_fusion"):
            # do work
    """
    start = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.perf_counter() - start
        stage_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_operation(pipeline: str, status: str, duration_seconds: float, failure_kind: str = "none"):
    """Record a finished pipeline operation."""
    operations_total.labels(
        pipeline=pipeline,
        status=status,
        failure_kind=failure_kind
    ).inc()
    operation_duration_seconds.labels(pipeline=pipeline, status=status).observe(duration_seconds)


def record_algorithm(pipeline: str, algorithm: str):
    """Record which strategy a pipeline ran."""
    algorithm_selections_total.labels(pipeline=pipeline, algorithm=algorithm).inc()


def record_admission_rejection(operation: str):
    admission_rejections_total.labels(operation=operation).inc()


def record_forced_release(reason: str, count: int = 1):
    if count > 0:
        forced_releases_total.labels(reason=reason).inc(count)


def update_governor_metrics(active_operations: int, active_handles: int):
    """Mirror the governor's bookkeeping into gauges."""
    active_operations_gauge.set(active_operations)
    active_handles_gauge.set(active_handles)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


# Initialize app info on module load
set_app_info(version="1.0.0", environment="development")
