"""Prometheus metrics for uploads and processing waits."""

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "videohost_uploader_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# Transfer Metrics
# ============================================
UPLOAD_SESSIONS_CREATED_TOTAL = Counter(
    "upload_sessions_created_total",
    "Upload sessions created on a provider",
    ["provider"],
    registry=REGISTRY,
)

UPLOAD_CHUNKS_TOTAL = Counter(
    "upload_chunks_total",
    "Chunk transfer attempts by outcome",
    ["provider", "outcome"],
    registry=REGISTRY,
)

UPLOAD_BYTES_TOTAL = Counter(
    "upload_bytes_total",
    "Bytes acknowledged by providers",
    ["provider"],
    registry=REGISTRY,
)

UPLOAD_RETRIES_TOTAL = Counter(
    "upload_retries_total",
    "Chunk transfer retries after a transient failure",
    ["provider"],
    registry=REGISTRY,
)

UPLOAD_FAILURES_TOTAL = Counter(
    "upload_failures_total",
    "Uploads that ended in a terminal error",
    ["provider", "error"],
    registry=REGISTRY,
)


# ============================================
# Processing Metrics
# ============================================
STATUS_POLLS_TOTAL = Counter(
    "status_polls_total",
    "Status polls by reported phase",
    ["provider", "phase"],
    registry=REGISTRY,
)

PROCESSING_WAIT_SECONDS = Histogram(
    "processing_wait_seconds",
    "Time spent waiting for a provider to finish processing",
    ["provider", "outcome"],
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 240.0, 600.0],
    registry=REGISTRY,
)


def set_app_info(name: str, version: str, environment: str) -> None:
    """Set application info metric."""
    APP_INFO.info({
        "name": name,
        "version": version,
        "environment": environment,
    })


def record_session_created(provider: str) -> None:
    UPLOAD_SESSIONS_CREATED_TOTAL.labels(provider=provider).inc()


def record_chunk(provider: str, outcome: str, acknowledged_bytes: int = 0) -> None:
    """Record a chunk transfer attempt.

    Args:
        provider: Provider name
        outcome: success, retry or failed
        acknowledged_bytes: Bytes newly confirmed by the provider
    """
    UPLOAD_CHUNKS_TOTAL.labels(provider=provider, outcome=outcome).inc()
    if acknowledged_bytes > 0:
        UPLOAD_BYTES_TOTAL.labels(provider=provider).inc(acknowledged_bytes)
    if outcome == "retry":
        UPLOAD_RETRIES_TOTAL.labels(provider=provider).inc()


def record_upload_failure(provider: str, error: str) -> None:
    UPLOAD_FAILURES_TOTAL.labels(provider=provider, error=error).inc()


def record_status_poll(provider: str, phase: str) -> None:
    STATUS_POLLS_TOTAL.labels(provider=provider, phase=phase).inc()


def record_processing_wait(provider: str, outcome: str, seconds: float) -> None:
    PROCESSING_WAIT_SECONDS.labels(provider=provider, outcome=outcome).observe(seconds)


def get_metrics() -> bytes:
    """Get all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)
