"""Prometheus metrics definitions for s3kit.

All metrics use the ``s3kit_`` prefix. They are created by ``init_metrics()``
and stay ``None`` until then, so an application that never enables metrics
registers nothing in the global registry. The ``record_*`` helpers are
no-ops in that case.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Request counters  (labels: method, status)
# ---------------------------------------------------------------------------
requests_total: Counter | None = None
request_duration_seconds: Histogram | None = None

# ---------------------------------------------------------------------------
# Upload counters
# ---------------------------------------------------------------------------
bytes_sent_total: Counter | None = None
parts_uploaded_total: Counter | None = None
parts_skipped_total: Counter | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Safe to call more than once; only the first call registers collectors.
    """
    global _initialized
    global requests_total, request_duration_seconds
    global bytes_sent_total, parts_uploaded_total, parts_skipped_total

    if _initialized:
        return

    requests_total = Counter(
        "s3kit_requests_total",
        "Total S3 requests by HTTP method and response status",
        ["method", "status"],
    )

    request_duration_seconds = Histogram(
        "s3kit_request_duration_seconds",
        "S3 request latency in seconds",
        ["method"],
    )

    bytes_sent_total = Counter(
        "s3kit_bytes_sent_total",
        "Total bytes sent in request bodies",
    )

    parts_uploaded_total = Counter(
        "s3kit_parts_uploaded_total",
        "Multipart upload parts sent to the server",
    )

    parts_skipped_total = Counter(
        "s3kit_parts_skipped_total",
        "Multipart upload parts reused from an earlier attempt",
    )

    _initialized = True


def record_request(method: str, status: int | str, duration: float, bytes_sent: int = 0) -> None:
    if requests_total is None:
        return
    requests_total.labels(method=method, status=str(status)).inc()
    request_duration_seconds.labels(method=method).observe(duration)
    if bytes_sent:
        bytes_sent_total.inc(bytes_sent)


def record_part(skipped: bool) -> None:
    if parts_uploaded_total is None:
        return
    if skipped:
        parts_skipped_total.inc()
    else:
        parts_uploaded_total.inc()
