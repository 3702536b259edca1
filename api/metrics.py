"""
Prometheus metrics for the Tubely API.

Exposed at /metrics in Prometheus text format.
"""

from prometheus_client import Counter, Histogram, Info, generate_latest

APP_INFO = Info("tubely", "Tubely application information")

# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS_TOTAL = Counter(
    "tubely_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "tubely_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0],
)

# =============================================================================
# Uploads
# =============================================================================

UPLOADS_TOTAL = Counter(
    "tubely_uploads_total",
    "Total asset uploads",
    ["kind", "result"],  # kind: video, thumbnail. result: success, rejected, failed
)

UPLOAD_BYTES_TOTAL = Counter(
    "tubely_upload_bytes_total",
    "Total bytes accepted from clients",
    ["kind"],
)

VIDEO_ASPECT_RATIO_TOTAL = Counter(
    "tubely_video_aspect_ratio_total",
    "Processed videos by aspect ratio classification",
    ["aspect_ratio"],
)

# =============================================================================
# Media tools
# =============================================================================

MEDIA_TOOL_RUNS_TOTAL = Counter(
    "tubely_media_tool_runs_total",
    "ffprobe/ffmpeg invocations",
    ["tool", "result"],  # result: success, failed, timeout
)

MEDIA_TOOL_DURATION_SECONDS = Histogram(
    "tubely_media_tool_duration_seconds",
    "ffprobe/ffmpeg wall time in seconds",
    ["tool"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0],
)

# =============================================================================
# Storage
# =============================================================================

STORAGE_OPERATIONS_TOTAL = Counter(
    "tubely_storage_operations_total",
    "Total object store operations",
    ["operation", "result"],  # operation: put, presign. result: success, failed
)

STORAGE_BYTES_WRITTEN = Counter(
    "tubely_storage_bytes_written_total",
    "Total bytes written to the object store",
)

STAGING_CLEANUP_FAILURES_TOTAL = Counter(
    "tubely_staging_cleanup_failures_total",
    "Staged files that could not be removed",
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics in text format."""
    return generate_latest()


def init_app_info(version: str = "0.1.0"):
    APP_INFO.info({"version": version, "app": "tubely"})
