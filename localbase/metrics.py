"""Prometheus metrics definitions.

- Record store metrics (queries, duration, lock wait, errors)
- Object storage metrics (operations, bytes)
- Auth metrics (sign-up/sign-in/sign-out outcomes)
"""

from prometheus_client import Counter, Histogram

# =============================================================================
# Record Store Metrics
# =============================================================================

STORE_QUERIES_TOTAL = Counter(
    "localbase_store_queries_total",
    "Total number of record store statements",
    ["operation"]
)

STORE_QUERY_DURATION = Histogram(
    "localbase_store_query_duration_seconds",
    "Record store statement duration in seconds",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

STORE_LOCK_WAIT_TIME = Histogram(
    "localbase_store_lock_wait_seconds",
    "Time spent waiting for the record store connection",
    buckets=[0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)

STORE_ERRORS_TOTAL = Counter(
    "localbase_store_errors_total",
    "Total number of failed record store statements",
    ["operation"]
)

# =============================================================================
# Object Storage Metrics
# =============================================================================

STORAGE_OPERATIONS_TOTAL = Counter(
    "localbase_storage_operations_total",
    "Total number of object storage operations",
    ["operation", "status"]
)

STORAGE_UPLOAD_BYTES_TOTAL = Counter(
    "localbase_storage_upload_bytes_total",
    "Total bytes written to object storage"
)

STORAGE_DOWNLOAD_BYTES_TOTAL = Counter(
    "localbase_storage_download_bytes_total",
    "Total bytes read from object storage"
)

# =============================================================================
# Auth Metrics
# =============================================================================

AUTH_ATTEMPTS_TOTAL = Counter(
    "localbase_auth_attempts_total",
    "Total number of auth operations",
    ["operation", "status"]
)
