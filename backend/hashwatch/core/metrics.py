"""Prometheus metrics: request count by route/status, latency, scan outcomes, provider calls, denylist imports."""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0, 30.0),
)
SCAN_OUTCOME_TOTAL = Counter(
    "scan_outcome_total",
    "Scan submissions by how they were resolved",
    ["source"],  # existing | denylist | remote_report | submitted | remote_immediate
)
REMOTE_CALL_TOTAL = Counter(
    "remote_provider_calls_total",
    "Analysis provider calls by operation and cache outcome",
    ["operation", "cache"],  # cache: hit | miss
)
DENYLIST_IMPORT_BATCH_TOTAL = Counter(
    "denylist_import_batches_total",
    "Denylist feed import batches",
    ["result"],  # success | failure
)


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def normalize_path(path: str) -> str:
    """Collapse ids to avoid high cardinality (e.g. /api/scans/123 -> /api/scans/{id})."""
    path = path or "/"
    if path.startswith("/api/scans/") and len(path) > len("/api/scans/"):
        return "/api/scans/{id}"
    if path.startswith("/api/denylist/") and path != "/api/denylist/refresh":
        return "/api/denylist/{fingerprint}"
    return path


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    path = normalize_path(path)
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_scan_outcome(source: str) -> None:
    SCAN_OUTCOME_TOTAL.labels(source=source).inc()


def record_remote_call(operation: str, cache_hit: bool) -> None:
    REMOTE_CALL_TOTAL.labels(operation=operation, cache="hit" if cache_hit else "miss").inc()


def record_import_batch(success: bool) -> None:
    DENYLIST_IMPORT_BATCH_TOTAL.labels(result="success" if success else "failure").inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
