from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

crm_import_runs_total = Counter(
    "crm_import_runs_total",
    "Total CRM import runs by entity and outcome",
    ["entity_type", "outcome"],
)

crm_import_duration_seconds = Histogram(
    "crm_import_duration_seconds",
    "CRM import duration in seconds",
    ["entity_type"],
)

crm_import_rows_total = Counter(
    "crm_import_rows_total",
    "Total imported rows by entity and row status",
    ["entity_type", "status"],
)

crm_import_batch_failures_total = Counter(
    "crm_import_batch_failures_total",
    "Total failed bulk inserts by entity",
    ["entity_type"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return path_format
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_import_run(entity_type: str, outcome: str, duration: float) -> None:
    crm_import_runs_total.labels(entity_type=entity_type, outcome=outcome).inc()
    crm_import_duration_seconds.labels(entity_type=entity_type).observe(duration)


def observe_import_rows(entity_type: str, status: str, count: int) -> None:
    if count > 0:
        crm_import_rows_total.labels(entity_type=entity_type, status=status).inc(count)


def observe_import_batch_failure(entity_type: str) -> None:
    crm_import_batch_failures_total.labels(entity_type=entity_type).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
