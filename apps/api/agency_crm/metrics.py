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

table_queries_total = Counter(
    "crm_table_queries_total",
    "Total table page queries by table",
    ["table"],
)

table_query_duration_seconds = Histogram(
    "crm_table_query_duration_seconds",
    "Table page query duration in seconds",
    ["table"],
)

table_exports_total = Counter(
    "crm_table_exports_total",
    "Total table exports by table and format",
    ["table", "format"],
)

table_export_rows_total = Counter(
    "crm_table_export_rows_total",
    "Total rows written by table exports",
    ["table", "format"],
)

crm_writes_total = Counter(
    "crm_writes_total",
    "Total audited CRM writes by entity and operation",
    ["entity_type", "operation"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_table_query(table: str, duration: float) -> None:
    table_queries_total.labels(table=table).inc()
    table_query_duration_seconds.labels(table=table).observe(duration)


def observe_table_export(table: str, export_format: str, row_count: int) -> None:
    table_exports_total.labels(table=table, format=export_format).inc()
    if row_count > 0:
        table_export_rows_total.labels(table=table, format=export_format).inc(row_count)


def observe_crm_write(entity_type: str, operation: str) -> None:
    crm_writes_total.labels(entity_type=entity_type, operation=operation).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
