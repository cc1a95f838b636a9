from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from agency_crm.core.config import get_settings
from agency_crm.metrics import observe_table_export, observe_table_query
from agency_crm.otel import traced
from agency_crm.tables.export import MEDIA_TYPES, export_filename, render_csv, render_pdf
from agency_crm.tables.query import TableQuery, build_count, build_select
from agency_crm.tables.registry import TableSpec

logger = logging.getLogger("agency_crm.tables")


@dataclass
class ExportFile:
    filename: str
    media_type: str
    content: bytes
    row_count: int


class TableService:
    def serialize_row(self, spec: TableSpec, entity: Any, columns: list[str]) -> dict[str, Any]:
        row: dict[str, Any] = {"id": str(entity.id)}
        for key in columns:
            row[key] = spec.fields[key].value(entity)
        return row

    def count(self, session: Session, spec: TableSpec, query: TableQuery) -> int:
        return int(session.scalar(build_count(spec, query)) or 0)

    def fetch_page(self, session: Session, spec: TableSpec, query: TableQuery) -> dict[str, Any]:
        started = time.perf_counter()
        with traced("crm.table.query", table=spec.name, page=query.page, page_size=query.page_size):
            total = self.count(session, spec, query)
            stmt = build_select(spec, query).offset(query.offset).limit(query.page_size)
            entities = session.scalars(stmt).all()
            rows = [self.serialize_row(spec, entity, query.columns) for entity in entities]
        duration = time.perf_counter() - started
        observe_table_query(spec.name, duration)
        logger.info(
            "crm.table.query",
            extra={
                "table": spec.name,
                "page": query.page,
                "page_size": query.page_size,
                "total": total,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return {
            "data": rows,
            "pagination": {
                "total": total,
                "totalPages": math.ceil(total / query.page_size) if total else 0,
                "page": query.page,
                "pageSize": query.page_size,
            },
        }

    def export(self, session: Session, spec: TableSpec, query: TableQuery, export_format: str) -> ExportFile:
        settings = get_settings()
        limit = settings.export_max_rows if export_format == "csv" else settings.pdf_fetch_limit
        with traced("crm.table.export", table=spec.name, format=export_format):
            total = self.count(session, spec, query)
            entities = session.scalars(build_select(spec, query).limit(limit)).all()
            rows = [self.serialize_row(spec, entity, query.columns) for entity in entities]
            if export_format == "csv":
                content = render_csv(spec, query.columns, rows)
            else:
                content = render_pdf(spec, query.columns, rows, max_rows=settings.pdf_max_rows, total=total)
        observe_table_export(spec.name, export_format, len(rows))
        logger.info(
            "crm.table.export",
            extra={"table": spec.name, "format": export_format, "row_count": len(rows), "total": total},
        )
        return ExportFile(
            filename=export_filename(spec, export_format),
            media_type=MEDIA_TYPES[export_format],
            content=content,
            row_count=len(rows),
        )


table_service = TableService()
