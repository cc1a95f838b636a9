from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, Select, String, Uuid, and_, cast, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from agency_crm.core.config import get_settings
from agency_crm.crm.errors import field_error
from agency_crm.tables.registry import TableField, TableSpec

FilterOperator = Literal["eq", "contains", "gt", "lt", "gte", "lte", "in", "not_in", "is_null", "is_not_null"]


class SortSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str = Field(min_length=1)
    direction: Literal["asc", "desc"] = "asc"
    priority: int | None = None


class FilterSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    field: str = Field(min_length=1)
    operator: FilterOperator = "eq"
    value: Any = None


@dataclass
class TableQuery:
    page: int = 1
    page_size: int = 25
    search: str = ""
    sorts: list[SortSpec] = field(default_factory=list)
    filters: list[FilterSpec] = field(default_factory=list)
    columns: list[str] = field(default_factory=list)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def _load_json_list(raw: str | None, name: str) -> list[Any]:
    if raw is None or raw.strip() == "":
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        raise field_error(name, f"{name} must be a JSON array")
    if not isinstance(parsed, list):
        raise field_error(name, f"{name} must be a JSON array")
    return parsed


def parse_sorts(spec: TableSpec, raw: str | None) -> list[SortSpec]:
    try:
        sorts = [SortSpec.model_validate(item) for item in _load_json_list(raw, "sorts")]
    except ValidationError:
        raise field_error("sorts", "Each sort needs a field and a direction of asc or desc")
    for sort in sorts:
        item = spec.fields.get(sort.field)
        if item is None or not item.queryable:
            raise field_error("sorts", f"Unknown sort field: {sort.field}")
    if any(sort.priority is not None for sort in sorts):
        # Stable: unprioritised sorts keep their click order after the prioritised ones.
        sorts = sorted(sorts, key=lambda sort: sort.priority if sort.priority is not None else len(sorts))
    return sorts


def parse_filters(spec: TableSpec, raw: str | None) -> list[FilterSpec]:
    try:
        filters = [FilterSpec.model_validate(item) for item in _load_json_list(raw, "filters")]
    except ValidationError:
        raise field_error("filters", "Each filter needs a field and a supported operator")
    for item in filters:
        column = spec.fields.get(item.field)
        if column is None or not column.queryable:
            raise field_error("filters", f"Unknown filter field: {item.field}")
    return filters


def parse_columns(spec: TableSpec, raw: str | None) -> list[str]:
    columns = _load_json_list(raw, "columns")
    if not columns:
        return list(spec.fields)
    unknown = [key for key in columns if not isinstance(key, str) or key not in spec.fields]
    if unknown:
        raise field_error("columns", f"Unknown columns: {', '.join(str(key) for key in unknown)}")
    return columns


def parse_table_query(
    spec: TableSpec,
    *,
    page: int = 1,
    page_size: int | None = None,
    search: str | None = None,
    sorts: str | None = None,
    filters: str | None = None,
    columns: str | None = None,
) -> TableQuery:
    settings = get_settings()
    size = page_size or settings.table_default_page_size
    return TableQuery(
        page=max(page, 1),
        page_size=max(1, min(size, settings.table_max_page_size)),
        search=(search or "").strip(),
        sorts=parse_sorts(spec, sorts),
        filters=parse_filters(spec, filters),
        columns=parse_columns(spec, columns),
    )


def _coerce_scalar(column: TableField, value: Any) -> Any:
    expression = column.expression
    column_type = getattr(expression, "type", None)
    try:
        if isinstance(column_type, Uuid):
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        if isinstance(column_type, Boolean):
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in {"1", "true", "yes"}
        if isinstance(column_type, DateTime):
            if isinstance(value, datetime):
                parsed = value
            else:
                text = str(value)
                parsed = datetime.fromisoformat(text) if "T" in text or " " in text else datetime.combine(
                    date.fromisoformat(text), time.min
                )
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        if isinstance(column_type, Date):
            return value if isinstance(value, date) else date.fromisoformat(str(value)[:10])
        if isinstance(column_type, Numeric):
            return Decimal(str(value))
        if isinstance(column_type, Integer):
            return int(value)
    except (ValueError, TypeError, InvalidOperation):
        raise field_error("filters", f"Invalid value for {column.key}")
    return value


def _as_text(expression: Any) -> Any:
    if isinstance(getattr(expression, "type", None), String):
        return expression
    return cast(expression, String)


def _filter_clause(column: TableField, spec: FilterSpec) -> ColumnElement[bool]:
    expression = column.expression
    operator = spec.operator
    if operator == "is_null":
        return expression.is_(None)
    if operator == "is_not_null":
        return expression.is_not(None)
    if operator in {"in", "not_in"}:
        values = spec.value if isinstance(spec.value, list) else [spec.value]
        coerced = [_coerce_scalar(column, value) for value in values]
        return expression.in_(coerced) if operator == "in" else expression.not_in(coerced)
    if operator == "contains":
        return _as_text(expression).icontains(str(spec.value), autoescape=True)
    value = _coerce_scalar(column, spec.value)
    if operator == "eq":
        return expression == value
    if operator == "gt":
        return expression > value
    if operator == "lt":
        return expression < value
    if operator == "gte":
        return expression >= value
    return expression <= value


def where_clauses(spec: TableSpec, query: TableQuery) -> list[ColumnElement[bool]]:
    model = spec.model
    clauses: list[ColumnElement[bool]] = [model.deleted_at.is_(None)]
    for item in query.filters:
        clauses.append(_filter_clause(spec.fields[item.field], item))
    if query.search:
        searchable = [
            _as_text(column.expression).icontains(query.search, autoescape=True) for column in spec.searchable_fields
        ]
        if searchable:
            clauses.append(or_(*searchable))
    return clauses


def order_clauses(spec: TableSpec, query: TableQuery) -> list[Any]:
    sorts = query.sorts or [SortSpec(field=key, direction=direction) for key, direction in spec.default_sort]
    ordering = []
    for sort in sorts:
        expression = spec.fields[sort.field].expression
        ordering.append(expression.desc() if sort.direction == "desc" else expression.asc())
    ordering.append(spec.model.id.asc())
    return ordering


def build_select(spec: TableSpec, query: TableQuery) -> Select[Any]:
    return select(spec.model).where(and_(*where_clauses(spec, query))).order_by(*order_clauses(spec, query))


def build_count(spec: TableSpec, query: TableQuery) -> Select[Any]:
    return select(func.count()).select_from(spec.model).where(and_(*where_clauses(spec, query)))
