from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from agency_crm.client.columns import TableColumn
from agency_crm.client.formatters import default_display
from agency_crm.client.i18n import message
from agency_crm.client.state import SortDirection, TableState


@dataclass(frozen=True)
class HeaderCell:
    key: str
    label: str
    sortable: bool
    direction: SortDirection | None
    priority: int | None
    width: int | None = None


@dataclass(frozen=True)
class BodyCell:
    key: str
    display: Any


@dataclass(frozen=True)
class BodyRow:
    id: str | None
    cells: tuple[BodyCell, ...]
    selected: bool


@dataclass(frozen=True)
class Placeholder:
    text: str
    colspan: int


@dataclass(frozen=True)
class PaginationFooter:
    start: int
    end: int
    total: int
    page: int
    total_pages: int
    page_size: int
    page_size_options: tuple[int, ...]
    can_previous: bool
    can_next: bool
    summary: str
    page_label: str


@dataclass(frozen=True)
class TableView:
    headers: tuple[HeaderCell, ...]
    rows: tuple[BodyRow, ...]
    placeholder: Placeholder | None
    error: str | None
    loading: bool
    footer: PaginationFooter | None
    selected_count: int = 0

    @property
    def colspan(self) -> int:
        # Visible columns plus the selection checkbox column.
        return len(self.headers) + 1


def visible_columns(columns: Sequence[TableColumn], state: TableState) -> list[TableColumn]:
    by_key = {column.key: column for column in columns}
    return [by_key[key] for key in state.visible_columns if key in by_key]


def render_cell(column: TableColumn, row: Mapping[str, Any]) -> Any:
    value = row.get(column.key)
    if column.render is not None:
        return column.render(value, row)
    return default_display(value)


def build_footer(state: TableState, pagination: Mapping[str, Any], locale: str) -> PaginationFooter:
    total = int(pagination.get("total", 0) or 0)
    total_pages = int(pagination.get("totalPages", 0) or 0)
    start = (state.page - 1) * state.page_size + 1 if total else 0
    end = min(state.page * state.page_size, total)
    return PaginationFooter(
        start=start,
        end=end,
        total=total,
        page=state.page,
        total_pages=total_pages,
        page_size=state.page_size,
        page_size_options=state.page_size_options,
        can_previous=state.page > 1,
        can_next=state.page < total_pages,
        summary=message("showing", locale, start=start, end=end, total=total),
        page_label=message("page_of", locale, page=state.page, total_pages=total_pages),
    )


def build_view(
    columns: Sequence[TableColumn],
    state: TableState,
    *,
    data: Sequence[Mapping[str, Any]] | None,
    pagination: Mapping[str, Any] | None,
    error: BaseException | str | None = None,
    loading: bool = False,
    selection: frozenset[str] | set[str] = frozenset(),
    locale: str = "ar",
) -> TableView:
    shown = visible_columns(columns, state)
    headers = tuple(
        HeaderCell(
            key=column.key,
            label=column.localized_label(locale),
            sortable=column.sortable,
            direction=state.sort_direction(column.key),
            priority=state.sort_priority(column.key),
            width=column.width,
        )
        for column in shown
    )

    error_text = message("load_error", locale, error=str(error)) if error is not None else None
    rows: tuple[BodyRow, ...] = ()
    if error_text is None and data:
        rows = tuple(
            BodyRow(
                id=str(row["id"]) if row.get("id") is not None else None,
                cells=tuple(BodyCell(key=column.key, display=render_cell(column, row)) for column in shown),
                selected=row.get("id") is not None and str(row["id"]) in selection,
            )
            for row in data
        )

    placeholder = None
    if not rows and error_text is None and not loading:
        placeholder = Placeholder(text=message("no_data", locale), colspan=len(headers) + 1)

    footer = build_footer(state, pagination, locale) if pagination is not None and error_text is None else None
    return TableView(
        headers=headers,
        rows=rows,
        placeholder=placeholder,
        error=error_text,
        loading=loading,
        footer=footer,
        selected_count=len(selection),
    )
