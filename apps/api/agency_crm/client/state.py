from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Sequence

SortDirection = Literal["asc", "desc"]

PAGE_SIZE_OPTIONS: tuple[int, ...] = (10, 25, 50, 100)


@dataclass(frozen=True)
class TableSort:
    field: str
    direction: SortDirection = "asc"

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "direction": self.direction}


@dataclass(frozen=True)
class TableFilter:
    field: str
    operator: str
    value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class TableState:
    """Immutable table query state.

    Every transition returns a new instance. Transitions that change the
    result set (sort, page size, search, filters, applied views) move back to
    the first page.
    """

    page: int = 1
    page_size: int = 25
    sorts: tuple[TableSort, ...] = ()
    filters: tuple[TableFilter, ...] = ()
    search: str = ""
    visible_columns: tuple[str, ...] = ()
    page_size_options: tuple[int, ...] = field(default=PAGE_SIZE_OPTIONS, compare=False)

    @classmethod
    def initial(
        cls,
        visible_columns: Sequence[str],
        *,
        page_size: int = 25,
        sorts: Sequence[TableSort] = (),
        page_size_options: Sequence[int] = PAGE_SIZE_OPTIONS,
    ) -> TableState:
        if page_size not in page_size_options:
            raise ValueError(f"page size must be one of {tuple(page_size_options)}, got {page_size}")
        return cls(
            page_size=page_size,
            sorts=tuple(sorts),
            visible_columns=tuple(visible_columns),
            page_size_options=tuple(page_size_options),
        )

    def sort_direction(self, key: str) -> SortDirection | None:
        for sort in self.sorts:
            if sort.field == key:
                return sort.direction
        return None

    def sort_priority(self, key: str) -> int | None:
        for index, sort in enumerate(self.sorts):
            if sort.field == key:
                return index + 1
        return None

    def toggle_sort(self, key: str, *, multi: bool = True) -> TableState:
        """Cycle ``key`` through asc, desc and unsorted.

        With ``multi`` off a newly sorted column replaces the existing sorts.
        """
        current = self.sort_direction(key)
        if current is None:
            sorts = (self.sorts if multi else ()) + (TableSort(key, "asc"),)
        elif current == "asc":
            sorts = tuple(TableSort(key, "desc") if sort.field == key else sort for sort in self.sorts)
        else:
            sorts = tuple(sort for sort in self.sorts if sort.field != key)
        return replace(self, sorts=sorts, page=1)

    def set_page(self, page: int) -> TableState:
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        return replace(self, page=page)

    def set_page_size(self, page_size: int) -> TableState:
        if page_size not in self.page_size_options:
            raise ValueError(f"page size must be one of {self.page_size_options}, got {page_size}")
        return replace(self, page_size=page_size, page=1)

    def set_search(self, search: str) -> TableState:
        return replace(self, search=search, page=1)

    def set_filters(self, filters: Sequence[TableFilter]) -> TableState:
        return replace(self, filters=tuple(filters), page=1)

    def add_filter(self, item: TableFilter) -> TableState:
        kept = tuple(existing for existing in self.filters if existing.field != item.field)
        return replace(self, filters=kept + (item,), page=1)

    def remove_filter(self, key: str) -> TableState:
        return replace(self, filters=tuple(item for item in self.filters if item.field != key), page=1)

    def toggle_column(self, key: str, column_order: Sequence[str]) -> TableState:
        if key in self.visible_columns:
            visible = tuple(item for item in self.visible_columns if item != key)
        else:
            wanted = set(self.visible_columns) | {key}
            visible = tuple(item for item in column_order if item in wanted)
        return replace(self, visible_columns=visible)

    def apply_view(
        self,
        *,
        columns: Sequence[str],
        sorts: Sequence[TableSort],
        filters: Sequence[TableFilter],
        page_size: int,
    ) -> TableState:
        if page_size not in self.page_size_options:
            raise ValueError(f"page size must be one of {self.page_size_options}, got {page_size}")
        return replace(
            self,
            visible_columns=tuple(columns),
            sorts=tuple(sorts),
            filters=tuple(filters),
            page_size=page_size,
            page=1,
        )

    def filter_params(self) -> dict[str, str]:
        return {
            "search": self.search,
            "sorts": json.dumps([sort.to_dict() for sort in self.sorts]),
            "filters": json.dumps([item.to_dict() for item in self.filters], default=str),
            "columns": json.dumps(list(self.visible_columns)),
        }

    def to_query_params(self) -> dict[str, str]:
        return {"page": str(self.page), "pageSize": str(self.page_size), **self.filter_params()}

    def cache_key(self) -> str:
        return json.dumps(self.to_query_params(), sort_keys=True)
