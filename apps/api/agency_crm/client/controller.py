from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Hashable, Literal, Mapping, Sequence

import httpx

from agency_crm.client.cache import CacheKey, QueryCache
from agency_crm.client.columns import TableColumn
from agency_crm.client.debounce import Debouncer
from agency_crm.client.errors import SavedViewNotFound, TableFeatureDisabled, TableLoadError
from agency_crm.client.rendering import TableView, build_view
from agency_crm.client.state import TableFilter, TableSort, TableState
from agency_crm.core.config import get_settings

logger = logging.getLogger("agency_crm.client")

ExportFormat = Literal["csv", "pdf"]
SAVED_VIEWS_PATH = "/api/saved-views"


@dataclass
class MutationState:
    status: Literal["idle", "pending", "success", "error"] = "idle"
    error: str | None = None

    def start(self) -> None:
        self.status = "pending"
        self.error = None

    def succeed(self) -> None:
        self.status = "success"
        self.error = None

    def fail(self, error: BaseException | str) -> None:
        self.status = "error"
        self.error = str(error)


@dataclass(frozen=True)
class SavedView:
    id: str
    endpoint: str
    name: str
    columns: tuple[str, ...]
    sorts: tuple[TableSort, ...]
    filters: tuple[TableFilter, ...]
    page_size: int
    is_default: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> SavedView:
        return cls(
            id=str(payload["id"]),
            endpoint=str(payload.get("endpoint", "")),
            name=str(payload["name"]),
            columns=tuple(payload.get("columns") or ()),
            sorts=tuple(
                TableSort(field=item["field"], direction=item.get("direction", "asc"))
                for item in payload.get("sorts") or ()
            ),
            filters=tuple(
                TableFilter(field=item["field"], operator=item.get("operator", "eq"), value=item.get("value"))
                for item in payload.get("filters") or ()
            ),
            page_size=int(payload.get("pageSize", 25)),
            is_default=bool(payload.get("isDefault", False)),
        )


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return fallback
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("detail")
        if isinstance(message, str) and message:
            return message
    return fallback


@dataclass
class _Loaded:
    data: list[dict[str, Any]] = field(default_factory=list)
    pagination: dict[str, Any] | None = None


class TableController:
    """Server-driven table state machine over an ``httpx.AsyncClient``.

    Every committed state change re-fetches ``endpoint``. Only the latest
    ``refresh`` may apply a response or report an error, and a state change
    cancels the request it supersedes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        endpoint: str,
        query_key: Sequence[Hashable],
        columns: Sequence[TableColumn],
        default_page_size: int = 25,
        default_sort: Sequence[TableSort] = (),
        enable_export: bool = True,
        enable_saved_views: bool = True,
        enable_column_toggle: bool = True,
        enable_multi_sort: bool = True,
        enable_search: bool = True,
        enable_filters: bool = True,
        on_row_click: Callable[[Mapping[str, Any]], Any] | None = None,
        on_row_select: Callable[[list[Mapping[str, Any]]], Any] | None = None,
        cache: QueryCache | None = None,
        search_debounce: float | None = None,
        timeout: float | None = None,
        locale: str | None = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.endpoint = endpoint
        self.query_key = tuple(query_key)
        self.columns = list(columns)
        self.enable_export = enable_export
        self.enable_saved_views = enable_saved_views
        self.enable_column_toggle = enable_column_toggle
        self.enable_multi_sort = enable_multi_sort
        self.enable_search = enable_search
        self.enable_filters = enable_filters
        self.on_row_click = on_row_click
        self.on_row_select = on_row_select
        self.cache = cache or QueryCache(stale_time=settings.client_stale_time_s)
        self.timeout = httpx.Timeout(timeout if timeout is not None else settings.client_timeout_s)
        self.locale = locale or settings.default_locale

        self.state = TableState.initial(
            [column.key for column in self.columns if column.visible],
            page_size=default_page_size,
            sorts=default_sort,
            page_size_options=settings.table_page_size_options,
        )
        self._loaded = _Loaded()
        self.error: TableLoadError | None = None
        self.loading = False
        self.selection: set[str] = set()
        self.export_state = MutationState()
        self.save_view_state = MutationState()
        self.load_view_state = MutationState()

        self._current_key: CacheKey | None = None
        self._generation = 0
        self._applied_rowset: str | None = None
        delay = search_debounce if search_debounce is not None else settings.client_search_debounce_ms / 1000
        self._search_debouncer: Debouncer[str] = Debouncer(self._commit_search, delay=delay)

    @property
    def data(self) -> list[dict[str, Any]]:
        return self._loaded.data

    @property
    def pagination(self) -> dict[str, Any] | None:
        return self._loaded.pagination

    @property
    def total_pages(self) -> int:
        if self.pagination is None:
            return 0
        return int(self.pagination.get("totalPages", 0) or 0)

    @property
    def can_previous(self) -> bool:
        return self.state.page > 1

    @property
    def can_next(self) -> bool:
        return self.state.page < self.total_pages

    @property
    def saved_views_key(self) -> CacheKey:
        return ("saved-views", self.endpoint)

    def data_key(self, state: TableState | None = None) -> CacheKey:
        return (*self.query_key, (state or self.state).cache_key())

    # Fetching

    async def refresh(self) -> None:
        state = self.state
        key = self.data_key(state)
        previous = self._current_key
        if previous is not None and previous != key:
            self.cache.cancel(previous)
        self._current_key = key
        self._generation += 1
        generation = self._generation
        self.loading = True
        try:
            payload = await self.cache.fetch(key, lambda: self._load(state))
        except asyncio.CancelledError:
            if generation != self._generation:
                return
            self.loading = False
            raise
        except TableLoadError as exc:
            if generation == self._generation:
                self.error = exc
                self.loading = False
                logger.warning("crm.client.fetch_failed", extra={"endpoint": self.endpoint, "error": str(exc)})
            return

        if generation != self._generation:
            logger.debug("crm.client.stale_response", extra={"endpoint": self.endpoint})
            return
        self._apply(state, payload)

    async def retry(self) -> None:
        self.cache.invalidate(self.data_key())
        await self.refresh()

    async def _load(self, state: TableState) -> dict[str, Any]:
        try:
            response = await self.client.get(self.endpoint, params=state.to_query_params(), timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise TableLoadError(f"Failed to fetch data: {exc}") from exc
        if response.status_code >= 400:
            raise TableLoadError(_error_message(response, "Failed to fetch data"), response.status_code)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TableLoadError("Failed to fetch data: invalid JSON", response.status_code) from exc
        if not isinstance(payload, dict) or "data" not in payload:
            raise TableLoadError("Failed to fetch data: unexpected response shape", response.status_code)
        return payload

    def _apply(self, state: TableState, payload: Mapping[str, Any]) -> None:
        rows = [dict(row) for row in payload.get("data") or []]
        self._loaded = _Loaded(data=rows, pagination=dict(payload.get("pagination") or {}))
        self.error = None
        self.loading = False

        rowset = replace(state, visible_columns=()).cache_key()
        if self._applied_rowset is not None and rowset != self._applied_rowset:
            self.clear_selection()
        self._applied_rowset = rowset
        logger.info(
            "crm.client.fetch",
            extra={
                "endpoint": self.endpoint,
                "page": state.page,
                "page_size": state.page_size,
                "total": self._loaded.pagination.get("total") if self._loaded.pagination else None,
            },
        )

    async def _commit(self, new_state: TableState) -> bool:
        if new_state == self.state:
            return False
        self.state = new_state
        await self.refresh()
        return True

    # State transitions

    async def toggle_sort(self, key: str) -> None:
        column = next((column for column in self.columns if column.key == key), None)
        if column is None or not column.sortable:
            return
        await self._commit(self.state.toggle_sort(key, multi=self.enable_multi_sort))

    async def go_to_page(self, page: int) -> None:
        upper = max(self.total_pages, 1)
        if page < 1 or page > upper:
            raise ValueError(f"page must be between 1 and {upper}, got {page}")
        await self._commit(self.state.set_page(page))

    async def next_page(self) -> None:
        if self.can_next:
            await self._commit(self.state.set_page(self.state.page + 1))

    async def previous_page(self) -> None:
        if self.can_previous:
            await self._commit(self.state.set_page(self.state.page - 1))

    async def set_page_size(self, page_size: int) -> None:
        await self._commit(self.state.set_page_size(page_size))

    def search(self, text: str) -> None:
        """Queue a search term; it is committed once typing pauses."""
        if not self.enable_search:
            raise TableFeatureDisabled("search")
        self._search_debouncer.push(text)

    async def flush_search(self) -> None:
        await self._search_debouncer.flush()

    async def _commit_search(self, text: str) -> None:
        await self._commit(self.state.set_search(text))

    def _require_filters(self) -> None:
        if not self.enable_filters:
            raise TableFeatureDisabled("filters")

    async def set_filters(self, filters: Sequence[TableFilter]) -> None:
        self._require_filters()
        await self._commit(self.state.set_filters(filters))

    async def add_filter(self, item: TableFilter) -> None:
        self._require_filters()
        await self._commit(self.state.add_filter(item))

    async def remove_filter(self, key: str) -> None:
        self._require_filters()
        await self._commit(self.state.remove_filter(key))

    async def toggle_column(self, key: str) -> None:
        if not self.enable_column_toggle:
            raise TableFeatureDisabled("column_toggle")
        order = [column.key for column in self.columns]
        if key not in order:
            raise KeyError(key)
        await self._commit(self.state.toggle_column(key, order))

    # Selection

    def _emit_selection(self) -> None:
        if self.on_row_select is not None:
            self.on_row_select(self.selected_rows)

    @property
    def selected_rows(self) -> list[Mapping[str, Any]]:
        return [row for row in self.data if str(row.get("id")) in self.selection]

    def select_row(self, row_id: str, selected: bool = True) -> None:
        loaded = {str(row.get("id")) for row in self.data}
        if row_id not in loaded:
            raise KeyError(row_id)
        if selected:
            self.selection.add(row_id)
        else:
            self.selection.discard(row_id)
        self._emit_selection()

    def select_all(self, selected: bool = True) -> None:
        if selected:
            self.selection = {str(row["id"]) for row in self.data if row.get("id") is not None}
        else:
            self.selection = set()
        self._emit_selection()

    def clear_selection(self) -> None:
        if not self.selection:
            return
        self.selection = set()
        self._emit_selection()

    def click_row(self, row: Mapping[str, Any]) -> None:
        if self.on_row_click is not None:
            self.on_row_click(row)

    def view(self, locale: str | None = None) -> TableView:
        return build_view(
            self.columns,
            self.state,
            data=self.data,
            pagination=self.pagination,
            error=self.error,
            loading=self.loading,
            selection=frozenset(self.selection),
            locale=locale or self.locale,
        )

    # Saved views

    async def saved_views(self) -> list[SavedView]:
        if not self.enable_saved_views:
            raise TableFeatureDisabled("saved_views")
        payload = await self.cache.fetch(self.saved_views_key, self._load_saved_views)
        return [SavedView.from_payload(item) for item in payload]

    async def _load_saved_views(self) -> list[dict[str, Any]]:
        try:
            response = await self.client.get(
                SAVED_VIEWS_PATH, params={"endpoint": self.endpoint}, timeout=self.timeout
            )
        except httpx.HTTPError as exc:
            raise TableLoadError(f"Failed to fetch saved views: {exc}") from exc
        if response.status_code >= 400:
            raise TableLoadError(_error_message(response, "Failed to fetch saved views"), response.status_code)
        return list(response.json())

    async def save_view(self, name: str, *, is_default: bool = False) -> SavedView | None:
        if not self.enable_saved_views:
            raise TableFeatureDisabled("saved_views")
        self.save_view_state.start()
        body = {
            "name": name,
            "endpoint": self.endpoint,
            "columns": list(self.state.visible_columns),
            "sorts": [sort.to_dict() for sort in self.state.sorts],
            "filters": [item.to_dict() for item in self.state.filters],
            "pageSize": self.state.page_size,
            "isDefault": is_default,
        }
        try:
            response = await self.client.post(SAVED_VIEWS_PATH, json=body, timeout=self.timeout)
            if response.status_code >= 400:
                raise TableLoadError(_error_message(response, "Failed to save view"), response.status_code)
            view = SavedView.from_payload(response.json())
        except (httpx.HTTPError, TableLoadError, ValueError, KeyError) as exc:
            self.save_view_state.fail(exc)
            logger.warning("crm.client.save_view_failed", extra={"endpoint": self.endpoint, "error": str(exc)})
            return None
        self.cache.invalidate(self.saved_views_key)
        self.save_view_state.succeed()
        return view

    async def load_view(self, view: SavedView | str) -> SavedView | None:
        """Apply a saved view by instance, id or name. Unknown views raise ``SavedViewNotFound``."""
        if not self.enable_saved_views:
            raise TableFeatureDisabled("saved_views")
        self.load_view_state.start()
        if isinstance(view, str):
            try:
                available = await self.saved_views()
            except TableLoadError as exc:
                self.load_view_state.fail(exc)
                return None
            found = next((item for item in available if view in (item.id, item.name)), None)
            if found is None:
                self.load_view_state.fail(SavedViewNotFound(view))
                raise SavedViewNotFound(view)
            view = found
        try:
            new_state = self.state.apply_view(
                columns=view.columns,
                sorts=view.sorts,
                filters=view.filters,
                page_size=view.page_size,
            )
        except ValueError as exc:
            self.load_view_state.fail(exc)
            return None
        self.load_view_state.succeed()
        await self._commit(new_state)
        return view

    # Export

    async def export(self, export_format: ExportFormat, directory: str | Path) -> Path | None:
        """Download the current filtered result set into ``directory``."""
        if not self.enable_export:
            raise TableFeatureDisabled("export")
        if export_format not in ("csv", "pdf"):
            raise ValueError(f"unsupported export format: {export_format}")
        self.export_state.start()
        target = Path(directory) / f"export-{int(time.time() * 1000)}.{export_format}"
        params = {"format": export_format, **self.state.filter_params()}
        try:
            async with self.client.stream(
                "GET", f"{self.endpoint}/export", params=params, timeout=self.timeout
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise TableLoadError(_error_message(response, "Export failed"), response.status_code)
                with target.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
        except (httpx.HTTPError, TableLoadError, OSError) as exc:
            target.unlink(missing_ok=True)
            self.export_state.fail(exc)
            logger.warning("crm.client.export_failed", extra={"endpoint": self.endpoint, "error": str(exc)})
            return None
        self.export_state.succeed()
        logger.info("crm.client.export", extra={"endpoint": self.endpoint, "format": export_format})
        return target

    async def aclose(self) -> None:
        self._search_debouncer.cancel()
        if self._current_key is not None:
            self.cache.cancel(self._current_key)
