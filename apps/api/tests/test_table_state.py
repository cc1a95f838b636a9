from __future__ import annotations

import json

import pytest

from agency_crm.client.columns import TableColumn
from agency_crm.client.rendering import build_view
from agency_crm.client.state import TableFilter, TableSort, TableState

COLUMNS = (
    TableColumn("name", {"ar": "الاسم", "en": "Name"}),
    TableColumn("email", {"ar": "البريد الإلكتروني", "en": "Email"}),
    TableColumn("phone", {"ar": "الهاتف", "en": "Phone"}, sortable=False),
    TableColumn("createdAt", {"ar": "تاريخ الإنشاء", "en": "Created"}),
)
ORDER = [column.key for column in COLUMNS]


def _state(**kwargs) -> TableState:
    return TableState.initial(ORDER, **kwargs)


def test_sort_cycles_through_asc_desc_and_off() -> None:
    state = _state().set_page(3)

    first = state.toggle_sort("name")
    assert first.sorts == (TableSort("name", "asc"),)
    assert first.page == 1

    second = first.toggle_sort("name")
    assert second.sorts == (TableSort("name", "desc"),)

    third = second.toggle_sort("name")
    assert third.sorts == ()
    assert third.sort_direction("name") is None


def test_multi_sort_keeps_click_order_and_priority() -> None:
    state = _state().toggle_sort("name").toggle_sort("createdAt")
    assert [sort.field for sort in state.sorts] == ["name", "createdAt"]
    assert state.sort_priority("name") == 1
    assert state.sort_priority("createdAt") == 2

    flipped = state.toggle_sort("name")
    assert flipped.sorts == (TableSort("name", "desc"), TableSort("createdAt", "asc"))

    removed = flipped.toggle_sort("name")
    assert removed.sorts == (TableSort("createdAt", "asc"),)
    assert removed.sort_priority("createdAt") == 1

    readded = removed.toggle_sort("name")
    assert readded.sorts == (TableSort("createdAt", "asc"), TableSort("name", "asc"))


def test_single_sort_replaces_previous_column() -> None:
    state = _state().toggle_sort("name", multi=False)
    assert state.sorts == (TableSort("name", "asc"),)

    replaced = state.toggle_sort("createdAt", multi=False)
    assert replaced.sorts == (TableSort("createdAt", "asc"),)

    flipped = replaced.toggle_sort("createdAt", multi=False)
    assert flipped.sorts == (TableSort("createdAt", "desc"),)
    assert flipped.toggle_sort("createdAt", multi=False).sorts == ()


def test_page_bounds_and_page_size_options() -> None:
    state = _state()
    with pytest.raises(ValueError):
        state.set_page(0)
    with pytest.raises(ValueError):
        state.set_page_size(30)
    with pytest.raises(ValueError):
        TableState.initial(ORDER, page_size=7)

    resized = state.set_page(2).set_page_size(50)
    assert resized.page_size == 50
    assert resized.page == 1


def test_result_set_changes_reset_page_but_column_toggle_does_not() -> None:
    state = _state().set_page(4)
    assert state.set_search("sara").page == 1
    assert state.set_filters([TableFilter("isActive", "eq", True)]).page == 1
    assert state.add_filter(TableFilter("department", "contains", "Sales")).page == 1
    assert state.remove_filter("department").page == 1
    assert state.toggle_column("phone", ORDER).page == 4


def test_add_filter_replaces_existing_filter_on_same_field() -> None:
    state = _state().add_filter(TableFilter("department", "eq", "Sales"))
    state = state.add_filter(TableFilter("isActive", "eq", True))
    state = state.add_filter(TableFilter("department", "contains", "Ops"))

    assert state.filters == (
        TableFilter("isActive", "eq", True),
        TableFilter("department", "contains", "Ops"),
    )


def test_column_toggle_preserves_definition_order() -> None:
    state = _state()
    hidden = state.toggle_column("email", ORDER).toggle_column("name", ORDER)
    assert hidden.visible_columns == ("phone", "createdAt")

    shown = hidden.toggle_column("email", ORDER).toggle_column("name", ORDER)
    assert shown.visible_columns == ("name", "email", "phone", "createdAt")


def test_query_params_are_json_encoded() -> None:
    state = _state(sorts=[TableSort("createdAt", "desc")]).add_filter(TableFilter("isActive", "eq", True))
    params = state.set_search("ali").to_query_params()

    assert params["page"] == "1"
    assert params["pageSize"] == "25"
    assert params["search"] == "ali"
    assert json.loads(params["sorts"]) == [{"field": "createdAt", "direction": "desc"}]
    assert json.loads(params["filters"]) == [{"field": "isActive", "operator": "eq", "value": True}]
    assert json.loads(params["columns"]) == ORDER


def test_cache_key_ignores_page_size_options() -> None:
    left = TableState.initial(ORDER, page_size_options=(10, 25))
    right = TableState.initial(ORDER, page_size_options=(25, 50, 100))
    assert left == right
    assert left.cache_key() == right.cache_key()
    assert left.cache_key() != left.set_page(2).cache_key()


def test_view_footer_reports_visible_range() -> None:
    state = _state().set_page(2)
    view = build_view(
        COLUMNS,
        state,
        data=[{"id": str(index), "name": f"Contact {index}"} for index in range(5)],
        pagination={"total": 30, "totalPages": 2, "page": 2, "pageSize": 25},
        locale="en",
    )

    assert view.footer is not None
    assert view.footer.start == 26
    assert view.footer.end == 30
    assert view.footer.summary == "Showing 26 to 30 of 30 results"
    assert view.footer.can_previous is True
    assert view.footer.can_next is False
    assert view.placeholder is None
    assert [header.label for header in view.headers] == ["Name", "Email", "Phone", "Created"]


def test_view_arabic_summary_and_sort_indicators() -> None:
    state = _state().toggle_sort("name")
    view = build_view(
        COLUMNS,
        state,
        data=[{"id": "1", "name": "سارة", "email": None}],
        pagination={"total": 1, "totalPages": 1},
    )

    assert view.footer is not None
    assert view.footer.summary == "عرض 1 إلى 1 من 1 نتيجة"
    name_header = view.headers[0]
    assert name_header.label == "الاسم"
    assert name_header.direction == "asc"
    assert name_header.priority == 1
    assert view.headers[2].sortable is False
    cells = {cell.key: cell.display for cell in view.rows[0].cells}
    assert cells["name"] == "سارة"
    assert cells["email"] == "—"


def test_empty_result_spans_all_visible_columns_plus_selection() -> None:
    state = _state().toggle_column("phone", ORDER)
    view = build_view(COLUMNS, state, data=[], pagination={"total": 0, "totalPages": 0})

    assert view.rows == ()
    assert view.placeholder is not None
    assert view.placeholder.text == "لا توجد بيانات لعرضها"
    assert view.placeholder.colspan == len(state.visible_columns) + 1 == 4
    assert view.footer is not None
    assert view.footer.start == 0
    assert view.footer.end == 0


def test_empty_result_with_every_column_hidden() -> None:
    state = TableState.initial([])
    view = build_view(COLUMNS, state, data=[], pagination=None, locale="en")

    assert view.headers == ()
    assert view.placeholder is not None
    assert view.placeholder.colspan == 1
    assert view.placeholder.text == "No data to display"


def test_error_view_hides_rows_and_footer() -> None:
    view = build_view(
        COLUMNS,
        _state(),
        data=[{"id": "1", "name": "Stale"}],
        pagination={"total": 1, "totalPages": 1},
        error="boom",
        locale="en",
    )

    assert view.error == "Failed to load data: boom"
    assert view.rows == ()
    assert view.placeholder is None
    assert view.footer is None


def test_selected_rows_are_flagged() -> None:
    view = build_view(
        COLUMNS,
        _state(),
        data=[{"id": "a", "name": "A"}, {"id": "b", "name": "B"}],
        pagination={"total": 2, "totalPages": 1},
        selection=frozenset({"b"}),
    )
    assert [row.selected for row in view.rows] == [False, True]
    assert view.selected_count == 1
