from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from agency_crm.client.entity_tables import DEAL_COLUMNS, ENTITY_TABLES, STAGE_LABELS, entity_columns
from agency_crm.client.formatters import (
    PLACEHOLDER,
    Badge,
    active_badge,
    default_display,
    enum_badge,
    format_day,
    format_money,
    format_percentage,
    yes_no,
)
from agency_crm.client.i18n import message, pick
from agency_crm.client.rendering import render_cell


@pytest.mark.parametrize("value", [None, "", "   "])
def test_empty_values_render_placeholder(value: object) -> None:
    assert default_display(value) == PLACEHOLDER
    assert format_money(value) == PLACEHOLDER
    assert format_percentage(value) == PLACEHOLDER
    assert format_day(value) == PLACEHOLDER


def test_default_display_joins_lists() -> None:
    assert default_display(["+967 771234567", "+967 712345678"]) == "+967 771234567, +967 712345678"
    assert default_display([]) == PLACEHOLDER
    assert default_display(0) == "0"


def test_format_money_uses_currency_and_grouping() -> None:
    rendered = format_money("1500", locale="en_US")
    assert "1,500.00" in rendered
    assert "SAR" in rendered

    assert "1,500.00" in format_money(Decimal("1500"), currency="USD", locale="en_US")
    assert format_money("not a number") == "not a number"


def test_format_percentage_drops_trailing_zero() -> None:
    assert format_percentage(35.0) == "35%"
    assert format_percentage(12.5) == "12.5%"
    assert format_percentage(0) == "0%"


@pytest.mark.parametrize(
    "value",
    [date(2026, 1, 31), datetime(2026, 1, 31, 22, 15, tzinfo=timezone.utc), "2026-01-31T22:15:00Z", "2026-01-31"],
)
def test_format_day(value: object) -> None:
    assert format_day(value, locale="en") == "31/01/2026"


def test_format_day_keeps_unparseable_text() -> None:
    assert format_day("soon") == "soon"


def test_active_badge_and_yes_no() -> None:
    assert active_badge(True) == Badge("نشط", "default")
    assert active_badge("false", locale="en") == Badge("Inactive", "secondary")
    assert str(active_badge(True, locale="en")) == "Active"

    assert yes_no(True, locale="en") == "Yes"
    assert yes_no("false") == "لا"
    assert yes_no(None) == PLACEHOLDER


def test_enum_badge_falls_back_to_raw_value() -> None:
    labels = STAGE_LABELS["en"]
    assert enum_badge("proposal", labels) == Badge("Proposal", "default")
    assert enum_badge("archived", labels, {"archived": "outline"}) == Badge("archived", "outline")
    assert enum_badge(None, labels) == PLACEHOLDER


def test_messages_and_labels_fall_back_by_locale() -> None:
    assert message("showing", "en-GB", start=1, end=25, total=30) == "Showing 1 to 25 of 30 results"
    assert message("no_data", "fr") == "لا توجد بيانات لعرضها"
    assert pick({"en": "Deal"}, "ar") == "Deal"
    assert pick({"ar": "الصفقة", "en": "Deal"}, "en_US") == "Deal"


def test_deal_columns_render_badges_money_and_percent() -> None:
    columns = {column.key: column for column in DEAL_COLUMNS}
    row = {
        "id": "1",
        "name": "Website redesign",
        "stage": "closed-lost",
        "amount": "45000",
        "currency": "SAR",
        "probability": 0,
        "expectedCloseDate": "2026-03-01",
        "leadSource": None,
    }

    assert render_cell(columns["stage"], row) == Badge(STAGE_LABELS["ar"]["closed-lost"], "destructive")
    assert render_cell(columns["amount"], row) == format_money("45000", currency="SAR")
    assert render_cell(columns["probability"], row) == "0%"
    assert render_cell(columns["expectedCloseDate"], row) == "01/03/2026"
    assert render_cell(columns["leadSource"], row) == PLACEHOLDER
    assert render_cell(columns["name"], row) == "Website redesign"


def test_entity_tables_share_created_at_default_sort() -> None:
    assert set(ENTITY_TABLES) == {"contacts", "companies", "deals", "tickets"}
    for name, table in ENTITY_TABLES.items():
        assert table.default_sort[0].field == "createdAt"
        assert table.default_sort[0].direction == "desc"
        assert "createdAt" in [column.key for column in entity_columns(name)]

    description = next(column for column in entity_columns("tickets") if column.key == "description")
    assert description.visible is False
