from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Literal, Mapping

from babel.dates import format_date as babel_format_date
from babel.numbers import format_currency as babel_format_currency

from agency_crm.client.i18n import message

PLACEHOLDER = "—"

BadgeVariant = Literal["default", "secondary", "destructive", "outline"]


@dataclass(frozen=True)
class Badge:
    label: str
    variant: BadgeVariant = "default"

    def __str__(self) -> str:
        return self.label


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def default_display(value: Any) -> str:
    if is_empty(value):
        return PLACEHOLDER
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) if value else PLACEHOLDER
    return str(value)


def _to_decimal(value: Any) -> Decimal | None:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def format_money(value: Any, currency: str = "SAR", locale: str = "ar_SA") -> str:
    if is_empty(value):
        return PLACEHOLDER
    amount = _to_decimal(value)
    if amount is None:
        return str(value)
    return babel_format_currency(amount, currency, locale=locale)


def format_percentage(value: Any) -> str:
    if is_empty(value):
        return PLACEHOLDER
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return f"{value}%"


def _to_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def format_day(value: Any, locale: str = "ar") -> str:
    """Render a date or ISO timestamp as ``dd/MM/yyyy``."""
    if is_empty(value):
        return PLACEHOLDER
    parsed = _to_date(value)
    if parsed is None:
        return str(value)
    return babel_format_date(parsed, format="dd/MM/yyyy", locale=locale)


def enum_badge(
    value: Any,
    labels: Mapping[str, str],
    variants: Mapping[str, BadgeVariant] | None = None,
) -> Badge | str:
    if is_empty(value):
        return PLACEHOLDER
    key = str(value)
    return Badge(label=labels.get(key, key), variant=(variants or {}).get(key, "default"))


def active_badge(value: Any, locale: str = "ar") -> Badge:
    active = value is True or str(value).lower() == "true"
    if active:
        return Badge(label=message("active", locale), variant="default")
    return Badge(label=message("inactive", locale), variant="secondary")


def yes_no(value: Any, locale: str = "ar") -> str:
    if value is None:
        return PLACEHOLDER
    truthy = value is True or str(value).lower() == "true"
    return message("yes" if truthy else "no", locale)
