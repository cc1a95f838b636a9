"""Reusable field validators shared by the CRM insert and update schemas.

Each factory returns an ``Annotated`` type so the same contract (message text,
bounds, pattern) is applied wherever the field appears, instead of repeating
ad hoc regexes per model.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BeforeValidator, Field, ValidationError
from pydantic_core import PydanticCustomError

INTERNATIONAL_PHONE_PATTERN = r"^\+\d{1,4}\s?\d{1,14}$"
_INTERNATIONAL_PHONE_RE = re.compile(INTERNATIONAL_PHONE_PATTERN)

EMAIL_LOCAL_PART_MAX = 64
EMAIL_DOMAIN_MAX = 253


def _check_email(value: str, field_name: str) -> str:
    candidate = value.strip()
    if not candidate:
        raise PydanticCustomError("email_required", "{field} is required", {"field": field_name})
    if ".." in candidate:
        raise PydanticCustomError(
            "email_consecutive_dots",
            "{field} cannot contain consecutive dots",
            {"field": field_name},
        )
    local_part, _, domain = candidate.rpartition("@")
    if len(local_part) > EMAIL_LOCAL_PART_MAX:
        raise PydanticCustomError(
            "email_local_part_too_long",
            "{field} local part is too long (max 64 characters)",
            {"field": field_name},
        )
    if len(domain) > EMAIL_DOMAIN_MAX:
        raise PydanticCustomError(
            "email_domain_too_long",
            "{field} domain is too long (max 253 characters)",
            {"field": field_name},
        )
    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError:
        raise PydanticCustomError(
            "email_invalid",
            "Please enter a valid {field} address",
            {"field": field_name.lower()},
        ) from None
    return validated.normalized


def enhanced_email(field_name: str = "Email") -> Any:
    def check(value: str) -> str:
        return _check_email(value, field_name)

    return Annotated[str, AfterValidator(check)]


def phone_with_country_code(country_code: str = "+967", field_name: str = "Phone number") -> Any:
    pattern = re.compile(rf"^{re.escape(country_code)}\s?\d{{8,9}}$")

    def check(value: str) -> str:
        candidate = value.strip()
        if not pattern.match(candidate):
            raise PydanticCustomError(
                "phone_country_code",
                "{field} must start with {code} followed by 8-9 digits",
                {"field": field_name, "code": country_code},
            )
        return candidate

    return Annotated[str, AfterValidator(check)]


def _check_international_phone(value: str) -> str:
    candidate = value.strip()
    if not _INTERNATIONAL_PHONE_RE.match(candidate):
        raise PydanticCustomError(
            "phone_format",
            "Phone number must include a country code, e.g. +967 771234567",
        )
    return candidate


InternationalPhone = Annotated[str, AfterValidator(_check_international_phone)]


def currency_amount(
    currency: str = "YER",
    min_value: Decimal | int = 0,
    max_value: Decimal | int = 999_999_999,
    field_name: str = "Amount",
) -> Any:
    lower = Decimal(min_value)
    upper = Decimal(max_value)

    def check(value: Decimal) -> Decimal:
        if value < lower:
            raise PydanticCustomError(
                "currency_min",
                "{field} must be at least {min} {currency}",
                {"field": field_name, "min": str(lower), "currency": currency},
            )
        if value > upper:
            raise PydanticCustomError(
                "currency_max",
                "{field} cannot exceed {max} {currency}",
                {"field": field_name, "max": str(upper), "currency": currency},
            )
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    return Annotated[Decimal, AfterValidator(check)]


def _strip(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


Percentage = Annotated[int, Field(ge=0, le=100)]
Score = Annotated[int, Field(ge=0, le=100)]
Rating = Annotated[int, Field(ge=1, le=5)]
RequiredText = Annotated[str, BeforeValidator(_strip), Field(min_length=1, max_length=255)]
OptionalText = Annotated[str, BeforeValidator(_strip), Field(max_length=255)]
LongText = Annotated[str, Field(max_length=2000)]
CurrencyCode = Annotated[str, Field(pattern=r"^[A-Z]{3}$")]
Money = currency_amount("SAR")


def ensure_date_range(
    start: date | datetime | None,
    end: date | datetime | None,
    *,
    end_label: str = "End date",
    start_label: str = "start date",
) -> None:
    """Raise when ``end`` precedes ``start``.

    Call it from a field validator on the end field so the error lands on that path.
    """
    if start is None or end is None:
        return
    if end < start:
        raise PydanticCustomError(
            "date_range",
            "{end} must be on or after the {start}",
            {"end": end_label, "start": start_label},
        )


def field_errors(exc: ValidationError | list[dict[str, Any]], *, strip_prefix: tuple[str, ...] = ()) -> dict[str, list[str]]:
    """Group pydantic errors by dotted field path, keeping the human readable messages."""
    items = exc.errors() if isinstance(exc, ValidationError) else exc
    grouped: dict[str, list[str]] = {}
    for item in items:
        loc = [str(part) for part in item.get("loc", ())]
        while loc and loc[0] in strip_prefix:
            loc = loc[1:]
        path = ".".join(loc) or "__root__"
        message = str(item.get("msg", "Invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        grouped.setdefault(path, []).append(message)
    return grouped
