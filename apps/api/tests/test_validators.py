from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from pydantic import TypeAdapter, ValidationError

from agency_crm.crm.schemas import ContactCreate, InvoiceCreate, InvoicePayment, LeadCreate
from agency_crm.crm.validators import (
    InternationalPhone,
    currency_amount,
    enhanced_email,
    field_errors,
    phone_with_country_code,
)

EMAIL = TypeAdapter(enhanced_email("Email"))
YEMEN_PHONE = TypeAdapter(phone_with_country_code("+967"))
PHONE = TypeAdapter(InternationalPhone)


def _messages(exc: pytest.ExceptionInfo[ValidationError]) -> dict[str, list[str]]:
    return field_errors(exc.value)


def test_email_is_trimmed_and_normalized() -> None:
    assert EMAIL.validate_python("  sara@Acme.SA ") == "sara@acme.sa"


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("sara..ali@acme.sa", "Email cannot contain consecutive dots"),
        (f"{'a' * 65}@acme.sa", "Email local part is too long (max 64 characters)"),
        ("not-an-email", "Please enter a valid email address"),
        ("   ", "Email is required"),
    ],
)
def test_email_rejections(value: str, message: str) -> None:
    with pytest.raises(ValidationError) as exc:
        EMAIL.validate_python(value)
    assert _messages(exc) == {"__root__": [message]}


def test_country_code_phone() -> None:
    assert YEMEN_PHONE.validate_python(" +967 771234567 ") == "+967 771234567"
    assert YEMEN_PHONE.validate_python("+96777123456") == "+96777123456"

    for bad in ("+966 771234567", "771234567", "+967 7712"):
        with pytest.raises(ValidationError) as exc:
            YEMEN_PHONE.validate_python(bad)
        assert _messages(exc) == {"__root__": ["Phone number must start with +967 followed by 8-9 digits"]}


def test_international_phone_requires_country_code() -> None:
    assert PHONE.validate_python("+966500000000") == "+966500000000"
    with pytest.raises(ValidationError) as exc:
        PHONE.validate_python("0500000000")
    assert _messages(exc) == {"__root__": ["Phone number must include a country code, e.g. +967 771234567"]}


def test_currency_amount_bounds_and_rounding() -> None:
    adapter = TypeAdapter(currency_amount("SAR", min_value=10, max_value=100, field_name="Budget"))

    assert adapter.validate_python("10.005") == Decimal("10.01")
    assert adapter.validate_python(Decimal("99.994")) == Decimal("99.99")

    with pytest.raises(ValidationError) as exc:
        adapter.validate_python("9.99")
    assert _messages(exc) == {"__root__": ["Budget must be at least 10 SAR"]}

    with pytest.raises(ValidationError) as exc:
        adapter.validate_python("100.5")
    assert _messages(exc) == {"__root__": ["Budget cannot exceed 100 SAR"]}


def test_schema_errors_are_keyed_by_field_path() -> None:
    with pytest.raises(ValidationError) as exc:
        ContactCreate.model_validate(
            {
                "first_name": "  ",
                "last_name": "Ali",
                "primary_email": "a..b@acme.sa",
                "phones": ["+966500000000", "0500"],
            }
        )
    errors = _messages(exc)

    assert set(errors) == {"first_name", "primary_email", "phones.1"}
    assert errors["primary_email"] == ["Email cannot contain consecutive dots"]
    assert errors["phones.1"] == ["Phone number must include a country code, e.g. +967 771234567"]


def test_lead_phone_and_estimated_value() -> None:
    lead = LeadCreate.model_validate(
        {"first_name": "Omar", "last_name": "Saleh", "phone": "+967 771234567", "estimated_value": "1500.499"}
    )
    assert lead.estimated_value == Decimal("1500.50")

    with pytest.raises(ValidationError) as exc:
        LeadCreate.model_validate({"first_name": "Omar", "last_name": "Saleh", "estimated_value": "-1"})
    assert _messages(exc) == {"estimated_value": ["Estimated value must be at least 0 SAR"]}


def test_payment_amount_must_be_positive() -> None:
    with pytest.raises(ValidationError) as exc:
        InvoicePayment.model_validate({"row_version": 1, "amount": "0"})
    assert _messages(exc) == {"amount": ["Payment amount must be at least 0.01 SAR"]}


def test_due_date_cannot_precede_issue_date() -> None:
    account_id = "00000000-0000-0000-0000-000000000001"
    with pytest.raises(ValidationError) as exc:
        InvoiceCreate.model_validate(
            {"account_id": account_id, "issued_on": date(2026, 5, 10), "due_date": date(2026, 5, 1)}
        )
    assert _messages(exc) == {"due_date": ["Due date must be on or after the issue date"]}

    ok = InvoiceCreate.model_validate(
        {"account_id": account_id, "issued_on": date(2026, 5, 10), "due_date": date(2026, 5, 10)}
    )
    assert ok.due_date == date(2026, 5, 10)


def test_field_errors_strips_request_prefixes() -> None:
    grouped = field_errors(
        [
            {"loc": ("body", "line_items", 0, "unit_price"), "msg": "Value error, too low"},
            {"loc": ("query", "pageSize"), "msg": "Input should be greater than or equal to 1"},
            {"loc": (), "msg": "broken"},
        ],
        strip_prefix=("body", "query"),
    )
    assert grouped == {
        "line_items.0.unit_price": ["too low"],
        "pageSize": ["Input should be greater than or equal to 1"],
        "__root__": ["broken"],
    }
