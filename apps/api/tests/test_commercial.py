from __future__ import annotations

from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.database import Base, get_db
from agency_crm.core.rbac import resolve_permissions
from agency_crm.crm.api import get_current_user
from agency_crm.crm.commercial import advance, compute_totals
from agency_crm.crm.service import ActorUser
from agency_crm.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _actor(role: str) -> ActorUser:
    return ActorUser(user_id=f"{role}-1", permissions=resolve_permissions([role]), roles=[role], correlation_id="corr-test")


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: _actor("manager")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def account(client: TestClient) -> dict:
    response = client.post("/api/crm/accounts", json={"legal_name": "Acme Trading"})
    assert response.status_code == 201
    return response.json()


LINES = [
    {"description": "Design retainer", "quantity": "2", "unit_price": "100", "discount_percent": "10", "tax_percent": "15"},
    {"description": "Hosting", "unit_price": "49.99"},
]


def _post(client: TestClient, path: str, body: dict, expected: int = 200) -> dict:
    response = client.post(path, json=body)
    assert response.status_code == expected, response.text
    return response.json()


def _create_quote(client: TestClient, account: dict) -> dict:
    return _post(client, "/api/crm/quotes", {"account_id": account["id"], "line_items": LINES}, expected=201)


def _approved_quote(client: TestClient, account: dict) -> dict:
    quote = _create_quote(client, account)
    sent = _post(client, f"/api/crm/quotes/{quote['id']}/status", {"row_version": quote["row_version"], "status": "sent"})
    return _post(client, f"/api/crm/quotes/{quote['id']}/status", {"row_version": sent["row_version"], "status": "approved"})


def test_compute_totals_applies_discount_before_tax() -> None:
    totals = compute_totals([{"quantity": 2, "unit_price": 100, "discount_percent": 10, "tax_percent": 15}])

    assert totals["subtotal"] == Decimal("200.00")
    assert totals["discount_total"] == Decimal("20.00")
    assert totals["tax_total"] == Decimal("27.00")
    assert totals["total"] == Decimal("207.00")
    assert totals["line_items"][0]["line_total"] == "207.00"


@pytest.mark.parametrize(
    ("start", "frequency", "expected"),
    [
        (date(2026, 1, 31), "monthly", date(2026, 2, 28)),
        (date(2028, 1, 31), "monthly", date(2028, 2, 29)),
        (date(2026, 11, 30), "quarterly", date(2027, 2, 28)),
        (date(2026, 3, 15), "annual", date(2027, 3, 15)),
    ],
)
def test_advance_clamps_to_month_end(start: date, frequency: str, expected: date) -> None:
    assert advance(start, frequency) == expected


def test_quote_totals_and_numbering(client: TestClient, account: dict) -> None:
    quote = _create_quote(client, account)

    assert quote["quote_number"].startswith("Q-")
    assert quote["quote_number"].endswith("-0001")
    assert quote["status"] == "draft"
    assert quote["subtotal"] == "249.99"
    assert quote["discount_total"] == "20.00"
    assert quote["tax_total"] == "27.00"
    assert quote["total"] == "256.99"

    empty = client.post("/api/crm/quotes", json={"account_id": account["id"], "line_items": []})
    assert empty.status_code == 422
    assert "line_items" in empty.json()["details"]["field_errors"]


def test_quote_workflow_and_approval_permission(client: TestClient, account: dict) -> None:
    quote = _create_quote(client, account)

    skipped = client.post(f"/api/crm/quotes/{quote['id']}/status", json={"row_version": 1, "status": "approved"})
    assert skipped.status_code == 409
    assert skipped.json()["message"] == "cannot move quote from draft to approved"

    sent = _post(client, f"/api/crm/quotes/{quote['id']}/status", {"row_version": 1, "status": "sent"})

    edit = client.patch(f"/api/crm/quotes/{quote['id']}", json={"row_version": sent["row_version"], "line_items": LINES[:1]})
    assert edit.status_code == 409
    assert edit.json()["message"] == "only draft quotes can be edited"

    app.dependency_overrides[get_current_user] = lambda: _actor("rep")
    denied = client.post(
        f"/api/crm/quotes/{quote['id']}/status",
        json={"row_version": sent["row_version"], "status": "approved"},
    )
    assert denied.status_code == 403
    assert denied.json()["message"] == "Missing permission: crm.quotes.approve"

    app.dependency_overrides[get_current_user] = lambda: _actor("manager")
    approved = _post(
        client,
        f"/api/crm/quotes/{quote['id']}/status",
        {"row_version": sent["row_version"], "status": "approved"},
    )
    assert approved["approved_by"] == "manager-1"
    assert approved["approved_at"] is not None


def test_invoice_from_unapproved_quote_is_rejected(client: TestClient, account: dict) -> None:
    quote = _create_quote(client, account)
    response = client.post("/api/crm/invoices", json={"account_id": account["id"], "quote_id": quote["id"]})
    assert response.status_code == 409
    assert response.json()["message"] == "quote must be approved before invoicing"


def test_invoice_requires_line_items(client: TestClient, account: dict) -> None:
    response = client.post("/api/crm/invoices", json={"account_id": account["id"]})
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["line_items"] == ["At least one line item is required"]


def test_invoice_payment_lifecycle(client: TestClient, account: dict) -> None:
    quote = _approved_quote(client, account)
    invoice = _post(
        client,
        "/api/crm/invoices",
        {"account_id": account["id"], "quote_id": quote["id"], "due_date": "2026-12-31"},
        expected=201,
    )
    assert invoice["status"] == "draft"
    assert invoice["total"] == "256.99"
    assert invoice["invoice_number"].startswith("INV-")

    unpaid = client.post(f"/api/crm/invoices/{invoice['id']}/payments", json={"row_version": 1, "amount": "10"})
    assert unpaid.status_code == 409
    assert unpaid.json()["message"] == "invoice is not open for payment"

    issued = _post(client, f"/api/crm/invoices/{invoice['id']}/issue", {"row_version": invoice["row_version"]})
    assert issued["status"] == "issued"
    assert issued["issued_at"] is not None

    again = client.post(f"/api/crm/invoices/{invoice['id']}/issue", json={"row_version": issued["row_version"]})
    assert again.status_code == 409
    assert again.json()["message"] == "only draft invoices can be issued"

    too_much = client.post(
        f"/api/crm/invoices/{invoice['id']}/payments",
        json={"row_version": issued["row_version"], "amount": "300"},
    )
    assert too_much.status_code == 422
    assert too_much.json()["details"]["field_errors"]["amount"] == ["Payment exceeds the outstanding balance"]

    partial = _post(
        client,
        f"/api/crm/invoices/{invoice['id']}/payments",
        {"row_version": issued["row_version"], "amount": "100"},
    )
    assert partial["status"] == "partially_paid"
    assert partial["amount_paid"] == "100.00"

    void = client.post(f"/api/crm/invoices/{invoice['id']}/void", json={"row_version": partial["row_version"]})
    assert void.status_code == 409
    assert void.json()["message"] == "invoice has payments and cannot be voided"

    paid = _post(
        client,
        f"/api/crm/invoices/{invoice['id']}/payments",
        {"row_version": partial["row_version"], "amount": "156.99"},
    )
    assert paid["status"] == "paid"
    assert paid["paid_at"] is not None


def test_invoice_issued_on_create_can_be_voided(client: TestClient, account: dict) -> None:
    invoice = _post(
        client,
        "/api/crm/invoices",
        {"account_id": account["id"], "line_items": LINES[1:], "issue": True},
        expected=201,
    )
    assert invoice["status"] == "issued"
    assert invoice["total"] == "49.99"

    voided = _post(client, f"/api/crm/invoices/{invoice['id']}/void", {"row_version": invoice["row_version"]})
    assert voided["status"] == "void"


def test_subscription_lifecycle(client: TestClient, account: dict) -> None:
    product = _post(
        client,
        "/api/crm/products",
        {"sku": "HOST-M", "name": "Managed hosting", "unit_price": "49.99", "billing_frequency": "monthly"},
        expected=201,
    )
    duplicate = client.post("/api/crm/products", json={"sku": "HOST-M", "name": "Again", "unit_price": "1"})
    assert duplicate.status_code == 409

    subscription = _post(
        client,
        "/api/crm/subscriptions",
        {"account_id": account["id"], "product_id": product["id"], "start_date": "2026-01-31"},
        expected=201,
    )
    assert subscription["unit_price"] == "49.99"
    assert subscription["currency"] == "SAR"
    assert subscription["next_renewal_date"] == "2026-02-28"

    renewed = _post(
        client,
        f"/api/crm/subscriptions/{subscription['id']}/renew",
        {"row_version": subscription["row_version"]},
    )
    assert renewed["next_renewal_date"] == "2026-03-28"

    cancelled = _post(
        client,
        f"/api/crm/subscriptions/{subscription['id']}/cancel",
        {"row_version": renewed["row_version"]},
    )
    assert cancelled["status"] == "cancelled"
    assert cancelled["auto_renew"] is False
    assert cancelled["cancelled_at"] is not None

    late = client.post(
        f"/api/crm/subscriptions/{subscription['id']}/renew",
        json={"row_version": cancelled["row_version"]},
    )
    assert late.status_code == 409
    assert late.json()["message"] == "subscription is no longer active"


def test_subscription_needs_active_product(client: TestClient, account: dict) -> None:
    product = _post(
        client,
        "/api/crm/products",
        {"sku": "OLD", "name": "Retired plan", "unit_price": "10", "is_active": False},
        expected=201,
    )
    response = client.post(
        "/api/crm/subscriptions",
        json={"account_id": account["id"], "product_id": product["id"], "start_date": "2026-01-01"},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["product_id"] == ["Product is not active"]
