from __future__ import annotations

import calendar
import uuid
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from agency_crm import audit
from agency_crm.crm.errors import field_error
from agency_crm.crm.models import (
    CRMAccount,
    CRMContact,
    CRMInvoice,
    CRMOpportunity,
    CRMProduct,
    CRMQuote,
    CRMSubscription,
    utcnow,
)
from agency_crm.crm.schemas import (
    InvoicePayment,
    InvoiceRead,
    ProductRead,
    QuoteRead,
    QuoteStatusChange,
    SubscriptionRead,
)
from agency_crm.crm.service import ActorUser, EntityService, next_document_number

CENT = Decimal("0.01")
ZERO = Decimal("0")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(line_items: list[dict[str, Any]]) -> dict[str, Any]:
    """Price each line and roll the document totals up.

    Discount applies to the gross line amount and tax to the discounted amount.
    Returns the priced lines in JSON safe form next to the four totals.
    """
    subtotal = discount_total = tax_total = ZERO
    priced: list[dict[str, Any]] = []
    for item in line_items:
        quantity = Decimal(str(item.get("quantity", 1)))
        unit_price = Decimal(str(item["unit_price"]))
        gross = _money(quantity * unit_price)
        discount = _money(gross * Decimal(str(item.get("discount_percent", 0))) / 100)
        tax = _money((gross - discount) * Decimal(str(item.get("tax_percent", 0))) / 100)
        subtotal += gross
        discount_total += discount
        tax_total += tax
        priced.append({**item, "line_total": gross - discount + tax})
    return {
        "line_items": audit.json_safe(priced),
        "subtotal": subtotal,
        "discount_total": discount_total,
        "tax_total": tax_total,
        "total": subtotal - discount_total + tax_total,
    }


_FREQUENCY_MONTHS = {"monthly": 1, "quarterly": 3, "annual": 12}


def advance(start: date, billing_frequency: str) -> date:
    months = _FREQUENCY_MONTHS[billing_frequency]
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class ProductService(EntityService[CRMProduct, ProductRead]):
    entity_type = "product"
    model = CRMProduct
    read_model = ProductRead
    list_filters = ("is_active", "billing_frequency", "currency")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        if session.scalar(select(CRMProduct.id).where(CRMProduct.sku == payload["sku"])) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="product with this sku already exists")
        return payload


QUOTE_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "draft": {"sent"},
    "sent": {"approved", "rejected", "expired"},
    "approved": {"accepted", "expired"},
    "rejected": set(),
    "expired": set(),
    "accepted": set(),
}


class QuoteService(EntityService[CRMQuote, QuoteRead]):
    entity_type = "quote"
    model = CRMQuote
    read_model = QuoteRead
    list_filters = ("account_id", "opportunity_id", "status")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload["account_id"], "account_id", "Account")
        self._require_related(session, CRMOpportunity, payload.get("opportunity_id"), "opportunity_id", "Opportunity")
        payload.update(compute_totals(payload["line_items"]))
        payload["quote_number"] = next_document_number(session, CRMQuote, "quote_number", "Q")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMQuote,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if existing.status != "draft":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft quotes can be edited")
        if changes.get("opportunity_id") is not None:
            self._require_related(session, CRMOpportunity, changes["opportunity_id"], "opportunity_id", "Opportunity")
        if "line_items" in changes:
            changes.update(compute_totals(changes["line_items"]))
        return changes

    def change_status(
        self,
        session: Session,
        actor_user: ActorUser,
        quote_id: uuid.UUID,
        dto: QuoteStatusChange,
    ) -> QuoteRead:
        quote = self.repository.require(session, quote_id)
        previous = quote.status
        if dto.status not in QUOTE_STATUS_TRANSITIONS[previous]:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"cannot move quote from {previous} to {dto.status}",
            )
        changes: dict[str, Any] = {"status": dto.status}
        if dto.status == "approved":
            if "crm.quotes.approve" not in actor_user.permissions:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: crm.quotes.approve")
            changes["approved_by"] = actor_user.user_id
            changes["approved_at"] = utcnow()
        quote = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=quote_id,
            expected_row_version=dto.row_version,
            changes=changes,
            operation="status_change",
            correlation_id=actor_user.correlation_id,
            summary=f"quote moved from {previous} to {dto.status}",
        )
        session.commit()
        session.refresh(quote)
        return self.to_read(session, quote)


class InvoiceService(EntityService[CRMInvoice, InvoiceRead]):
    entity_type = "invoice"
    model = CRMInvoice
    read_model = InvoiceRead
    list_filters = ("account_id", "quote_id", "status")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload["account_id"], "account_id", "Account")
        line_items = payload.pop("line_items")
        issue_now = payload.pop("issue")
        issued_on = payload.pop("issued_on")
        quote_id = payload.get("quote_id")
        if quote_id is not None:
            quote = self._require_related(session, CRMQuote, quote_id, "quote_id", "Quote")
            if quote.status not in {"approved", "accepted"}:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="quote must be approved before invoicing")
            if quote.account_id != payload["account_id"]:
                raise field_error("quote_id", "Quote belongs to a different account")
            line_items = quote.line_items
            payload["currency"] = quote.currency
        if not line_items:
            raise field_error("line_items", "At least one line item is required")

        payload.update(compute_totals(line_items))
        payload["invoice_number"] = next_document_number(session, CRMInvoice, "invoice_number", "INV")
        if issue_now or issued_on is not None:
            payload["status"] = "issued"
            payload["issued_at"] = (
                datetime.combine(issued_on, time.min, tzinfo=timezone.utc) if issued_on is not None else utcnow()
            )
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMInvoice,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if existing.status != "draft":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft invoices can be edited")
        if "line_items" in changes:
            changes.update(compute_totals(changes["line_items"]))
        return changes

    def issue(self, session: Session, actor_user: ActorUser, invoice_id: uuid.UUID, row_version: int) -> InvoiceRead:
        invoice = self.repository.require(session, invoice_id)
        if invoice.status != "draft":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="only draft invoices can be issued")
        return self._transition(
            session,
            actor_user,
            invoice_id,
            row_version,
            {"status": "issued", "issued_at": utcnow()},
            operation="issue",
            summary=f"invoice {invoice.invoice_number} issued",
        )

    def record_payment(
        self,
        session: Session,
        actor_user: ActorUser,
        invoice_id: uuid.UUID,
        dto: InvoicePayment,
    ) -> InvoiceRead:
        invoice = self.repository.require(session, invoice_id)
        if invoice.status not in {"issued", "partially_paid", "overdue"}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice is not open for payment")
        paid = invoice.amount_paid + dto.amount
        if paid > invoice.total:
            raise field_error("amount", "Payment exceeds the outstanding balance")
        changes: dict[str, Any] = {"amount_paid": paid}
        if paid == invoice.total:
            changes["status"] = "paid"
            changes["paid_at"] = utcnow()
        else:
            changes["status"] = "partially_paid"
        return self._transition(
            session,
            actor_user,
            invoice_id,
            dto.row_version,
            changes,
            operation="payment",
            summary=f"payment of {dto.amount} {invoice.currency} recorded",
        )

    def void(self, session: Session, actor_user: ActorUser, invoice_id: uuid.UUID, row_version: int) -> InvoiceRead:
        invoice = self.repository.require(session, invoice_id)
        if invoice.status == "void":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice already void")
        if invoice.amount_paid > ZERO:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="invoice has payments and cannot be voided")
        return self._transition(
            session,
            actor_user,
            invoice_id,
            row_version,
            {"status": "void"},
            operation="void",
            summary=f"invoice {invoice.invoice_number} voided",
        )

    def _transition(
        self,
        session: Session,
        actor_user: ActorUser,
        invoice_id: uuid.UUID,
        row_version: int,
        changes: dict[str, Any],
        *,
        operation: str,
        summary: str,
    ) -> InvoiceRead:
        invoice = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=invoice_id,
            expected_row_version=row_version,
            changes=changes,
            operation=operation,
            correlation_id=actor_user.correlation_id,
            summary=summary,
        )
        session.commit()
        session.refresh(invoice)
        return self.to_read(session, invoice)


class SubscriptionService(EntityService[CRMSubscription, SubscriptionRead]):
    entity_type = "subscription"
    model = CRMSubscription
    read_model = SubscriptionRead
    list_filters = ("account_id", "product_id", "status", "auto_renew")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload["account_id"], "account_id", "Account")
        self._require_related(session, CRMContact, payload.get("contact_id"), "contact_id", "Contact")
        product = self._require_related(session, CRMProduct, payload["product_id"], "product_id", "Product")
        if not product.is_active:
            raise field_error("product_id", "Product is not active")
        if payload.get("unit_price") is None:
            payload["unit_price"] = product.unit_price
        if payload.get("currency") is None:
            payload["currency"] = product.currency
        payload["next_renewal_date"] = advance(payload["start_date"], payload["billing_frequency"])
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMSubscription,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if existing.status in {"cancelled", "expired"}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subscription is no longer active")
        if changes.get("contact_id") is not None:
            self._require_related(session, CRMContact, changes["contact_id"], "contact_id", "Contact")
        return changes

    def renew(self, session: Session, actor_user: ActorUser, subscription_id: uuid.UUID, row_version: int) -> SubscriptionRead:
        subscription = self.repository.require(session, subscription_id)
        if subscription.status in {"cancelled", "expired"}:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subscription is no longer active")
        next_renewal = advance(subscription.next_renewal_date, subscription.billing_frequency)
        subscription = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=subscription_id,
            expected_row_version=row_version,
            changes={"next_renewal_date": next_renewal, "status": "active"},
            operation="renew",
            correlation_id=actor_user.correlation_id,
            summary=f"subscription renewed until {next_renewal.isoformat()}",
        )
        session.commit()
        session.refresh(subscription)
        return self.to_read(session, subscription)

    def cancel(self, session: Session, actor_user: ActorUser, subscription_id: uuid.UUID, row_version: int) -> SubscriptionRead:
        subscription = self.repository.require(session, subscription_id)
        if subscription.status == "cancelled":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subscription already cancelled")
        subscription = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=subscription_id,
            expected_row_version=row_version,
            changes={"status": "cancelled", "cancelled_at": utcnow(), "auto_renew": False},
            operation="cancel",
            correlation_id=actor_user.correlation_id,
            summary="subscription cancelled",
        )
        session.commit()
        session.refresh(subscription)
        return self.to_read(session, subscription)


product_service = ProductService()
quote_service = QuoteService()
invoice_service = InvoiceService()
subscription_service = SubscriptionService()
