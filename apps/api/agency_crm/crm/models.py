from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agency_crm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class LifecycleColumns:
    """Identity, timestamps, soft delete marker and optimistic version shared by every CRM entity."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")


class CRMUser(LifecycleColumns, Base):
    __tablename__ = "crm_user"

    email: Mapped[str] = mapped_column(String(320), nullable=False)
    full_name: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="rep", server_default="rep")
    team_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_team.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    team: Mapped[CRMTeam | None] = relationship("CRMTeam", back_populates="members", foreign_keys=[team_id])

    __table_args__ = (
        UniqueConstraint("email", name="uq_crm_user_email"),
        CheckConstraint("role IN ('admin', 'manager', 'rep', 'support', 'marketing')", name="ck_crm_user_role"),
    )


class CRMTeam(LifecycleColumns, Base):
    __tablename__ = "crm_team"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    manager_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_user.id", ondelete="SET NULL", use_alter=True, name="fk_crm_team_manager"),
        nullable=True,
    )
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)

    members: Mapped[list[CRMUser]] = relationship(
        "CRMUser",
        back_populates="team",
        foreign_keys="CRMUser.team_id",
    )


class CRMAccount(LifecycleColumns, Base):
    __tablename__ = "crm_account"

    legal_name: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    account_type: Mapped[str] = mapped_column(String(32), nullable=False, default="prospect", server_default="prospect")
    industry: Mapped[str | None] = mapped_column(String(128), nullable=True)
    size_tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    owner_team_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_team.id", ondelete="SET NULL"),
        nullable=True,
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    parent_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    tax_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    billing_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    shipping_address: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    annual_revenue: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    number_of_employees: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    parent: Mapped[CRMAccount | None] = relationship("CRMAccount", remote_side="CRMAccount.id")
    contacts: Mapped[list[CRMContact]] = relationship("CRMContact", back_populates="account")
    opportunities: Mapped[list[CRMOpportunity]] = relationship("CRMOpportunity", back_populates="account")

    __table_args__ = (
        Index("ix_crm_account_normalized_name", "normalized_name"),
        Index("ix_crm_account_created_at", "created_at"),
        Index("ix_crm_account_parent_account_id", "parent_account_id"),
    )


class CRMContact(LifecycleColumns, Base):
    __tablename__ = "crm_contact"

    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="RESTRICT"),
        nullable=True,
    )
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    primary_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    mx_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    phones: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    channels: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    opt_in_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    opt_in_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    utm: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    job_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    department: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    account: Mapped[CRMAccount | None] = relationship("CRMAccount", back_populates="contacts")

    __table_args__ = (
        Index("ix_crm_contact_account_id", "account_id"),
        Index("ix_crm_contact_primary_email", "primary_email"),
        Index("ix_crm_contact_created_at", "created_at"),
    )


class CRMLead(LifecycleColumns, Base):
    __tablename__ = "crm_lead"

    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    company_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    lead_source: Mapped[str] = mapped_column(String(32), nullable=False, default="website", server_default="website")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="new", server_default="new")
    rating: Mapped[str | None] = mapped_column(String(8), nullable=True)
    lead_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    fit_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    engagement_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    estimated_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    utm: Mapped[dict[str, str] | None] = mapped_column(JSON, nullable=True)
    unqualified_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    converted_opportunity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunity.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "converted_at IS NOT NULL OR (converted_contact_id IS NULL AND converted_account_id IS NULL"
            " AND converted_opportunity_id IS NULL)",
            name="ck_crm_lead_conversion_requires_converted_at",
        ),
        CheckConstraint("probability BETWEEN 0 AND 100", name="ck_crm_lead_probability_range"),
        Index("ix_crm_lead_status", "status"),
        Index("ix_crm_lead_created_at", "created_at"),
    )


class CRMOpportunity(LifecycleColumns, Base):
    __tablename__ = "crm_opportunity"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    stage: Mapped[str] = mapped_column(String(32), nullable=False, default="prospecting", server_default="prospecting")
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"), server_default="0")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default="10")
    forecast_category: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pipeline", server_default="pipeline"
    )
    lead_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    expected_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_close_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    stage_entered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_won: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    loss_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_step: Mapped[str | None] = mapped_column(Text, nullable=True)

    account: Mapped[CRMAccount] = relationship("CRMAccount", back_populates="opportunities")

    __table_args__ = (
        CheckConstraint(
            "(stage = 'closed-won' AND is_closed AND is_won)"
            " OR (stage = 'closed-lost' AND is_closed AND NOT is_won)"
            " OR (stage NOT IN ('closed-won', 'closed-lost') AND NOT is_closed AND NOT is_won)",
            name="ck_crm_opportunity_stage_flags",
        ),
        CheckConstraint("probability BETWEEN 0 AND 100", name="ck_crm_opportunity_probability_range"),
        Index("ix_crm_opportunity_account_id", "account_id"),
        Index("ix_crm_opportunity_stage", "stage"),
        Index("ix_crm_opportunity_created_at", "created_at"),
    )


class CRMTicket(LifecycleColumns, Base):
    __tablename__ = "crm_ticket"

    ticket_number: Mapped[str] = mapped_column(String(32), nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium", server_default="medium")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general", server_default="general")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", server_default="open")
    sla_target: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sla_breached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    first_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    satisfaction: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("ticket_number", name="uq_crm_ticket_number"),
        CheckConstraint("satisfaction IS NULL OR satisfaction BETWEEN 1 AND 5", name="ck_crm_ticket_satisfaction"),
        Index("ix_crm_ticket_status", "status"),
        Index("ix_crm_ticket_created_at", "created_at"),
    )


class CRMProduct(LifecycleColumns, Base):
    __tablename__ = "crm_product"

    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    billing_frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    __table_args__ = (UniqueConstraint("sku", name="uq_crm_product_sku"),)


class CRMQuote(LifecycleColumns, Base):
    __tablename__ = "crm_quote"

    quote_number: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    opportunity_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_opportunity.id", ondelete="SET NULL"),
        nullable=True,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", server_default="draft")
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("quote_number", name="uq_crm_quote_number"),)


class CRMInvoice(LifecycleColumns, Base):
    __tablename__ = "crm_invoice"

    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quote_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_quote.id", ondelete="SET NULL"),
        nullable=True,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    discount_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    tax_total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", server_default="draft")
    issued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("invoice_number", name="uq_crm_invoice_number"),)


class CRMSubscription(LifecycleColumns, Base):
    __tablename__ = "crm_subscription"

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_account.id", ondelete="RESTRICT"),
        nullable=False,
    )
    contact_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_contact.id", ondelete="SET NULL"),
        nullable=True,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_product.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="SAR", server_default="SAR")
    billing_frequency: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active", server_default="active")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_renewal_date: Mapped[date] = mapped_column(Date, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CRMActivity(LifecycleColumns, Base):
    __tablename__ = "crm_activity"

    activity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_crm_activity_entity", "entity_type", "entity_id"),)


class CRMAuditLog(Base):
    __tablename__ = "crm_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    operation: Mapped[str] = mapped_column(String(32), nullable=False)
    before: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    after: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    changed_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    correlation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_crm_audit_log_entity", "entity_type", "entity_id"),
        Index("ix_crm_audit_log_occurred_at", "occurred_at"),
    )


class CRMTimelineEvent(Base):
    __tablename__ = "crm_timeline_event"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    actor_user_id: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_crm_timeline_event_entity", "entity_type", "entity_id", "occurred_at"),)


class CRMTag(LifecycleColumns, Base):
    __tablename__ = "crm_tag"

    name: Mapped[str] = mapped_column(String(64), nullable=False)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)

    __table_args__ = (UniqueConstraint("name", name="uq_crm_tag_name"),)


class CRMEntityTag(Base):
    __tablename__ = "crm_entity_tag"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tag_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("crm_tag.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tag: Mapped[CRMTag] = relationship("CRMTag")

    __table_args__ = (
        UniqueConstraint("tag_id", "entity_type", "entity_id", name="uq_crm_entity_tag_triplet"),
        Index("ix_crm_entity_tag_entity", "entity_type", "entity_id"),
    )


class CRMCustomField(LifecycleColumns, Base):
    __tablename__ = "crm_custom_field"

    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    field_key: Mapped[str] = mapped_column(String(64), nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    data_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    allowed_values: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    __table_args__ = (UniqueConstraint("entity_type", "field_key", name="uq_crm_custom_field_entity_key"),)


class CRMCustomValue(Base):
    __tablename__ = "crm_custom_value"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    field_key: Mapped[str] = mapped_column(String(64), nullable=False)
    value_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    value_number: Mapped[Decimal | None] = mapped_column(Numeric(18, 4), nullable=True)
    value_bool: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    value_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "field_key", name="uq_crm_custom_value_entity_field"),
    )


class CRMSavedView(LifecycleColumns, Base):
    __tablename__ = "crm_saved_view"

    user_id: Mapped[str] = mapped_column(Text, nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    columns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sorts: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    filters: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    page_size: Mapped[int] = mapped_column(Integer, nullable=False, default=25, server_default="25")
    search: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")

    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", "name", name="uq_crm_saved_view_user_endpoint_name"),
        Index("ix_crm_saved_view_user_endpoint", "user_id", "endpoint"),
    )


ENTITY_MODELS: dict[str, type[Base]] = {
    "user": CRMUser,
    "team": CRMTeam,
    "account": CRMAccount,
    "contact": CRMContact,
    "lead": CRMLead,
    "opportunity": CRMOpportunity,
    "ticket": CRMTicket,
    "product": CRMProduct,
    "quote": CRMQuote,
    "invoice": CRMInvoice,
    "subscription": CRMSubscription,
    "activity": CRMActivity,
}
