from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from agency_crm.crm.validators import (
    CurrencyCode,
    InternationalPhone,
    LongText,
    Money,
    OptionalText,
    Percentage,
    Rating,
    RequiredText,
    Score,
    currency_amount,
    enhanced_email,
    ensure_date_range,
    phone_with_country_code,
)


UserRole = Literal["admin", "manager", "rep", "support", "marketing"]
AccountType = Literal["customer", "prospect", "partner", "vendor", "competitor"]
SizeTier = Literal["micro", "smb", "mid", "ent"]
OptInStatus = Literal["opted_in", "opted_out", "pending"]
LeadSource = Literal["website", "referral", "advertising", "cold-call", "social-media", "webinar", "event", "other"]
LeadStatus = Literal["new", "contacted", "qualified", "unqualified", "nurture", "converted"]
LeadRating = Literal["hot", "warm", "cold"]
OpportunityStage = Literal["prospecting", "qualification", "proposal", "negotiation", "closed-won", "closed-lost"]
ForecastCategory = Literal["committed", "best_case", "pipeline", "omitted"]
TicketPriority = Literal["low", "medium", "high", "urgent"]
TicketCategory = Literal["general", "technical", "billing", "feature-request", "bug"]
TicketStatus = Literal["open", "in-progress", "pending", "resolved", "closed"]
BillingFrequency = Literal["monthly", "quarterly", "annual"]
SubscriptionStatus = Literal["trial", "active", "past_due", "cancelled", "expired"]
QuoteStatus = Literal["draft", "sent", "approved", "rejected", "expired", "accepted"]
InvoiceStatus = Literal["draft", "issued", "partially_paid", "paid", "overdue", "void"]
ActivityType = Literal["call", "meeting", "task", "note", "email"]
CustomFieldDataType = Literal["text", "number", "bool", "date", "select"]
EntityType = Literal[
    "user",
    "team",
    "account",
    "contact",
    "lead",
    "opportunity",
    "ticket",
    "product",
    "quote",
    "invoice",
    "subscription",
    "activity",
]

ContactEmail = enhanced_email("Email")
LeadEmail = enhanced_email("Email")
UserEmail = enhanced_email("Email")
LeadPhone = phone_with_country_code("+967")
EstimatedValue = currency_amount("SAR", field_name="Estimated value")
DealAmount = currency_amount("SAR", field_name="Amount")
PaymentAmount = currency_amount("SAR", min_value=Decimal("0.01"), field_name="Payment amount")
Quantity = Annotated[Decimal, Field(gt=0, le=1_000_000)]
PercentRate = Annotated[Decimal, Field(ge=0, le=100)]


class Address(BaseModel):
    line1: RequiredText
    line2: OptionalText | None = None
    city: RequiredText
    region: OptionalText | None = None
    postal_code: Annotated[str, Field(max_length=20)] | None = None
    country: Annotated[str, Field(pattern=r"^[A-Z]{2}$")]


class ContactChannels(BaseModel):
    email: bool = True
    phone: bool = False
    whatsapp: bool = False
    sms: bool = False


class Utm(BaseModel):
    source: OptionalText | None = None
    medium: OptionalText | None = None
    campaign: OptionalText | None = None
    term: OptionalText | None = None
    content: OptionalText | None = None


class LineItem(BaseModel):
    description: RequiredText
    product_id: UUID | None = None
    quantity: Quantity = Decimal("1")
    unit_price: Money
    discount_percent: PercentRate = Decimal("0")
    tax_percent: PercentRate = Decimal("0")


class VersionedUpdate(BaseModel):
    row_version: int = Field(ge=1)


class UserCreate(BaseModel):
    email: UserEmail
    full_name: RequiredText
    role: UserRole = "rep"
    team_id: UUID | None = None
    is_active: bool = True


class UserUpdate(VersionedUpdate):
    full_name: RequiredText | None = None
    role: UserRole | None = None
    team_id: UUID | None = None
    is_active: bool | None = None


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    full_name: str
    role: UserRole
    team_id: UUID | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class TeamCreate(BaseModel):
    name: RequiredText
    manager_id: UUID | None = None
    region: OptionalText | None = None


class TeamUpdate(VersionedUpdate):
    name: RequiredText | None = None
    manager_id: UUID | None = None
    region: OptionalText | None = None


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    manager_id: UUID | None
    region: str | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class AccountCreate(BaseModel):
    legal_name: RequiredText
    account_type: AccountType = "prospect"
    industry: OptionalText | None = None
    size_tier: SizeTier | None = None
    region: OptionalText | None = None
    owner_team_id: UUID | None = None
    owner_id: UUID | None = None
    parent_account_id: UUID | None = None
    tax_id: Annotated[str, Field(max_length=64)] | None = None
    website: OptionalText | None = None
    phone: InternationalPhone | None = None
    email: ContactEmail | None = None
    billing_address: Address | None = None
    shipping_address: Address | None = None
    annual_revenue: Money | None = None
    number_of_employees: Annotated[int, Field(ge=0)] | None = None
    currency: CurrencyCode = "SAR"
    is_active: bool = True
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class AccountUpdate(VersionedUpdate):
    legal_name: RequiredText | None = None
    account_type: AccountType | None = None
    industry: OptionalText | None = None
    size_tier: SizeTier | None = None
    region: OptionalText | None = None
    owner_team_id: UUID | None = None
    owner_id: UUID | None = None
    parent_account_id: UUID | None = None
    tax_id: Annotated[str, Field(max_length=64)] | None = None
    website: OptionalText | None = None
    phone: InternationalPhone | None = None
    email: ContactEmail | None = None
    billing_address: Address | None = None
    shipping_address: Address | None = None
    annual_revenue: Money | None = None
    number_of_employees: Annotated[int, Field(ge=0)] | None = None
    currency: CurrencyCode | None = None
    is_active: bool | None = None
    custom_fields: dict[str, Any] | None = None


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    legal_name: str
    normalized_name: str
    account_type: AccountType
    industry: str | None
    size_tier: SizeTier | None
    region: str | None
    owner_team_id: UUID | None
    owner_id: UUID | None
    parent_account_id: UUID | None
    tax_id: str | None
    website: str | None
    phone: str | None
    email: str | None
    billing_address: dict[str, Any] | None
    shipping_address: dict[str, Any] | None
    annual_revenue: Decimal | None
    number_of_employees: int | None
    currency: str
    is_active: bool
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class ContactCreate(BaseModel):
    account_id: UUID | None = None
    first_name: RequiredText
    last_name: RequiredText
    primary_email: ContactEmail | None = None
    phones: list[InternationalPhone] = Field(default_factory=list, max_length=10)
    channels: ContactChannels = Field(default_factory=ContactChannels)
    opt_in_status: OptInStatus = "pending"
    opt_in_source: OptionalText | None = None
    utm: Utm | None = None
    job_title: OptionalText | None = None
    department: OptionalText | None = None
    owner_id: UUID | None = None
    is_primary: bool = False
    is_active: bool = True
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ContactUpdate(VersionedUpdate):
    account_id: UUID | None = None
    first_name: RequiredText | None = None
    last_name: RequiredText | None = None
    primary_email: ContactEmail | None = None
    phones: list[InternationalPhone] | None = Field(default=None, max_length=10)
    channels: ContactChannels | None = None
    opt_in_status: OptInStatus | None = None
    opt_in_source: OptionalText | None = None
    utm: Utm | None = None
    job_title: OptionalText | None = None
    department: OptionalText | None = None
    owner_id: UUID | None = None
    is_primary: bool | None = None
    is_active: bool | None = None
    custom_fields: dict[str, Any] | None = None


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID | None
    first_name: str
    last_name: str
    primary_email: str | None
    mx_validated: bool
    phones: list[str]
    channels: dict[str, bool]
    opt_in_status: OptInStatus
    opt_in_source: str | None
    utm: dict[str, Any] | None
    job_title: str | None
    department: str | None
    owner_id: UUID | None
    is_primary: bool
    is_active: bool
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class LeadCreate(BaseModel):
    first_name: RequiredText
    last_name: RequiredText
    email: LeadEmail | None = None
    phone: LeadPhone | None = None
    company_name: OptionalText | None = None
    lead_source: LeadSource = "website"
    status: Literal["new", "contacted", "qualified", "unqualified", "nurture"] = "new"
    rating: LeadRating | None = None
    lead_score: Score = 0
    fit_score: Score = 0
    engagement_score: Score = 0
    probability: Percentage = 0
    estimated_value: EstimatedValue | None = None
    currency: CurrencyCode = "SAR"
    utm: Utm | None = None
    unqualified_reason: LongText | None = None
    owner_id: UUID | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class LeadUpdate(VersionedUpdate):
    first_name: RequiredText | None = None
    last_name: RequiredText | None = None
    email: LeadEmail | None = None
    phone: LeadPhone | None = None
    company_name: OptionalText | None = None
    lead_source: LeadSource | None = None
    rating: LeadRating | None = None
    lead_score: Score | None = None
    fit_score: Score | None = None
    engagement_score: Score | None = None
    probability: Percentage | None = None
    estimated_value: EstimatedValue | None = None
    currency: CurrencyCode | None = None
    utm: Utm | None = None
    owner_id: UUID | None = None
    custom_fields: dict[str, Any] | None = None


class LeadStatusChange(VersionedUpdate):
    status: Literal["new", "contacted", "qualified", "unqualified", "nurture"]
    unqualified_reason: LongText | None = None


class LeadConvertRequest(VersionedUpdate):
    account_id: UUID | None = None
    account_name: RequiredText | None = None
    create_opportunity: bool = True
    opportunity_name: RequiredText | None = None
    amount: DealAmount | None = None
    expected_close_date: date | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    company_name: str | None
    lead_source: LeadSource
    status: LeadStatus
    rating: LeadRating | None
    lead_score: int
    fit_score: int
    engagement_score: int
    probability: int
    estimated_value: Decimal | None
    currency: str
    utm: dict[str, Any] | None
    unqualified_reason: str | None
    owner_id: UUID | None
    converted_at: datetime | None
    converted_contact_id: UUID | None
    converted_account_id: UUID | None
    converted_opportunity_id: UUID | None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class OpportunityCreate(BaseModel):
    name: RequiredText
    account_id: UUID
    contact_id: UUID | None = None
    owner_id: UUID | None = None
    stage: Literal["prospecting", "qualification", "proposal", "negotiation"] = "prospecting"
    amount: DealAmount = Decimal("0")
    currency: CurrencyCode = "SAR"
    probability: Percentage | None = None
    forecast_category: ForecastCategory = "pipeline"
    lead_source: LeadSource | None = None
    expected_close_date: date | None = None
    next_step: OptionalText | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class OpportunityUpdate(VersionedUpdate):
    name: RequiredText | None = None
    contact_id: UUID | None = None
    owner_id: UUID | None = None
    amount: DealAmount | None = None
    currency: CurrencyCode | None = None
    probability: Percentage | None = None
    forecast_category: ForecastCategory | None = None
    lead_source: LeadSource | None = None
    expected_close_date: date | None = None
    next_step: OptionalText | None = None
    custom_fields: dict[str, Any] | None = None


class OpportunityStageChange(VersionedUpdate):
    stage: OpportunityStage
    probability: Percentage | None = None
    loss_reason: LongText | None = None
    actual_close_date: date | None = None


class OpportunityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    account_id: UUID
    contact_id: UUID | None
    owner_id: UUID | None
    stage: OpportunityStage
    amount: Decimal
    currency: str
    probability: int
    forecast_category: ForecastCategory
    lead_source: str | None
    expected_close_date: date | None
    actual_close_date: date | None
    stage_entered_at: datetime
    stage_age_days: int = 0
    is_closed: bool
    is_won: bool
    loss_reason: str | None
    next_step: str | None
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class TicketCreate(BaseModel):
    subject: RequiredText
    description: LongText | None = None
    account_id: UUID | None = None
    contact_id: UUID | None = None
    assigned_to: UUID | None = None
    priority: TicketPriority = "medium"
    category: TicketCategory = "general"
    tags: list[Annotated[str, Field(min_length=1, max_length=64)]] = Field(default_factory=list)


class TicketUpdate(VersionedUpdate):
    subject: RequiredText | None = None
    description: LongText | None = None
    assigned_to: UUID | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    satisfaction: Rating | None = None
    tags: list[Annotated[str, Field(min_length=1, max_length=64)]] | None = None


class TicketStatusChange(VersionedUpdate):
    status: TicketStatus


class TicketRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_number: str
    subject: str
    description: str | None
    account_id: UUID | None
    contact_id: UUID | None
    assigned_to: UUID | None
    priority: TicketPriority
    category: TicketCategory
    status: TicketStatus
    sla_target: datetime | None
    sla_breached: bool
    first_response_at: datetime | None
    resolved_at: datetime | None
    closed_at: datetime | None
    satisfaction: int | None
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class ProductCreate(BaseModel):
    sku: Annotated[str, Field(min_length=1, max_length=64, pattern=r"^[A-Za-z0-9._-]+$")]
    name: RequiredText
    description: LongText | None = None
    unit_price: Money
    currency: CurrencyCode = "SAR"
    billing_frequency: BillingFrequency | None = None
    is_active: bool = True


class ProductUpdate(VersionedUpdate):
    name: RequiredText | None = None
    description: LongText | None = None
    unit_price: Money | None = None
    currency: CurrencyCode | None = None
    billing_frequency: BillingFrequency | None = None
    is_active: bool | None = None


class ProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sku: str
    name: str
    description: str | None
    unit_price: Decimal
    currency: str
    billing_frequency: BillingFrequency | None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class QuoteCreate(BaseModel):
    account_id: UUID
    opportunity_id: UUID | None = None
    currency: CurrencyCode = "SAR"
    line_items: list[LineItem] = Field(min_length=1)
    valid_until: date | None = None


class QuoteUpdate(VersionedUpdate):
    opportunity_id: UUID | None = None
    currency: CurrencyCode | None = None
    line_items: list[LineItem] | None = Field(default=None, min_length=1)
    valid_until: date | None = None


class QuoteStatusChange(VersionedUpdate):
    status: Literal["sent", "approved", "rejected", "expired", "accepted"]


class QuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    quote_number: str
    account_id: UUID
    opportunity_id: UUID | None
    currency: str
    line_items: list[dict[str, Any]]
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    status: QuoteStatus
    valid_until: date | None
    approved_by: str | None
    approved_at: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class InvoiceCreate(BaseModel):
    account_id: UUID
    quote_id: UUID | None = None
    currency: CurrencyCode = "SAR"
    line_items: list[LineItem] = Field(default_factory=list)
    issue: bool = False
    issued_on: date | None = None
    due_date: date | None = None

    @field_validator("due_date")
    @classmethod
    def _due_after_issue(cls, value: date | None, info: ValidationInfo) -> date | None:
        ensure_date_range(info.data.get("issued_on"), value, end_label="Due date", start_label="issue date")
        return value


class InvoiceUpdate(VersionedUpdate):
    line_items: list[LineItem] | None = None
    due_date: date | None = None


class InvoicePayment(VersionedUpdate):
    amount: PaymentAmount


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    account_id: UUID
    quote_id: UUID | None
    currency: str
    line_items: list[dict[str, Any]]
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    amount_paid: Decimal
    status: InvoiceStatus
    issued_at: datetime | None
    due_date: date | None
    paid_at: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class SubscriptionCreate(BaseModel):
    account_id: UUID
    contact_id: UUID | None = None
    product_id: UUID
    quantity: Annotated[int, Field(ge=1)] = 1
    unit_price: Money | None = None
    currency: CurrencyCode | None = None
    billing_frequency: BillingFrequency = "monthly"
    status: Literal["trial", "active"] = "active"
    start_date: date
    auto_renew: bool = True


class SubscriptionUpdate(VersionedUpdate):
    contact_id: UUID | None = None
    quantity: Annotated[int, Field(ge=1)] | None = None
    unit_price: Money | None = None
    auto_renew: bool | None = None


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    contact_id: UUID | None
    product_id: UUID
    quantity: int
    unit_price: Decimal
    currency: str
    billing_frequency: BillingFrequency
    status: SubscriptionStatus
    start_date: date
    next_renewal_date: date
    auto_renew: bool
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class ActivityCreate(BaseModel):
    activity_type: ActivityType
    subject: RequiredText
    body: LongText | None = None
    entity_type: EntityType
    entity_id: UUID
    owner_id: UUID | None = None
    due_at: datetime | None = None


class ActivityUpdate(VersionedUpdate):
    subject: RequiredText | None = None
    body: LongText | None = None
    owner_id: UUID | None = None
    due_at: datetime | None = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    activity_type: ActivityType
    subject: str
    body: str | None
    entity_type: str
    entity_id: UUID
    owner_id: UUID | None
    due_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None
    row_version: int


class TagCreate(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=64)]
    color: Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")] | None = None


class TagRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    color: str | None
    created_at: datetime


class EntityTagRequest(BaseModel):
    tag_id: UUID


class CustomFieldCreate(BaseModel):
    field_key: Annotated[str, Field(min_length=1, max_length=64)]
    label: RequiredText
    data_type: CustomFieldDataType
    is_required: bool = False
    allowed_values: list[str] | None = None
    is_active: bool = True


class CustomFieldRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type: str
    field_key: str
    label: str
    data_type: CustomFieldDataType
    is_required: bool
    allowed_values: list[str] | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    actor_user_id: str
    entity_type: str
    entity_id: str
    operation: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    changed_fields: list[str]
    correlation_id: str | None
    occurred_at: datetime


class TimelineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    entity_type: str
    entity_id: str
    event_type: str
    summary: str
    payload: dict[str, Any] | None
    actor_user_id: str
    occurred_at: datetime
