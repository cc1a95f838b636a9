from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.orm import InstrumentedAttribute
from sqlalchemy.sql.elements import ColumnElement

from agency_crm.core.database import Base
from agency_crm.crm.models import CRMAccount, CRMContact, CRMOpportunity, CRMTicket, ensure_aware


def plain_value(value: Any) -> Any:
    """Reduce a column value to something JSON and CSV writers accept unchanged."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return ensure_aware(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class TableField:
    key: str
    label: str
    expression: ColumnElement[Any] | InstrumentedAttribute[Any] | None
    extract: Callable[[Any], Any]
    searchable: bool = False

    @property
    def queryable(self) -> bool:
        return self.expression is not None

    def value(self, entity: Any) -> Any:
        return plain_value(self.extract(entity))


def attr_field(key: str, label: str, column: InstrumentedAttribute[Any], *, searchable: bool = False) -> TableField:
    return TableField(
        key=key,
        label=label,
        expression=column,
        extract=lambda entity, name=column.key: getattr(entity, name),
        searchable=searchable,
    )


@dataclass(frozen=True)
class TableSpec:
    name: str
    endpoint: str
    title: str
    model: type[Base]
    resource: str
    fields: dict[str, TableField] = field(default_factory=dict)
    default_sort: tuple[tuple[str, str], ...] = (("createdAt", "desc"),)

    @property
    def searchable_fields(self) -> list[TableField]:
        return [item for item in self.fields.values() if item.searchable and item.queryable]


def _fields(*items: TableField) -> dict[str, TableField]:
    return {item.key: item for item in items}


def _first_phone(contact: CRMContact) -> str | None:
    return contact.phones[0] if contact.phones else None


CONTACTS = TableSpec(
    name="contacts",
    endpoint="/api/contacts",
    title="Contacts",
    model=CRMContact,
    resource="contacts",
    fields=_fields(
        TableField(
            key="name",
            label="Name",
            expression=CRMContact.first_name + " " + CRMContact.last_name,
            extract=lambda contact: f"{contact.first_name} {contact.last_name}",
            searchable=True,
        ),
        attr_field("email", "Email", CRMContact.primary_email, searchable=True),
        TableField(key="phone", label="Phone", expression=None, extract=_first_phone),
        attr_field("jobTitle", "Job title", CRMContact.job_title, searchable=True),
        attr_field("department", "Department", CRMContact.department, searchable=True),
        attr_field("accountId", "Account", CRMContact.account_id),
        attr_field("isPrimary", "Primary", CRMContact.is_primary),
        attr_field("isActive", "Active", CRMContact.is_active),
        attr_field("createdAt", "Created", CRMContact.created_at),
        attr_field("updatedAt", "Updated", CRMContact.updated_at),
    ),
)

COMPANIES = TableSpec(
    name="companies",
    endpoint="/api/companies",
    title="Companies",
    model=CRMAccount,
    resource="accounts",
    fields=_fields(
        attr_field("name", "Name", CRMAccount.legal_name, searchable=True),
        attr_field("type", "Type", CRMAccount.account_type),
        attr_field("industry", "Industry", CRMAccount.industry, searchable=True),
        attr_field("website", "Website", CRMAccount.website, searchable=True),
        attr_field("phone", "Phone", CRMAccount.phone),
        attr_field("email", "Email", CRMAccount.email, searchable=True),
        attr_field("annualRevenue", "Annual revenue", CRMAccount.annual_revenue),
        attr_field("numberOfEmployees", "Employees", CRMAccount.number_of_employees),
        attr_field("assignedTo", "Owner", CRMAccount.owner_id),
        attr_field("isActive", "Active", CRMAccount.is_active),
        attr_field("createdAt", "Created", CRMAccount.created_at),
        attr_field("updatedAt", "Updated", CRMAccount.updated_at),
    ),
)

DEALS = TableSpec(
    name="deals",
    endpoint="/api/deals",
    title="Deals",
    model=CRMOpportunity,
    resource="opportunities",
    fields=_fields(
        attr_field("name", "Name", CRMOpportunity.name, searchable=True),
        attr_field("accountId", "Account", CRMOpportunity.account_id),
        attr_field("contactId", "Contact", CRMOpportunity.contact_id),
        attr_field("stage", "Stage", CRMOpportunity.stage, searchable=True),
        attr_field("amount", "Amount", CRMOpportunity.amount),
        attr_field("probability", "Probability", CRMOpportunity.probability),
        attr_field("expectedCloseDate", "Expected close", CRMOpportunity.expected_close_date),
        attr_field("actualCloseDate", "Closed on", CRMOpportunity.actual_close_date),
        attr_field("leadSource", "Lead source", CRMOpportunity.lead_source),
        attr_field("lossReason", "Loss reason", CRMOpportunity.loss_reason),
        attr_field("nextStep", "Next step", CRMOpportunity.next_step, searchable=True),
        attr_field("assignedTo", "Owner", CRMOpportunity.owner_id),
        attr_field("isClosed", "Closed", CRMOpportunity.is_closed),
        attr_field("isWon", "Won", CRMOpportunity.is_won),
        attr_field("createdAt", "Created", CRMOpportunity.created_at),
        attr_field("updatedAt", "Updated", CRMOpportunity.updated_at),
    ),
)

TICKETS = TableSpec(
    name="tickets",
    endpoint="/api/tickets",
    title="Tickets",
    model=CRMTicket,
    resource="tickets",
    fields=_fields(
        attr_field("ticketNumber", "Ticket", CRMTicket.ticket_number, searchable=True),
        attr_field("subject", "Subject", CRMTicket.subject, searchable=True),
        attr_field("description", "Description", CRMTicket.description),
        attr_field("category", "Category", CRMTicket.category, searchable=True),
        attr_field("priority", "Priority", CRMTicket.priority),
        attr_field("status", "Status", CRMTicket.status, searchable=True),
        attr_field("assignedTo", "Assignee", CRMTicket.assigned_to),
        attr_field("accountId", "Account", CRMTicket.account_id),
        attr_field("contactId", "Contact", CRMTicket.contact_id),
        attr_field("slaBreached", "SLA breached", CRMTicket.sla_breached),
        attr_field("createdAt", "Created", CRMTicket.created_at),
        attr_field("updatedAt", "Updated", CRMTicket.updated_at),
    ),
)

TABLES: dict[str, TableSpec] = {spec.name: spec for spec in (CONTACTS, COMPANIES, DEALS, TICKETS)}
TABLES_BY_ENDPOINT: dict[str, TableSpec] = {spec.endpoint: spec for spec in TABLES.values()}
