from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

import httpx

from agency_crm.client.columns import TableColumn
from agency_crm.client.controller import TableController
from agency_crm.client.formatters import (
    BadgeVariant,
    PLACEHOLDER,
    active_badge,
    enum_badge,
    format_day,
    format_money,
    format_percentage,
    is_empty,
)
from agency_crm.client.state import TableSort

DEFAULT_SORT = (TableSort("createdAt", "desc"),)

STAGE_LABELS: dict[str, dict[str, str]] = {
    "ar": {
        "prospecting": "استطلاع",
        "qualification": "تأهيل",
        "proposal": "اقتراح",
        "negotiation": "تفاوض",
        "closed-won": "مغلقة - فازت",
        "closed-lost": "مغلقة - خسرت",
    },
    "en": {
        "prospecting": "Prospecting",
        "qualification": "Qualification",
        "proposal": "Proposal",
        "negotiation": "Negotiation",
        "closed-won": "Closed won",
        "closed-lost": "Closed lost",
    },
}
STAGE_VARIANTS: dict[str, BadgeVariant] = {
    "prospecting": "outline",
    "qualification": "default",
    "proposal": "secondary",
    "negotiation": "secondary",
    "closed-won": "default",
    "closed-lost": "destructive",
}

TICKET_STATUS_LABELS: dict[str, dict[str, str]] = {
    "ar": {
        "open": "مفتوح",
        "in-progress": "قيد المعالجة",
        "pending": "معلق",
        "resolved": "محلول",
        "closed": "مغلق",
    },
    "en": {
        "open": "Open",
        "in-progress": "In progress",
        "pending": "Pending",
        "resolved": "Resolved",
        "closed": "Closed",
    },
}
TICKET_STATUS_VARIANTS: dict[str, BadgeVariant] = {
    "open": "destructive",
    "in-progress": "secondary",
    "pending": "outline",
    "resolved": "default",
    "closed": "outline",
}

TICKET_PRIORITY_LABELS: dict[str, dict[str, str]] = {
    "ar": {"low": "منخفضة", "medium": "متوسطة", "high": "عالية", "urgent": "عاجلة"},
    "en": {"low": "Low", "medium": "Medium", "high": "High", "urgent": "Urgent"},
}
TICKET_PRIORITY_VARIANTS: dict[str, BadgeVariant] = {
    "low": "outline",
    "medium": "default",
    "high": "secondary",
    "urgent": "destructive",
}

TICKET_CATEGORY_LABELS: dict[str, dict[str, str]] = {
    "ar": {"general": "عام", "technical": "فني", "billing": "فوترة", "feature-request": "طلب ميزة", "bug": "خلل"},
    "en": {
        "general": "General",
        "technical": "Technical",
        "billing": "Billing",
        "feature-request": "Feature request",
        "bug": "Bug",
    },
}

COMPANY_TYPE_LABELS: dict[str, dict[str, str]] = {
    "ar": {
        "customer": "عميل",
        "prospect": "عميل محتمل",
        "partner": "شريك",
        "vendor": "مورد",
        "competitor": "منافس",
    },
    "en": {
        "customer": "Customer",
        "prospect": "Prospect",
        "partner": "Partner",
        "vendor": "Vendor",
        "competitor": "Competitor",
    },
}


def _labels(table: Mapping[str, Mapping[str, str]], locale: str) -> Mapping[str, str]:
    return table.get(locale.split("_")[0], table["ar"])


def _money(value: Any, row: Mapping[str, Any]) -> str:
    return format_money(value, currency=str(row.get("currency") or "SAR"))


def _percent(value: Any, row: Mapping[str, Any]) -> str:
    return format_percentage(value)


def _day(value: Any, row: Mapping[str, Any]) -> str:
    return format_day(value)


def _active(value: Any, row: Mapping[str, Any]) -> Any:
    return active_badge(value)


def _text_label(table: Mapping[str, Mapping[str, str]], locale: str = "ar"):
    labels = _labels(table, locale)

    def render(value: Any, row: Mapping[str, Any]) -> str:
        if is_empty(value):
            return PLACEHOLDER
        return labels.get(str(value), str(value))

    return render


def _badge(table: Mapping[str, Mapping[str, str]], variants: Mapping[str, BadgeVariant], locale: str = "ar"):
    labels = _labels(table, locale)

    def render(value: Any, row: Mapping[str, Any]) -> Any:
        return enum_badge(value, labels, variants)

    return render


CREATED_AT = TableColumn("createdAt", {"ar": "تاريخ الإنشاء", "en": "Created"}, render=_day)
UPDATED_AT = TableColumn("updatedAt", {"ar": "آخر تحديث", "en": "Last updated"}, render=_day)
STATUS_ACTIVE = TableColumn("isActive", {"ar": "الحالة", "en": "Status"}, render=_active)

CONTACT_COLUMNS: tuple[TableColumn, ...] = (
    TableColumn("name", {"ar": "الاسم", "en": "Name"}),
    TableColumn("email", {"ar": "البريد الإلكتروني", "en": "Email"}),
    TableColumn("phone", {"ar": "الهاتف", "en": "Phone"}, sortable=False),
    TableColumn("jobTitle", {"ar": "المنصب", "en": "Job title"}),
    TableColumn("department", {"ar": "القسم", "en": "Department"}),
    STATUS_ACTIVE,
    CREATED_AT,
)

COMPANY_COLUMNS: tuple[TableColumn, ...] = (
    TableColumn("name", {"ar": "اسم الشركة", "en": "Company"}),
    TableColumn("industry", {"ar": "الصناعة", "en": "Industry"}),
    TableColumn("type", {"ar": "نوع الشركة", "en": "Type"}, render=_text_label(COMPANY_TYPE_LABELS)),
    TableColumn("email", {"ar": "البريد الإلكتروني", "en": "Email"}),
    TableColumn("phone", {"ar": "الهاتف", "en": "Phone"}),
    TableColumn("website", {"ar": "الموقع الإلكتروني", "en": "Website"}),
    STATUS_ACTIVE,
    CREATED_AT,
)

DEAL_COLUMNS: tuple[TableColumn, ...] = (
    TableColumn("name", {"ar": "اسم الصفقة", "en": "Deal"}),
    TableColumn("stage", {"ar": "المرحلة", "en": "Stage"}, render=_badge(STAGE_LABELS, STAGE_VARIANTS)),
    TableColumn("amount", {"ar": "القيمة", "en": "Amount"}, render=_money),
    TableColumn("probability", {"ar": "احتمالية النجاح", "en": "Probability"}, render=_percent),
    TableColumn("expectedCloseDate", {"ar": "تاريخ الإغلاق المتوقع", "en": "Expected close"}, render=_day),
    TableColumn("leadSource", {"ar": "مصدر العميل المحتمل", "en": "Lead source"}),
    TableColumn("assignedTo", {"ar": "المسؤول", "en": "Owner"}),
    CREATED_AT,
)

TICKET_COLUMNS: tuple[TableColumn, ...] = (
    TableColumn("subject", {"ar": "الموضوع", "en": "Subject"}),
    TableColumn(
        "status",
        {"ar": "الحالة", "en": "Status"},
        render=_badge(TICKET_STATUS_LABELS, TICKET_STATUS_VARIANTS),
    ),
    TableColumn(
        "priority",
        {"ar": "الأولوية", "en": "Priority"},
        render=_badge(TICKET_PRIORITY_LABELS, TICKET_PRIORITY_VARIANTS),
    ),
    TableColumn("category", {"ar": "الفئة", "en": "Category"}, render=_text_label(TICKET_CATEGORY_LABELS)),
    TableColumn("assignedTo", {"ar": "المسؤول", "en": "Assignee"}),
    TableColumn("description", {"ar": "الوصف", "en": "Description"}, visible=False),
    CREATED_AT,
    UPDATED_AT,
)


@dataclass(frozen=True)
class EntityTable:
    endpoint: str
    query_key: tuple[str, ...]
    columns: tuple[TableColumn, ...]
    default_page_size: int = 25
    default_sort: tuple[TableSort, ...] = DEFAULT_SORT

    def controller(self, client: httpx.AsyncClient, **options: Any) -> TableController:
        return TableController(
            client,
            endpoint=self.endpoint,
            query_key=self.query_key,
            columns=self.columns,
            default_page_size=self.default_page_size,
            default_sort=self.default_sort,
            **options,
        )


CONTACTS_TABLE = EntityTable("/api/contacts", ("contacts",), CONTACT_COLUMNS)
COMPANIES_TABLE = EntityTable("/api/companies", ("companies",), COMPANY_COLUMNS)
DEALS_TABLE = EntityTable("/api/deals", ("deals",), DEAL_COLUMNS)
TICKETS_TABLE = EntityTable("/api/tickets", ("tickets",), TICKET_COLUMNS)

ENTITY_TABLES: dict[str, EntityTable] = {
    "contacts": CONTACTS_TABLE,
    "companies": COMPANIES_TABLE,
    "deals": DEALS_TABLE,
    "tickets": TICKETS_TABLE,
}


def entity_columns(name: str) -> Sequence[TableColumn]:
    return ENTITY_TABLES[name].columns
