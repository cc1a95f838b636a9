from __future__ import annotations

from collections.abc import Iterable

CRM_RESOURCES = (
    "users",
    "teams",
    "accounts",
    "contacts",
    "leads",
    "opportunities",
    "tickets",
    "products",
    "quotes",
    "invoices",
    "subscriptions",
    "activities",
)


def _grants(resources: Iterable[str], actions: Iterable[str]) -> set[str]:
    return {f"crm.{resource}.{action}" for resource in resources for action in actions}


_ALL_CRM = _grants(CRM_RESOURCES, ("read", "write", "delete")) | {
    "crm.records.read_deleted",
    "crm.audit.read",
    "crm.tags.read",
    "crm.tags.manage",
    "crm.custom_fields.manage",
    "crm.saved_views.read",
    "crm.saved_views.write",
    "crm.quotes.approve",
    "crm.exports.run",
}

_TABLE_USER = {"crm.tags.read", "crm.saved_views.read", "crm.saved_views.write", "crm.exports.run"}

ROLE_PERMISSIONS: dict[str, set[str]] = {
    "admin": _ALL_CRM | {"system.metrics.read"},
    "manager": (_ALL_CRM - {"crm.users.write", "crm.users.delete"}),
    "rep": _grants(("accounts", "contacts", "leads", "opportunities", "activities", "quotes"), ("read", "write"))
    | _grants(("products", "tickets", "teams", "users", "invoices", "subscriptions"), ("read",))
    | _TABLE_USER,
    "support": _grants(("tickets", "activities"), ("read", "write"))
    | _grants(("accounts", "contacts", "products", "subscriptions", "users", "teams"), ("read",))
    | _TABLE_USER,
    "marketing": _grants(("leads", "contacts"), ("read", "write"))
    | _grants(("accounts", "opportunities", "users", "teams"), ("read",))
    | {"crm.tags.manage"}
    | _TABLE_USER,
}


def resolve_permissions(roles: Iterable[str]) -> set[str]:
    permissions: set[str] = set()
    for role in roles:
        normalized = str(role).strip()
        granted = ROLE_PERMISSIONS.get(normalized.lower())
        if granted is not None:
            permissions |= granted
        elif "." in normalized:
            permissions.add(normalized)
    return permissions
