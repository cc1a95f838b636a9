from __future__ import annotations

import logging
import uuid
from collections import deque
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from agency_crm.context import get_correlation_id
from agency_crm.crm.models import CRMAuditLog, CRMTimelineEvent
from agency_crm.metrics import observe_crm_write

logger = logging.getLogger("agency_crm.audit")

AUDIT_JOURNAL_SIZE = 1000

# Recent writes, newest last. The crm_audit_log table is the durable record.
audit_entries: deque[dict[str, Any]] = deque(maxlen=AUDIT_JOURNAL_SIZE)


def json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return json_safe(value.value)
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(item) for item in value]
    return str(value)


def snapshot(entity: Any, *, exclude: frozenset[str] = frozenset({"updated_at", "row_version"})) -> dict[str, Any]:
    mapper = inspect(entity).mapper
    return {
        column.key: json_safe(getattr(entity, column.key))
        for column in mapper.column_attrs
        if column.key not in exclude
    }


def changed_fields(before: dict[str, Any] | None, after: dict[str, Any] | None) -> list[str]:
    before = before or {}
    after = after or {}
    keys = set(before) | set(after)
    return sorted(key for key in keys if before.get(key) != after.get(key))


def record(
    session: Session,
    *,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    operation: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> CRMAuditLog:
    resolved_correlation_id = correlation_id or get_correlation_id()
    changed = changed_fields(before, after)
    row = CRMAuditLog(
        id=uuid.uuid4(),
        actor_user_id=actor_user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        before=before,
        after=after,
        changed_fields=changed,
        correlation_id=resolved_correlation_id,
    )
    session.add(row)
    audit_entries.append(
        {
            "id": str(row.id),
            "actor_user_id": actor_user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": operation,
            "before": before,
            "after": after,
            "changed_fields": changed,
            "correlation_id": resolved_correlation_id,
            "occurred_at": datetime.now(timezone.utc).isoformat(),
        }
    )
    observe_crm_write(entity_type, operation)
    logger.info(
        "crm.write",
        extra={
            "actor_user_id": actor_user_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return row


def record_timeline(
    session: Session,
    *,
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    event_type: str,
    summary: str,
    payload: dict[str, Any] | None = None,
) -> CRMTimelineEvent:
    event = CRMTimelineEvent(
        entity_type=entity_type,
        entity_id=entity_id,
        event_type=event_type,
        summary=summary,
        payload=json_safe(payload) if payload is not None else None,
        actor_user_id=actor_user_id,
    )
    session.add(event)
    return event
