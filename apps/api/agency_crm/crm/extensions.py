from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agency_crm import audit
from agency_crm.crm.models import (
    ENTITY_MODELS,
    CRMAuditLog,
    CRMCustomField,
    CRMCustomValue,
    CRMEntityTag,
    CRMTag,
    CRMTimelineEvent,
    utcnow,
)
from agency_crm.crm.schemas import AuditRead, CustomFieldCreate, CustomFieldRead, TagCreate, TagRead, TimelineRead
from agency_crm.crm.service import ActorUser

CUSTOM_FIELD_ENTITY_TYPES = {"account", "contact", "lead", "opportunity"}
FIELD_KEY_RE = re.compile(r"^[a-z][a-z0-9_]*$")


def _unprocessable(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class CustomFieldService:
    """Per entity type field definitions with typed value storage."""

    def list_definitions(
        self,
        session: Session,
        entity_type: str,
        *,
        include_inactive: bool = False,
    ) -> list[CustomFieldRead]:
        self._validate_entity_type(entity_type)
        stmt: Select[tuple[CRMCustomField]] = select(CRMCustomField).where(
            and_(CRMCustomField.entity_type == entity_type, CRMCustomField.deleted_at.is_(None))
        )
        if not include_inactive:
            stmt = stmt.where(CRMCustomField.is_active.is_(True))
        definitions = session.scalars(stmt.order_by(CRMCustomField.field_key.asc())).all()
        return [CustomFieldRead.model_validate(item) for item in definitions]

    def create_definition(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: str,
        dto: CustomFieldCreate,
    ) -> CustomFieldRead:
        self._validate_entity_type(entity_type)
        field_key = dto.field_key.strip()
        if not FIELD_KEY_RE.match(field_key):
            raise _unprocessable("field_key must be snake_case")
        self._validate_allowed_values(dto.data_type, dto.allowed_values)

        existing = session.scalar(
            select(CRMCustomField).where(
                and_(CRMCustomField.entity_type == entity_type, CRMCustomField.field_key == field_key)
            )
        )
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="custom field definition already exists")

        definition = CRMCustomField(
            entity_type=entity_type,
            field_key=field_key,
            label=dto.label,
            data_type=dto.data_type,
            is_required=dto.is_required,
            allowed_values=dto.allowed_values,
            is_active=dto.is_active,
        )
        session.add(definition)
        session.flush()
        audit.record(
            session,
            actor_user_id=actor_user.user_id,
            entity_type="custom_field",
            entity_id=str(definition.id),
            operation="create",
            before=None,
            after=audit.snapshot(definition),
            correlation_id=actor_user.correlation_id,
        )
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="custom field definition already exists")
        session.refresh(definition)
        return CustomFieldRead.model_validate(definition)

    def set_values_for_entity(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: str,
        entity_id: uuid.UUID,
        values: dict[str, Any],
        *,
        enforce_required: bool,
    ) -> dict[str, Any]:
        self._validate_entity_type(entity_type)
        definitions = self._load_active_definitions(session, entity_type)

        unknown = [key for key in values if key not in definitions]
        if unknown:
            raise _unprocessable(f"unknown custom fields: {', '.join(sorted(unknown))}")

        existing_map = {
            row.field_key: row
            for row in session.scalars(
                select(CRMCustomValue).where(
                    and_(CRMCustomValue.entity_type == entity_type, CRMCustomValue.entity_id == entity_id)
                )
            ).all()
        }
        before = self.get_values_for_entity(session, entity_type, entity_id)

        for key, value in values.items():
            row = existing_map.get(key)
            if value is None:
                if row is not None:
                    session.delete(row)
                continue
            typed = self._coerce_value(definitions[key], value)
            if row is None:
                row = CRMCustomValue(entity_type=entity_type, entity_id=entity_id, field_key=key)
            row.value_text = typed.get("value_text")
            row.value_number = typed.get("value_number")
            row.value_bool = typed.get("value_bool")
            row.value_date = typed.get("value_date")
            row.updated_at = utcnow()
            session.add(row)
        session.flush()

        if enforce_required:
            self._enforce_required_values(session, entity_type, entity_id, definitions)
        after = self.get_values_for_entity(session, entity_type, entity_id)
        if before != after:
            audit.record(
                session,
                actor_user_id=actor_user.user_id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                operation="custom_fields",
                before=before,
                after=after,
                correlation_id=actor_user.correlation_id,
            )
        return after

    def get_values_for_entity(self, session: Session, entity_type: str, entity_id: uuid.UUID) -> dict[str, Any]:
        rows = session.scalars(
            select(CRMCustomValue).where(
                and_(CRMCustomValue.entity_type == entity_type, CRMCustomValue.entity_id == entity_id)
            )
        ).all()
        return {row.field_key: self._deserialize_value(row) for row in rows}

    def _load_active_definitions(self, session: Session, entity_type: str) -> dict[str, CRMCustomField]:
        definitions = session.scalars(
            select(CRMCustomField).where(
                and_(
                    CRMCustomField.entity_type == entity_type,
                    CRMCustomField.is_active.is_(True),
                    CRMCustomField.deleted_at.is_(None),
                )
            )
        ).all()
        return {definition.field_key: definition for definition in definitions}

    def _enforce_required_values(
        self,
        session: Session,
        entity_type: str,
        entity_id: uuid.UUID,
        definitions: dict[str, CRMCustomField],
    ) -> None:
        required = [key for key, definition in definitions.items() if definition.is_required]
        if not required:
            return
        current = self.get_values_for_entity(session, entity_type, entity_id)
        missing = [key for key in required if current.get(key) in (None, "")]
        if missing:
            raise _unprocessable(f"missing required custom fields: {', '.join(sorted(missing))}")

    def _coerce_value(self, definition: CRMCustomField, value: Any) -> dict[str, Any]:
        data_type = definition.data_type
        key = definition.field_key
        if data_type == "text":
            if not isinstance(value, str):
                raise _unprocessable(f"{key} must be text")
            return {"value_text": value}
        if data_type == "number":
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise _unprocessable(f"{key} must be number")
            return {"value_number": Decimal(str(value))}
        if data_type == "bool":
            if not isinstance(value, bool):
                raise _unprocessable(f"{key} must be bool")
            return {"value_bool": value}
        if data_type == "date":
            if isinstance(value, date):
                return {"value_date": value}
            if isinstance(value, str):
                try:
                    return {"value_date": date.fromisoformat(value)}
                except ValueError:
                    raise _unprocessable(f"{key} must be ISO date")
            raise _unprocessable(f"{key} must be date")
        if data_type == "select":
            allowed = definition.allowed_values or []
            if not isinstance(value, str) or value not in allowed:
                raise _unprocessable(f"{key} must be one of: {', '.join(allowed)}")
            return {"value_text": value}
        raise _unprocessable("unsupported custom field data_type")

    def _deserialize_value(self, row: CRMCustomValue) -> Any:
        if row.value_text is not None:
            return row.value_text
        if row.value_number is not None:
            return float(row.value_number)
        if row.value_bool is not None:
            return row.value_bool
        if row.value_date is not None:
            return row.value_date.isoformat()
        return None

    def _validate_entity_type(self, entity_type: str) -> None:
        if entity_type not in CUSTOM_FIELD_ENTITY_TYPES:
            raise _unprocessable("invalid entity_type")

    def _validate_allowed_values(self, data_type: str, allowed_values: list[str] | None) -> None:
        if data_type == "select":
            if not allowed_values:
                raise _unprocessable("allowed_values required for select")
            if any(not item.strip() for item in allowed_values):
                raise _unprocessable("allowed_values must be non-empty strings")
            return
        if allowed_values:
            raise _unprocessable("allowed_values only supported for select")


class TagService:
    def list_tags(self, session: Session) -> list[TagRead]:
        tags = session.scalars(select(CRMTag).where(CRMTag.deleted_at.is_(None)).order_by(CRMTag.name.asc())).all()
        return [TagRead.model_validate(tag) for tag in tags]

    def create_tag(self, session: Session, actor_user: ActorUser, dto: TagCreate) -> TagRead:
        name = dto.name.strip()
        if session.scalar(select(CRMTag).where(CRMTag.name == name)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="tag already exists")
        tag = CRMTag(name=name, color=dto.color)
        session.add(tag)
        session.flush()
        audit.record(
            session,
            actor_user_id=actor_user.user_id,
            entity_type="tag",
            entity_id=str(tag.id),
            operation="create",
            before=None,
            after=audit.snapshot(tag),
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        session.refresh(tag)
        return TagRead.model_validate(tag)

    def list_for_entity(self, session: Session, entity_type: str, entity_id: uuid.UUID) -> list[TagRead]:
        tags = session.scalars(
            select(CRMTag)
            .join(CRMEntityTag, CRMEntityTag.tag_id == CRMTag.id)
            .where(
                and_(
                    CRMEntityTag.entity_type == entity_type,
                    CRMEntityTag.entity_id == entity_id,
                    CRMEntityTag.deleted_at.is_(None),
                    CRMTag.deleted_at.is_(None),
                )
            )
            .order_by(CRMTag.name.asc())
        ).all()
        return [TagRead.model_validate(tag) for tag in tags]

    def attach(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: str,
        entity_id: uuid.UUID,
        tag_id: uuid.UUID,
    ) -> list[TagRead]:
        self._require_entity(session, entity_type, entity_id)
        tag = session.scalar(select(CRMTag).where(and_(CRMTag.id == tag_id, CRMTag.deleted_at.is_(None))))
        if tag is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tag not found")

        link = self._find_link(session, entity_type, entity_id, tag_id)
        if link is None:
            session.add(CRMEntityTag(tag_id=tag_id, entity_type=entity_type, entity_id=entity_id))
        elif link.deleted_at is not None:
            link.deleted_at = None
        else:
            return self.list_for_entity(session, entity_type, entity_id)

        session.flush()
        self._journal(session, actor_user, entity_type, entity_id, "tag_attach", tag.name)
        session.commit()
        return self.list_for_entity(session, entity_type, entity_id)

    def detach(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: str,
        entity_id: uuid.UUID,
        tag_id: uuid.UUID,
    ) -> list[TagRead]:
        link = self._find_link(session, entity_type, entity_id, tag_id)
        if link is None or link.deleted_at is not None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="tag not attached")
        link.deleted_at = utcnow()
        session.flush()
        self._journal(session, actor_user, entity_type, entity_id, "tag_detach", link.tag.name)
        session.commit()
        return self.list_for_entity(session, entity_type, entity_id)

    def _find_link(
        self,
        session: Session,
        entity_type: str,
        entity_id: uuid.UUID,
        tag_id: uuid.UUID,
    ) -> CRMEntityTag | None:
        return session.scalar(
            select(CRMEntityTag).where(
                and_(
                    CRMEntityTag.tag_id == tag_id,
                    CRMEntityTag.entity_type == entity_type,
                    CRMEntityTag.entity_id == entity_id,
                )
            )
        )

    def _require_entity(self, session: Session, entity_type: str, entity_id: uuid.UUID) -> None:
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise _unprocessable("invalid entity_type")
        found = session.scalar(select(model.id).where(and_(model.id == entity_id, model.deleted_at.is_(None))))
        if found is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity_type} not found")

    def _journal(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_type: str,
        entity_id: uuid.UUID,
        operation: str,
        tag_name: str,
    ) -> None:
        audit.record(
            session,
            actor_user_id=actor_user.user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            operation=operation,
            before=None,
            after={"tag": tag_name},
            correlation_id=actor_user.correlation_id,
        )
        audit.record_timeline(
            session,
            actor_user_id=actor_user.user_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            event_type=f"{entity_type}.{operation}",
            summary=f"tag {tag_name} {'added' if operation == 'tag_attach' else 'removed'}",
        )


class AuditService:
    def list_audit_logs(
        self,
        session: Session,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        actor_user_id: str | None = None,
        operation: str | None = None,
        correlation_id: str | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> list[AuditRead]:
        stmt = select(CRMAuditLog)
        if entity_type:
            stmt = stmt.where(CRMAuditLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(CRMAuditLog.entity_id == entity_id)
        if actor_user_id:
            stmt = stmt.where(CRMAuditLog.actor_user_id == actor_user_id)
        if operation:
            stmt = stmt.where(CRMAuditLog.operation == operation)
        if correlation_id:
            stmt = stmt.where(CRMAuditLog.correlation_id == correlation_id)
        if date_from is not None:
            stmt = stmt.where(CRMAuditLog.occurred_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(CRMAuditLog.occurred_at <= date_to)
        rows = session.scalars(
            stmt.order_by(CRMAuditLog.occurred_at.desc(), CRMAuditLog.id.asc()).offset(offset).limit(limit)
        ).all()
        return [AuditRead.model_validate(row) for row in rows]

    def timeline(
        self,
        session: Session,
        entity_type: str,
        entity_id: uuid.UUID,
        *,
        offset: int = 0,
        limit: int = 50,
    ) -> list[TimelineRead]:
        rows = session.scalars(
            select(CRMTimelineEvent)
            .where(
                and_(
                    CRMTimelineEvent.entity_type == entity_type,
                    CRMTimelineEvent.entity_id == str(entity_id),
                )
            )
            .order_by(CRMTimelineEvent.occurred_at.desc(), CRMTimelineEvent.id.asc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [TimelineRead.model_validate(row) for row in rows]


custom_field_service = CustomFieldService()
tag_service = TagService()
audit_service = AuditService()
