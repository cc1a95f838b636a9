from __future__ import annotations

import uuid
from typing import Any, Generic, TypeVar

from fastapi import HTTPException, status
from sqlalchemy import Select, and_, select, update
from sqlalchemy.orm import Session

from agency_crm import audit
from agency_crm.core.database import Base
from agency_crm.crm.models import utcnow

ModelT = TypeVar("ModelT", bound=Base)


class EntityRepository(Generic[ModelT]):
    """Write gateway for one CRM table.

    Every mutation appends an audit row and a timeline event in the same
    session, and rows are only ever soft deleted. Reads exclude soft deleted
    rows unless ``include_deleted`` is passed.
    """

    def __init__(self, model: type[ModelT], entity_type: str) -> None:
        self.model = model
        self.entity_type = entity_type

    def select_live(self, *, include_deleted: bool = False) -> Select[tuple[ModelT]]:
        stmt = select(self.model)
        if not include_deleted:
            stmt = stmt.where(self.model.deleted_at.is_(None))
        return stmt

    def get(self, session: Session, entity_id: uuid.UUID, *, include_deleted: bool = False) -> ModelT | None:
        stmt = self.select_live(include_deleted=include_deleted).where(self.model.id == entity_id)
        return session.scalar(stmt)

    def require(self, session: Session, entity_id: uuid.UUID, *, include_deleted: bool = False) -> ModelT:
        entity = self.get(session, entity_id, include_deleted=include_deleted)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity_type} not found")
        return entity

    def create(
        self,
        session: Session,
        *,
        actor_user_id: str,
        values: dict[str, Any],
        correlation_id: str | None = None,
        summary: str | None = None,
    ) -> ModelT:
        entity = self.model(**values)
        session.add(entity)
        session.flush()
        after = audit.snapshot(entity)
        self._journal(
            session,
            actor_user_id=actor_user_id,
            entity_id=entity.id,
            operation="create",
            before=None,
            after=after,
            correlation_id=correlation_id,
            summary=summary or f"{self.entity_type} created",
        )
        return entity

    def update(
        self,
        session: Session,
        *,
        actor_user_id: str,
        entity_id: uuid.UUID,
        expected_row_version: int,
        changes: dict[str, Any],
        operation: str = "update",
        correlation_id: str | None = None,
        summary: str | None = None,
    ) -> ModelT:
        existing = self.require(session, entity_id)
        before = audit.snapshot(existing)

        effective = {key: value for key, value in changes.items() if before.get(key) != audit.json_safe(value)}
        if not effective:
            if existing.row_version != expected_row_version:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")
            return existing

        values = dict(effective)
        values["updated_at"] = utcnow()
        values["row_version"] = self.model.row_version + 1
        result = session.execute(
            update(self.model)
            .where(
                and_(
                    self.model.id == entity_id,
                    self.model.row_version == expected_row_version,
                    self.model.deleted_at.is_(None),
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        session.refresh(existing)
        self._journal(
            session,
            actor_user_id=actor_user_id,
            entity_id=existing.id,
            operation=operation,
            before=before,
            after=audit.snapshot(existing),
            correlation_id=correlation_id,
            summary=summary or f"{self.entity_type} updated",
        )
        return existing

    def soft_delete(
        self,
        session: Session,
        *,
        actor_user_id: str,
        entity_id: uuid.UUID,
        correlation_id: str | None = None,
    ) -> ModelT:
        existing = self.require(session, entity_id)
        before = audit.snapshot(existing)
        existing.deleted_at = utcnow()
        existing.updated_at = utcnow()
        existing.row_version = existing.row_version + 1
        session.flush()
        self._journal(
            session,
            actor_user_id=actor_user_id,
            entity_id=existing.id,
            operation="soft_delete",
            before=before,
            after=audit.snapshot(existing),
            correlation_id=correlation_id,
            summary=f"{self.entity_type} deleted",
        )
        return existing

    def restore(
        self,
        session: Session,
        *,
        actor_user_id: str,
        entity_id: uuid.UUID,
        correlation_id: str | None = None,
    ) -> ModelT:
        existing = self.require(session, entity_id, include_deleted=True)
        if existing.deleted_at is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{self.entity_type} is not deleted")
        before = audit.snapshot(existing)
        existing.deleted_at = None
        existing.updated_at = utcnow()
        existing.row_version = existing.row_version + 1
        session.flush()
        self._journal(
            session,
            actor_user_id=actor_user_id,
            entity_id=existing.id,
            operation="restore",
            before=before,
            after=audit.snapshot(existing),
            correlation_id=correlation_id,
            summary=f"{self.entity_type} restored",
        )
        return existing

    def _journal(
        self,
        session: Session,
        *,
        actor_user_id: str,
        entity_id: uuid.UUID,
        operation: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        correlation_id: str | None,
        summary: str,
    ) -> None:
        entry = audit.record(
            session,
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            operation=operation,
            before=before,
            after=after,
            correlation_id=correlation_id,
        )
        audit.record_timeline(
            session,
            actor_user_id=actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(entity_id),
            event_type=f"{self.entity_type}.{operation}",
            summary=summary,
            payload={"changed_fields": entry.changed_fields},
        )
        session.flush()
