from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from agency_crm.crm.errors import field_error
from agency_crm.crm.models import CRMSavedView
from agency_crm.crm.repositories import EntityRepository
from agency_crm.crm.service import ActorUser
from agency_crm.tables.query import FilterSpec, SortSpec
from agency_crm.tables.registry import TABLES_BY_ENDPOINT, TableSpec
from agency_crm.tables.schemas import SavedViewCreate, SavedViewUpdate

logger = logging.getLogger("agency_crm.tables")


class SavedViewService:
    """Per-user named table layouts, keyed by the table endpoint."""

    def __init__(self) -> None:
        self.repository: EntityRepository[CRMSavedView] = EntityRepository(CRMSavedView, "saved_view")

    def list_views(self, session: Session, actor_user: ActorUser, endpoint: str | None = None) -> list[CRMSavedView]:
        stmt = select(CRMSavedView).where(
            and_(CRMSavedView.user_id == actor_user.user_id, CRMSavedView.deleted_at.is_(None))
        )
        if endpoint:
            stmt = stmt.where(CRMSavedView.endpoint == endpoint)
        stmt = stmt.order_by(CRMSavedView.is_default.desc(), CRMSavedView.name.asc())
        return list(session.scalars(stmt).all())

    def get_view(self, session: Session, actor_user: ActorUser, view_id: uuid.UUID) -> CRMSavedView:
        view = self.repository.get(session, view_id)
        if view is None or view.user_id != actor_user.user_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="saved view not found")
        return view

    def create_view(self, session: Session, actor_user: ActorUser, dto: SavedViewCreate) -> CRMSavedView:
        spec = self._require_table(dto.endpoint)
        values = self._layout_values(spec, dto.columns, dto.sorts, dto.filters)
        values.update(name=dto.name.strip(), page_size=dto.page_size, search=dto.search, is_default=dto.is_default)

        existing = self._find_by_name(session, actor_user.user_id, spec.endpoint, values["name"])
        if existing is not None and existing.deleted_at is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="saved view name already exists")

        if dto.is_default:
            self._clear_defaults(session, actor_user, spec.endpoint)

        if existing is not None:
            self.repository.restore(
                session,
                actor_user_id=actor_user.user_id,
                entity_id=existing.id,
                correlation_id=actor_user.correlation_id,
            )
            view = self.repository.update(
                session,
                actor_user_id=actor_user.user_id,
                entity_id=existing.id,
                expected_row_version=existing.row_version,
                changes=values,
                correlation_id=actor_user.correlation_id,
            )
        else:
            view = self.repository.create(
                session,
                actor_user_id=actor_user.user_id,
                values={**values, "user_id": actor_user.user_id, "endpoint": spec.endpoint},
                correlation_id=actor_user.correlation_id,
            )
        session.commit()
        session.refresh(view)
        logger.info(
            "crm.saved_view.saved",
            extra={"table": spec.name, "entity_id": str(view.id), "actor_user_id": actor_user.user_id},
        )
        return view

    def update_view(
        self,
        session: Session,
        actor_user: ActorUser,
        view_id: uuid.UUID,
        dto: SavedViewUpdate,
    ) -> CRMSavedView:
        view = self.get_view(session, actor_user, view_id)
        spec = self._require_table(view.endpoint)
        payload = dto.model_dump(exclude_unset=True)

        changes: dict[str, Any] = {}
        if any(key in payload for key in ("columns", "sorts", "filters")):
            layout = self._layout_values(
                spec,
                dto.columns if dto.columns is not None else list(view.columns),
                dto.sorts if dto.sorts is not None else [SortSpec.model_validate(item) for item in view.sorts],
                dto.filters if dto.filters is not None else [FilterSpec.model_validate(item) for item in view.filters],
            )
            changes.update({key: layout[key] for key in ("columns", "sorts", "filters") if key in payload})
        if payload.get("name") is not None:
            name = payload["name"].strip()
            clash = self._find_by_name(session, actor_user.user_id, view.endpoint, name)
            if clash is not None and clash.id != view.id and clash.deleted_at is None:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="saved view name already exists")
            changes["name"] = name
        for key in ("page_size", "search", "is_default"):
            if key in payload and (payload[key] is not None or key == "search"):
                changes[key] = payload[key]

        if changes.get("is_default"):
            self._clear_defaults(session, actor_user, view.endpoint, keep=view.id)
        view = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=view.id,
            expected_row_version=view.row_version,
            changes=changes,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        session.refresh(view)
        return view

    def delete_view(self, session: Session, actor_user: ActorUser, view_id: uuid.UUID) -> None:
        view = self.get_view(session, actor_user, view_id)
        self.repository.soft_delete(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=view.id,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()

    def _require_table(self, endpoint: str) -> TableSpec:
        spec = TABLES_BY_ENDPOINT.get(endpoint)
        if spec is None:
            raise field_error("endpoint", f"Unknown table endpoint: {endpoint}")
        return spec

    def _layout_values(
        self,
        spec: TableSpec,
        columns: list[str],
        sorts: list[SortSpec],
        filters: list[FilterSpec],
    ) -> dict[str, Any]:
        unknown_columns = [key for key in columns if key not in spec.fields]
        if unknown_columns:
            raise field_error("columns", f"Unknown columns: {', '.join(unknown_columns)}")
        for sort in sorts:
            if sort.field not in spec.fields or not spec.fields[sort.field].queryable:
                raise field_error("sorts", f"Unknown sort field: {sort.field}")
        for item in filters:
            if item.field not in spec.fields or not spec.fields[item.field].queryable:
                raise field_error("filters", f"Unknown filter field: {item.field}")
        return {
            "columns": list(columns),
            "sorts": [sort.model_dump(exclude_none=True) for sort in sorts],
            "filters": [item.model_dump() for item in filters],
        }

    def _find_by_name(self, session: Session, user_id: str, endpoint: str, name: str) -> CRMSavedView | None:
        stmt = select(CRMSavedView).where(
            and_(
                CRMSavedView.user_id == user_id,
                CRMSavedView.endpoint == endpoint,
                CRMSavedView.name == name,
            )
        )
        return session.scalar(stmt)

    def _clear_defaults(
        self,
        session: Session,
        actor_user: ActorUser,
        endpoint: str,
        *,
        keep: uuid.UUID | None = None,
    ) -> None:
        for view in self.list_views(session, actor_user, endpoint):
            if view.is_default and view.id != keep:
                self.repository.update(
                    session,
                    actor_user_id=actor_user.user_id,
                    entity_id=view.id,
                    expected_row_version=view.row_version,
                    changes={"is_default": False},
                    correlation_id=actor_user.correlation_id,
                )


saved_view_service = SavedViewService()
