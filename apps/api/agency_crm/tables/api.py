from __future__ import annotations

import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from agency_crm.core.database import get_db
from agency_crm.crm.api import get_current_user, require_permission
from agency_crm.crm.errors import http_error_response
from agency_crm.crm.service import ActorUser
from agency_crm.tables.query import parse_table_query
from agency_crm.tables.registry import TABLES, TableSpec
from agency_crm.tables.saved_views import saved_view_service
from agency_crm.tables.schemas import SavedViewCreate, SavedViewRead, SavedViewUpdate, TablePage
from agency_crm.tables.service import table_service


def build_table_router(spec: TableSpec) -> APIRouter:
    """Paged listing and export routes for one registered table."""
    router = APIRouter(prefix=spec.endpoint, tags=[f"tables.{spec.name}"])
    read_permission = f"crm.{spec.resource}.read"

    @router.get("", response_model=TablePage)
    def list_rows(
        request: Request,
        page: int = Query(default=1, ge=1),
        page_size: int | None = Query(default=None, alias="pageSize", ge=1),
        search: str | None = Query(default=None),
        sorts: str | None = Query(default=None),
        filters: str | None = Query(default=None),
        columns: str | None = Query(default=None),
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, read_permission)
            query = parse_table_query(
                spec,
                page=page,
                page_size=page_size,
                search=search,
                sorts=sorts,
                filters=filters,
                columns=columns,
            )
            return table_service.fetch_page(db, spec, query)
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"table_{spec.name}_query_failed")

    @router.get("/export", response_model=None)
    def export_rows(
        request: Request,
        export_format: Literal["csv", "pdf"] = Query(default="csv", alias="format"),
        search: str | None = Query(default=None),
        sorts: str | None = Query(default=None),
        filters: str | None = Query(default=None),
        columns: str | None = Query(default=None),
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Response | JSONResponse:
        try:
            require_permission(user, read_permission)
            require_permission(user, "crm.exports.run")
            query = parse_table_query(spec, search=search, sorts=sorts, filters=filters, columns=columns)
            exported = table_service.export(db, spec, query, export_format)
            return Response(
                content=exported.content,
                media_type=exported.media_type,
                headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
            )
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"table_{spec.name}_export_failed")

    return router


saved_views_router = APIRouter(prefix="/api/saved-views", tags=["tables.saved_views"])


@saved_views_router.get("", response_model=list[SavedViewRead])
def list_saved_views(
    request: Request,
    endpoint: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.saved_views.read")
        return saved_view_service.list_views(db, user, endpoint)
    except HTTPException as exc:
        return http_error_response(request, exc, code="saved_view_list_failed")


@saved_views_router.post("", response_model=SavedViewRead, status_code=status.HTTP_201_CREATED)
def create_saved_view(
    request: Request,
    dto: SavedViewCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.saved_views.write")
        return saved_view_service.create_view(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="saved_view_create_failed")


@saved_views_router.put("/{view_id}", response_model=SavedViewRead)
def update_saved_view(
    request: Request,
    view_id: uuid.UUID,
    dto: SavedViewUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.saved_views.write")
        return saved_view_service.update_view(db, user, view_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="saved_view_update_failed")


@saved_views_router.delete("/{view_id}", response_model=None)
def delete_saved_view(
    request: Request,
    view_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "crm.saved_views.write")
        saved_view_service.delete_view(db, user, view_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="saved_view_delete_failed")


routers = [build_table_router(spec) for spec in TABLES.values()] + [saved_views_router]
