import uuid
from datetime import datetime
from typing import Any, Callable, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import Boolean, Integer, Uuid
from sqlalchemy.orm import Session

from agency_crm.context import get_correlation_id
from agency_crm.core.auth import AuthUser, get_current_user as get_auth_user
from agency_crm.core.database import get_db
from agency_crm.core.rbac import resolve_permissions
from agency_crm.crm.commercial import invoice_service, product_service, quote_service, subscription_service
from agency_crm.crm.errors import field_error, http_error_response
from agency_crm.crm.extensions import audit_service, custom_field_service, tag_service
from agency_crm.crm.schemas import (
    AccountCreate,
    AccountRead,
    AccountUpdate,
    ActivityCreate,
    ActivityRead,
    ActivityUpdate,
    AuditRead,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    CustomFieldCreate,
    CustomFieldRead,
    EntityTagRequest,
    EntityType,
    InvoiceCreate,
    InvoicePayment,
    InvoiceRead,
    InvoiceUpdate,
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadStatusChange,
    LeadUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityStageChange,
    OpportunityUpdate,
    ProductCreate,
    ProductRead,
    ProductUpdate,
    QuoteCreate,
    QuoteRead,
    QuoteStatusChange,
    QuoteUpdate,
    SubscriptionCreate,
    SubscriptionRead,
    SubscriptionUpdate,
    TagCreate,
    TagRead,
    TeamCreate,
    TeamRead,
    TeamUpdate,
    TicketCreate,
    TicketRead,
    TicketStatusChange,
    TicketUpdate,
    TimelineRead,
    UserCreate,
    UserRead,
    UserUpdate,
    VersionedUpdate,
)
from agency_crm.crm.service import (
    ActorUser,
    EntityService,
    account_service,
    activity_service,
    contact_service,
    lead_service,
    opportunity_service,
    team_service,
    ticket_service,
    user_service,
)


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return ActorUser(
        user_id=auth_user.sub,
        permissions=resolve_permissions(auth_user.roles),
        roles=list(auth_user.roles),
        team_id=auth_user.team_id,
        correlation_id=correlation_id,
    )


def require_permission(user: ActorUser, permission: str) -> None:
    if permission not in user.permissions:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {permission}")


def _coerce_filter(service: EntityService, key: str, raw: str) -> Any:
    column_type = service.model.__table__.c[key].type
    try:
        if isinstance(column_type, Uuid):
            return uuid.UUID(raw)
        if isinstance(column_type, Boolean):
            return raw.strip().lower() in {"1", "true", "yes"}
        if isinstance(column_type, Integer):
            return int(raw)
    except ValueError:
        raise field_error(key, f"Invalid value for {key}")
    return raw


def build_entity_router(
    *,
    resource: str,
    service: EntityService,
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    read_schema: type[BaseModel],
) -> APIRouter:
    """CRUD routes for one entity: list, get, create, patch, soft delete and restore."""
    router = APIRouter(prefix=f"/api/crm/{resource}", tags=[f"crm.{resource}"])
    read_permission = f"crm.{resource}.read"
    write_permission = f"crm.{resource}.write"
    delete_permission = f"crm.{resource}.delete"
    entity_type = service.entity_type

    @router.post("", response_model=read_schema, status_code=status.HTTP_201_CREATED)
    def create_entity(
        request: Request,
        dto: create_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, write_permission)
            return service.create(db, user, dto)
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_create_failed")

    @router.get("", response_model=list[read_schema])
    def list_entities(
        request: Request,
        include_deleted: bool = Query(default=False),
        offset: int = Query(default=0, ge=0),
        limit: int = Query(default=50, ge=1, le=200),
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, read_permission)
            if include_deleted:
                require_permission(user, "crm.records.read_deleted")
            filters = {
                key: _coerce_filter(service, key, value)
                for key, value in request.query_params.items()
                if key in service.list_filters
            }
            return service.list(
                db,
                user,
                filters=filters,
                include_deleted=include_deleted,
                offset=offset,
                limit=limit,
            )
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_list_failed")

    @router.get("/{entity_id}", response_model=read_schema)
    def get_entity(
        request: Request,
        entity_id: uuid.UUID,
        include_deleted: bool = Query(default=False),
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, read_permission)
            if include_deleted:
                require_permission(user, "crm.records.read_deleted")
            return service.get(db, user, entity_id, include_deleted=include_deleted)
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_get_failed")

    @router.patch("/{entity_id}", response_model=read_schema)
    def update_entity(
        request: Request,
        entity_id: uuid.UUID,
        dto: update_schema,  # type: ignore[valid-type]
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, write_permission)
            return service.update(db, user, entity_id, dto)
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_update_failed")

    @router.delete("/{entity_id}", status_code=status.HTTP_200_OK, response_model=None)
    def delete_entity(
        request: Request,
        entity_id: uuid.UUID,
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, delete_permission)
            service.soft_delete(db, user, entity_id)
            return {"status": "deleted"}
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_delete_failed")

    @router.post("/{entity_id}/restore", response_model=read_schema)
    def restore_entity(
        request: Request,
        entity_id: uuid.UUID,
        db: Session = Depends(get_db),
        user: ActorUser = Depends(get_current_user),
    ) -> Any:
        try:
            require_permission(user, delete_permission)
            return service.restore(db, user, entity_id)
        except HTTPException as exc:
            return http_error_response(request, exc, code=f"crm_{entity_type}_restore_failed")

    return router


users_router = build_entity_router(
    resource="users", service=user_service, create_schema=UserCreate, update_schema=UserUpdate, read_schema=UserRead
)
teams_router = build_entity_router(
    resource="teams", service=team_service, create_schema=TeamCreate, update_schema=TeamUpdate, read_schema=TeamRead
)
accounts_router = build_entity_router(
    resource="accounts",
    service=account_service,
    create_schema=AccountCreate,
    update_schema=AccountUpdate,
    read_schema=AccountRead,
)
contacts_router = build_entity_router(
    resource="contacts",
    service=contact_service,
    create_schema=ContactCreate,
    update_schema=ContactUpdate,
    read_schema=ContactRead,
)
leads_router = build_entity_router(
    resource="leads", service=lead_service, create_schema=LeadCreate, update_schema=LeadUpdate, read_schema=LeadRead
)
opportunities_router = build_entity_router(
    resource="opportunities",
    service=opportunity_service,
    create_schema=OpportunityCreate,
    update_schema=OpportunityUpdate,
    read_schema=OpportunityRead,
)
tickets_router = build_entity_router(
    resource="tickets",
    service=ticket_service,
    create_schema=TicketCreate,
    update_schema=TicketUpdate,
    read_schema=TicketRead,
)
products_router = build_entity_router(
    resource="products",
    service=product_service,
    create_schema=ProductCreate,
    update_schema=ProductUpdate,
    read_schema=ProductRead,
)
quotes_router = build_entity_router(
    resource="quotes", service=quote_service, create_schema=QuoteCreate, update_schema=QuoteUpdate, read_schema=QuoteRead
)
invoices_router = build_entity_router(
    resource="invoices",
    service=invoice_service,
    create_schema=InvoiceCreate,
    update_schema=InvoiceUpdate,
    read_schema=InvoiceRead,
)
subscriptions_router = build_entity_router(
    resource="subscriptions",
    service=subscription_service,
    create_schema=SubscriptionCreate,
    update_schema=SubscriptionUpdate,
    read_schema=SubscriptionRead,
)
activities_router = build_entity_router(
    resource="activities",
    service=activity_service,
    create_schema=ActivityCreate,
    update_schema=ActivityUpdate,
    read_schema=ActivityRead,
)

_RESOURCE_BY_ENTITY = {
    "user": "users",
    "team": "teams",
    "account": "accounts",
    "contact": "contacts",
    "lead": "leads",
    "opportunity": "opportunities",
    "ticket": "tickets",
    "product": "products",
    "quote": "quotes",
    "invoice": "invoices",
    "subscription": "subscriptions",
    "activity": "activities",
}
CustomFieldEntity = Literal["account", "contact", "lead", "opportunity"]

actions_router = APIRouter(prefix="/api/crm", tags=["crm.actions"])
extensions_router = APIRouter(prefix="/api/crm", tags=["crm.extensions"])


def _run_action(
    request: Request,
    user: ActorUser,
    permission: str,
    code: str,
    action: Callable[[], Any],
) -> Any:
    try:
        require_permission(user, permission)
        return action()
    except HTTPException as exc:
        return http_error_response(request, exc, code=code)


@actions_router.post("/leads/{lead_id}/status", response_model=LeadRead)
def change_lead_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStatusChange,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.leads.write",
        "crm_lead_status_failed",
        lambda: lead_service.change_status(db, user, lead_id, dto),
    )


@actions_router.post("/leads/{lead_id}/convert", response_model=LeadRead)
def convert_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "crm.leads.write")
        require_permission(user, "crm.accounts.write")
        require_permission(user, "crm.contacts.write")
        if dto.create_opportunity:
            require_permission(user, "crm.opportunities.write")
        return lead_service.convert(db, user, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_lead_convert_failed")


@actions_router.post("/opportunities/{opportunity_id}/stage", response_model=OpportunityRead)
def change_opportunity_stage(
    request: Request,
    opportunity_id: uuid.UUID,
    dto: OpportunityStageChange,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> OpportunityRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.opportunities.write",
        "crm_opportunity_stage_failed",
        lambda: opportunity_service.change_stage(db, user, opportunity_id, dto),
    )


@actions_router.post("/tickets/{ticket_id}/status", response_model=TicketRead)
def change_ticket_status(
    request: Request,
    ticket_id: uuid.UUID,
    dto: TicketStatusChange,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TicketRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.tickets.write",
        "crm_ticket_status_failed",
        lambda: ticket_service.change_status(db, user, ticket_id, dto),
    )


@actions_router.post("/tickets/{ticket_id}/sla/refresh", response_model=TicketRead)
def refresh_ticket_sla(
    request: Request,
    ticket_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TicketRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.tickets.write",
        "crm_ticket_sla_failed",
        lambda: ticket_service.refresh_sla(db, user, ticket_id),
    )


@actions_router.post("/quotes/{quote_id}/status", response_model=QuoteRead)
def change_quote_status(
    request: Request,
    quote_id: uuid.UUID,
    dto: QuoteStatusChange,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> QuoteRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.quotes.write",
        "crm_quote_status_failed",
        lambda: quote_service.change_status(db, user, quote_id, dto),
    )


@actions_router.post("/invoices/{invoice_id}/issue", response_model=InvoiceRead)
def issue_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    dto: VersionedUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InvoiceRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.invoices.write",
        "crm_invoice_issue_failed",
        lambda: invoice_service.issue(db, user, invoice_id, dto.row_version),
    )


@actions_router.post("/invoices/{invoice_id}/payments", response_model=InvoiceRead)
def record_invoice_payment(
    request: Request,
    invoice_id: uuid.UUID,
    dto: InvoicePayment,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InvoiceRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.invoices.write",
        "crm_invoice_payment_failed",
        lambda: invoice_service.record_payment(db, user, invoice_id, dto),
    )


@actions_router.post("/invoices/{invoice_id}/void", response_model=InvoiceRead)
def void_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    dto: VersionedUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> InvoiceRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.invoices.write",
        "crm_invoice_void_failed",
        lambda: invoice_service.void(db, user, invoice_id, dto.row_version),
    )


@actions_router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionRead)
def renew_subscription(
    request: Request,
    subscription_id: uuid.UUID,
    dto: VersionedUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SubscriptionRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.subscriptions.write",
        "crm_subscription_renew_failed",
        lambda: subscription_service.renew(db, user, subscription_id, dto.row_version),
    )


@actions_router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionRead)
def cancel_subscription(
    request: Request,
    subscription_id: uuid.UUID,
    dto: VersionedUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SubscriptionRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.subscriptions.write",
        "crm_subscription_cancel_failed",
        lambda: subscription_service.cancel(db, user, subscription_id, dto.row_version),
    )


@actions_router.post("/activities/{activity_id}/complete", response_model=ActivityRead)
def complete_activity(
    request: Request,
    activity_id: uuid.UUID,
    dto: VersionedUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ActivityRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.activities.write",
        "crm_activity_complete_failed",
        lambda: activity_service.complete(db, user, activity_id, dto.row_version),
    )


@extensions_router.get("/tags", response_model=list[TagRead])
def list_tags(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TagRead] | JSONResponse:
    return _run_action(request, user, "crm.tags.read", "crm_tag_list_failed", lambda: tag_service.list_tags(db))


@extensions_router.post("/tags", response_model=TagRead, status_code=status.HTTP_201_CREATED)
def create_tag(
    request: Request,
    dto: TagCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> TagRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.tags.manage",
        "crm_tag_create_failed",
        lambda: tag_service.create_tag(db, user, dto),
    )


@extensions_router.get("/tags/{entity_type}/{entity_id}", response_model=list[TagRead])
def list_entity_tags(
    request: Request,
    entity_type: EntityType,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TagRead] | JSONResponse:
    return _run_action(
        request,
        user,
        f"crm.{_RESOURCE_BY_ENTITY[entity_type]}.read",
        "crm_tag_list_failed",
        lambda: tag_service.list_for_entity(db, entity_type, entity_id),
    )


@extensions_router.post("/tags/{entity_type}/{entity_id}", response_model=list[TagRead])
def attach_tag(
    request: Request,
    entity_type: EntityType,
    entity_id: uuid.UUID,
    dto: EntityTagRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TagRead] | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.tags.manage",
        "crm_tag_attach_failed",
        lambda: tag_service.attach(db, user, entity_type, entity_id, dto.tag_id),
    )


@extensions_router.delete("/tags/{entity_type}/{entity_id}/{tag_id}", response_model=list[TagRead])
def detach_tag(
    request: Request,
    entity_type: EntityType,
    entity_id: uuid.UUID,
    tag_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TagRead] | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.tags.manage",
        "crm_tag_detach_failed",
        lambda: tag_service.detach(db, user, entity_type, entity_id, tag_id),
    )


@extensions_router.get("/custom-fields/{entity_type}", response_model=list[CustomFieldRead])
def list_custom_fields(
    request: Request,
    entity_type: CustomFieldEntity,
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CustomFieldRead] | JSONResponse:
    return _run_action(
        request,
        user,
        f"crm.{_RESOURCE_BY_ENTITY[entity_type]}.read",
        "crm_custom_field_list_failed",
        lambda: custom_field_service.list_definitions(db, entity_type, include_inactive=include_inactive),
    )


@extensions_router.post(
    "/custom-fields/{entity_type}",
    response_model=CustomFieldRead,
    status_code=status.HTTP_201_CREATED,
)
def create_custom_field(
    request: Request,
    entity_type: CustomFieldEntity,
    dto: CustomFieldCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CustomFieldRead | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.custom_fields.manage",
        "crm_custom_field_create_failed",
        lambda: custom_field_service.create_definition(db, user, entity_type, dto),
    )


@extensions_router.get("/custom-fields/{entity_type}/{entity_id}/values", response_model=dict[str, Any])
def get_custom_values(
    request: Request,
    entity_type: CustomFieldEntity,
    entity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    return _run_action(
        request,
        user,
        f"crm.{_RESOURCE_BY_ENTITY[entity_type]}.read",
        "crm_custom_value_get_failed",
        lambda: custom_field_service.get_values_for_entity(db, entity_type, entity_id),
    )


@extensions_router.put("/custom-fields/{entity_type}/{entity_id}/values", response_model=dict[str, Any])
def set_custom_values(
    request: Request,
    entity_type: CustomFieldEntity,
    entity_id: uuid.UUID,
    values: dict[str, Any],
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    def action() -> dict[str, Any]:
        require_permission(user, "crm.custom_fields.manage")
        stored = custom_field_service.set_values_for_entity(
            db,
            user,
            entity_type,
            entity_id,
            values,
            enforce_required=False,
        )
        db.commit()
        return stored

    return _run_action(
        request,
        user,
        f"crm.{_RESOURCE_BY_ENTITY[entity_type]}.write",
        "crm_custom_value_set_failed",
        action,
    )


@extensions_router.get("/audit", response_model=list[AuditRead])
def list_audit(
    request: Request,
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    actor_user_id: str | None = Query(default=None),
    operation: str | None = Query(default=None),
    correlation_id: str | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AuditRead] | JSONResponse:
    return _run_action(
        request,
        user,
        "crm.audit.read",
        "crm_audit_list_failed",
        lambda: audit_service.list_audit_logs(
            db,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=actor_user_id,
            operation=operation,
            correlation_id=correlation_id,
            date_from=date_from,
            date_to=date_to,
            offset=offset,
            limit=limit,
        ),
    )


@extensions_router.get("/timeline/{entity_type}/{entity_id}", response_model=list[TimelineRead])
def get_timeline(
    request: Request,
    entity_type: EntityType,
    entity_id: uuid.UUID,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[TimelineRead] | JSONResponse:
    return _run_action(
        request,
        user,
        f"crm.{_RESOURCE_BY_ENTITY[entity_type]}.read",
        "crm_timeline_failed",
        lambda: audit_service.timeline(db, entity_type, entity_id, offset=offset, limit=limit),
    )


routers = [
    users_router,
    teams_router,
    accounts_router,
    contacts_router,
    leads_router,
    opportunities_router,
    tickets_router,
    products_router,
    quotes_router,
    invoices_router,
    subscriptions_router,
    activities_router,
    actions_router,
    extensions_router,
]
