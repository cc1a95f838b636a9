from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, ClassVar, Generic, TypeVar

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from agency_crm.core.database import Base
from agency_crm.crm.errors import field_error
from agency_crm.crm.models import (
    ENTITY_MODELS,
    CRMAccount,
    CRMActivity,
    CRMContact,
    CRMLead,
    CRMOpportunity,
    CRMTeam,
    CRMTicket,
    CRMUser,
    ensure_aware,
    utcnow,
)
from agency_crm.crm.repositories import EntityRepository
from agency_crm.crm.schemas import (
    AccountRead,
    ActivityRead,
    ContactRead,
    LeadConvertRequest,
    LeadRead,
    LeadStatusChange,
    OpportunityRead,
    OpportunityStageChange,
    TeamRead,
    TicketRead,
    TicketStatusChange,
    UserRead,
)

logger = logging.getLogger("agency_crm.crm")

ModelT = TypeVar("ModelT", bound=Base)
ReadT = TypeVar("ReadT", bound=BaseModel)


@dataclass
class ActorUser:
    user_id: str
    permissions: set[str]
    roles: list[str] = field(default_factory=list)
    team_id: str | None = None
    correlation_id: str | None = None


class EntityService(Generic[ModelT, ReadT]):
    """CRUD over one entity with audit, soft delete and optimistic concurrency.

    Subclasses declare the model and read schema and override the ``build_*``
    hooks for entity specific rules.
    """

    entity_type: ClassVar[str]
    model: ClassVar[type[Base]]
    read_model: ClassVar[type[BaseModel]]
    list_filters: ClassVar[tuple[str, ...]] = ()
    supports_custom_fields: ClassVar[bool] = False

    def __init__(self) -> None:
        self.repository: EntityRepository[ModelT] = EntityRepository(self.model, self.entity_type)

    def list(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        filters: dict[str, Any] | None = None,
        include_deleted: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> list[ReadT]:
        stmt = self.repository.select_live(include_deleted=include_deleted)
        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key not in self.list_filters:
                raise field_error(key, f"Unsupported filter: {key}")
            stmt = stmt.where(getattr(self.model, key) == value)
        stmt = stmt.order_by(self.model.created_at.desc(), self.model.id.asc()).offset(offset).limit(limit)
        return [self.to_read(session, entity) for entity in session.scalars(stmt).all()]

    def get(
        self,
        session: Session,
        actor_user: ActorUser,
        entity_id: uuid.UUID,
        *,
        include_deleted: bool = False,
    ) -> ReadT:
        entity = self.repository.require(session, entity_id, include_deleted=include_deleted)
        return self.to_read(session, entity)

    def create(self, session: Session, actor_user: ActorUser, dto: BaseModel) -> ReadT:
        payload = dto.model_dump(exclude={"custom_fields"})
        values = self.build_create_values(session, actor_user, payload)
        entity = self.repository.create(
            session,
            actor_user_id=actor_user.user_id,
            values=values,
            correlation_id=actor_user.correlation_id,
        )
        if self.supports_custom_fields:
            self._write_custom_fields(session, actor_user, entity, getattr(dto, "custom_fields", None) or {})
        self.after_write(session, actor_user, entity)
        session.commit()
        session.refresh(entity)
        return self.to_read(session, entity)

    def update(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID, dto: BaseModel) -> ReadT:
        existing = self.repository.require(session, entity_id)
        changes = dto.model_dump(exclude_unset=True, exclude={"row_version", "custom_fields"})
        self._reject_required_nulls(changes)
        changes = self.build_update_values(session, actor_user, existing, changes)
        entity = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=entity_id,
            expected_row_version=dto.row_version,
            changes=changes,
            correlation_id=actor_user.correlation_id,
        )
        custom_fields = getattr(dto, "custom_fields", None)
        if self.supports_custom_fields and custom_fields is not None:
            self._write_custom_fields(session, actor_user, entity, custom_fields)
        self.after_write(session, actor_user, entity)
        session.commit()
        session.refresh(entity)
        return self.to_read(session, entity)

    def soft_delete(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID) -> None:
        entity = self.repository.require(session, entity_id)
        self.before_delete(session, entity)
        self.repository.soft_delete(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=entity_id,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()

    def restore(self, session: Session, actor_user: ActorUser, entity_id: uuid.UUID) -> ReadT:
        entity = self.repository.restore(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=entity_id,
            correlation_id=actor_user.correlation_id,
        )
        session.commit()
        session.refresh(entity)
        return self.to_read(session, entity)

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: ModelT,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        return changes

    def after_write(self, session: Session, actor_user: ActorUser, entity: ModelT) -> None:
        return None

    def before_delete(self, session: Session, entity: ModelT) -> None:
        return None

    def to_read(self, session: Session, entity: ModelT) -> ReadT:
        read = self.read_model.model_validate(entity)
        if self.supports_custom_fields:
            from agency_crm.crm.extensions import custom_field_service

            read = read.model_copy(
                update={"custom_fields": custom_field_service.get_values_for_entity(session, self.entity_type, entity.id)}
            )
        return read

    def _write_custom_fields(
        self,
        session: Session,
        actor_user: ActorUser,
        entity: ModelT,
        values: dict[str, Any],
    ) -> None:
        from agency_crm.crm.extensions import custom_field_service

        custom_field_service.set_values_for_entity(
            session,
            actor_user,
            self.entity_type,
            entity.id,
            values,
            enforce_required=True,
        )

    def _reject_required_nulls(self, changes: dict[str, Any]) -> None:
        columns = self.model.__table__.c
        for key, value in changes.items():
            if value is None and key in columns and not columns[key].nullable:
                raise field_error(key, "This field cannot be empty")

    def _require_related(
        self,
        session: Session,
        model: type[Base],
        entity_id: uuid.UUID | None,
        field_name: str,
        label: str,
    ) -> Any:
        if entity_id is None:
            return None
        related = session.scalar(select(model).where(and_(model.id == entity_id, model.deleted_at.is_(None))))
        if related is None:
            raise field_error(field_name, f"{label} not found")
        return related


def next_document_number(session: Session, model: type[Base], column_name: str, prefix: str) -> str:
    stamp = f"{prefix}-{utcnow():%Y%m%d}-"
    column = getattr(model, column_name)
    count = session.scalar(select(func.count()).select_from(model).where(column.like(f"{stamp}%"))) or 0
    return f"{stamp}{count + 1:04d}"


_WHITESPACE_RE = re.compile(r"\s+")


def normalize_account_name(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip().lower()


class UserService(EntityService[CRMUser, UserRead]):
    entity_type = "user"
    model = CRMUser
    read_model = UserRead
    list_filters = ("role", "team_id", "is_active")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        payload["email"] = payload["email"].lower()
        existing = session.scalar(select(CRMUser).where(CRMUser.email == payload["email"]))
        if existing is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="user with this email already exists")
        self._require_related(session, CRMTeam, payload.get("team_id"), "team_id", "Team")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMUser,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if "team_id" in changes:
            self._require_related(session, CRMTeam, changes["team_id"], "team_id", "Team")
        return changes


class TeamService(EntityService[CRMTeam, TeamRead]):
    entity_type = "team"
    model = CRMTeam
    read_model = TeamRead
    list_filters = ("region", "manager_id")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMUser, payload.get("manager_id"), "manager_id", "Manager")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMTeam,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if "manager_id" in changes:
            self._require_related(session, CRMUser, changes["manager_id"], "manager_id", "Manager")
        return changes

    def before_delete(self, session: Session, entity: CRMTeam) -> None:
        members = session.scalar(
            select(func.count())
            .select_from(CRMUser)
            .where(and_(CRMUser.team_id == entity.id, CRMUser.deleted_at.is_(None)))
        )
        if members:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="team still has members")


class AccountService(EntityService[CRMAccount, AccountRead]):
    entity_type = "account"
    model = CRMAccount
    read_model = AccountRead
    list_filters = ("account_type", "industry", "size_tier", "region", "owner_id", "owner_team_id", "is_active")
    supports_custom_fields = True

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        payload["normalized_name"] = self._unique_normalized_name(session, payload["legal_name"], exclude_id=None)
        self._require_related(session, CRMAccount, payload.get("parent_account_id"), "parent_account_id", "Parent account")
        self._require_related(session, CRMTeam, payload.get("owner_team_id"), "owner_team_id", "Team")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMAccount,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if "legal_name" in changes:
            changes["normalized_name"] = self._unique_normalized_name(session, changes["legal_name"], exclude_id=existing.id)
        if "parent_account_id" in changes and changes["parent_account_id"] is not None:
            self._require_related(session, CRMAccount, changes["parent_account_id"], "parent_account_id", "Parent account")
            self._ensure_no_cycle(session, existing.id, changes["parent_account_id"])
        if changes.get("owner_team_id") is not None:
            self._require_related(session, CRMTeam, changes["owner_team_id"], "owner_team_id", "Team")
        return changes

    def before_delete(self, session: Session, entity: CRMAccount) -> None:
        open_opportunities = session.scalar(
            select(func.count())
            .select_from(CRMOpportunity)
            .where(
                and_(
                    CRMOpportunity.account_id == entity.id,
                    CRMOpportunity.deleted_at.is_(None),
                    CRMOpportunity.is_closed.is_(False),
                )
            )
        )
        if open_opportunities:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="account has open opportunities")

    def find_by_name(self, session: Session, legal_name: str) -> CRMAccount | None:
        return session.scalar(
            select(CRMAccount).where(
                and_(
                    CRMAccount.normalized_name == normalize_account_name(legal_name),
                    CRMAccount.deleted_at.is_(None),
                )
            )
        )

    def _unique_normalized_name(self, session: Session, legal_name: str, *, exclude_id: uuid.UUID | None) -> str:
        normalized = normalize_account_name(legal_name)
        stmt = select(CRMAccount.id).where(
            and_(CRMAccount.normalized_name == normalized, CRMAccount.deleted_at.is_(None))
        )
        if exclude_id is not None:
            stmt = stmt.where(CRMAccount.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="account with this name already exists")
        return normalized

    def _ensure_no_cycle(self, session: Session, account_id: uuid.UUID, parent_id: uuid.UUID) -> None:
        seen: set[uuid.UUID] = set()
        cursor: uuid.UUID | None = parent_id
        while cursor is not None:
            if cursor == account_id:
                raise field_error("parent_account_id", "Account hierarchy cannot contain cycles")
            if cursor in seen:
                break
            seen.add(cursor)
            cursor = session.scalar(select(CRMAccount.parent_account_id).where(CRMAccount.id == cursor))


class ContactService(EntityService[CRMContact, ContactRead]):
    entity_type = "contact"
    model = CRMContact
    read_model = ContactRead
    list_filters = ("account_id", "owner_id", "is_primary", "opt_in_status", "is_active")
    supports_custom_fields = True

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload.get("account_id"), "account_id", "Account")
        if payload.get("primary_email"):
            payload["primary_email"] = payload["primary_email"].lower()
        if payload.get("is_primary") and payload.get("account_id") is None:
            raise field_error("is_primary", "Only contacts linked to an account can be primary")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMContact,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if changes.get("account_id") is not None:
            self._require_related(session, CRMAccount, changes["account_id"], "account_id", "Account")
        if changes.get("primary_email"):
            changes["primary_email"] = changes["primary_email"].lower()
        account_id = changes.get("account_id", existing.account_id)
        if changes.get("is_primary") and account_id is None:
            raise field_error("is_primary", "Only contacts linked to an account can be primary")
        return changes

    def after_write(self, session: Session, actor_user: ActorUser, entity: CRMContact) -> None:
        if not entity.is_primary or entity.account_id is None:
            return
        others = session.scalars(
            select(CRMContact).where(
                and_(
                    CRMContact.account_id == entity.account_id,
                    CRMContact.is_primary.is_(True),
                    CRMContact.deleted_at.is_(None),
                    CRMContact.id != entity.id,
                )
            )
        ).all()
        for other in others:
            self.repository.update(
                session,
                actor_user_id=actor_user.user_id,
                entity_id=other.id,
                expected_row_version=other.row_version,
                changes={"is_primary": False},
                correlation_id=actor_user.correlation_id,
                summary="primary contact demoted",
            )


LEAD_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "new": {"contacted", "qualified", "unqualified", "nurture"},
    "contacted": {"qualified", "unqualified", "nurture"},
    "qualified": {"contacted", "unqualified", "nurture"},
    "nurture": {"contacted", "qualified", "unqualified"},
    "unqualified": {"new", "nurture"},
    "converted": set(),
}


class LeadService(EntityService[CRMLead, LeadRead]):
    entity_type = "lead"
    model = CRMLead
    read_model = LeadRead
    list_filters = ("status", "lead_source", "rating", "owner_id")
    supports_custom_fields = True

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("email"):
            payload["email"] = payload["email"].lower()
        if payload["status"] == "unqualified" and not payload.get("unqualified_reason"):
            raise field_error("unqualified_reason", "A reason is required when a lead is unqualified")
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMLead,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if existing.status == "converted":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="converted lead is read-only")
        if changes.get("email"):
            changes["email"] = changes["email"].lower()
        return changes

    def change_status(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadStatusChange,
    ) -> LeadRead:
        lead = self.repository.require(session, lead_id)
        if dto.status == lead.status:
            return self.to_read(session, lead)
        if dto.status not in LEAD_STATUS_TRANSITIONS[lead.status]:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"cannot move lead from {lead.status} to {dto.status}",
            )
        changes: dict[str, Any] = {"status": dto.status}
        if dto.status == "unqualified":
            if not dto.unqualified_reason:
                raise field_error("unqualified_reason", "A reason is required when a lead is unqualified")
            changes["unqualified_reason"] = dto.unqualified_reason
        previous = lead.status
        lead = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=lead_id,
            expected_row_version=dto.row_version,
            changes=changes,
            operation="status_change",
            correlation_id=actor_user.correlation_id,
            summary=f"lead moved from {previous} to {dto.status}",
        )
        session.commit()
        session.refresh(lead)
        return self.to_read(session, lead)

    def convert(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadConvertRequest,
    ) -> LeadRead:
        lead = self.repository.require(session, lead_id)
        if lead.status == "converted":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead already converted")
        if lead.status != "qualified":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="lead must be qualified before conversion")
        if lead.row_version != dto.row_version:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="row_version conflict")

        full_name = f"{lead.first_name} {lead.last_name}"
        if dto.account_id is not None:
            account = account_service.repository.require(session, dto.account_id)
        else:
            account_name = dto.account_name or lead.company_name or full_name
            account = account_service.find_by_name(session, account_name)
            if account is None:
                account = account_service.repository.create(
                    session,
                    actor_user_id=actor_user.user_id,
                    values=account_service.build_create_values(
                        session,
                        actor_user,
                        {"legal_name": account_name, "account_type": "customer", "currency": lead.currency},
                    ),
                    correlation_id=actor_user.correlation_id,
                    summary=f"account created from lead {full_name}",
                )

        contact = contact_service.repository.create(
            session,
            actor_user_id=actor_user.user_id,
            values={
                "account_id": account.id,
                "first_name": lead.first_name,
                "last_name": lead.last_name,
                "primary_email": lead.email,
                "phones": [lead.phone] if lead.phone else [],
                "utm": lead.utm,
                "owner_id": lead.owner_id,
                "opt_in_source": f"lead:{lead.lead_source}",
            },
            correlation_id=actor_user.correlation_id,
            summary=f"contact created from lead {full_name}",
        )

        opportunity = None
        if dto.create_opportunity:
            opportunity = opportunity_service.repository.create(
                session,
                actor_user_id=actor_user.user_id,
                values=opportunity_service.build_create_values(
                    session,
                    actor_user,
                    {
                        "name": dto.opportunity_name or f"{account.legal_name} - {full_name}",
                        "account_id": account.id,
                        "contact_id": contact.id,
                        "owner_id": lead.owner_id,
                        "stage": "prospecting",
                        "amount": dto.amount if dto.amount is not None else (lead.estimated_value or 0),
                        "currency": lead.currency,
                        "probability": None,
                        "lead_source": lead.lead_source,
                        "expected_close_date": dto.expected_close_date,
                    },
                ),
                correlation_id=actor_user.correlation_id,
                summary=f"opportunity created from lead {full_name}",
            )

        lead = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=lead_id,
            expected_row_version=dto.row_version,
            changes={
                "status": "converted",
                "converted_at": utcnow(),
                "converted_account_id": account.id,
                "converted_contact_id": contact.id,
                "converted_opportunity_id": opportunity.id if opportunity is not None else None,
            },
            operation="convert",
            correlation_id=actor_user.correlation_id,
            summary=f"lead converted to account {account.legal_name}",
        )
        session.commit()
        session.refresh(lead)
        logger.info(
            "crm.lead.converted",
            extra={"entity_type": "lead", "entity_id": str(lead.id), "actor_user_id": actor_user.user_id},
        )
        return self.to_read(session, lead)


CLOSED_STAGES = {"closed-won", "closed-lost"}
STAGE_DEFAULT_PROBABILITY: dict[str, int] = {
    "prospecting": 10,
    "qualification": 25,
    "proposal": 50,
    "negotiation": 75,
    "closed-won": 100,
    "closed-lost": 0,
}


def stage_flags(stage: str) -> dict[str, bool]:
    return {"is_closed": stage in CLOSED_STAGES, "is_won": stage == "closed-won"}


class OpportunityService(EntityService[CRMOpportunity, OpportunityRead]):
    entity_type = "opportunity"
    model = CRMOpportunity
    read_model = OpportunityRead
    list_filters = ("account_id", "contact_id", "stage", "owner_id", "forecast_category", "is_closed")
    supports_custom_fields = True

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload.get("account_id"), "account_id", "Account")
        self._require_related(session, CRMContact, payload.get("contact_id"), "contact_id", "Contact")
        stage = payload.get("stage", "prospecting")
        if payload.get("probability") is None:
            payload["probability"] = STAGE_DEFAULT_PROBABILITY[stage]
        payload["stage_entered_at"] = utcnow()
        payload.update(stage_flags(stage))
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMOpportunity,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if changes.get("contact_id") is not None:
            self._require_related(session, CRMContact, changes["contact_id"], "contact_id", "Contact")
        if existing.is_closed and "probability" in changes:
            raise field_error("probability", "Probability is fixed once an opportunity is closed")
        return changes

    def change_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        opportunity_id: uuid.UUID,
        dto: OpportunityStageChange,
    ) -> OpportunityRead:
        opportunity = self.repository.require(session, opportunity_id)
        previous = opportunity.stage
        if dto.stage == previous:
            return self.to_read(session, opportunity)
        if dto.stage == "closed-lost" and not dto.loss_reason:
            raise field_error("loss_reason", "A loss reason is required when closing as lost")

        closing = dto.stage in CLOSED_STAGES
        changes: dict[str, Any] = {
            "stage": dto.stage,
            "stage_entered_at": utcnow(),
            **stage_flags(dto.stage),
        }
        if closing:
            changes["probability"] = STAGE_DEFAULT_PROBABILITY[dto.stage]
            changes["forecast_category"] = "committed" if dto.stage == "closed-won" else "omitted"
            changes["actual_close_date"] = dto.actual_close_date or utcnow().date()
            changes["loss_reason"] = dto.loss_reason if dto.stage == "closed-lost" else None
        else:
            changes["probability"] = (
                dto.probability if dto.probability is not None else STAGE_DEFAULT_PROBABILITY[dto.stage]
            )
            changes["actual_close_date"] = None
            changes["loss_reason"] = None
            if previous in CLOSED_STAGES:
                changes["forecast_category"] = "pipeline"

        opportunity = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=opportunity_id,
            expected_row_version=dto.row_version,
            changes=changes,
            operation="stage_change",
            correlation_id=actor_user.correlation_id,
            summary=f"stage changed from {previous} to {dto.stage}",
        )
        session.commit()
        session.refresh(opportunity)
        return self.to_read(session, opportunity)

    def to_read(self, session: Session, entity: CRMOpportunity) -> OpportunityRead:
        read = super().to_read(session, entity)
        entered = ensure_aware(entity.stage_entered_at)
        age = (utcnow() - entered).days if entered is not None else 0
        return read.model_copy(update={"stage_age_days": max(age, 0)})


SLA_HOURS: dict[str, int] = {"urgent": 4, "high": 8, "medium": 24, "low": 72}
TICKET_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "open": {"in-progress", "pending", "resolved", "closed"},
    "in-progress": {"pending", "resolved", "closed"},
    "pending": {"in-progress", "resolved", "closed"},
    "resolved": {"in-progress", "closed"},
    "closed": {"open"},
}


class TicketService(EntityService[CRMTicket, TicketRead]):
    entity_type = "ticket"
    model = CRMTicket
    read_model = TicketRead
    list_filters = ("status", "priority", "category", "assigned_to", "account_id", "contact_id", "sla_breached")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_related(session, CRMAccount, payload.get("account_id"), "account_id", "Account")
        self._require_related(session, CRMContact, payload.get("contact_id"), "contact_id", "Contact")
        now = utcnow()
        payload["ticket_number"] = next_document_number(session, CRMTicket, "ticket_number", "TKT")
        payload["created_at"] = now
        payload["sla_target"] = now + timedelta(hours=SLA_HOURS[payload["priority"]])
        return payload

    def build_update_values(
        self,
        session: Session,
        actor_user: ActorUser,
        existing: CRMTicket,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        if "priority" in changes and changes["priority"] != existing.priority:
            opened = ensure_aware(existing.created_at)
            changes["sla_target"] = opened + timedelta(hours=SLA_HOURS[changes["priority"]])
        if changes.get("satisfaction") is not None and existing.status not in {"resolved", "closed"}:
            raise field_error("satisfaction", "Satisfaction can only be rated on resolved or closed tickets")
        return changes

    def change_status(
        self,
        session: Session,
        actor_user: ActorUser,
        ticket_id: uuid.UUID,
        dto: TicketStatusChange,
    ) -> TicketRead:
        ticket = self.repository.require(session, ticket_id)
        previous = ticket.status
        if dto.status == previous:
            return self.to_read(session, ticket)
        if dto.status not in TICKET_STATUS_TRANSITIONS[previous]:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"cannot move ticket from {previous} to {dto.status}",
            )

        now = utcnow()
        changes: dict[str, Any] = {"status": dto.status}
        if ticket.first_response_at is None and dto.status != "open":
            changes["first_response_at"] = now
        if dto.status == "resolved":
            changes["resolved_at"] = now
            changes["sla_breached"] = self._breached(ticket, now)
        elif dto.status == "closed":
            resolved_at = ensure_aware(ticket.resolved_at) or now
            changes["resolved_at"] = resolved_at
            changes["closed_at"] = now
            changes["sla_breached"] = self._breached(ticket, resolved_at)
        else:
            changes["resolved_at"] = None
            changes["closed_at"] = None

        ticket = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=ticket_id,
            expected_row_version=dto.row_version,
            changes=changes,
            operation="status_change",
            correlation_id=actor_user.correlation_id,
            summary=f"ticket moved from {previous} to {dto.status}",
        )
        session.commit()
        session.refresh(ticket)
        return self.to_read(session, ticket)

    def refresh_sla(self, session: Session, actor_user: ActorUser, ticket_id: uuid.UUID) -> TicketRead:
        ticket = self.repository.require(session, ticket_id)
        breached = self._breached(ticket, ensure_aware(ticket.resolved_at) or utcnow())
        if breached != ticket.sla_breached:
            ticket = self.repository.update(
                session,
                actor_user_id=actor_user.user_id,
                entity_id=ticket_id,
                expected_row_version=ticket.row_version,
                changes={"sla_breached": breached},
                operation="sla_refresh",
                correlation_id=actor_user.correlation_id,
                summary="SLA breached" if breached else "SLA restored",
            )
            session.commit()
            session.refresh(ticket)
        return self.to_read(session, ticket)

    def _breached(self, ticket: CRMTicket, at: Any) -> bool:
        target = ensure_aware(ticket.sla_target)
        return target is not None and at > target


class ActivityService(EntityService[CRMActivity, ActivityRead]):
    entity_type = "activity"
    model = CRMActivity
    read_model = ActivityRead
    list_filters = ("entity_type", "entity_id", "activity_type", "owner_id")

    def build_create_values(self, session: Session, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
        target_model = ENTITY_MODELS[payload["entity_type"]]
        self._require_related(session, target_model, payload["entity_id"], "entity_id", "Target record")
        return payload

    def complete(
        self,
        session: Session,
        actor_user: ActorUser,
        activity_id: uuid.UUID,
        row_version: int,
    ) -> ActivityRead:
        activity = self.repository.require(session, activity_id)
        if activity.completed_at is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="activity already completed")
        activity = self.repository.update(
            session,
            actor_user_id=actor_user.user_id,
            entity_id=activity_id,
            expected_row_version=row_version,
            changes={"completed_at": utcnow()},
            operation="complete",
            correlation_id=actor_user.correlation_id,
            summary=f"{activity.activity_type} completed",
        )
        session.commit()
        session.refresh(activity)
        return self.to_read(session, activity)


user_service = UserService()
team_service = TeamService()
account_service = AccountService()
contact_service = ContactService()
lead_service = LeadService()
opportunity_service = OpportunityService()
ticket_service = TicketService()
activity_service = ActivityService()
