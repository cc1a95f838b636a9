from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.database import Base, get_db
from agency_crm.core.rbac import resolve_permissions
from agency_crm.crm.api import get_current_user
from agency_crm.crm.models import CRMAccount, CRMOpportunity
from agency_crm.crm.service import ActorUser
from agency_crm.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> ActorUser:
        return ActorUser(
            user_id="user-1",
            permissions=resolve_permissions(["rep"]),
            roles=["rep"],
            correlation_id="corr-test",
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def account(client: TestClient) -> dict:
    response = client.post("/api/crm/accounts", json={"legal_name": "Acme Trading"})
    assert response.status_code == 201
    return response.json()


def _create_opportunity(client: TestClient, account: dict, **payload: object) -> dict:
    body = {"name": "Website redesign", "account_id": account["id"], "amount": "45000", **payload}
    response = client.post("/api/crm/opportunities", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _change_stage(client: TestClient, opportunity: dict, stage: str, **extra: object):
    return client.post(
        f"/api/crm/opportunities/{opportunity['id']}/stage",
        json={"row_version": opportunity["row_version"], "stage": stage, **extra},
    )


def test_create_uses_stage_default_probability(client: TestClient, account: dict) -> None:
    opportunity = _create_opportunity(client, account, stage="proposal")

    assert opportunity["probability"] == 50
    assert opportunity["amount"] == "45000.00"
    assert opportunity["forecast_category"] == "pipeline"
    assert opportunity["is_closed"] is False
    assert opportunity["stage_age_days"] == 0

    explicit = _create_opportunity(client, account, name="Hosting", probability=35)
    assert explicit["probability"] == 35


def test_create_cannot_start_closed(client: TestClient, account: dict) -> None:
    response = client.post(
        "/api/crm/opportunities",
        json={"name": "Shortcut", "account_id": account["id"], "stage": "closed-won"},
    )
    assert response.status_code == 422
    assert "stage" in response.json()["details"]["field_errors"]


def test_negative_amount_rejected(client: TestClient, account: dict) -> None:
    response = client.post(
        "/api/crm/opportunities",
        json={"name": "Refund", "account_id": account["id"], "amount": "-5"},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["amount"] == ["Amount must be at least 0 SAR"]


def test_close_won_sets_flags(client: TestClient, account: dict) -> None:
    opportunity = _create_opportunity(client, account)

    response = _change_stage(client, opportunity, "closed-won")
    assert response.status_code == 200
    body = response.json()
    assert body["stage"] == "closed-won"
    assert body["is_closed"] is True
    assert body["is_won"] is True
    assert body["probability"] == 100
    assert body["forecast_category"] == "committed"
    assert body["actual_close_date"] is not None

    locked = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}",
        json={"row_version": body["row_version"], "probability": 20},
    )
    assert locked.status_code == 422
    assert locked.json()["details"]["field_errors"]["probability"] == [
        "Probability is fixed once an opportunity is closed"
    ]


def test_close_lost_requires_reason_and_reopen_clears_it(client: TestClient, account: dict) -> None:
    opportunity = _create_opportunity(client, account)

    missing = _change_stage(client, opportunity, "closed-lost")
    assert missing.status_code == 422
    assert missing.json()["details"]["field_errors"]["loss_reason"] == [
        "A loss reason is required when closing as lost"
    ]

    lost = _change_stage(client, opportunity, "closed-lost", loss_reason="Chose a competitor").json()
    assert lost["is_closed"] is True
    assert lost["is_won"] is False
    assert lost["probability"] == 0
    assert lost["forecast_category"] == "omitted"
    assert lost["loss_reason"] == "Chose a competitor"

    reopened = _change_stage(client, lost, "negotiation").json()
    assert reopened["is_closed"] is False
    assert reopened["probability"] == 75
    assert reopened["forecast_category"] == "pipeline"
    assert reopened["loss_reason"] is None
    assert reopened["actual_close_date"] is None


def test_stage_change_row_version_conflict(client: TestClient, account: dict) -> None:
    opportunity = _create_opportunity(client, account)
    assert _change_stage(client, opportunity, "qualification").status_code == 200

    stale = _change_stage(client, opportunity, "proposal")
    assert stale.status_code == 409
    assert stale.json()["code"] == "crm_opportunity_stage_failed"


def test_unknown_account_is_a_field_error(client: TestClient) -> None:
    response = client.post(
        "/api/crm/opportunities",
        json={"name": "Ghost", "account_id": "00000000-0000-0000-0000-000000000009"},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["account_id"] == ["Account not found"]


def test_stage_flags_are_enforced_by_the_schema(db_session: Session) -> None:
    account = CRMAccount(legal_name="Flags", normalized_name="flags")
    db_session.add(account)
    db_session.flush()

    db_session.add(CRMOpportunity(name="Bad", account_id=account.id, stage="closed-won", is_closed=False))
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()
