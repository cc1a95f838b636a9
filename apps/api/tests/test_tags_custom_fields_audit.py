from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.database import Base, get_db
from agency_crm.core.rbac import resolve_permissions
from agency_crm.crm.api import get_current_user
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


def _actor(role: str) -> ActorUser:
    return ActorUser(user_id=f"{role}-1", permissions=resolve_permissions([role]), roles=[role], correlation_id="corr-test")


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: _actor("manager")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def account(client: TestClient) -> dict:
    response = client.post("/api/crm/accounts", json={"legal_name": "Acme Trading"})
    assert response.status_code == 201
    return response.json()


def _create_tag(client: TestClient, name: str, color: str | None = None) -> dict:
    response = client.post("/api/crm/tags", json={"name": name, "color": color})
    assert response.status_code == 201, response.text
    return response.json()


def _define_field(client: TestClient, entity_type: str, **payload: object) -> dict:
    response = client.post(f"/api/crm/custom-fields/{entity_type}", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_tags_attach_and_detach(client: TestClient, account: dict) -> None:
    vip = _create_tag(client, "VIP", "#FFAA00")
    _create_tag(client, "Enterprise")

    duplicate = client.post("/api/crm/tags", json={"name": " VIP "})
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "tag already exists"

    assert [tag["name"] for tag in client.get("/api/crm/tags").json()] == ["Enterprise", "VIP"]

    path = f"/api/crm/tags/account/{account['id']}"
    attached = client.post(path, json={"tag_id": vip["id"]})
    assert attached.status_code == 200
    assert [tag["name"] for tag in attached.json()] == ["VIP"]

    # Attaching twice is a no-op.
    assert [tag["id"] for tag in client.post(path, json={"tag_id": vip["id"]}).json()] == [vip["id"]]

    detached = client.delete(f"{path}/{vip['id']}")
    assert detached.status_code == 200
    assert detached.json() == []

    missing_link = client.delete(f"{path}/{vip['id']}")
    assert missing_link.status_code == 404
    assert missing_link.json()["message"] == "tag not attached"

    reattached = client.post(path, json={"tag_id": vip["id"]})
    assert [tag["name"] for tag in reattached.json()] == ["VIP"]


def test_tag_errors(client: TestClient, account: dict) -> None:
    unknown_tag = client.post(
        f"/api/crm/tags/account/{account['id']}",
        json={"tag_id": "00000000-0000-0000-0000-000000000001"},
    )
    assert unknown_tag.status_code == 404
    assert unknown_tag.json()["message"] == "tag not found"

    tag = _create_tag(client, "VIP")
    unknown_entity = client.post(
        "/api/crm/tags/contact/00000000-0000-0000-0000-000000000002",
        json={"tag_id": tag["id"]},
    )
    assert unknown_entity.status_code == 404
    assert unknown_entity.json()["message"] == "contact not found"

    bad_color = client.post("/api/crm/tags", json={"name": "Loud", "color": "red"})
    assert bad_color.status_code == 422


def test_marketing_can_tag_but_support_cannot(client: TestClient, account: dict) -> None:
    tag = _create_tag(client, "Newsletter")

    app.dependency_overrides[get_current_user] = lambda: _actor("support")
    denied = client.post(f"/api/crm/tags/account/{account['id']}", json={"tag_id": tag["id"]})
    assert denied.status_code == 403
    assert denied.json()["message"] == "Missing permission: crm.tags.manage"

    app.dependency_overrides[get_current_user] = lambda: _actor("marketing")
    allowed = client.post(f"/api/crm/tags/account/{account['id']}", json={"tag_id": tag["id"]})
    assert allowed.status_code == 200


def test_custom_field_definitions(client: TestClient) -> None:
    created = _define_field(
        client,
        "account",
        field_key="budget_band",
        label="Budget band",
        data_type="select",
        allowed_values=["small", "large"],
    )
    assert created["entity_type"] == "account"
    assert created["allowed_values"] == ["small", "large"]

    duplicate = client.post(
        "/api/crm/custom-fields/account",
        json={"field_key": "budget_band", "label": "Again", "data_type": "text"},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "custom field definition already exists"

    bad_key = client.post(
        "/api/crm/custom-fields/account",
        json={"field_key": "Budget Band", "label": "Bad", "data_type": "text"},
    )
    assert bad_key.status_code == 422
    assert bad_key.json()["message"] == "field_key must be snake_case"
    assert bad_key.json()["code"] == "crm_custom_field_create_failed"

    select_without_values = client.post(
        "/api/crm/custom-fields/account",
        json={"field_key": "tier", "label": "Tier", "data_type": "select"},
    )
    assert select_without_values.status_code == 422
    assert select_without_values.json()["message"] == "allowed_values required for select"

    unsupported_entity = client.post(
        "/api/crm/custom-fields/ticket",
        json={"field_key": "budget", "label": "Budget", "data_type": "number"},
    )
    assert unsupported_entity.status_code == 422

    listed = client.get("/api/crm/custom-fields/account").json()
    assert [item["field_key"] for item in listed] == ["budget_band"]


def test_custom_values_are_typed(client: TestClient, account: dict) -> None:
    _define_field(client, "account", field_key="budget", label="Budget", data_type="number")
    _define_field(client, "account", field_key="renewal_on", label="Renewal", data_type="date")
    path = f"/api/crm/custom-fields/account/{account['id']}/values"

    stored = client.put(path, json={"budget": 1500, "renewal_on": "2026-12-01"})
    assert stored.status_code == 200
    assert stored.json() == {"budget": 1500.0, "renewal_on": "2026-12-01"}

    assert client.get(f"/api/crm/accounts/{account['id']}").json()["custom_fields"] == {
        "budget": 1500.0,
        "renewal_on": "2026-12-01",
    }

    wrong_type = client.put(path, json={"budget": "lots"})
    assert wrong_type.status_code == 422
    assert wrong_type.json()["message"] == "budget must be number"

    unknown = client.put(path, json={"shoe_size": 44})
    assert unknown.status_code == 422
    assert unknown.json()["message"] == "unknown custom fields: shoe_size"

    cleared = client.put(path, json={"budget": None})
    assert cleared.json() == {"renewal_on": "2026-12-01"}


def test_required_custom_fields_block_create(client: TestClient, db_session: Session) -> None:
    _define_field(client, "lead", field_key="region_code", label="Region", data_type="text", is_required=True)

    missing = client.post("/api/crm/leads", json={"first_name": "Omar", "last_name": "Saleh"})
    assert missing.status_code == 422
    assert missing.json()["message"] == "missing required custom fields: region_code"
    db_session.rollback()

    created = client.post(
        "/api/crm/leads",
        json={"first_name": "Omar", "last_name": "Saleh", "custom_fields": {"region_code": "ADE"}},
    )
    assert created.status_code == 201
    assert created.json()["custom_fields"] == {"region_code": "ADE"}


def test_audit_and_timeline(client: TestClient, account: dict) -> None:
    tag = _create_tag(client, "VIP")
    client.post(f"/api/crm/tags/account/{account['id']}", json={"tag_id": tag["id"]})
    client.patch(f"/api/crm/accounts/{account['id']}", json={"row_version": 1, "industry": "Retail"})

    entries = client.get("/api/crm/audit", params={"entity_type": "account", "entity_id": account["id"]}).json()
    assert {entry["operation"] for entry in entries} == {"create", "tag_attach", "update"}
    assert all(entry["correlation_id"] == "corr-test" for entry in entries)
    update = next(entry for entry in entries if entry["operation"] == "update")
    assert update["changed_fields"] == ["industry"]
    assert update["before"]["industry"] is None
    assert update["after"]["industry"] == "Retail"

    only_updates = client.get("/api/crm/audit", params={"operation": "update"}).json()
    assert [entry["entity_id"] for entry in only_updates] == [account["id"]]

    timeline = client.get(f"/api/crm/timeline/account/{account['id']}").json()
    assert {event["event_type"] for event in timeline} == {"account.create", "account.tag_attach", "account.update"}
    assert any(event["summary"] == "tag VIP added" for event in timeline)

    app.dependency_overrides[get_current_user] = lambda: _actor("rep")
    denied = client.get("/api/crm/audit")
    assert denied.status_code == 403
    assert denied.json()["message"] == "Missing permission: crm.audit.read"
