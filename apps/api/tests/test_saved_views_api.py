from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.auth import issue_token
from agency_crm.core.config import get_settings
from agency_crm.core.database import Base, get_db
from agency_crm.crm.models import CRMSavedView
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


@pytest.fixture(autouse=True)
def clear_settings() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _auth(*roles: str, sub: str = "user-1") -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(sub, list(roles))}"}


REP = _auth("rep")
OTHER_REP = _auth("rep", sub="user-2")


def _view_payload(name: str = "Active Sales", **overrides: object) -> dict:
    payload: dict = {
        "name": name,
        "endpoint": "/api/contacts",
        "columns": ["name", "email", "department"],
        "sorts": [{"field": "name", "direction": "asc"}],
        "filters": [{"field": "isActive", "operator": "eq", "value": True}],
        "pageSize": 50,
    }
    payload.update(overrides)
    return payload


def _create_view(client: TestClient, headers: dict[str, str] = REP, **overrides: object) -> dict:
    response = client.post("/api/saved-views", json=_view_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_list_saved_views(client: TestClient) -> None:
    created = _create_view(client)

    assert created["name"] == "Active Sales"
    assert created["endpoint"] == "/api/contacts"
    assert created["columns"] == ["name", "email", "department"]
    assert created["sorts"] == [{"field": "name", "direction": "asc"}]
    assert created["filters"] == [{"field": "isActive", "operator": "eq", "value": True}]
    assert created["pageSize"] == 50
    assert created["isDefault"] is False
    assert "createdAt" in created and "updatedAt" in created

    listed = client.get("/api/saved-views", params={"endpoint": "/api/contacts"}, headers=REP)
    assert listed.status_code == 200
    assert [view["id"] for view in listed.json()] == [created["id"]]

    other_table = client.get("/api/saved-views", params={"endpoint": "/api/deals"}, headers=REP)
    assert other_table.json() == []


def test_views_are_private_to_their_owner(client: TestClient) -> None:
    created = _create_view(client)

    assert client.get("/api/saved-views", headers=OTHER_REP).json() == []
    response = client.put(f"/api/saved-views/{created['id']}", json={"pageSize": 10}, headers=OTHER_REP)
    assert response.status_code == 404
    assert response.json()["message"] == "saved view not found"
    assert response.json()["code"] == "saved_view_update_failed"

    # Names are unique per user, not globally.
    _create_view(client, headers=OTHER_REP)


def test_duplicate_name_conflicts(client: TestClient) -> None:
    _create_view(client)
    response = client.post("/api/saved-views", json=_view_payload(), headers=REP)

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "saved_view_create_failed"
    assert body["message"] == "saved view name already exists"
    assert body["correlation_id"]


def test_deleted_view_name_is_revived_with_same_id(client: TestClient, db_session: Session) -> None:
    created = _create_view(client)
    deleted = client.delete(f"/api/saved-views/{created['id']}", headers=REP)
    assert deleted.status_code == 200
    assert deleted.json() == {"status": "deleted"}
    assert client.get("/api/saved-views", headers=REP).json() == []

    revived = _create_view(client, pageSize=10, columns=["name"])

    assert revived["id"] == created["id"]
    assert revived["pageSize"] == 10
    assert revived["columns"] == ["name"]
    rows = db_session.scalars(select(CRMSavedView)).all()
    assert len(rows) == 1
    assert rows[0].deleted_at is None


def test_only_one_default_view_per_table(client: TestClient) -> None:
    first = _create_view(client, name="First", isDefault=True)
    second = _create_view(client, name="Second", isDefault=True)

    views = {view["id"]: view for view in client.get("/api/saved-views", headers=REP).json()}
    assert views[second["id"]]["isDefault"] is True
    assert views[first["id"]]["isDefault"] is False

    response = client.put(f"/api/saved-views/{first['id']}", json={"isDefault": True}, headers=REP)
    assert response.status_code == 200
    views = {view["id"]: view for view in client.get("/api/saved-views", headers=REP).json()}
    assert views[first["id"]]["isDefault"] is True
    assert views[second["id"]]["isDefault"] is False


def test_update_view_layout_and_name(client: TestClient) -> None:
    created = _create_view(client)
    _create_view(client, name="Taken")

    response = client.put(
        f"/api/saved-views/{created['id']}",
        json={"name": "Renamed", "sorts": [{"field": "createdAt", "direction": "desc"}]},
        headers=REP,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Renamed"
    assert body["sorts"] == [{"field": "createdAt", "direction": "desc"}]
    assert body["columns"] == ["name", "email", "department"]

    clash = client.put(f"/api/saved-views/{created['id']}", json={"name": "Taken"}, headers=REP)
    assert clash.status_code == 409


@pytest.mark.parametrize(
    ("overrides", "field", "message"),
    [
        ({"endpoint": "/api/unknown"}, "endpoint", "Unknown table endpoint: /api/unknown"),
        ({"columns": ["name", "shoeSize"]}, "columns", "Unknown columns: shoeSize"),
        ({"sorts": [{"field": "phone", "direction": "asc"}]}, "sorts", "Unknown sort field: phone"),
        ({"filters": [{"field": "nope", "operator": "eq", "value": 1}]}, "filters", "Unknown filter field: nope"),
    ],
)
def test_invalid_layouts_are_rejected(client: TestClient, overrides: dict, field: str, message: str) -> None:
    response = client.post("/api/saved-views", json=_view_payload(**overrides), headers=REP)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_failed"
    assert body["details"]["field_errors"][field] == [message]


def test_blank_name_fails_request_validation(client: TestClient) -> None:
    response = client.post("/api/saved-views", json=_view_payload(name=""), headers=REP)
    assert response.status_code == 422
    assert "name" in response.json()["details"]["field_errors"]


def test_saved_views_require_permissions(client: TestClient) -> None:
    response = client.get("/api/saved-views")
    assert response.status_code == 403
    assert response.json()["message"] == "Missing permission: crm.saved_views.read"

    read_only = _auth("crm.saved_views.read")
    response = client.post("/api/saved-views", json=_view_payload(), headers=read_only)
    assert response.status_code == 403
    assert response.json()["code"] == "saved_view_create_failed"
