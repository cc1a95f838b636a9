from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.auth import AuthUser, get_current_user as auth_get_current_user, issue_token
from agency_crm.core.config import get_settings
from agency_crm.core.database import Base, get_db
from agency_crm.crm.models import CRMContact
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
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


def test_metrics_endpoint_exposes_http_table_and_write_metrics(client: TestClient, db_session: Session) -> None:
    db_session.add(CRMContact(first_name="Metric", last_name="Contact", primary_email="metric@acme.sa"))
    db_session.commit()

    assert client.get("/health").status_code == 200
    assert client.get("/api/contacts", headers=_auth("rep")).status_code == 200
    assert client.get("/api/contacts/export", params={"format": "csv"}, headers=_auth("rep")).status_code == 200
    assert client.post("/api/crm/accounts", json={"legal_name": "Metrics Account"}, headers=_auth("manager")).status_code == 201

    metrics = client.get("/metrics", headers=_auth("admin"))
    assert metrics.status_code == 200
    assert metrics.headers["content-type"].startswith("text/plain")
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "crm_table_queries_total" in body
    assert "crm_table_exports_total" in body
    assert "crm_writes_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/contacts"' in body
    assert 'table="contacts"' in body
    assert 'format="csv"' in body
    assert 'entity_type="account",operation="create"' in body


def test_metrics_require_permission(client: TestClient) -> None:
    assert client.get("/metrics").status_code == 403
    assert client.get("/metrics", headers=_auth("manager")).status_code == 403

    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="scraper", roles=["system.metrics.read"])
    assert client.get("/metrics").status_code == 200


def test_metrics_disabled_returns_not_found(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    assert client.get("/metrics", headers=_auth("admin")).status_code == 404


def test_health_and_me(client: TestClient) -> None:
    health = client.get("/health")
    assert health.json() == {"status": "ok", "service": "Agency CRM API", "environment": "local"}

    anonymous = client.get("/me").json()
    assert anonymous["sub"] == "anonymous"
    assert anonymous["permissions"] == []

    me = client.get("/me", headers={**_auth("support", sub="agent-7")}).json()
    assert me["sub"] == "agent-7"
    assert me["roles"] == ["support"]
    assert "crm.tickets.write" in me["permissions"]
    assert "crm.tickets.delete" not in me["permissions"]
