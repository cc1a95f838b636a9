from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm import audit
from agency_crm.core.auth import issue_token
from agency_crm.core.config import get_settings
from agency_crm.core.database import Base, get_db
from agency_crm.main import app
from agency_crm.middleware.correlation_id import resolve_correlation_id


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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app, headers={"Authorization": f"Bearer {issue_token('manager-1', ['manager'])}"}) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/crm/accounts/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert uuid.UUID(header_value)
    assert response.json()["correlation_id"] == header_value
    assert response.headers.get("x-request-id") == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/crm/accounts/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_unsafe_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "not a safe id!"})
    header_value = response.headers.get("x-correlation-id")
    assert header_value != "not a safe id!"
    assert uuid.UUID(header_value)

    assert resolve_correlation_id("a" * 129) != "a" * 129
    assert resolve_correlation_id("req:42.b_c") == "req:42.b_c"


def test_validation_envelope_carries_correlation_id(client: TestClient) -> None:
    response = client.post("/api/crm/accounts", json={}, headers={"X-Correlation-Id": "corr-422"})
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_failed"
    assert body["correlation_id"] == "corr-422"


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/api/crm/accounts",
        json={"legal_name": "Corr Account"},
        headers={"X-Correlation-Id": "corr-audit-1"},
    )
    assert response.status_code == 201

    account_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "account"]
    assert account_audits
    assert account_audits[-1]["action"] == "create"
    assert account_audits[-1]["correlation_id"] == "corr-audit-1"
    assert account_audits[-1]["actor_user_id"] == "manager-1"
