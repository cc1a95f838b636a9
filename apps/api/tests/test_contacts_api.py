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


def _create_account(client: TestClient, legal_name: str = "Acme Trading") -> dict:
    response = client.post("/api/crm/accounts", json={"legal_name": legal_name})
    assert response.status_code == 201, response.text
    return response.json()


def _create_contact(client: TestClient, **payload: object) -> dict:
    body = {"first_name": "Sara", "last_name": "Ali", **payload}
    response = client.post("/api/crm/contacts", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_contact_normalizes_email(client: TestClient) -> None:
    account = _create_account(client)
    contact = _create_contact(
        client,
        account_id=account["id"],
        primary_email="Sara.Ali@Acme.SA",
        phones=["+966 500000000"],
        channels={"whatsapp": True},
        utm={"source": "google", "campaign": "launch"},
    )

    assert contact["primary_email"] == "sara.ali@acme.sa"
    assert contact["phones"] == ["+966 500000000"]
    assert contact["channels"] == {"email": True, "phone": False, "whatsapp": True, "sms": False}
    assert contact["utm"]["campaign"] == "launch"
    assert contact["opt_in_status"] == "pending"
    assert contact["mx_validated"] is False


def test_create_contact_email_errors(client: TestClient) -> None:
    response = client.post(
        "/api/crm/contacts",
        json={"first_name": "Sara", "last_name": "Ali", "primary_email": "sara..ali@acme.sa"},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["primary_email"] == ["Email cannot contain consecutive dots"]


def test_contact_linked_to_missing_account(client: TestClient) -> None:
    response = client.post(
        "/api/crm/contacts",
        json={"first_name": "Sara", "last_name": "Ali", "account_id": "00000000-0000-0000-0000-000000000001"},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["account_id"] == ["Account not found"]


def test_primary_contact_requires_account(client: TestClient) -> None:
    response = client.post("/api/crm/contacts", json={"first_name": "Sara", "last_name": "Ali", "is_primary": True})
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["is_primary"] == [
        "Only contacts linked to an account can be primary"
    ]


def test_new_primary_contact_demotes_the_previous_one(client: TestClient) -> None:
    account = _create_account(client)
    first = _create_contact(client, account_id=account["id"], is_primary=True)
    second = _create_contact(client, first_name="Omar", account_id=account["id"], is_primary=True)

    refreshed_first = client.get(f"/api/crm/contacts/{first['id']}").json()
    assert refreshed_first["is_primary"] is False
    assert refreshed_first["row_version"] == 2
    assert client.get(f"/api/crm/contacts/{second['id']}").json()["is_primary"] is True

    primaries = client.get("/api/crm/contacts", params={"account_id": account["id"], "is_primary": "true"}).json()
    assert [row["id"] for row in primaries] == [second["id"]]


def test_update_contact_department(client: TestClient) -> None:
    contact = _create_contact(client)
    response = client.patch(
        f"/api/crm/contacts/{contact['id']}",
        json={"row_version": contact["row_version"], "department": " Sales ", "job_title": "Lead"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["department"] == "Sales"
    assert body["job_title"] == "Lead"
    assert body["row_version"] == 2


def test_required_fields_cannot_be_nulled(client: TestClient) -> None:
    contact = _create_contact(client)
    response = client.patch(
        f"/api/crm/contacts/{contact['id']}",
        json={"row_version": contact["row_version"], "first_name": None},
    )
    assert response.status_code == 422
    assert response.json()["details"]["field_errors"]["first_name"] == ["This field cannot be empty"]


def test_rep_cannot_delete_contacts(client: TestClient) -> None:
    contact = _create_contact(client)
    response = client.delete(f"/api/crm/contacts/{contact['id']}")
    assert response.status_code == 403
    assert response.json() == {
        "code": "crm_contact_delete_failed",
        "message": "Missing permission: crm.contacts.delete",
        "details": "Missing permission: crm.contacts.delete",
        "correlation_id": response.json()["correlation_id"],
    }
