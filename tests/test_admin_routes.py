import pytest
from fastapi.testclient import TestClient

from sadakchain.admin import create_admin_app
from sadakchain.errors import DataStoreError
from sadakchain.gateway.local import LocalDataStore
from sadakchain.models import AuthUser
from sadakchain.routers.admin_routes import validate_register

VALID = {"email": "new@example.com", "password": "secret123", "name": "New Driver", "pincode": "400001"}


@pytest.fixture
def client(factory):
    with TestClient(create_admin_app(factory)) as client:
        yield client


@pytest.mark.parametrize(
    "body, error",
    [
        (None, "No body"),
        ({}, "No body"),
        ({"email": "not-an-email", "password": "secret123", "name": "A"}, "Missing valid email"),
        ({"email": "a@example.com", "password": "123", "name": "A"}, "Password min 6 chars"),
        ({"email": "a@example.com", "password": "secret123"}, "Missing name"),
    ],
)
def test_validate_register(body, error):
    assert validate_register(body) == error


def test_register_creates_user_and_profile(client):
    resp = client.post("/api/register", json=VALID)
    assert resp.status_code == 201
    body = resp.json()
    assert body["ok"] is True
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["user_metadata"] == {"full_name": "New Driver", "pincode": "400001"}
    assert body["profile"][0]["id"] == body["user"]["id"]
    assert body["profile"][0]["pincode"] == "400001"


def test_register_rejects_invalid_body(client):
    resp = client.post("/api/register", content=b"", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No body"}


def test_register_duplicate_email(client):
    assert client.post("/api/register", json=VALID).status_code == 201
    resp = client.post("/api/register", json=VALID)
    assert resp.status_code == 400
    assert resp.json()["error"] == "admin_create_failed"


def test_profile_failure_rolls_back_auth_user(client, factory, monkeypatch):
    async def failing_insert(self, table, rows):
        raise DataStoreError("permission denied for table profiles", status=403)

    monkeypatch.setattr(LocalDataStore, "insert", failing_insert)

    resp = client.post("/api/register", json=VALID)

    assert resp.status_code == 500
    assert resp.json()["error"] == "profile_insert_failed"
    with factory.session_factory() as db:
        assert db.query(AuthUser).count() == 0


def test_create_report(client):
    resp = client.post("/api/report", json={"userId": "u-1", "location": "MG Road, Mumbai", "pincode": "400001"})
    assert resp.status_code == 201
    report = resp.json()["report"][0]
    assert report["id"] == "u-1"
    assert report["report_pincode"] == "400001"


def test_create_report_requires_user_and_location(client):
    resp = client.post("/api/report", json={"location": "MG Road"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing userId or location"}


def test_create_report_twice_fails(client):
    body = {"userId": "u-1", "location": "MG Road, Mumbai"}
    assert client.post("/api/report", json=body).status_code == 201
    resp = client.post("/api/report", json=body)
    assert resp.status_code == 500
    assert resp.json()["error"] == "report_insert_failed"
