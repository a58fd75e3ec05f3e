import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from sadakchain.main import create_app
from sadakchain.services.location import GeocodingClient

CONFIRM_EMAIL = "Kindly Confirm E-mail - Necessary for Report Submission"


def _geo_handler(request):
    if request.url.path.endswith("/reverse"):
        return httpx.Response(200, json={"address": {"postcode": "400050"}})
    text = request.url.params["text"]
    return httpx.Response(200, json={"features": [{"properties": {"formatted": f"{text}, Mumbai", "postcode": "400001"}}]})


@pytest.fixture
def geocoder():
    settings = {
        "geoapify_key": "test-key",
        "geoapify_url": "https://geo.test",
        "nominatim_url": "https://nominatim.test",
        "user_agent": "sadakchain-tests",
        "country": "in",
        "limit": 10,
        "debounce": 0.0,
        "min_chars": 3,
        "timeout": 5.0,
    }
    return GeocodingClient(client=httpx.AsyncClient(transport=httpx.MockTransport(_geo_handler)), settings=settings)


@pytest.fixture
def client(factory, geocoder):
    with TestClient(create_app(backends=factory, geocoder=geocoder)) as client:
        yield client


def _register(client, email="driver@example.com"):
    return client.post(
        "/auth/register",
        data={"name": "Driver", "email": email, "password": "secret123", "confirm_password": "secret123"},
        follow_redirects=False,
    )


def _to_report(client):
    _register(client)
    client.post("/location/permission", data={"lat": "19.06", "lon": "72.83"}, follow_redirects=False)
    return client.post("/location/confirm", data={"location": "MG Road, Mumbai", "pincode": "400001"}, follow_redirects=False)


def _confirm_email(factory, email="driver@example.com"):
    store = factory.client_backend().store

    async def go():
        profile = await store.select("profiles", filters={"email": email}, single=True)
        await store.update("profiles", {"email_confirmed": True}, {"id": profile["id"]})
        return profile["id"]

    return asyncio.run(go())


def test_root_redirects_to_login(client):
    resp = client.get("/", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth/login"


def test_protected_pages_require_login(client):
    resp = client.get("/report", follow_redirects=False)
    assert resp.headers["location"] == "/auth/login"


def test_register_validation(client):
    resp = client.post(
        "/auth/register",
        data={"name": "Driver", "email": "driver@example.com", "password": "secret123", "confirm_password": "other123"},
    )
    assert "Passwords do not match" in resp.text
    resp = client.post(
        "/auth/register", data={"name": "Driver", "email": "driver@example.com", "password": "123", "confirm_password": "123"}
    )
    assert "Password must be at least 6 characters" in resp.text


def test_login_failure_does_not_echo_password(client):
    _register(client)
    client.post("/auth/logout")
    resp = client.post("/auth/login", data={"email": "driver@example.com", "password": "wrong-pass-xyz"})
    assert "Login Failed: Invalid email or password" in resp.text
    assert "wrong-pass-xyz" not in resp.text


def test_register_then_location_flow(client, factory):
    resp = _register(client)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/location/permission"

    resp = client.post("/location/permission", data={"lat": "19.06", "lon": "72.83"}, follow_redirects=False)
    assert resp.headers["location"] == "/location/search"
    profile = asyncio.run(factory.client_backend().store.select("profiles", filters={"email": "driver@example.com"}, single=True))
    assert profile["pincode"] == "400050"

    results = client.get("/location/search/results", params={"q": "MG Road", "immediate": 1}).json()
    assert results["results"][0]["formatted"] == "MG Road, Mumbai"
    assert client.get("/location/search/results", params={"q": "MG"}).json()["results"] == []

    resp = client.post("/location/confirm", data={"location": "", "pincode": ""})
    assert "No location selected!" in resp.text

    resp = client.post("/location/confirm", data={"location": "MG Road, Mumbai", "pincode": "400001"}, follow_redirects=False)
    assert resp.headers["location"] == "/report"
    page = client.get("/report")
    assert page.status_code == 200
    assert "MG Road, Mumbai" in page.text

    # a returning visit resumes on the report screen
    assert client.get("/", follow_redirects=False).headers["location"] == "/report"


def test_denied_permission_uses_fallback(client, monkeypatch):
    monkeypatch.setenv("FALLBACK_PINCODE", "400001")
    _register(client)
    resp = client.post("/location/permission", data={"denied": "1"}, follow_redirects=False)
    assert resp.headers["location"] == "/location/search"


def test_submit_without_vote(client):
    _to_report(client)
    resp = client.post("/report/submit", data={"vote": ""})
    assert resp.status_code == 400
    assert "Please vote for the road condition" in resp.text


def test_unconfirmed_submit_shows_notice(client, factory):
    _to_report(client)
    resp = client.post(
        "/report/submit",
        data={"vote": "poor"},
        files=[("files", ("pothole.jpg", b"jpeg-bytes", "image/jpeg"))],
    )
    assert resp.status_code == 200
    assert CONFIRM_EMAIL in resp.text
    rows = asyncio.run(factory.client_backend().store.select("reports_unconfirmed"))
    assert len(rows) == 1
    assert rows[0]["vote"] == "poor"
    assert len(rows[0]["files"]) == 1


def test_confirmed_submit_redirects(client, factory):
    _to_report(client)
    uid = _confirm_email(factory)
    resp = client.post("/report/submit", data={"vote": "good"}, follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/report?submitted=1"
    row = asyncio.run(factory.client_backend().store.select("reports", filters={"id": uid}, single=True))
    assert row["vote"] == "good"
    assert "Report submitted successfully!" in client.get("/report?submitted=1").text


def test_questionnaire_submit(client, factory):
    _to_report(client)
    uid = _confirm_email(factory)
    resp = client.post(
        "/report/questionnaire",
        data={
            "q1": "Daily",
            "q2": "Car",
            "q3": ["Potholes", "Cracks"],
            "q4": "3-6 months",
            "q5": "Not sure",
            "comments": "Near the bus stop",
        },
        follow_redirects=False,
    )
    assert resp.headers["location"] == "/report?questionnaire=1"
    response = asyncio.run(
        factory.client_backend().store.select("questionnaire_responses_confirmed", filters={"report_id": uid}, single=True)
    )
    assert response["answers"]["q3"] == ["Potholes", "Cracks"]


def test_incomplete_questionnaire(client):
    _to_report(client)
    resp = client.post("/report/questionnaire", data={"q1": "Daily"})
    assert resp.status_code == 400
    assert "Please answer all questions before submitting." in resp.text


def test_draft_autosave(client):
    _to_report(client)
    client.post("/report/draft", data={"vote": "fair", "files_names": ["a.jpg"]})
    page = client.get("/report").text
    assert 'value="fair" checked' in page
    assert "Previously selected: a.jpg" in page


def test_logout_clears_state(client):
    _to_report(client)
    client.post("/report/draft", data={"vote": "fair"})
    resp = client.post("/auth/logout", follow_redirects=False)
    assert resp.headers["location"] == "/auth/login?logged_out=1"
    assert client.get("/report", follow_redirects=False).headers["location"] == "/auth/login"

    resp = client.post("/auth/login", data={"email": "driver@example.com", "password": "secret123"}, follow_redirects=False)
    assert resp.headers["location"] == "/location/permission"
