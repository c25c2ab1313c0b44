"""Tests for the FastAPI surface."""

import pytest
from fastapi.testclient import TestClient

from hookrelay.main import create_app

from conftest import FakeSender


@pytest.fixture
def app(session_factory, test_settings):
    return create_app(settings=test_settings, session_factory=session_factory, sender=FakeSender())


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def _create(client, user_id=1, **overrides):
    body = {"url": "https://hooks.example.com/a", "secret": "s3cret", "events": ["note.updated"]}
    body.update(overrides)
    return client.post(f"/users/{user_id}/webhooks/", json=body)


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    health = client.get("/health").json()
    assert health["status"] == "up"
    assert health["database"] == "healthy"
    assert "redis" not in health


def test_worker_health_reports_stopped_when_disabled(client):
    assert client.get("/health/worker").json()["retry_worker"]["status"] == "stopped"


def test_event_types(client):
    items = client.get("/events/types").json()["items"]
    assert "note.updated" in items
    assert len(items) == 8


def test_create_and_list_subscription(client):
    response = _create(client, events="note.updated, site.started")
    assert response.status_code == 201
    created = response.json()
    assert created["events"] == ["note.updated", "site.started"]
    assert created["active"] is True
    assert "secret" not in created

    listed = client.get("/users/1/webhooks/").json()["items"]
    assert [item["id"] for item in listed] == [created["id"]]
    assert client.get("/users/2/webhooks/").json()["items"] == []


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"url": "ftp://hooks.example.com"}, "bad_url"),
        ({"events": ["note.updated", "nope"]}, "bad_events"),
        ({"events": []}, "bad_events"),
        ({"secret": ""}, "missing_secret"),
    ],
)
def test_create_validation_errors(client, overrides, code):
    response = _create(client, **overrides)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == code


def test_https_required_in_production(session_factory, test_settings):
    settings = test_settings.model_copy(update={"environment": "production"})
    app = create_app(settings=settings, session_factory=session_factory, sender=FakeSender())
    with TestClient(app) as client:
        response = _create(client, url="http://hooks.example.com/a")
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "insecure_url"
        assert _create(client).status_code == 201


def test_toggle_and_delete(client):
    hook_id = _create(client).json()["id"]

    assert client.post(f"/users/1/webhooks/{hook_id}/deactivate").json()["active"] is False
    assert client.post(f"/users/1/webhooks/{hook_id}/deactivate").json()["active"] is False
    assert client.post(f"/users/1/webhooks/{hook_id}/activate").json()["active"] is True
    assert client.post(f"/users/2/webhooks/{hook_id}/deactivate").status_code == 404

    assert client.delete(f"/users/1/webhooks/{hook_id}").json() == {"success": True}
    assert client.delete(f"/users/1/webhooks/{hook_id}").json() == {"success": True}
    assert client.get("/users/1/webhooks/").json()["items"] == []


def test_emit_event_dispatches_and_records(app, client):
    _create(client)

    response = client.post("/events/", json={"user_id": 1, "event": "note.updated", "data": {"path": "/a.md"}})
    assert response.status_code == 202
    assert response.json()["deliveries_started"] == 1

    app.state.dispatcher.shutdown(wait=True)
    [record] = client.get("/users/1/deliveries").json()["items"]
    assert record["event"] == "note.updated"
    assert record["attempts"] == 1
    assert record["status"] == "delivered"


def test_emit_event_without_subscribers(client):
    response = client.post("/events/", json={"user_id": 9, "event": "site.stopped", "data": None})
    assert response.status_code == 202
    assert response.json()["deliveries_started"] == 0


def test_emit_unknown_event(client):
    response = client.post("/events/", json={"user_id": 1, "event": "course.created"})
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "bad_events"


def test_purge_user(app, client):
    _create(client)
    _create(client, url="https://hooks.example.com/b")
    client.post("/events/", json={"user_id": 1, "event": "note.updated", "data": {}})
    app.state.dispatcher.shutdown(wait=True)

    assert client.delete("/users/1").json() == {"subscriptions": 2, "deliveries": 2}
    assert client.get("/users/1/webhooks/").json()["items"] == []
    assert client.get("/users/1/deliveries").json()["items"] == []
