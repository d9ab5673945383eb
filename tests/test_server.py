"""
Tests for the Flask pin API.
"""
import pytest

from pin_server import create_app
from pinboard.clock import ManualClock
from pinboard.config import PinConfig
from pinboard.persistence import SQLitePinRepository
from pinboard.store import PinStore

USER = {"X-User-Id": "u1"}


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def app_store(db_path, clock, monkeypatch):
    monkeypatch.delenv("PINBOARD_API_SECRET", raising=False)
    config = PinConfig(db_path=db_path)
    store = PinStore(config=config, clock=clock, repository=SQLitePinRepository(db_path))
    return store


@pytest.fixture
def client(app_store):
    app = create_app(app_store.config, store=app_store)
    return app.test_client()


def pin(client, entity_type, entity_id, headers=USER):
    return client.post("/api/pins", json={"entity_type": entity_type, "entity_id": entity_id},
                       headers=headers)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Pins
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["max_pins"] == 7


def test_user_header_required(client):
    resp = client.get("/api/pins")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "missing_user"


def test_pin_and_list(client):
    resp = pin(client, "task", "42")
    assert resp.status_code == 201
    created = resp.get_json()["pin"]
    assert created["pinned_at"] == created["last_accessed_at"]

    data = client.get("/api/pins", headers=USER).get_json()
    assert data["count"] == 1
    assert data["max_pins"] == 7
    assert data["pins"][0]["entity_id"] == "42"
    assert data["pins"][0]["is_stale"] is False
    assert data["pins"][0]["is_dangling"] is False


def test_users_do_not_see_each_other(client):
    pin(client, "task", "42")
    data = client.get("/api/pins", headers={"X-User-Id": "u2"}).get_json()
    assert data["count"] == 0


def test_error_statuses(client):
    assert pin(client, "calendar", "1").status_code == 400
    assert pin(client, "task", "").status_code == 400
    pin(client, "task", "1")
    dup = pin(client, "task", "1")
    assert dup.status_code == 409
    assert dup.get_json()["error"] == "duplicate_pin"
    assert client.delete("/api/pins/task/nope", headers=USER).status_code == 404


def test_capacity_is_conflict_with_actionable_message(client):
    for i in range(7):
        pin(client, "task", str(i))
    resp = pin(client, "task", "8")
    assert resp.status_code == 409
    body = resp.get_json()
    assert body["error"] == "capacity_exceeded"
    assert "Unpin something else" in body["message"]


def test_unpin_touch_and_by_id_routes(client, clock):
    first = pin(client, "project", "p").get_json()["pin"]
    pin(client, "contact", "c")
    clock.advance(days=15)
    assert client.get("/api/pins", headers=USER).get_json()["pins"][0]["is_stale"] is True

    touched = client.post("/api/pins/project/p/touch", headers=USER)
    assert touched.status_code == 200
    assert client.get("/api/pins", headers=USER).get_json()["pins"][0]["is_stale"] is False

    assert client.post(f"/api/pins/by-id/{first['id']}/touch", headers=USER).status_code == 200
    assert client.delete("/api/pins/contact/c", headers=USER).status_code == 200
    assert client.delete(f"/api/pins/by-id/{first['id']}", headers=USER).status_code == 200
    assert client.get("/api/pins", headers=USER).get_json()["count"] == 0


def test_reorder(client):
    a = pin(client, "task", "a").get_json()["pin"]["id"]
    b = pin(client, "task", "b").get_json()["pin"]["id"]

    resp = client.put("/api/pins/order", json={"ordered_ids": [b, a]}, headers=USER)
    assert resp.status_code == 200
    assert [p["id"] for p in resp.get_json()["pins"]] == [b, a]

    bad = client.put("/api/pins/order", json={"ordered_ids": [b]}, headers=USER)
    assert bad.status_code == 400
    assert bad.get_json()["error"] == "invalid_reorder"
    assert client.put("/api/pins/order", json={}, headers=USER).status_code == 400


def test_sweep(client, clock):
    pin(client, "routine", "r")
    clock.advance(days=22)
    resp = client.post("/api/pins/sweep", headers=USER)
    evicted = resp.get_json()["evicted"]
    assert [e["reason"] for e in evicted] == ["auto-expired"]
    assert evicted[0]["pin"]["entity_id"] == "r"


def test_pins_loaded_from_database_on_first_request(db_path, clock, monkeypatch):
    monkeypatch.delenv("PINBOARD_API_SECRET", raising=False)
    config = PinConfig(db_path=db_path)
    writer = PinStore(config=config, clock=clock, repository=SQLitePinRepository(db_path))
    writer.pin("u1", "list", "groceries")

    fresh = PinStore(config=config, clock=clock, repository=SQLitePinRepository(db_path))
    client = create_app(config, store=fresh).test_client()
    data = client.get("/api/pins", headers=USER).get_json()
    assert [p["entity_id"] for p in data["pins"]] == ["groceries"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth + preferences
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_api_key_required_for_mutations(app_store, monkeypatch):
    monkeypatch.setenv("PINBOARD_API_SECRET", "s3cret")
    client = create_app(app_store.config, store=app_store).test_client()

    assert pin(client, "task", "1").status_code == 401
    assert pin(client, "task", "1", headers={**USER, "X-API-Key": "wrong"}).status_code == 403
    assert pin(client, "task", "1", headers={**USER, "X-API-Key": "s3cret"}).status_code == 201
    # Reads stay open
    assert client.get("/api/pins", headers=USER).status_code == 200


def test_preferences(client):
    assert client.get("/api/preferences/pins-collapsed", headers=USER).get_json()["value"] is None
    resp = client.put("/api/preferences/pins-collapsed", json={"value": True}, headers=USER)
    assert resp.get_json()["value"] == "true"
    assert client.get("/api/preferences/pins-collapsed", headers=USER).get_json()["value"] == "true"
    assert client.put("/api/preferences/pins-collapsed", json={}, headers=USER).status_code == 400
