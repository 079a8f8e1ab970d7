import random

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app import store as store_module
from app.routes import admin as admin_routes
from app.services import speed_dating as speed_dating_service
from app.services.rate_limit import limiter


@pytest.fixture
def client(monkeypatch, store):
    monkeypatch.setattr(m, "wait_for_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "create_tables", lambda *args, **kwargs: None)
    monkeypatch.setattr(store_module, "_default_store", store)
    monkeypatch.setattr(speed_dating_service, "registry", speed_dating_service.CoordinatorRegistry(store, rng=random.Random(0)))
    monkeypatch.setattr(admin_routes, "ADMIN_TOKEN", "secret")
    limiter.reset()
    return TestClient(m.app)


def _as(uid):
    return {"X-User-Id": uid}


def test_scaffold_health_endpoints(client):
    for module in ("speed-dating", "lineup", "admin"):
        res = client.get(f"/_scaffold/{module}/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"
    assert client.get("/health").json() == {"status": "ok"}


def test_user_header_is_required(client):
    assert client.get("/speed-dating/state").status_code == 401


def test_speed_dating_flow_over_http(client, clock, make_user):
    make_user("alice", "female")
    make_user("bob", "male")

    res = client.post("/speed-dating/search", headers=_as("alice"))
    assert res.status_code == 200
    assert res.json()["step"] == "searching"

    clock.advance(1)
    res = client.post("/speed-dating/search", headers=_as("bob"), json={"preferences": {"ageMin": 21}})
    body = res.json()
    assert body["step"] == "results"
    assert body["candidates"][0]["id"] == "alice"

    assert client.post("/speed-dating/select", headers=_as("bob"), json={"candidate_id": "mallory"}).status_code == 404
    assert client.post("/speed-dating/select", headers=_as("bob"), json={"candidate_id": "alice"}).json()["step"] == "detail"

    res = client.post("/speed-dating/connect", headers=_as("bob"))
    assert res.json()["step"] == "chat"
    assert res.json()["connectionId"] == "speed_alice_bob"

    assert client.post("/speed-dating/connect", headers=_as("bob")).status_code == 409

    assert client.post("/speed-dating/end-chat", headers=_as("bob")).json()["step"] == "rejection"
    res = client.post("/speed-dating/rejection", headers=_as("bob"), json={"reason": "Other"})
    assert res.json()["step"] == "exited"

    state = client.get("/speed-dating/state", headers=_as("alice")).json()
    assert state["step"] in {"searching", "results"}
    assert client.post("/speed-dating/back", headers=_as("alice")).json()["step"] == "exited"


def test_profile_required_for_search(client):
    assert client.post("/speed-dating/search", headers=_as("ghost")).status_code == 404


def test_rejection_reasons_listed(client):
    reasons = client.get("/speed-dating/rejection-reasons").json()["reasons"]
    assert "Other" in reasons


def test_lineup_endpoints(client, clock, make_user):
    make_user("adam", "male")
    res = client.post("/lineup/join", headers=_as("adam"), json={"category": "Romance"})
    assert res.status_code == 200
    sid = res.json()["sessionId"]

    res = client.post(f"/lineup/{sid}/actions", headers=_as("viewer"), json={"to_user_id": "adam", "action": "pop"})
    assert res.status_code == 200
    assert client.post(f"/lineup/{sid}/actions", headers=_as("adam"), json={"to_user_id": "adam", "action": "pop"}).status_code == 400
    assert client.post(f"/lineup/{sid}/actions", headers=_as("viewer"), json={"to_user_id": "adam", "action": "hug"}).status_code == 422

    spotlight = client.get(f"/lineup/{sid}/spotlight").json()
    assert spotlight["tracks"]["male"]["currentContestantId"] == "adam"
    assert client.get("/lineup/missing/spotlight").status_code == 404

    res = client.post(f"/lineup/{sid}/rotation-requests", headers=_as("adam"), json={"gender": "male"})
    assert res.json()["status"] == "pending"

    assert client.get("/lineup/eligibility", headers=_as("adam")).json() == {"eligible": True, "seconds_remaining": 0}


def test_admin_job_triggers_need_token(client, make_user):
    assert client.post("/admin/lineup/rotate").status_code == 401
    assert client.post("/admin/lineup/rotate", headers={"X-Admin-Token": "wrong"}).status_code == 401

    headers = {"X-Admin-Token": "secret"}
    assert client.post("/admin/lineup/rotate", headers=headers).json()["job"] == "rotation"
    assert client.post("/admin/lineup/requests", headers=headers).json()["summary"]["processed"] == 0
    assert client.post("/admin/lineup/eliminate", headers=headers).json()["summary"]["eliminated"] == 0


def test_eliminated_user_cannot_join(client, clock, make_user):
    make_user("adam", "male")
    sid = client.post("/lineup/join", headers=_as("adam"), json={"category": "Romance"}).json()["sessionId"]
    for i in range(20):
        client.post(f"/lineup/{sid}/actions", headers=_as(f"v{i}"), json={"to_user_id": "adam", "action": "pop"})
    client.post("/admin/lineup/eliminate", headers={"X-Admin-Token": "secret"})

    res = client.post("/lineup/join", headers=_as("adam"), json={"category": "Romance"})
    assert res.status_code == 403
    assert res.json()["detail"]["seconds_remaining"] == 48 * 3600


def test_exited_coordinator_is_released(client, make_user):
    make_user("alice", "female")
    client.post("/speed-dating/search", headers=_as("alice"))
    assert "alice" in speed_dating_service.registry
    assert client.post("/speed-dating/back", headers=_as("alice")).json()["step"] == "exited"
    assert "alice" not in speed_dating_service.registry


def test_lineup_match_selection_over_http(client, make_user):
    make_user("adam", "male")
    make_user("bella", "female")
    make_user("cara", "female")
    sid = client.post("/lineup/join", headers=_as("adam"), json={"category": "Romance"}).json()["sessionId"]

    res = client.post(f"/lineup/{sid}/actions", headers=_as("bella"), json={"to_user_id": "adam", "action": "like"})
    assert res.json()["isMatch"] is False

    matches = client.get("/lineup/matches", headers=_as("adam")).json()["matches"]
    assert [m["userId"] for m in matches] == ["bella"]
    assert matches[0]["isMutualMatch"] is False

    assert client.post("/lineup/matches/cara/confirm", headers=_as("adam")).status_code == 404
    assert client.post("/lineup/matches/ghost/confirm", headers=_as("adam")).status_code == 400
    res = client.post("/lineup/matches/bella/confirm", headers=_as("adam"))
    assert res.json() == {"matchId": "lineup_adam_bella", "created": True}
    assert client.get("/lineup/matches", headers=_as("adam")).json()["matches"] == []
    assert client.post("/lineup/matches/bella/dismiss", headers=_as("adam")).json() == {"dismissed": False}


def test_lineup_chat_over_http(client, clock, make_user):
    make_user("adam", "male")
    make_user("bella", "female")
    make_user("mike", "male")
    sid = client.post("/lineup/join", headers=_as("adam"), json={"category": "Romance"}).json()["sessionId"]

    assert client.post(f"/lineup/{sid}/messages", headers=_as("bella"), json={"text": "hello adam"}).status_code == 200
    clock.advance(1)
    client.post(f"/lineup/{sid}/messages", headers=_as("mike"), json={"text": "waiting my turn"})

    seen = client.get(f"/lineup/{sid}/messages", headers=_as("adam")).json()["messages"]
    assert [m["text"] for m in seen] == ["hello adam"]

    assert client.post(f"/lineup/{sid}/messages", headers=_as("adam"), json={"text": ""}).status_code == 422
    assert client.post("/lineup/missing/messages", headers=_as("adam"), json={"text": "hi"}).status_code == 404
    assert client.get("/lineup/missing/messages", headers=_as("adam")).status_code == 404
