from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

import coinarena.api.app as app_module
from coinarena.common.config import settings


@pytest.fixture
def client(monkeypatch, tmp_path):
    test_settings = replace(
        settings,
        db_path=str(tmp_path / "arena.db"),
        enable_tick_loop=False,
        initial_bots=0,
        coin_count=10,
        random_seed=1,
    )
    monkeypatch.setattr(app_module, "settings", test_settings)
    monkeypatch.setitem(app_module.leaderboard_cache, "data", [])
    monkeypatch.setitem(app_module.leaderboard_cache, "timestamp", 0)
    with TestClient(app_module.app) as test_client:
        yield test_client


def _receive_until(ws, frame_type: str, limit: int = 10) -> dict:
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == frame_type:
            return frame
    raise AssertionError(f"no {frame_type} frame received")


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["players"] == 0
    assert body["phase"] == "idle"


def test_session_then_player_record_and_leaderboard(client):
    resp = client.post("/api/player/Ann/session", json={"score": 25, "name": "Ann"})
    assert resp.status_code == 200
    app_module.persistence.flush()

    record = client.get("/api/player/ann").json()
    assert record["player_id"] == "ann"
    assert record["best_score"] == 25
    assert record["games_played"] == 1

    entries = client.get("/api/leaderboard", params={"limit": 5}).json()["entries"]
    assert [e["player_id"] for e in entries] == ["ann"]


def test_player_errors(client):
    assert client.get("/api/player/nobody").status_code == 404
    assert client.post("/api/player/ann/session", json={"score": -1}).status_code == 422
    assert client.post("/api/player/%20/session", json={"score": 1}).status_code == 400


def test_websocket_join_ping_and_chat(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "join", "name": "Ann", "color": 120, "playerId": "ann"})
        snapshot = _receive_until(ws, "worldSnapshot")
        assert snapshot["match"]["phase"] == "running"
        assert [p["name"] for p in snapshot["players"]] == ["Ann"]
        assert snapshot["selfId"] == snapshot["players"][0]["id"]

        ws.send_json({"type": "ping"})
        assert _receive_until(ws, "pong")["serverTime"] > 0

        ws.send_json({"type": "move", "x": 5, "y": 0})
        ws.send_json({"type": "move", "x": True, "y": 0})
        ws.send_text("not json")
        ws.send_json({"type": "chat", "message": "hello"})
        chat = _receive_until(ws, "chatMessage")
        assert chat["message"] == "hello"
        assert chat["name"] == "Ann"

    assert client.get("/health").json()["players"] == 0
