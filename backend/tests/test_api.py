"""
Tests for the HTTP commands and the WebSocket hub.

Each test gets a fresh session registry bound to the hub's connection
manager, so games never leak between tests.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

import services.session_registry as session_registry
from models.game import Correlation, Prompt
from routers.ws_router import manager


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def registry(monkeypatch):
    fresh = session_registry.SessionRegistry(manager)
    monkeypatch.setattr(session_registry, "_session_registry", fresh)
    return fresh


@pytest.fixture
def client(registry):
    from main import app
    with TestClient(app) as client:
        yield client


@pytest.fixture
def lobby_game(client):
    """Game C1 hosted by U1 with five players joined."""
    client.post("/api/games", json={"host_id": "U1", "host_name": "Ahab", "game_id": "C1"})
    for pid in ("U2", "U3", "U4", "U5"):
        client.post("/api/games/C1/join", json={"player_id": pid, "player_name": f"Sailor {pid}"})
    return "C1"


@pytest.fixture
def started_game(client, lobby_game):
    response = client.post(f"/api/games/{lobby_game}/begin", json={"host_id": "U1"})
    assert response.status_code == 200
    return lobby_game


# -----------------------------------------------------------------------------
# HTTP
# -----------------------------------------------------------------------------

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestLobbyEndpoints:

    def test_create_game(self, client):
        response = client.post(
            "/api/games", json={"host_id": "U1", "host_name": "Ahab", "game_id": "C1"}
        )
        assert response.status_code == 201
        assert response.json() == {"game_id": "C1", "host_id": "U1", "player_count": 1}

    def test_create_generates_id(self, client):
        response = client.post("/api/games", json={"host_id": "U1"})
        assert response.status_code == 201
        assert response.json()["game_id"]

    def test_one_game_per_channel(self, client, lobby_game):
        response = client.post(
            "/api/games", json={"host_id": "U9", "host_name": "Other", "game_id": lobby_game}
        )
        assert response.status_code == 409

    def test_join(self, client, lobby_game):
        response = client.post(
            f"/api/games/{lobby_game}/join", json={"player_id": "U6", "player_name": "Queequeg"}
        )
        assert response.status_code == 200
        assert response.json()["player_count"] == 6

    def test_duplicate_join(self, client, lobby_game):
        response = client.post(
            f"/api/games/{lobby_game}/join", json={"player_id": "U2", "player_name": "Again"}
        )
        assert response.status_code == 409
        assert client.get(f"/api/games/{lobby_game}").json()["player_count"] == 5

    def test_join_unknown_game(self, client):
        response = client.post("/api/games/NOPE/join", json={"player_id": "U2"})
        assert response.status_code == 404

    def test_status_while_waiting(self, client, lobby_game):
        body = client.get(f"/api/games/{lobby_game}").json()
        assert body["status"] == "waiting"
        assert body["phase"] == "lobby"
        assert "Waiting for Players" in body["status_text"]


class TestBeginEndpoint:

    def test_non_host_cannot_begin(self, client, lobby_game):
        response = client.post(f"/api/games/{lobby_game}/begin", json={"host_id": "U2"})
        assert response.status_code == 403

    def test_not_enough_players(self, client):
        client.post("/api/games", json={"host_id": "U1", "game_id": "C2"})
        client.post("/api/games/C2/join", json={"player_id": "U2"})
        response = client.post("/api/games/C2/begin", json={"host_id": "U1"})
        assert response.status_code == 400
        assert "at least 5" in response.json()["detail"]

    def test_begin(self, client, lobby_game):
        response = client.post(f"/api/games/{lobby_game}/begin", json={"host_id": "U1"})
        assert response.status_code == 200
        body = response.json()
        assert body["phase"] == "navigation_selection"
        assert body["turn"] == 1
        assert body["captain"] in {"U1", "U2", "U3", "U4", "U5"}

    def test_begin_twice(self, client, started_game):
        response = client.post(f"/api/games/{started_game}/begin", json={"host_id": "U1"})
        assert response.status_code == 409

    def test_public_state_hides_roles(self, client, started_game):
        body = client.get(f"/api/games/{started_game}").json()
        assert body["status"] == "in_progress"
        assert "Turn 1" in body["status_text"]
        assert all("role" not in p for p in body["players"])


class TestHostCommands:

    def test_eliminate_outside_discussion(self, client, started_game):
        response = client.post(
            f"/api/games/{started_game}/eliminate", json={"host_id": "U1", "target_id": "U3"}
        )
        assert response.status_code == 409

    def test_end_requires_host(self, client, lobby_game):
        response = client.delete(f"/api/games/{lobby_game}", params={"host_id": "U2"})
        assert response.status_code == 403

    def test_end_removes_game(self, client, registry, started_game):
        response = client.delete(f"/api/games/{started_game}", params={"host_id": "U1"})
        assert response.status_code == 200
        assert started_game not in registry.session_ids()
        assert client.get(f"/api/games/{started_game}").status_code == 404


# -----------------------------------------------------------------------------
# WebSocket
# -----------------------------------------------------------------------------

class TestWebSocket:

    def test_unknown_game_closes(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/NOPE?userId=U1") as ws:
                ws.receive_json()

    def test_ping(self, client, lobby_game):
        with client.websocket_connect(f"/ws/{lobby_game}?userId=U2") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_json(self, client, lobby_game):
        with client.websocket_connect(f"/ws/{lobby_game}?userId=U2") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            message = ws.receive_json()
            assert message["type"] == "error"
            assert message["code"] == "PARSE_ERROR"

    def test_unknown_message_type(self, client, lobby_game):
        with client.websocket_connect(f"/ws/{lobby_game}?userId=U2") as ws:
            ws.receive_json()
            ws.send_json({"type": "dance"})
            assert ws.receive_json()["code"] == "UNKNOWN_TYPE"

    def test_captain_selects_lieutenant(self, client, registry, started_game):
        """A button press over the socket reaches the controller and is acknowledged privately."""
        controller = registry.get(started_game)
        captain = controller.session.captain
        lieutenant = next(
            p.id for p in controller.session.get_alive_players() if p.id != captain
        )
        correlation = Correlation(
            session_id=started_game,
            prompt=Prompt.SELECT_LIEUTENANT,
            instance=controller.phase_instance,
        ).encode()

        with client.websocket_connect(f"/ws/{started_game}?userId={captain}") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({
                "type": "action",
                "data": {"correlation": correlation, "payload": {"value": lieutenant}},
            })
            message = ws.receive_json()

        assert message["type"] == "private"
        assert message["text"].startswith("Lieutenant selection")
        assert controller.selected_lieutenant == lieutenant

    def test_rule_violation_carries_code(self, client, registry, started_game):
        controller = registry.get(started_game)
        captain = controller.session.captain
        intruder = next(
            p.id for p in controller.session.get_alive_players() if p.id != captain
        )
        correlation = Correlation(
            session_id=started_game,
            prompt=Prompt.SELECT_LIEUTENANT,
            instance=controller.phase_instance,
        ).encode()

        with client.websocket_connect(f"/ws/{started_game}?userId={intruder}") as ws:
            assert ws.receive_json()["type"] == "connected"
            ws.send_json({
                "type": "action",
                "data": {"correlation": correlation, "payload": {"value": intruder}},
            })
            message = ws.receive_json()

        assert message["type"] == "error"
        assert message["code"] == "NOT_CAPTAIN"
        assert "Captain" in message["message"]
        assert controller.selected_lieutenant is None

    def test_undecodable_form_token(self, client, started_game):
        with client.websocket_connect(f"/ws/{started_game}?userId=U2") as ws:
            ws.receive_json()
            ws.send_json({
                "type": "form_submission",
                "data": {"correlation": "garbage", "values": {"guns": 1}},
            })
            message = ws.receive_json()
        assert message["type"] == "direct"
        assert "garbage" in message["text"]
