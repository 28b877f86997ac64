"""
Tests for the HTTP routes and the websocket event protocol.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from strike_engine.errors import REASON_CODES
from strike_engine.main import create_app
from strike_engine.missions import MissionStore
from strike_engine.narrative import EpilogueGenerator
from strike_engine.ws.events import ErrorCode, EventType, parse_inbound_event

ADMIN = {"X-Admin-Password": "secret"}


@pytest.fixture
def client(engine):
    app = create_app(
        engine=engine,
        missions=MissionStore(),
        epilogue_generator=EpilogueGenerator(client=MagicMock()),
        admin_password="secret",
    )
    with TestClient(app) as test_client:
        yield test_client


def receive_until(ws, event_type, limit=20):
    """Read messages until one of the given type arrives."""
    for _ in range(limit):
        message = ws.receive_json()
        if message["type"] == event_type:
            return message
    raise AssertionError(f"No {event_type} message within {limit} messages")


def mission_body(**overrides):
    body = {
        "name": "Rooftop Chase",
        "description": "A curse user flees across the rooftops.",
        "threat": "Grade 1 curse user with a summoned shikigami.",
        "objectives": ["Capture the curse user"],
        "danger_factors": ["Heights"],
        "difficulty": "Medium",
    }
    body.update(overrides)
    return body


def test_error_codes_cover_reason_codes():
    assert set(REASON_CODES) <= {code.value for code in ErrorCode}


def test_parse_inbound_event_rejects_bad_payloads():
    with pytest.raises(ValueError):
        parse_inbound_event({"type": "dance"})
    with pytest.raises(ValueError):
        parse_inbound_event({"type": "reveal", "category_index": 9})
    with pytest.raises(ValueError):
        parse_inbound_event({"name": "Alice"})

    event = parse_inbound_event({"type": "vote"})
    assert event.type == EventType.VOTE
    assert event.target_id is None


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "rooms": 0, "connections": 0}


def test_mission_routes(client):
    missions = client.get("/api/missions").json()
    assert [m["id"] for m in missions][0] == "eishu_middle_school"

    hard = client.get("/api/missions", params={"difficulty": ["Hard", "Extreme"]}).json()
    assert {m["id"] for m in hard} == {"detention_center", "shibuya_incident"}

    assert client.get("/api/missions/shibuya_incident").json()["name"] == "Shibuya Incident"
    assert client.get("/api/missions/nowhere").status_code == 404

    briefing = client.get("/api/missions/shibuya_incident/briefing").json()
    assert briefing["mission"]["id"] == "shibuya_incident"
    assert len(briefing["key_considerations"]) == 7


def test_admin_requires_password(client):
    assert client.post("/api/admin/missions", json=mission_body()).status_code == 401
    response = client.post(
        "/api/admin/missions", json=mission_body(), headers={"X-Admin-Password": "wrong"}
    )
    assert response.status_code == 401


def test_admin_mission_crud(client):
    created = client.post("/api/admin/missions", json=mission_body(), headers=ADMIN)
    assert created.status_code == 201
    mission_id = created.json()["id"]
    assert created.json()["is_custom"]

    updated = client.put(
        f"/api/admin/missions/{mission_id}", json={"difficulty": "Hard"}, headers=ADMIN
    )
    assert updated.status_code == 200
    assert updated.json()["difficulty"] == "Hard"
    assert updated.json()["name"] == "Rooftop Chase"

    custom = client.get("/api/missions", params={"is_custom": True}).json()
    assert [m["id"] for m in custom] == [mission_id]

    assert client.delete(f"/api/admin/missions/{mission_id}", headers=ADMIN).status_code == 200
    assert client.get(f"/api/missions/{mission_id}").status_code == 404
    assert client.delete(f"/api/admin/missions/{mission_id}", headers=ADMIN).status_code == 404


def test_admin_rejects_bad_difficulty_and_builtin_edits(client):
    bad = client.post("/api/admin/missions", json=mission_body(difficulty="Trivial"), headers=ADMIN)
    assert bad.status_code == 422

    builtin = client.put(
        "/api/admin/missions/shibuya_incident", json={"name": "Renamed"}, headers=ADMIN
    )
    assert builtin.status_code == 404


def test_room_routes(client, engine, game):
    assert client.get("/api/rooms/NOPE00").status_code == 404

    code, _ = game()
    state = client.get(f"/api/rooms/{code.lower()}").json()
    assert state["room_code"] == code
    assert state["phase"] == "reveal"
    assert "you" not in state

    stats = client.get(f"/api/rooms/{code}/stats")
    assert stats.status_code == 409
    assert stats.json()["detail"]["code"] == "invalid_phase"


def test_websocket_create_and_join(client, engine):
    with client.websocket_connect("/ws") as host:
        host.send_json({"type": "create_room", "name": "Alice"})
        ack = receive_until(host, "ack")
        assert ack["event"] == "create_room"
        code = ack["data"]["room_code"]
        host_id = ack["data"]["player_id"]

        with client.websocket_connect("/ws") as guest:
            guest.send_json({"type": "join_room", "room_code": code.lower(), "name": "Bob"})
            joined = receive_until(guest, "ack")
            assert joined["event"] == "join_room"
            guest_id = joined["data"]["player_id"]

            state = receive_until(host, "game_state")["state"]
            while len(state["players"]) < 2:
                state = receive_until(host, "game_state")["state"]
            assert [p["name"] for p in state["players"]] == ["Alice", "Bob"]
            assert state["you"]["player_id"] == host_id

            guest.send_json({"type": "request_state"})
            own = receive_until(guest, "game_state")["state"]
            assert own["you"]["player_id"] == guest_id

    assert engine.get_room(code) is not None


def test_websocket_errors(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json at all")
        assert receive_until(ws, "error")["code"] == ErrorCode.INVALID_EVENT.value

        ws.send_json({"type": "start_game"})
        assert receive_until(ws, "error")["code"] == ErrorCode.NOT_IN_ROOM.value

        ws.send_json({"type": "join_room", "room_code": "ZZZZZZ", "name": "Bob"})
        assert receive_until(ws, "error")["code"] == "not_found"

        ws.send_json({"type": "create_room", "name": "Alice"})
        receive_until(ws, "ack")
        ws.send_json({"type": "reveal", "category_index": 0})
        assert receive_until(ws, "error")["code"] == "invalid_phase"

        ws.send_json({"type": "start_game"})
        assert receive_until(ws, "error")["code"] == "capacity"


def test_websocket_rejoin_needs_token(client):
    with client.websocket_connect("/ws") as first:
        first.send_json({"type": "create_room", "name": "Alice"})
        ack = receive_until(first, "ack")["data"]
    code, player_id, token = ack["room_code"], ack["player_id"], ack["rejoin_token"]

    with client.websocket_connect("/ws") as second:
        second.send_json({"type": "rejoin", "room_code": code, "player_id": player_id})
        assert receive_until(second, "error")["code"] == ErrorCode.INVALID_EVENT.value

        second.send_json({
            "type": "rejoin", "room_code": code, "player_id": player_id, "rejoin_token": "guess"
        })
        assert receive_until(second, "error")["code"] == "forbidden"

        second.send_json({
            "type": "rejoin", "room_code": code.lower(), "player_id": player_id, "rejoin_token": token
        })
        rejoined = receive_until(second, "ack")
        assert rejoined["event"] == "rejoin"
        assert "rejoin_token" not in rejoined["data"]

        second.send_json({"type": "request_state"})
        state = receive_until(second, "game_state")["state"]
        assert state["you"]["player_id"] == player_id
