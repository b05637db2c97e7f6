from fastapi.testclient import TestClient

from app.main import API_BASE, create_app
from monstersweeper.persistence import InMemoryStore


def make_client():
    app = create_app(store=InMemoryStore())
    return TestClient(app)


def create_room(c, name="alice", mode="easy"):
    r = c.post(f"{API_BASE}/rooms", json={"player_name": name, "mode": mode})
    assert r.status_code == 200
    return r.json()


def test_modes_listing():
    c = make_client()
    body = c.get(f"{API_BASE}/modes").json()
    assert body["default"] == "normal"
    assert body["modes"]["easy"]["rows"] == 16
    assert body["modes"]["easy"]["monsters"] == {"1": 10, "2": 8, "3": 6, "4": 4, "5": 2}
    assert body["modes"]["classic"]["combat"] == "threshold"
    assert body["longPressMs"] == 300


def test_create_and_get_room():
    c = make_client()
    room = create_room(c)
    assert len(room["room_id"]) == 6
    assert room["gameState"] == "waiting"
    assert room["players"]["alice"]["isHost"] is True
    assert room["board"] is None
    s = c.get(f"{API_BASE}/rooms/{room['room_id'].lower()}").json()
    assert s["room_id"] == room["room_id"]
    assert c.get(f"{API_BASE}/rooms/NOPE00").status_code == 404


def test_create_room_validation():
    c = make_client()
    r = c.post(f"{API_BASE}/rooms", json={"player_name": "   "})
    assert r.status_code == 400
    assert "empty_name" in r.text
    assert c.post(f"{API_BASE}/rooms", json={"player_name": ""}).status_code == 422
    r = c.post(f"{API_BASE}/rooms", json={"player_name": "a", "mode": "nightmare"})
    assert r.status_code == 400
    assert "unknown_mode" in r.text
    r = c.post(f"{API_BASE}/rooms", json={"player_name": "ann/hp"})
    assert r.status_code == 400
    assert "invalid_name" in r.text


def test_join_leave_and_duplicate_names():
    c = make_client()
    room_id = create_room(c)["room_id"]
    r = c.post(f"{API_BASE}/rooms/{room_id}/join", json={"player_name": "bob"})
    assert r.status_code == 200
    assert r.json()["players"]["bob"]["color"] == "#EF4444"
    r = c.post(f"{API_BASE}/rooms/{room_id}/join", json={"player_name": "bob"})
    assert r.status_code == 400 and "name_taken" in r.text
    r = c.post(f"{API_BASE}/rooms/ZZZZZZ/join", json={"player_name": "bob"})
    assert r.status_code == 404
    r = c.post(f"{API_BASE}/rooms/{room_id}/leave", json={"player_name": "bob"})
    assert "bob" not in r.json()["players"]


def test_start_requires_host_and_hides_board():
    c = make_client()
    room_id = create_room(c)["room_id"]
    c.post(f"{API_BASE}/rooms/{room_id}/join", json={"player_name": "bob"})
    r = c.post(f"{API_BASE}/rooms/{room_id}/start", json={"player_name": "bob"})
    assert r.status_code == 403
    r = c.post(f"{API_BASE}/rooms/{room_id}/start", json={"player_name": "alice"})
    assert r.status_code == 200
    s = r.json()
    assert s["gameState"] == "playing"
    assert s["hp"] == 10 and s["level"] == 1 and s["exp"] == 0
    assert len(s["board"]) == 16
    assert all("isMonster" not in cell for row in s["board"] for cell in row)


def test_click_mark_pin_flow():
    c = make_client()
    room_id = create_room(c)["room_id"]
    c.post(f"{API_BASE}/rooms/{room_id}/start", json={"player_name": "alice"})

    r = c.post(f"{API_BASE}/rooms/{room_id}/mark", json={"player_name": "alice", "row": 0, "col": 0})
    assert r.json()["committed"] is True
    assert r.json()["room"]["board"][0][0]["mark"] == 1
    r = c.post(f"{API_BASE}/rooms/{room_id}/mark", json={"player_name": "alice", "row": 0, "col": 0, "value": 4})
    assert r.json()["room"]["board"][0][0]["mark"] == 4
    r = c.post(f"{API_BASE}/rooms/{room_id}/mark", json={"player_name": "alice", "row": 0, "col": 0, "value": 7})
    assert r.status_code == 400

    r = c.post(f"{API_BASE}/rooms/{room_id}/click", json={"player_name": "alice", "row": 8, "col": 8})
    body = r.json()
    assert body["committed"] is True
    assert body["room"]["firstClick"] is False
    assert body["room"]["board"][8][8]["isRevealed"] is True
    assert body["room"]["board"][0][0]["mark"] == 4
    assert body["effects"]["revealedCount"] >= 1

    r = c.post(f"{API_BASE}/rooms/{room_id}/mark/clear", json={"player_name": "alice", "row": 0, "col": 0})
    assert r.json()["room"]["board"][0][0]["mark"] == 0

    r = c.post(f"{API_BASE}/rooms/{room_id}/pin", json={"player_name": "alice", "row": 1, "col": 1})
    room = r.json()["room"]
    assert room["board"][1][1]["pinned"] is True
    assert len(room["ripples"]) == 1
    assert room["ripples"][0]["color"] == "#3B82F6"


def test_click_while_waiting_is_noop():
    c = make_client()
    room_id = create_room(c)["room_id"]
    r = c.post(f"{API_BASE}/rooms/{room_id}/click", json={"player_name": "alice", "row": 0, "col": 0})
    assert r.status_code == 200
    assert r.json()["room"]["board"] is None
    assert r.json()["effects"]["revealedCount"] == 0


def test_mode_change_and_reset():
    c = make_client()
    room_id = create_room(c)["room_id"]
    r = c.post(f"{API_BASE}/rooms/{room_id}/mode", json={"mode": "huge"})
    assert r.json()["mode"] == "huge" and r.json()["maxHp"] == 30
    c.post(f"{API_BASE}/rooms/{room_id}/start", json={"player_name": "alice"})
    r = c.post(f"{API_BASE}/rooms/{room_id}/mode", json={"mode": "easy"})
    assert r.json()["mode"] == "huge"
    r = c.post(f"{API_BASE}/rooms/{room_id}/reset")
    assert r.json()["gameState"] == "playing"
    r = c.post(f"{API_BASE}/rooms/{room_id}/tick")
    assert r.json()["committed"] is True
    assert r.json()["room"]["time"] in (0, 1)


def test_websocket_pushes_updates():
    c = make_client()
    room_id = create_room(c)["room_id"]
    with c.websocket_connect(f"{API_BASE}/rooms/{room_id}/ws") as ws:
        first = ws.receive_json()
        assert first["gameState"] == "waiting"
        assert first["room_id"] == room_id
        c.post(f"{API_BASE}/rooms/{room_id}/start", json={"player_name": "alice"})
        update = ws.receive_json()
        assert update["gameState"] == "playing"
