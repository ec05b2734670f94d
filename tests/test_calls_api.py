from fastapi.testclient import TestClient

from chatcall.main import app

client = TestClient(app)


def _action(action: str, user: str, room: str = "R1"):
    return client.get("/api/calls", params={"action": action, "userId": user, "roomId": room})


def _poll(user: str, room: str = "R1") -> list:
    response = _action("poll", user, room)
    assert response.status_code == 200
    return response.json()["messages"]


def test_join_send_poll_round(mailbox) -> None:
    assert _action("join", "alice").json() == {"success": True}
    assert _action("join", "bob").json() == {"success": True}

    response = client.post("/api/calls", json={
        "type": "join_call", "roomId": "R1", "from": "bob", "data": {"userName": "Bob"},
    })
    assert response.status_code == 200
    assert response.json() == {"success": True}

    assert _poll("alice") == [{"type": "join_call", "roomId": "R1", "from": "bob", "data": {"userName": "Bob"}}]
    assert _poll("alice") == []
    assert _poll("bob") == []


def test_offer_goes_only_to_addressee(mailbox) -> None:
    for user in ("alice", "bob", "carol"):
        _action("join", user)

    offer = {"type": "offer", "sdp": "v=0\r\n"}
    client.post("/api/calls", json={"type": "offer", "roomId": "R1", "from": "alice", "to": "bob", "data": {"offer": offer}})

    [delivered] = _poll("bob")
    assert delivered["data"]["offer"] == offer
    assert _poll("carol") == []


def test_leave_drops_pending_messages(mailbox) -> None:
    _action("join", "alice")
    _action("join", "bob")
    client.post("/api/calls", json={"type": "toggle_audio", "roomId": "R1", "from": "alice", "data": {"enabled": True}})

    _action("leave", "bob")

    assert _poll("bob") == []
    assert mailbox.members("R1") == {"alice"}


def test_unknown_message_type_is_accepted_and_dropped(mailbox) -> None:
    _action("join", "alice")
    _action("join", "bob")

    response = client.post("/api/calls", json={"type": "wave", "roomId": "R1", "from": "alice"})

    assert response.status_code == 200
    assert _poll("bob") == []


def test_missing_ids_are_rejected(mailbox) -> None:
    response = client.get("/api/calls", params={"action": "join", "userId": "alice"})

    assert response.status_code == 400
    assert response.json()["detail"] == "User ID and Room ID required"


def test_invalid_action_is_rejected(mailbox) -> None:
    response = _action("dance", "alice")

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid action"


def test_message_without_sender_is_invalid(mailbox) -> None:
    response = client.post("/api/calls", json={"type": "join_call", "roomId": "R1"})

    assert response.status_code == 422


def test_call_rooms_listing(mailbox) -> None:
    _action("join", "alice", "R1")
    _action("join", "bob", "R1")
    _action("join", "carol", "R2")

    assert client.get("/api/calls/rooms").json() == {"rooms": {"R1": 2, "R2": 1}}

    _action("leave", "carol", "R2")
    assert client.get("/api/calls/rooms").json() == {"rooms": {"R1": 2}}


def test_config_lists_public_stun(mailbox) -> None:
    servers = client.get("/config").json()["iceServers"]

    assert {"urls": "stun:stun.l.google.com:19302"} in servers


def test_health() -> None:
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["service"] == "chatcall"
