import logging

import pytest

from chatcall.models import SignalingMessage
from chatcall.signaling.mailbox import InMemoryMailbox
from chatcall.signaling.protocol import SignalingRouter


@pytest.fixture
def box() -> InMemoryMailbox:
    box = InMemoryMailbox()
    for user in ("alice", "bob", "carol"):
        box.join("R1", user)
    box.join("R2", "dave")
    return box


def _message(**fields) -> SignalingMessage:
    return SignalingMessage.model_validate({"roomId": "R1", "from": "alice", **fields})


@pytest.mark.parametrize("message_type", ["join_call", "user_joined", "leave_call", "user_left", "toggle_audio", "toggle_video"])
def test_broadcast_types_reach_everyone_but_sender(box: InMemoryMailbox, message_type: str) -> None:
    recipients = SignalingRouter(box).route(_message(type=message_type, data={"userName": "Alice", "enabled": True}))

    assert sorted(recipients) == ["bob", "carol"]
    assert box.drain("alice") == []
    assert box.drain("dave") == []
    for user in ("bob", "carol"):
        [delivered] = box.drain(user)
        assert delivered["type"] == message_type
        assert delivered["from"] == "alice"
        assert delivered["roomId"] == "R1"


def test_join_call_carries_display_name_only(box: InMemoryMailbox) -> None:
    SignalingRouter(box).route(_message(type="join_call", data={"userName": "Alice", "enabled": True}))

    [delivered] = box.drain("bob")
    assert delivered["data"] == {"userName": "Alice"}
    assert "to" not in delivered


def test_toggle_carries_new_state(box: InMemoryMailbox) -> None:
    SignalingRouter(box).route(_message(type="toggle_video", data={"enabled": False}))

    [delivered] = box.drain("carol")
    assert delivered["data"] == {"enabled": False}


def test_user_left_defaults_name(box: InMemoryMailbox) -> None:
    SignalingRouter(box).route(_message(type="user_left"))

    [delivered] = box.drain("bob")
    assert delivered["data"]["userName"] == "Unknown User"


@pytest.mark.parametrize("message_type,payload", [
    ("offer", {"offer": {"type": "offer", "sdp": "v=0"}}),
    ("answer", {"answer": {"type": "answer", "sdp": "v=0"}}),
    ("ice_candidate", {"candidate": {"candidate": "candidate:1 1 udp 1 192.0.2.1 9 typ host", "sdpMid": "0"}}),
])
def test_negotiation_messages_are_unicast(box: InMemoryMailbox, message_type: str, payload: dict) -> None:
    recipients = SignalingRouter(box).route(_message(type=message_type, to="bob", data=payload))

    assert recipients == ["bob"]
    [delivered] = box.drain("bob")
    assert delivered["to"] == "bob"
    assert delivered["data"] == payload
    assert box.drain("carol") == []
    assert box.drain("alice") == []


def test_unicast_without_recipient_is_dropped(box: InMemoryMailbox, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        recipients = SignalingRouter(box).route(_message(type="answer", data={"answer": {"type": "answer", "sdp": "v=0"}}))

    assert recipients == []
    assert all(box.drain(user) == [] for user in ("alice", "bob", "carol"))
    assert "no recipient" in caplog.text


def test_unknown_type_is_discarded_with_warning(box: InMemoryMailbox, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        recipients = SignalingRouter(box).route(_message(type="screen_share"))

    assert recipients == []
    assert all(box.drain(user) == [] for user in ("alice", "bob", "carol"))
    assert "Unknown signaling message type: screen_share" in caplog.text


def test_broadcast_to_unknown_room_reaches_nobody(box: InMemoryMailbox) -> None:
    message = SignalingMessage.model_validate({"type": "join_call", "roomId": "R9", "from": "alice"})

    assert SignalingRouter(box).route(message) == []
