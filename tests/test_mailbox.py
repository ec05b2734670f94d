from chatcall.signaling.mailbox import InMemoryMailbox


def _msg(n: int) -> dict:
    return {"type": "toggle_audio", "roomId": "R1", "from": "alice", "data": {"enabled": bool(n % 2)}, "n": n}


def test_messages_drain_in_enqueue_order() -> None:
    box = InMemoryMailbox()
    box.join("R1", "bob")
    box.enqueue("bob", _msg(1))
    box.enqueue("bob", _msg(2))

    assert [m["n"] for m in box.drain("bob")] == [1, 2]


def test_drain_clears_the_queue() -> None:
    box = InMemoryMailbox()
    box.join("R1", "bob")
    box.enqueue("bob", _msg(1))

    assert box.drain("bob") != []
    assert box.drain("bob") == []


def test_enqueue_after_drain_lands_in_next_batch() -> None:
    box = InMemoryMailbox()
    box.enqueue("bob", _msg(1))
    first = box.drain("bob")
    box.enqueue("bob", _msg(2))

    assert [m["n"] for m in first] == [1]
    assert [m["n"] for m in box.drain("bob")] == [2]


def test_join_is_idempotent() -> None:
    box = InMemoryMailbox()
    box.join("R1", "alice")
    box.join("R1", "alice")

    assert box.members("R1") == {"alice"}
    assert box.rooms() == {"R1": 1}


def test_repeat_join_keeps_pending_messages() -> None:
    box = InMemoryMailbox()
    box.join("R1", "alice")
    box.enqueue("alice", _msg(1))
    box.join("R1", "alice")

    assert len(box.drain("alice")) == 1


def test_leave_purges_undelivered_messages() -> None:
    box = InMemoryMailbox()
    box.join("R1", "bob")
    box.enqueue("bob", _msg(1))
    box.leave("R1", "bob")

    assert box.drain("bob") == []
    assert "bob" not in box.pending_messages


def test_last_leave_removes_room() -> None:
    box = InMemoryMailbox()
    box.join("R1", "alice")
    box.join("R1", "bob")
    box.leave("R1", "alice")
    assert box.members("R1") == {"bob"}

    box.leave("R1", "bob")
    assert "R1" not in box.call_rooms

    box.join("R1", "carol")
    assert box.members("R1") == {"carol"}


def test_enqueue_without_join_creates_queue() -> None:
    box = InMemoryMailbox()
    box.enqueue("ghost", _msg(1))

    assert box.members("R1") == set()
    assert len(box.drain("ghost")) == 1


def test_absent_targets_are_no_ops() -> None:
    box = InMemoryMailbox()
    box.leave("nowhere", "nobody")

    assert box.drain("nobody") == []
    assert box.members("nowhere") == set()
    assert box.rooms() == {}
