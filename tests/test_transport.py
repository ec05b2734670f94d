import asyncio

import httpx
import pytest

from chatcall.client.transport import PollingTransport, SignalingClient
from chatcall.main import app
from chatcall.models import SignalingMessage


def _asgi_client() -> SignalingClient:
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return SignalingClient(http=http)


def _down_client() -> SignalingClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("signaling server unreachable", request=request)

    return SignalingClient(http=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test"))


class StaticClient:
    def __init__(self, *batches) -> None:
        self.batches = list(batches)
        self.polls = 0

    async def poll(self, room_id, user_id):
        self.polls += 1
        return self.batches.pop(0) if self.batches else []


@pytest.mark.anyio
async def test_client_round_trip_through_server(mailbox) -> None:
    client = _asgi_client()
    try:
        assert await client.join("R1", "alice")
        assert await client.join("R1", "bob")
        assert await client.send(SignalingMessage(type="toggle_video", room_id="R1", sender="bob", data={"enabled": True}))

        [message] = await client.poll("R1", "alice")
        assert message == {"type": "toggle_video", "roomId": "R1", "from": "bob", "data": {"enabled": True}}
        assert await client.poll("R1", "alice") == []

        assert await client.leave("R1", "alice")
        assert mailbox.members("R1") == {"bob"}
    finally:
        await client.aclose()


@pytest.mark.anyio
async def test_transport_errors_are_no_ops() -> None:
    client = _down_client()
    try:
        assert await client.join("R1", "alice") is False
        assert await client.poll("R1", "alice") == []
        assert await client.send(SignalingMessage(type="leave_call", room_id="R1", sender="alice")) is False
    finally:
        await client.aclose()


@pytest.mark.anyio
async def test_poll_dispatches_in_order_despite_failures() -> None:
    seen = []

    async def dispatch(message):
        seen.append(message["n"])
        if message["n"] == 2:
            raise RuntimeError("handler blew up")

    transport = PollingTransport(StaticClient([{"n": 1}, {"n": 2}, {"n": 3}]), dispatch, interval=60)

    assert await transport.poll_once("R1", "alice") == 3
    assert seen == [1, 2, 3]


@pytest.mark.anyio
async def test_timer_polls_until_stopped() -> None:
    delivered = asyncio.Event()
    seen = []

    async def dispatch(message):
        seen.append(message)
        delivered.set()

    client = StaticClient([], [{"type": "user_joined"}])
    transport = PollingTransport(client, dispatch, interval=0.01)
    transport.start("R1", "alice")
    assert transport.active

    await asyncio.wait_for(delivered.wait(), timeout=2)
    transport.stop()
    polls = client.polls
    await asyncio.sleep(0.05)

    assert not transport.active
    assert seen == [{"type": "user_joined"}]
    assert client.polls == polls


@pytest.mark.anyio
async def test_start_replaces_running_timer() -> None:
    async def dispatch(message):
        pass

    transport = PollingTransport(StaticClient(), dispatch, interval=60)
    transport.start("R1", "alice")
    first = transport._task
    transport.start("R2", "alice")
    await asyncio.sleep(0.01)

    assert first.cancelled()
    assert transport.room_id == "R2"
    transport.stop()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body, expected",
    [
        ([{"type": "offer"}], []),
        ({"messages": {"type": "offer"}}, []),
        ({"messages": ["junk", {"type": "offer"}]}, [{"type": "offer"}]),
    ],
)
async def test_poll_tolerates_odd_response_bodies(body, expected) -> None:
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)), base_url="http://test")
    client = SignalingClient(http=http)
    try:
        messages = await client.poll("R1", "alice")
    finally:
        await client.aclose()

    assert messages == expected


class FlakyClient(StaticClient):
    async def poll(self, room_id, user_id):
        self.polls += 1
        if self.polls == 1:
            raise AttributeError("'list' object has no attribute 'get'")
        return [{"type": "user_joined"}] if self.polls == 2 else []


@pytest.mark.anyio
async def test_timer_survives_a_failed_tick() -> None:
    delivered = asyncio.Event()

    async def dispatch(message):
        delivered.set()

    transport = PollingTransport(FlakyClient(), dispatch, interval=0.01)
    transport.start("R1", "alice")
    try:
        await asyncio.wait_for(delivered.wait(), timeout=2)
        assert transport.active
    finally:
        transport.stop()
