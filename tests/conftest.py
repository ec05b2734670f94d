import pytest
from aiortc import RTCSessionDescription

from chatcall.client.media import LocalMedia
from chatcall.main import app
from chatcall.routers.calls import get_mailbox
from chatcall.signaling.mailbox import InMemoryMailbox


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def mailbox():
    box = InMemoryMailbox()
    app.dependency_overrides[get_mailbox] = lambda: box
    yield box
    app.dependency_overrides.pop(get_mailbox, None)


class FakeTrack:
    def __init__(self, kind: str) -> None:
        self.kind = kind
        self.id = f"fake-{kind}"
        self.enabled = True
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakePeerConnection:
    """Stands in for aiortc's RTCPeerConnection without touching the network."""

    def __init__(self, fail_remote: bool = False) -> None:
        self.fail_remote = fail_remote
        self.tracks = []
        self.handlers = {}
        self.localDescription = None
        self.remoteDescription = None
        self.candidates = []
        self.closed = False
        self.connectionState = "new"

    def on(self, event):
        def decorator(fn):
            self.handlers[event] = fn
            return fn
        return decorator

    def addTrack(self, track) -> None:
        self.tracks.append(track)

    async def createOffer(self):
        return RTCSessionDescription(sdp="v=0\r\no=- offer\r\n", type="offer")

    async def createAnswer(self):
        return RTCSessionDescription(sdp="v=0\r\no=- answer\r\n", type="answer")

    async def setLocalDescription(self, description) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description) -> None:
        if self.fail_remote:
            raise ValueError("malformed session description")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate) -> None:
        self.candidates.append(candidate)

    async def close(self) -> None:
        self.closed = True


class PeerFactory:
    def __init__(self) -> None:
        self.created = []
        self.fail_next = False

    def __call__(self) -> FakePeerConnection:
        peer = FakePeerConnection(fail_remote=self.fail_next)
        self.fail_next = False
        self.created.append(peer)
        return peer


class MediaFactory:
    def __init__(self) -> None:
        self.acquired = []

    async def __call__(self) -> LocalMedia:
        media = LocalMedia(audio=FakeTrack("audio"), video=FakeTrack("video"))
        self.acquired.append(media)
        return media


class RecordingSignaling:
    """In-process SignalingClient double that records what was sent."""

    def __init__(self) -> None:
        self.sent = []
        self.joined = []
        self.left = []
        self.inbox = []

    async def join(self, room_id, user_id):
        self.joined.append((room_id, user_id))
        return True

    async def leave(self, room_id, user_id):
        self.left.append((room_id, user_id))
        return True

    async def poll(self, room_id, user_id):
        batch, self.inbox = self.inbox, []
        return batch

    async def send(self, message):
        self.sent.append(message.to_wire())
        return True

    def sent_types(self):
        return [message["type"] for message in self.sent]


@pytest.fixture
def peers():
    return PeerFactory()


@pytest.fixture
def media():
    return MediaFactory()


@pytest.fixture
def signaling():
    return RecordingSignaling()
