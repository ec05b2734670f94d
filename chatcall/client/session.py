"""Client-side call session: local capture plus a mesh of peer connections.

One :class:`CallSessionController` owns the rooms a client takes part in.
Signaling arrives through :class:`~chatcall.client.transport.PollingTransport`
and every mutation of a room is serialized through a single ``asyncio.Lock``,
so connection setup, ICE updates and teardown never interleave.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp
from pydantic import ValidationError

from chatcall.config import ice_servers, settings
from chatcall.models import MessageType, SignalingData, SignalingMessage

from .media import LocalMedia, MediaAcquisitionError, RemoteStream, acquire_local_media
from .speaking import AudioLevelTap, SpeakingDetector
from .transport import PollingTransport, SignalingClient

logger = logging.getLogger(__name__)

ParticipantsCallback = Callable[[str, List["CallParticipant"]], None]
ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]
RemoteTrackCallback = Callable[[str, Any], None]


class CallState(str, Enum):
    IDLE = "idle"
    REQUESTING_MEDIA = "requesting-media"
    JOINED = "joined"
    IN_CALL = "in-call"
    LEFT = "left"


class PeerState(str, Enum):
    NONE = "none"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class CallParticipant:
    id: str
    name: str
    is_local: bool = False
    is_audio_enabled: bool = False
    is_video_enabled: bool = False
    stream: Optional[Union[LocalMedia, RemoteStream]] = None
    peer_state: PeerState = PeerState.NONE


@dataclass
class CallRoom:
    id: str
    local_media: Optional[LocalMedia] = None
    participants: Dict[str, CallParticipant] = field(default_factory=dict)
    peer_connections: Dict[str, Any] = field(default_factory=dict)
    # ICE candidates that arrived before their remote description
    pending_candidates: Dict[str, List[dict]] = field(default_factory=dict)

    def local_participant(self) -> Optional[CallParticipant]:
        for participant in self.participants.values():
            if participant.is_local:
                return participant
        return None


def default_peer_connection() -> RTCPeerConnection:
    servers = [RTCIceServer(**server) for server in ice_servers(settings)]
    return RTCPeerConnection(RTCConfiguration(iceServers=servers))


def parse_candidate(payload: dict):
    """Build an aiortc candidate from the browser ``RTCIceCandidateInit`` shape."""
    sdp = payload.get("candidate") or ""
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    candidate = candidate_from_sdp(sdp)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


def candidate_payload(candidate) -> dict:
    return {
        "candidate": "candidate:" + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def _description(payload: dict) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])


def _refuse(kind: str) -> bool:
    logger.warning("No confirmation handler installed; keeping %s off", kind)
    return False


class CallSessionController:
    def __init__(
        self,
        signaling: SignalingClient,
        *,
        media_factory: Optional[Callable[[], Awaitable[LocalMedia]]] = None,
        peer_factory: Optional[Callable[[], Any]] = None,
        poll_interval: float = settings.POLL_INTERVAL,
        confirm: Optional[ConfirmCallback] = None,
        on_remote_track: Optional[RemoteTrackCallback] = None,
    ) -> None:
        self.signaling = signaling
        self._media_factory = media_factory or acquire_local_media
        self._peer_factory = peer_factory or default_peer_connection
        self._confirm = confirm or _refuse
        self._on_remote_track = on_remote_track
        self.polling = PollingTransport(signaling, self.handle_message, poll_interval)

        self.call_rooms: Dict[str, CallRoom] = {}
        self.state = CallState.IDLE
        self.current_user_id: Optional[str] = None
        self.current_room_id: Optional[str] = None
        self.user_name: Optional[str] = None

        self._observers: List[ParticipantsCallback] = []
        self._confirmed: Set[str] = set()
        self._sinks: Dict[str, List[MediaBlackhole]] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #
    def on_participants_update(self, callback: ParticipantsCallback) -> None:
        self._observers.append(callback)

    def get_call_participants(self, room_id: str) -> List[CallParticipant]:
        room = self.call_rooms.get(room_id)
        if room is None:
            return []
        return list(room.participants.values())

    def room(self, room_id: str) -> Optional[CallRoom]:
        return self.call_rooms.get(room_id)

    def _notify(self, room_id: str) -> None:
        snapshot = self.get_call_participants(room_id)
        for callback in list(self._observers):
            try:
                callback(room_id, snapshot)
            except Exception:
                logger.exception("Participant observer failed for room %s", room_id)

    def create_speaking_detector(self, room_id: str, on_update: Optional[Callable[[Set[str]], None]] = None) -> SpeakingDetector:
        return SpeakingDetector(lambda: self.get_call_participants(room_id), on_update=on_update)

    # ------------------------------------------------------------------ #
    # Joining
    # ------------------------------------------------------------------ #
    async def start_call(self, room_id: str, user_id: str, user_name: str) -> None:
        """Open a fresh call room and announce ourselves in it."""
        await self._enter_call(room_id, user_id, user_name, fresh=True)

    async def join_call(self, room_id: str, user_id: str, user_name: str) -> None:
        """Join the room's call, reusing any room state this client still holds."""
        await self._enter_call(room_id, user_id, user_name, fresh=False)

    async def _enter_call(self, room_id: str, user_id: str, user_name: str, *, fresh: bool) -> None:
        async with self._lock:
            existing = self.call_rooms.get(room_id)
            local = existing.local_participant() if existing else None
            if local is not None and local.id == user_id:
                logger.info("Already in call %s as %s", room_id, user_id)
                return
            if self.current_room_id and self.current_room_id != room_id:
                await self._leave_locked(self.current_room_id)

            logger.info(f"📞 Joining call for room: {room_id}")
            self.state = CallState.REQUESTING_MEDIA
            try:
                media = await self._media_factory()
            except MediaAcquisitionError:
                self.state = CallState.IDLE
                raise
            except Exception as e:
                self.state = CallState.IDLE
                raise MediaAcquisitionError(str(e)) from e

            # Mic and camera stay off until the user turns them on
            media.set_enabled("audio", False)
            media.set_enabled("video", False)

            room = None if fresh else existing
            if room is None:
                room = CallRoom(id=room_id)
                self.call_rooms[room_id] = room
            room.local_media = media
            room.participants[user_id] = CallParticipant(id=user_id, name=user_name, is_local=True, stream=media)

            self.current_user_id = user_id
            self.current_room_id = room_id
            self.user_name = user_name
            self._confirmed.clear()
            self.state = CallState.JOINED

            if not await self.signaling.join(room_id, user_id):
                logger.warning("Signaling join for %s failed; polling will keep retrying", room_id)
            self.polling.start(room_id, user_id)
            await self.signaling.send(self._message(MessageType.JOIN_CALL, room_id, data=SignalingData(userName=user_name)))
            logger.info(f"📞 Join call message sent for user {user_name}")
            self._notify(room_id)

    # ------------------------------------------------------------------ #
    # Incoming signaling
    # ------------------------------------------------------------------ #
    async def handle_message(self, payload: Dict[str, Any]) -> None:
        try:
            message = SignalingMessage.model_validate(payload)
        except ValidationError as e:
            logger.warning("Discarding malformed signaling message: %s", e)
            return

        async with self._lock:
            room = self.call_rooms.get(message.room_id)
            if room is None or message.sender == self.current_user_id:
                logger.debug("Ignoring %s for room %s", message.type, message.room_id)
                return

            message_type = message.message_type
            if message_type in (MessageType.JOIN_CALL, MessageType.USER_JOINED):
                await self._on_user_joined(room, message.sender, message.data.user_name)
            elif message_type in (MessageType.LEAVE_CALL, MessageType.USER_LEFT):
                await self._on_user_left(room, message.sender)
            elif message_type is MessageType.OFFER:
                await self._on_offer(room, message.sender, message.data)
            elif message_type is MessageType.ANSWER:
                await self._on_answer(room, message.sender, message.data)
            elif message_type is MessageType.ICE_CANDIDATE:
                await self._on_ice_candidate(room, message.sender, message.data.candidate)
            elif message_type is MessageType.TOGGLE_AUDIO:
                self._on_remote_toggle(room, message.sender, "audio", bool(message.data.enabled))
            elif message_type is MessageType.TOGGLE_VIDEO:
                self._on_remote_toggle(room, message.sender, "video", bool(message.data.enabled))
            else:
                logger.warning("Unknown signaling message type: %s", message.type)

    async def _on_user_joined(self, room: CallRoom, remote_id: str, user_name: Optional[str]) -> None:
        logger.info(f"👤 User {user_name} joined call in room {room.id}")
        # A repeated join means the remote restarted; drop whatever we had with it
        await self._close_peer(room, remote_id, drop_candidates=True)
        room.participants[remote_id] = CallParticipant(id=remote_id, name=user_name or "Unknown User")

        local = room.local_participant()
        if local is not None and room.local_media is not None:
            await self._send_offer(room, local.id, remote_id)
        self._notify(room.id)

    async def _on_user_left(self, room: CallRoom, remote_id: str) -> None:
        logger.info(f"👤 User {remote_id} left call in room {room.id}")
        await self._close_peer(room, remote_id, drop_candidates=True)
        if room.participants.pop(remote_id, None) is not None:
            self._notify(room.id)

    async def _on_offer(self, room: CallRoom, remote_id: str, data: SignalingData) -> None:
        local = room.local_participant()
        if local is None or room.local_media is None:
            return
        if not data.offer:
            logger.warning("Offer from %s carried no session description", remote_id)
            return

        if remote_id not in room.participants:
            room.participants[remote_id] = CallParticipant(id=remote_id, name=data.user_name or "Unknown User")
        await self._close_peer(room, remote_id)
        peer = self._create_peer(room, local.id, remote_id)
        try:
            await peer.setRemoteDescription(_description(data.offer))
            await self._flush_candidates(room, remote_id, peer)
            answer = await peer.createAnswer()
            await peer.setLocalDescription(answer)
            local_description = peer.localDescription
            await self.signaling.send(self._message(
                MessageType.ANSWER,
                room.id,
                to=remote_id,
                data=SignalingData(answer={"type": local_description.type, "sdp": local_description.sdp}),
            ))
            self._mark_connected(room, remote_id)
        except Exception:
            logger.exception("Error handling offer from %s", remote_id)
            self._set_peer_state(room, remote_id, PeerState.CLOSED)
        self._notify(room.id)

    async def _on_answer(self, room: CallRoom, remote_id: str, data: SignalingData) -> None:
        peer = room.peer_connections.get(remote_id)
        if peer is None or not data.answer:
            return
        try:
            await peer.setRemoteDescription(_description(data.answer))
            await self._flush_candidates(room, remote_id, peer)
            self._mark_connected(room, remote_id)
        except Exception:
            logger.exception("Error handling answer from %s", remote_id)
            self._set_peer_state(room, remote_id, PeerState.CLOSED)
        self._notify(room.id)

    async def _on_ice_candidate(self, room: CallRoom, remote_id: str, candidate: Optional[dict]) -> None:
        if not candidate or not candidate.get("candidate"):
            return
        peer = room.peer_connections.get(remote_id)
        if peer is None or peer.remoteDescription is None:
            room.pending_candidates.setdefault(remote_id, []).append(candidate)
            logger.debug("Buffered early ICE candidate from %s", remote_id)
            return
        await self._apply_candidate(peer, remote_id, candidate)

    def _on_remote_toggle(self, room: CallRoom, remote_id: str, kind: str, enabled: bool) -> None:
        participant = room.participants.get(remote_id)
        if participant is None or participant.is_local:
            return
        if kind == "audio":
            participant.is_audio_enabled = enabled
        else:
            participant.is_video_enabled = enabled
        self._notify(room.id)

    # ------------------------------------------------------------------ #
    # Peer connections
    # ------------------------------------------------------------------ #
    def _create_peer(self, room: CallRoom, local_id: str, remote_id: str):
        logger.info(f"🔗 Creating peer connection with {remote_id}")
        peer = self._peer_factory()
        if room.local_media is not None:
            for track in room.local_media.tracks():
                peer.addTrack(track)

        @peer.on("track")
        def on_track(track):
            self._attach_remote_track(room, remote_id, track)

        @peer.on("icecandidate")
        async def on_icecandidate(candidate):
            if candidate is None:
                return
            await self.signaling.send(self._message(
                MessageType.ICE_CANDIDATE,
                room.id,
                sender=local_id,
                to=remote_id,
                data=SignalingData(candidate=candidate_payload(candidate)),
            ))

        @peer.on("connectionstatechange")
        async def on_connectionstatechange():
            logger.info(f"🔗 Connection state with {remote_id}: {peer.connectionState}")
            if peer.connectionState == "failed":
                self._set_peer_state(room, remote_id, PeerState.CLOSED)

        room.peer_connections[remote_id] = peer
        self._set_peer_state(room, remote_id, PeerState.NEGOTIATING)
        return peer

    async def _send_offer(self, room: CallRoom, local_id: str, remote_id: str) -> None:
        peer = self._create_peer(room, local_id, remote_id)
        try:
            offer = await peer.createOffer()
            await peer.setLocalDescription(offer)
            local_description = peer.localDescription
            await self.signaling.send(self._message(
                MessageType.OFFER,
                room.id,
                to=remote_id,
                data=SignalingData(
                    offer={"type": local_description.type, "sdp": local_description.sdp},
                    userName=self.user_name,
                ),
            ))
        except Exception:
            logger.exception("Error creating offer for %s", remote_id)
            self._set_peer_state(room, remote_id, PeerState.CLOSED)

    async def _flush_candidates(self, room: CallRoom, remote_id: str, peer) -> None:
        for candidate in room.pending_candidates.pop(remote_id, []):
            await self._apply_candidate(peer, remote_id, candidate)

    async def _apply_candidate(self, peer, remote_id: str, candidate: dict) -> None:
        try:
            await peer.addIceCandidate(parse_candidate(candidate))
        except Exception as e:
            logger.error(f"Error handling ICE candidate from {remote_id}: {e}")

    async def _close_peer(self, room: CallRoom, remote_id: str, *, drop_candidates: bool = False) -> None:
        if drop_candidates:
            room.pending_candidates.pop(remote_id, None)
        peer = room.peer_connections.pop(remote_id, None)
        for sink in self._sinks.pop(remote_id, []):
            await sink.stop()
        if peer is None:
            return
        logger.info(f"🛑 Closing peer connection with {remote_id}")
        self._set_peer_state(room, remote_id, PeerState.CLOSED)
        try:
            await peer.close()
        except Exception:
            logger.exception("Error closing peer connection with %s", remote_id)

    def _set_peer_state(self, room: CallRoom, remote_id: str, state: PeerState) -> None:
        participant = room.participants.get(remote_id)
        if participant is not None:
            participant.peer_state = state

    def _mark_connected(self, room: CallRoom, remote_id: str) -> None:
        self._set_peer_state(room, remote_id, PeerState.CONNECTED)
        if self.current_room_id == room.id and self.state is CallState.JOINED:
            self.state = CallState.IN_CALL

    def _attach_remote_track(self, room: CallRoom, remote_id: str, track) -> None:
        participant = room.participants.get(remote_id)
        if participant is None:
            return
        stream = participant.stream if isinstance(participant.stream, RemoteStream) else RemoteStream()
        if track.kind == "audio":
            track = AudioLevelTap(track)
            stream.audio = track
        else:
            stream.video = track
        participant.stream = stream
        logger.info(f"📡 Received {track.kind} stream from {participant.name}")

        if self._on_remote_track is not None:
            self._on_remote_track(remote_id, track)
        else:
            # Nothing renders it; keep frames flowing so the level tap stays current
            sink = MediaBlackhole()
            sink.addTrack(track)
            self._sinks.setdefault(remote_id, []).append(sink)
            asyncio.ensure_future(sink.start())
        self._notify(room.id)

    # ------------------------------------------------------------------ #
    # Local actions
    # ------------------------------------------------------------------ #
    async def toggle_audio(self, room_id: str, enabled: bool) -> bool:
        return await self._toggle(room_id, "audio", enabled)

    async def toggle_video(self, room_id: str, enabled: bool) -> bool:
        return await self._toggle(room_id, "video", enabled)

    async def _toggle(self, room_id: str, kind: str, enabled: bool) -> bool:
        room = self.call_rooms.get(room_id)
        local = room.local_participant() if room else None
        if local is None:
            return False

        currently = local.is_audio_enabled if kind == "audio" else local.is_video_enabled
        if enabled and not currently and kind not in self._confirmed:
            answer = self._confirm(kind)
            if inspect.isawaitable(answer):
                answer = await answer
            if not answer:
                logger.info("Turning on %s was not confirmed", kind)
                return False
            self._confirmed.add(kind)

        async with self._lock:
            # The call may have ended while the prompt was open
            local = room.local_participant()
            if local is None or room.local_media is None:
                return False
            if not room.local_media.set_enabled(kind, enabled):
                logger.warning(f"🎤 No {kind} track found for user {local.id}")
                return False
            if kind == "audio":
                local.is_audio_enabled = enabled
            else:
                local.is_video_enabled = enabled
            logger.info(f"🎤 {kind} track {'enabled' if enabled else 'disabled'} for user {local.id}")

            message_type = MessageType.TOGGLE_AUDIO if kind == "audio" else MessageType.TOGGLE_VIDEO
            await self.signaling.send(self._message(message_type, room_id, sender=local.id, data=SignalingData(enabled=enabled)))
            self._notify(room_id)
        return True

    async def leave_call(self, room_id: str) -> None:
        """Leave the call. Safe to call twice or without having joined."""
        # Hardware goes first; a handler stuck on the network must not keep the camera on
        self._release_media(room_id)
        async with self._lock:
            await self._leave_locked(room_id)

    def _release_media(self, room_id: str) -> None:
        room = self.call_rooms.get(room_id)
        if room is not None and room.local_media is not None:
            room.local_media.stop()
            room.local_media = None

    async def _leave_locked(self, room_id: str) -> None:
        logger.info(f"📞 Leaving call for room: {room_id}")
        room = self.call_rooms.get(room_id)
        self._release_media(room_id)
        if self.current_room_id == room_id:
            self.polling.stop()

        local = room.local_participant() if room else None
        if room is None or local is None:
            return

        for remote_id in list(room.peer_connections):
            await self._close_peer(room, remote_id, drop_candidates=True)
        del room.participants[local.id]

        await self.signaling.send(self._message(MessageType.LEAVE_CALL, room_id, sender=local.id))
        await self.signaling.leave(room_id, local.id)

        if self.current_room_id == room_id:
            self.current_room_id = None
            self.current_user_id = None
            self.state = CallState.LEFT

        if not room.participants:
            del self.call_rooms[room_id]
            logger.info(f"🛑 Deleted empty call room {room_id}")
        else:
            self._notify(room_id)
        logger.info(f"✅ Call cleanup completed for user {local.id}")

    async def force_stop_all_media(self) -> None:
        """Release every capture device and connection without signaling."""
        async with self._lock:
            for room in self.call_rooms.values():
                if room.local_media is not None:
                    room.local_media.stop()
                    room.local_media = None
                for remote_id in list(room.peer_connections):
                    await self._close_peer(room, remote_id, drop_candidates=True)
            self.call_rooms.clear()
            self.polling.stop()
            if self.state is not CallState.IDLE:
                self.state = CallState.LEFT
            self.current_room_id = None
            self.current_user_id = None
            logger.info("✅ All media streams force stopped")

    def _message(
        self,
        message_type: MessageType,
        room_id: str,
        *,
        sender: Optional[str] = None,
        to: Optional[str] = None,
        data: Optional[SignalingData] = None,
    ) -> SignalingMessage:
        return SignalingMessage(
            type=message_type.value,
            room_id=room_id,
            sender=sender or self.current_user_id,
            to=to,
            data=data or SignalingData(),
        )
