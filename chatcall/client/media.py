"""Local capture and remote stream containers for the call client."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import av
import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from chatcall.config import Settings, settings

from .speaking import AudioLevelTap

logger = logging.getLogger(__name__)


class MediaAcquisitionError(RuntimeError):
    """Microphone or camera could not be opened."""


def _blank_frame(frame):
    if isinstance(frame, av.AudioFrame):
        blank = av.AudioFrame.from_ndarray(
            np.zeros_like(frame.to_ndarray()),
            format=frame.format.name,
            layout=frame.layout.name,
        )
        blank.sample_rate = frame.sample_rate
    else:
        blank = av.VideoFrame.from_ndarray(
            np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="rgb24"
        )
    blank.pts = frame.pts
    blank.time_base = frame.time_base
    return blank


class ToggleableTrack(MediaStreamTrack):
    """Relay of a capture track with an ``enabled`` switch.

    While disabled the track keeps flowing but carries silence or black
    frames, so peers never need to renegotiate when it is flipped.
    """

    def __init__(self, source: MediaStreamTrack, kind: str):
        super().__init__()
        self.kind = kind
        self.enabled = False
        self._source = source

    async def recv(self):  # type: ignore[override]
        frame = await self._source.recv()
        if self.enabled:
            return frame
        return _blank_frame(frame)

    def stop(self) -> None:  # type: ignore[override]
        self.enabled = False
        try:
            self._source.stop()
        finally:
            super().stop()


@dataclass
class LocalMedia:
    audio: Optional[ToggleableTrack] = None
    video: Optional[ToggleableTrack] = None
    stopped: bool = False

    def tracks(self) -> List[ToggleableTrack]:
        return [track for track in (self.audio, self.video) if track is not None]

    def set_enabled(self, kind: str, enabled: bool) -> bool:
        track = self.audio if kind == "audio" else self.video
        if track is None:
            return False
        track.enabled = enabled
        return True

    def stop(self) -> None:
        """Release the capture devices. Safe to call more than once."""
        if self.stopped:
            return
        self.stopped = True
        for track in self.tracks():
            logger.info(f"🛑 Stopping track: {track.kind} ({track.id})")
            track.stop()


@dataclass
class RemoteStream:
    audio: Optional[AudioLevelTap] = None
    video: Optional[MediaStreamTrack] = None


def _open_player(file: str, fmt: Optional[str]) -> MediaPlayer:
    return MediaPlayer(file, format=fmt)


async def acquire_local_media(cfg: Settings = settings) -> LocalMedia:
    """Open microphone and camera; both tracks start disabled."""
    try:
        mic = await asyncio.to_thread(_open_player, cfg.MEDIA_AUDIO_FILE, cfg.MEDIA_AUDIO_FORMAT)
        camera = await asyncio.to_thread(_open_player, cfg.MEDIA_VIDEO_FILE, cfg.MEDIA_VIDEO_FORMAT)
    except Exception as e:
        raise MediaAcquisitionError(f"Could not open capture devices: {e}") from e

    if mic.audio is None or camera.video is None:
        for track in (mic.audio, camera.video):
            if track is not None:
                track.stop()
        raise MediaAcquisitionError("Capture devices did not provide both audio and video")

    return LocalMedia(audio=ToggleableTrack(mic.audio, "audio"), video=ToggleableTrack(camera.video, "video"))
