"""Local speaking-activity detection for remote participants.

Mirrors what a browser ``AnalyserNode`` reports: a 256-point Blackman-windowed
spectrum mapped onto 0..255 over -100..-30 dB, averaged across bins. A
participant whose average exceeds the threshold counts as speaking for that
tick. The set is rebuilt from scratch every tick with no smoothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional, Set

import numpy as np
from aiortc import MediaStreamTrack

from chatcall.config import settings

logger = logging.getLogger(__name__)

FFT_SIZE = 256
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def spectrum_level(samples, fft_size: int = FFT_SIZE) -> float:
    """Average byte-scaled magnitude of the last ``fft_size`` samples."""
    block = np.asarray(samples, dtype=np.float64).ravel()[-fft_size:]
    if block.size < fft_size:
        block = np.concatenate([np.zeros(fft_size - block.size), block])

    magnitude = np.abs(np.fft.rfft(block * np.blackman(fft_size)))[: fft_size // 2] / fft_size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitude)
    scaled = (decibels - MIN_DECIBELS) * 255.0 / (MAX_DECIBELS - MIN_DECIBELS)
    levels = np.floor(np.clip(np.nan_to_num(scaled, neginf=0.0), 0.0, 255.0))
    return float(levels.mean())


def _to_float(samples: np.ndarray) -> np.ndarray:
    if np.issubdtype(samples.dtype, np.integer):
        return samples.astype(np.float64) / float(np.iinfo(samples.dtype).max + 1)
    return samples.astype(np.float64)


class AudioLevelTap(MediaStreamTrack):
    """Pass-through audio track that remembers the latest samples."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, fft_size: int = FFT_SIZE):
        super().__init__()
        self._source = source
        self._fft_size = fft_size
        self._window = np.zeros(fft_size)

    async def recv(self):  # type: ignore[override]
        frame = await self._source.recv()
        self.feed(frame.to_ndarray())
        return frame

    def feed(self, samples: np.ndarray) -> None:
        # Packed layouts arrive as one interleaved row; planar as one row per channel
        mono = _to_float(np.asarray(samples))
        mono = mono[0] if mono.ndim > 1 and mono.shape[0] > 1 else mono.ravel()
        self._window = np.concatenate([self._window, mono])[-self._fft_size:]

    def level(self) -> float:
        return spectrum_level(self._window, self._fft_size)

    def stop(self) -> None:  # type: ignore[override]
        try:
            self._source.stop()
        finally:
            super().stop()


class SpeakingDetector:
    def __init__(
        self,
        participants: Callable[[], Iterable],
        *,
        threshold: float = settings.SPEAKING_THRESHOLD,
        interval: float = settings.SPEAKING_INTERVAL,
        on_update: Optional[Callable[[Set[str]], None]] = None,
    ):
        self._participants = participants
        self.threshold = threshold
        self.interval = interval
        self._on_update = on_update
        self._task: Optional[asyncio.Task] = None
        self.speaking: Set[str] = set()

    def sample(self) -> Set[str]:
        speaking: Set[str] = set()
        for participant in self._participants():
            if participant.is_local or not participant.is_audio_enabled:
                continue
            tap = getattr(participant.stream, "audio", None)
            if tap is None:
                continue
            level = tap.level()
            if level > self.threshold:
                speaking.add(participant.id)
                logger.debug(f"🎤 {participant.name} is speaking (volume: {level:.1f})")
        self.speaking = speaking
        return speaking

    async def _run(self) -> None:
        while True:
            speaking = self.sample()
            if self._on_update is not None:
                try:
                    self._on_update(set(speaking))
                except Exception:
                    logger.exception("Speaking update callback failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        self.stop()
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self.speaking = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
