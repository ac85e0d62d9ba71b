"""
Audio sources the segmenter can own.

A source is a continuously-live stream for one speaker. The segmenter
brackets each recording window with ``start_capture`` / ``stop_capture``
and receives the raw PCM captured in between.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from abc import ABC, abstractmethod
from typing import Any

from transcription_engine.errors import AudioSourceError
from transcription_engine.services.chunk_encoder.pcm import (
    DEFAULT_CHANNELS,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_SAMPLE_WIDTH,
    PCMGenerator,
    calculate_pcm_bytes,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Audio Source Base Class
# -------------------------------------------------------------- #


class AudioSource(ABC):
    """Base class for a live per-speaker audio stream."""

    def __init__(
        self,
        speaker_id: Any,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        sample_width: int = DEFAULT_SAMPLE_WIDTH,
        channels: int = DEFAULT_CHANNELS,
    ):
        self.speaker_id = speaker_id
        self.sample_rate = sample_rate
        self.sample_width = sample_width
        self.channels = channels
        self._ended = asyncio.Event()
        self._capturing = False

    # -------------------------------------------------------------- #
    # Liveness
    # -------------------------------------------------------------- #

    @property
    def is_live(self) -> bool:
        return not self._ended.is_set()

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    def end(self) -> None:
        """Mark the source as ended (device or track closed)."""
        if not self._ended.is_set():
            logger.info(f"Audio source for speaker {self.speaker_id} ended")
        self._ended.set()

    async def wait_ended(self) -> None:
        await self._ended.wait()

    async def release(self) -> None:
        """Release the underlying stream. Called once by the owning segmenter."""
        self._capturing = False
        self.end()

    # -------------------------------------------------------------- #
    # Capture
    # -------------------------------------------------------------- #

    @abstractmethod
    async def start_capture(self) -> None:
        """Begin a new capture window."""
        pass

    @abstractmethod
    async def stop_capture(self) -> bytes:
        """End the capture window and return the PCM captured during it."""
        pass


# -------------------------------------------------------------- #
# Buffered (push-fed) Source
# -------------------------------------------------------------- #


class BufferedAudioSource(AudioSource):
    """
    Source fed by a media transport.

    The transport calls ``feed`` with PCM frames as they arrive and ``end``
    when the track closes. Frames fed between windows are kept and
    delivered with the next window. A window only ever returns whole
    frames; a trailing partial frame stays buffered so the next window
    starts on the sample grid.
    """

    def __init__(self, speaker_id: Any, **fmt):
        super().__init__(speaker_id, **fmt)
        self._buffer = bytearray()

    def feed(self, pcm: bytes) -> None:
        if not self.is_live:
            return
        self._buffer.extend(pcm)

    async def start_capture(self) -> None:
        if not self.is_live:
            raise AudioSourceError(f"Source for speaker {self.speaker_id} has ended")
        self._capturing = True

    async def stop_capture(self) -> bytes:
        self._capturing = False
        frame_bytes = self.sample_width * self.channels
        cut = len(self._buffer) - len(self._buffer) % frame_bytes
        data = bytes(self._buffer[:cut])
        del self._buffer[:cut]
        return data

    async def release(self) -> None:
        await super().release()
        self._buffer.clear()


# -------------------------------------------------------------- #
# Generated Source
# -------------------------------------------------------------- #


class GeneratedAudioSource(AudioSource):
    """
    Source that synthesizes PCM in real time from a PCMGenerator.

    The amount of audio returned by ``stop_capture`` matches the wall time
    the window was open. With ``live_seconds`` set, the source ends that
    long after its first capture starts.
    """

    def __init__(
        self,
        speaker_id: Any,
        generator: PCMGenerator,
        live_seconds: float | None = None,
    ):
        super().__init__(
            speaker_id,
            sample_rate=generator.sample_rate,
            sample_width=generator.sample_width,
            channels=generator.channels,
        )
        self.generator = generator
        self.live_seconds = live_seconds
        self._stream_started_at: float | None = None
        self._capture_started_at: float | None = None
        self._end_handle: asyncio.TimerHandle | None = None

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    async def start_capture(self) -> None:
        if not self.is_live:
            raise AudioSourceError(f"Source for speaker {self.speaker_id} has ended")

        now = self._now()
        if self._stream_started_at is None:
            self._stream_started_at = now
            if self.live_seconds is not None:
                self._end_handle = asyncio.get_running_loop().call_later(
                    self.live_seconds, self.end
                )

        self._capture_started_at = now
        self._capturing = True

    async def stop_capture(self) -> bytes:
        if self._capture_started_at is None:
            return b""

        end = self._now()
        if self.live_seconds is not None:
            end = min(end, self._stream_started_at + self.live_seconds)

        offset_ms = int((self._capture_started_at - self._stream_started_at) * 1000)
        duration_ms = max(0, int((end - self._capture_started_at) * 1000))

        self._capturing = False
        self._capture_started_at = None
        return self.generator.generate(duration_ms, offset=offset_ms)

    async def release(self) -> None:
        if self._end_handle is not None:
            self._end_handle.cancel()
            self._end_handle = None
        await super().release()


# -------------------------------------------------------------- #
# WAV File Source
# -------------------------------------------------------------- #


class WaveFileAudioSource(AudioSource):
    """
    Source that replays a PCM WAV file at real-time pace.

    The source ends once the whole file has been delivered.
    """

    def __init__(self, speaker_id: Any, path: str):
        try:
            with wave.open(path, "rb") as wav_file:
                sample_rate = wav_file.getframerate()
                sample_width = wav_file.getsampwidth()
                channels = wav_file.getnchannels()
                self._pcm = wav_file.readframes(wav_file.getnframes())
        except (OSError, wave.Error) as e:
            raise AudioSourceError(f"Cannot open WAV file {path}: {e}") from e

        super().__init__(
            speaker_id,
            sample_rate=sample_rate,
            sample_width=sample_width,
            channels=channels,
        )
        self.path = path
        self._position = 0
        self._capture_started_at: float | None = None

    async def start_capture(self) -> None:
        if not self.is_live:
            raise AudioSourceError(f"Source for speaker {self.speaker_id} has ended")
        self._capture_started_at = asyncio.get_running_loop().time()
        self._capturing = True

    async def stop_capture(self) -> bytes:
        if self._capture_started_at is None:
            return b""

        elapsed_ms = int((asyncio.get_running_loop().time() - self._capture_started_at) * 1000)
        nbytes = calculate_pcm_bytes(
            elapsed_ms, self.sample_rate, self.sample_width, self.channels
        )

        data = self._pcm[self._position : self._position + nbytes]
        self._position += len(data)
        self._capturing = False
        self._capture_started_at = None

        if self._position >= len(self._pcm):
            self.end()
        return data
