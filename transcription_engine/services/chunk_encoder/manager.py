from __future__ import annotations

import asyncio
import io
import subprocess
import wave
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from transcription_engine.context import Context

from transcription_engine.errors import ChunkEncodingError
from transcription_engine.services.chunk_encoder.pcm import (
    align_to_frame,
    calculate_pcm_duration_ms,
)
from transcription_engine.services.manager import BaseChunkEncoderServiceManager
from transcription_engine.utils import get_current_timestamp

# -------------------------------------------------------------- #
# Media Types
# -------------------------------------------------------------- #

WAV_MEDIA_TYPE = "audio/wav"

# preference order when a compressed container can be produced
PREFERRED_MEDIA_TYPES = (
    "audio/webm;codecs=opus",
    "audio/webm",
    "audio/ogg;codecs=opus",
    "audio/mp4",
)

# ffmpeg output arguments per compressed media type (written to stdout)
FFMPEG_OUTPUT_ARGS = {
    "audio/webm;codecs=opus": ["-c:a", "libopus", "-f", "webm"],
    "audio/webm": ["-c:a", "libopus", "-f", "webm"],
    "audio/ogg;codecs=opus": ["-c:a", "libopus", "-f", "ogg"],
    "audio/mp4": ["-c:a", "aac", "-movflags", "frag_keyframe+empty_moov", "-f", "mp4"],
}


def select_media_type(
    ffmpeg_available: bool, preferred: tuple[str, ...] = PREFERRED_MEDIA_TYPES
) -> str:
    """
    Pick the first preferred media type the encoder can produce.

    Only WAV can be written without ffmpeg, so it is the fallback.
    """
    supported = {WAV_MEDIA_TYPE}
    if ffmpeg_available:
        supported.update(FFMPEG_OUTPUT_ARGS)

    for media_type in preferred:
        if media_type in supported:
            return media_type
    return WAV_MEDIA_TYPE


# -------------------------------------------------------------- #
# Chunk
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class Chunk:
    """One self-contained encoded audio segment.

    Attributes:
        payload: Complete encoded file (container header included)
        media_type: Declared media type of the payload
        sequence: Per-source sequence index, starting at 0
        speaker_id: Speaker whose source produced the audio
        produced_at: When the chunk was flushed
        duration_ms: Duration of the PCM that went into it
    """

    payload: bytes = field(repr=False)
    media_type: str
    sequence: int
    speaker_id: Any
    produced_at: datetime
    duration_ms: int = 0

    @property
    def size(self) -> int:
        return len(self.payload)


# -------------------------------------------------------------- #
# Chunk Encoder
# -------------------------------------------------------------- #


def encode_wav(pcm: bytes, sample_rate: int, sample_width: int, channels: int) -> bytes:
    """Wrap raw little-endian PCM in a complete WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(sample_width)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm)
    return buffer.getvalue()


class ChunkEncoder:
    """
    Turns one window of captured PCM into a Chunk.

    Every call writes a fresh container, so each chunk decodes without
    reference to any earlier chunk.
    """

    def __init__(
        self,
        media_type: str = WAV_MEDIA_TYPE,
        ffmpeg_path: str | None = None,
        timeout_seconds: float = 15.0,
    ):
        if media_type != WAV_MEDIA_TYPE and media_type not in FFMPEG_OUTPUT_ARGS:
            raise ValueError(f"Unsupported media type: {media_type}")
        if media_type != WAV_MEDIA_TYPE and not ffmpeg_path:
            raise ValueError(f"{media_type} requires an ffmpeg binary")

        self.media_type = media_type
        self.ffmpeg_path = ffmpeg_path
        self.timeout_seconds = timeout_seconds

    def get_media_type(self) -> str:
        return self.media_type

    # -------------------------------------------------------------- #
    # FFmpeg Methods
    # -------------------------------------------------------------- #

    async def validate_ffmpeg(self) -> bool:
        """Validate that FFmpeg is installed and accessible."""
        if not self.ffmpeg_path:
            return False
        try:
            loop = asyncio.get_running_loop()
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        [self.ffmpeg_path, "-version"],
                        capture_output=True,
                        timeout=5,
                    ),
                ),
                timeout=6.0,  # Slightly longer than subprocess timeout
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired, asyncio.TimeoutError):
            return False

    async def _transcode(self, wav_bytes: bytes) -> bytes:
        cmd = [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "wav",
            "-i",
            "pipe:0",
            *FFMPEG_OUTPUT_ARGS[self.media_type],
            "pipe:1",
        ]

        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: subprocess.run(
                        cmd,
                        input=wav_bytes,
                        capture_output=True,
                        timeout=self.timeout_seconds,
                    ),
                ),
                timeout=self.timeout_seconds + 1.0,
            )
        except (subprocess.TimeoutExpired, asyncio.TimeoutError):
            raise ChunkEncodingError("FFmpeg transcode timed out") from None
        except OSError as e:
            raise ChunkEncodingError(f"FFmpeg could not be started: {e}") from e

        if result.returncode != 0 or not result.stdout:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ChunkEncodingError(f"FFmpeg transcode failed ({result.returncode}): {stderr}")
        return result.stdout

    # -------------------------------------------------------------- #
    # Encoding
    # -------------------------------------------------------------- #

    async def encode(
        self,
        pcm: bytes,
        *,
        speaker_id: Any,
        sequence: int,
        sample_rate: int,
        sample_width: int,
        channels: int,
    ) -> Chunk:
        """
        Encode one window of raw PCM.

        Args:
            pcm: Raw little-endian PCM captured during the window
            speaker_id: Speaker that owns the source
            sequence: Sequence index of this chunk for the source
            sample_rate: PCM sample rate in Hz
            sample_width: Bytes per sample
            channels: Channel count

        Returns:
            Immutable, self-contained chunk

        Raises:
            ChunkEncodingError: If there is no audio or encoding fails
        """
        pcm = align_to_frame(pcm, sample_width, channels)
        if not pcm:
            raise ChunkEncodingError(f"No PCM captured for chunk #{sequence} ({speaker_id})")

        try:
            payload = encode_wav(pcm, sample_rate, sample_width, channels)
        except (wave.Error, ValueError) as e:
            raise ChunkEncodingError(f"WAV encoding failed: {e}") from e

        if self.media_type != WAV_MEDIA_TYPE:
            payload = await self._transcode(payload)

        return Chunk(
            payload=payload,
            media_type=self.media_type,
            sequence=sequence,
            speaker_id=speaker_id,
            produced_at=get_current_timestamp(),
            duration_ms=calculate_pcm_duration_ms(len(pcm), sample_rate, sample_width, channels),
        )


# -------------------------------------------------------------- #
# Chunk Encoder Service
# -------------------------------------------------------------- #


class ChunkEncoderService(BaseChunkEncoderServiceManager):
    """Service that owns the session-wide chunk encoder."""

    def __init__(self, context: Context, ffmpeg_path: str | None = None):
        super().__init__(context)
        self.ffmpeg_path = ffmpeg_path
        self.encoder = ChunkEncoder()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services) -> None:
        await super().on_start(services)

        ffmpeg_ok = False
        if self.ffmpeg_path:
            ffmpeg_ok = await ChunkEncoder(ffmpeg_path=self.ffmpeg_path).validate_ffmpeg()
            if not ffmpeg_ok:
                await self.services.logging_service.warning(
                    f"FFmpeg not usable at {self.ffmpeg_path}; falling back to WAV chunks"
                )

        media_type = select_media_type(ffmpeg_ok)
        self.encoder = ChunkEncoder(
            media_type=media_type,
            ffmpeg_path=self.ffmpeg_path if ffmpeg_ok else None,
        )
        await self.services.logging_service.info(
            f"ChunkEncoderService initialized (media type: {media_type})"
        )

    async def on_close(self) -> None:
        if self.services:
            await self.services.logging_service.info("ChunkEncoderService closed")

    # -------------------------------------------------------------- #
    # Encoding
    # -------------------------------------------------------------- #

    def get_media_type(self) -> str:
        return self.encoder.media_type

    async def encode(
        self,
        pcm: bytes,
        *,
        speaker_id: Any,
        sequence: int,
        sample_rate: int,
        sample_width: int,
        channels: int,
    ) -> Chunk:
        return await self.encoder.encode(
            pcm,
            speaker_id=speaker_id,
            sequence=sequence,
            sample_rate=sample_rate,
            sample_width=sample_width,
            channels=channels,
        )
