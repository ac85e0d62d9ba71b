"""Chunk encoding: raw PCM windows into self-contained audio files."""

from transcription_engine.services.chunk_encoder.manager import (
    PREFERRED_MEDIA_TYPES,
    WAV_MEDIA_TYPE,
    Chunk,
    ChunkEncoder,
    ChunkEncoderService,
    select_media_type,
)

__all__ = [
    "PREFERRED_MEDIA_TYPES",
    "WAV_MEDIA_TYPE",
    "Chunk",
    "ChunkEncoder",
    "ChunkEncoderService",
    "select_media_type",
]
