from transcription_engine.services.audio_segmenter.audio_source import (
    AudioSource,
    BufferedAudioSource,
    GeneratedAudioSource,
    WaveFileAudioSource,
)
from transcription_engine.services.audio_segmenter.manager import (
    AudioSegmenter,
    SegmenterConstants,
    SegmenterState,
)

__all__ = [
    "AudioSegmenter",
    "AudioSource",
    "BufferedAudioSource",
    "GeneratedAudioSource",
    "SegmenterConstants",
    "SegmenterState",
    "WaveFileAudioSource",
]
