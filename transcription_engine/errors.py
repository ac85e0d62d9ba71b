# -------------------------------------------------------------- #
# Engine Exceptions
# -------------------------------------------------------------- #


class TranscriptionEngineError(Exception):
    """Base class for all engine errors."""


class ChunkEncodingError(TranscriptionEngineError):
    """Raised when captured audio cannot be turned into a chunk."""


class AudioSourceError(TranscriptionEngineError):
    """Raised when an audio source cannot start or stop capturing."""


class SessionError(TranscriptionEngineError):
    """Raised for invalid session lifecycle operations."""
