from transcription_engine.services.session.context import SessionContext
from transcription_engine.services.session.manager import (
    TranscriptionSession,
    TranscriptionSessionManagerService,
)

__all__ = [
    "SessionContext",
    "TranscriptionSession",
    "TranscriptionSessionManagerService",
]
