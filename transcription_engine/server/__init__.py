"""Handlers for external server connections."""

from .outcome import OutcomeKind, TranscriptionOutcome
from .server import ServerManager
from .services import BaseServerHandler, TranscriptionRelayHandler

__all__ = [
    "BaseServerHandler",
    "OutcomeKind",
    "ServerManager",
    "TranscriptionOutcome",
    "TranscriptionRelayHandler",
]
