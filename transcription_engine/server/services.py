from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from transcription_engine.server.outcome import TranscriptionOutcome
    from transcription_engine.services.chunk_encoder.manager import Chunk

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Transcription Relay Handler
# -------------------------------------------------------------- #


class TranscriptionRelayHandler(BaseServerHandler):
    """Speech-recognition backend handler."""

    def __init__(self, name: str, endpoint: str | None):
        super().__init__(name)
        self.endpoint = endpoint

    @property
    def is_configured(self) -> bool:
        """Whether a backend endpoint is available at all."""
        return self.endpoint is not None

    # -------------------------------------------------------------- #
    # Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def submit(self, chunk: Chunk, language: str = "en-US") -> TranscriptionOutcome:
        """
        Deliver one chunk to the backend and classify the result.

        Implementations never raise; every failure resolves to an outcome.

        Args:
            chunk: Encoded audio chunk
            language: BCP-47 language hint (e.g. "en-US")

        Returns:
            The transcription outcome for this chunk
        """
        pass
