from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from transcription_engine.context import Context
    from transcription_engine.services.chunk_encoder.manager import Chunk


# -------------------------------------------------------------- #
# Services Manager Class
# -------------------------------------------------------------- #


class ServicesManager:
    """Manager for handling multiple service instances."""

    def __init__(
        self,
        context: Context,
        logging_service: BaseAsyncLoggingService,
        chunk_encoder_service: BaseChunkEncoderServiceManager,
        transcript_export_service: BaseTranscriptExportServiceManager,
        session_manager_service: BaseTranscriptionSessionServiceManager | None = None,
    ):
        self.context = context
        self.server = context.server_manager

        self.logging_service = logging_service

        # pipeline services
        self.chunk_encoder_service = chunk_encoder_service
        self.transcript_export_service = transcript_export_service

        # session registry
        self.session_manager_service = session_manager_service

    async def initialize_all(self) -> None:
        """Initialize all service managers."""

        # Logging
        await self.logging_service.on_start(self)

        # Pipeline services
        await self.chunk_encoder_service.on_start(self)
        await self.transcript_export_service.on_start(self)

        # Sessions
        if self.session_manager_service:
            await self.session_manager_service.on_start(self)

    async def shutdown_all(self, timeout: float = 30.0) -> None:
        """
        Stop sessions, close pipeline services and disconnect backends.

        Each step gets a share of ``timeout`` and runs even if an earlier
        step failed or timed out, so a stuck session never leaves the relay
        connected. The logging service closes last.

        Args:
            timeout: Overall budget in seconds for the steps before logging closes
        """
        if self.context:
            self.context.mark_shutdown_started()
        await self.logging_service.info("Shutting down: no new sessions will start")

        steps = []
        if self.session_manager_service:
            steps.append(("transcription sessions", self.session_manager_service.on_close, 0.6))
        steps.append(("chunk encoder", self.chunk_encoder_service.on_close, 0.1))
        steps.append(("transcript export", self.transcript_export_service.on_close, 0.1))
        if self.context and self.context.server_manager:
            steps.append(("servers", self.context.server_manager.disconnect_all, 0.2))

        failed = []
        for label, close, share in steps:
            try:
                await asyncio.wait_for(close(), timeout=timeout * share)
            except asyncio.TimeoutError:
                failed.append(label)
                await self.logging_service.error(
                    f"Closing {label} exceeded {timeout * share:.1f}s; moving on"
                )
            except Exception as e:
                failed.append(label)
                await self.logging_service.error(f"Closing {label} failed: {e}")
            else:
                await self.logging_service.info(f"Closed {label}")

        if failed:
            await self.logging_service.warning(
                f"Shutdown finished with errors in: {', '.join(failed)}"
            )
        else:
            await self.logging_service.info("Shutdown complete")

        # logging never gets more than a few seconds to flush
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self.logging_service.on_close(), timeout=5.0)


# -------------------------------------------------------------- #
# Base Manager Class
# -------------------------------------------------------------- #


class Manager(ABC):
    """Base class for all manager services."""

    def __init__(self, context: Context):
        self.context = context
        self.server = context.server_manager
        self.services = None

        # check if server has been initialized
        if self.server is not None and not self.server.is_initialized:
            raise RuntimeError(
                "ServerManager must be initialized before creating Manager instances."
            )

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        """Actions to perform on manager start."""
        self.services = services

    async def on_close(self) -> None:
        """Actions to perform on manager close."""
        pass


# -------------------------------------------------------------- #
# Specialized Manager Classes
# -------------------------------------------------------------- #


class BaseAsyncLoggingService(Manager):
    """Specialized manager for asynchronous logging services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def log(self, message: str, level: str = "INFO") -> None:
        """Log a message asynchronously."""
        pass

    @abstractmethod
    async def debug(self, message: str) -> None:
        """Log a debug message asynchronously."""
        pass

    @abstractmethod
    async def info(self, message: str) -> None:
        """Log an info message asynchronously."""
        pass

    @abstractmethod
    async def warning(self, message: str) -> None:
        """Log a warning message asynchronously."""
        pass

    @abstractmethod
    async def error(self, message: str) -> None:
        """Log an error message asynchronously."""
        pass

    @abstractmethod
    async def critical(self, message: str) -> None:
        """Log a critical message asynchronously."""
        pass


class BaseChunkEncoderServiceManager(Manager):
    """Specialized manager for chunk encoding services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_media_type(self) -> str:
        """Get the media type chunks are currently encoded as."""
        pass

    @abstractmethod
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
        Encode one window of raw PCM into a self-contained chunk.

        Raises:
            ChunkEncodingError: If the PCM is empty or encoding fails
        """
        pass


class BaseTranscriptExportServiceManager(Manager):
    """Specialized manager for writing transcripts to storage."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the directory transcripts are exported to."""
        pass

    @abstractmethod
    async def export(self, assembler: Any, session_id: str, fmt: str = "json") -> str:
        """Export a transcript and return the written file path."""
        pass


class BaseTranscriptionSessionServiceManager(Manager):
    """Specialized manager for transcription session services."""

    def __init__(self, context):
        super().__init__(context)

    @abstractmethod
    async def start_session(self, session_id: str | None = None, **kwargs) -> Any:
        """Start a new transcription session."""
        pass

    @abstractmethod
    async def stop_session(self, session_id: str) -> Any:
        """Stop a transcription session and return its assembler."""
        pass
