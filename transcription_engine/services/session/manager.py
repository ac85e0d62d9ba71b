from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from transcription_engine.config import EngineConfig
from transcription_engine.errors import SessionError
from transcription_engine.services.audio_segmenter.manager import AudioSegmenter, SegmenterState
from transcription_engine.services.logger import ModuleLogger
from transcription_engine.services.manager import BaseTranscriptionSessionServiceManager
from transcription_engine.services.payload_classifier.listener import SideChannelListener
from transcription_engine.services.session.context import SessionContext
from transcription_engine.services.transcript_assembler.manager import TranscriptAssembler
from transcription_engine.utils import generate_16_char_uuid, invoke_callback

if TYPE_CHECKING:
    from transcription_engine.context import Context
    from transcription_engine.server.services import TranscriptionRelayHandler
    from transcription_engine.services.audio_segmenter.audio_source import AudioSource
    from transcription_engine.services.chunk_encoder.manager import Chunk
    from transcription_engine.services.manager import (
        BaseAsyncLoggingService,
        BaseChunkEncoderServiceManager,
        ServicesManager,
    )
    from transcription_engine.services.payload_classifier.classifier import ClassifiedText
    from transcription_engine.services.payload_classifier.listener import SideChannelTransport

NoticeCallback = Callable[[str], Any]

UNAVAILABLE_NOTICE = (
    "Transcription service is not configured or unavailable. "
    "Audio is still being captured but will not be transcribed."
)

# -------------------------------------------------------------- #
# Transcription Session
# -------------------------------------------------------------- #


class TranscriptionSession:
    """
    One live transcription session.

    Owns a segmenter per audio source, the side-channel listener and the
    transcript assembler. Chunks from every segmenter are relayed to the
    speech backend and recognized text from both paths lands in the same
    assembler.
    """

    def __init__(
        self,
        session_context: SessionContext,
        relay_client: TranscriptionRelayHandler,
        encoder: BaseChunkEncoderServiceManager,
        logging_service: BaseAsyncLoggingService | None = None,
        config: EngineConfig | None = None,
        side_channel: SideChannelTransport | None = None,
        on_notice: NoticeCallback | None = None,
    ):
        self.session_context = session_context
        self.session_id = session_context.session_id
        self.relay_client = relay_client
        self.encoder = encoder
        self.logger = logging_service or ModuleLogger(__name__)
        self.config = config or EngineConfig()
        self.on_notice = on_notice

        self.assembler = TranscriptAssembler(session_context, logging_service)
        self.segmenters: dict[Any, AudioSegmenter] = {}

        self.listener: SideChannelListener | None = None
        if side_channel is not None:
            self.listener = SideChannelListener(
                side_channel,
                logging_service=logging_service,
                watchdog_seconds=self.config.side_channel_watchdog_seconds,
            )
            self.listener.register_handler(self._accept_all, self._handle_side_channel_text)

        self._running = False
        self._closing = False
        self._unavailable_notice_sent = False

        # Stats
        self.chunks_submitted = 0
        self.chunks_transcribed = 0
        self.chunks_empty = 0
        self.chunks_rejected = 0
        self.chunks_unavailable = 0
        self.chunks_dropped = 0

    # -------------------------------------------------------------- #
    # Properties
    # -------------------------------------------------------------- #

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def active_speakers(self) -> list[Any]:
        return [
            speaker_id
            for speaker_id, segmenter in self.segmenters.items()
            if segmenter.state is not SegmenterState.ENDED
        ]

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def start(self) -> None:
        if self._running:
            raise SessionError(f"Session {self.session_id} is already running")
        if self._closing:
            raise SessionError(f"Session {self.session_id} has been stopped")

        self._running = True

        if self.listener is not None:
            await self.listener.attach()

        for segmenter in self.segmenters.values():
            await segmenter.start()

        await self.logger.info(
            f"Started transcription session {self.session_id} "
            f"({len(self.segmenters)} sources, side channel: {self.listener is not None})"
        )

    async def stop(self, timeout: float | None = None) -> TranscriptAssembler:
        """
        Stop the session.

        Further chunks are no longer submitted, every segmenter finishes its
        current flush and releases its source, and the listener is detached.
        The transcript is kept.

        Returns:
            The session's assembler, uncleared
        """
        if self._closing and not self._running:
            return self.assembler

        self._closing = True

        results = await asyncio.gather(
            *(segmenter.stop(timeout=timeout) for segmenter in self.segmenters.values()),
            return_exceptions=True,
        )
        for speaker_id, result in zip(list(self.segmenters), results):
            if isinstance(result, Exception):
                await self.logger.error(
                    f"Failed to stop segmenter for speaker {speaker_id}: {result}"
                )

        if self.listener is not None:
            await self.listener.detach()

        self._running = False
        await self.logger.info(
            f"Stopped transcription session {self.session_id}: "
            f"{self.chunks_submitted} chunks submitted, {self.chunks_transcribed} transcribed, "
            f"{self.assembler.segment_count} transcript segments"
        )
        return self.assembler

    async def wait_for_sources(self) -> None:
        """Wait until every segmenter has ended."""
        await asyncio.gather(*(segmenter.wait_ended() for segmenter in self.segmenters.values()))

    # -------------------------------------------------------------- #
    # Sources
    # -------------------------------------------------------------- #

    async def add_source(
        self, source: AudioSource, display_name: str | None = None
    ) -> AudioSegmenter:
        """
        Attach an audio source and start segmenting it if the session runs.

        Raises:
            SessionError: If the session is stopping or the speaker already has a source
        """
        if self._closing:
            raise SessionError(f"Session {self.session_id} is stopping; cannot add sources")

        existing = self.segmenters.get(source.speaker_id)
        if existing is not None and existing.state is not SegmenterState.ENDED:
            raise SessionError(
                f"Speaker {source.speaker_id} already has an active source in session "
                f"{self.session_id}"
            )

        self.session_context.register_speaker(source.speaker_id, display_name)

        segmenter = AudioSegmenter(
            source=source,
            encoder=self.encoder,
            on_chunk=self._handle_chunk,
            on_ended=self._handle_segmenter_ended,
            logging_service=self.logger,
            window_seconds=self.config.recording_window_seconds,
            settle_seconds=self.config.restart_settle_seconds,
            max_restart_attempts=self.config.max_restart_attempts,
            restart_delay_seconds=self.config.restart_delay_seconds,
            health_check_interval_seconds=self.config.health_check_interval_seconds,
        )
        self.segmenters[source.speaker_id] = segmenter

        if self._running:
            await segmenter.start()
        return segmenter

    async def remove_source(self, speaker_id: Any) -> None:
        segmenter = self.segmenters.get(speaker_id)
        if segmenter is None:
            await self.logger.warning(
                f"No source for speaker {speaker_id} in session {self.session_id}"
            )
            return
        await segmenter.stop()

    # -------------------------------------------------------------- #
    # Chunk Path
    # -------------------------------------------------------------- #

    async def _handle_chunk(self, chunk: Chunk) -> None:
        if self._closing:
            self.chunks_dropped += 1
            await self.logger.debug(
                f"Session {self.session_id} closing; dropping chunk #{chunk.sequence} "
                f"from {chunk.speaker_id}"
            )
            return

        self.chunks_submitted += 1
        outcome = await self.relay_client.submit(chunk, self.session_context.language)

        if outcome.is_text:
            self.chunks_transcribed += 1
            await self.assembler.ingest(chunk.speaker_id, outcome.text, True)
        elif outcome.is_empty:
            self.chunks_empty += 1
        elif outcome.is_unavailable:
            self.chunks_unavailable += 1
            await self._notify_unavailable(outcome.reason)
        else:
            self.chunks_rejected += 1
            await self.logger.debug(
                f"Chunk #{chunk.sequence} from {chunk.speaker_id} rejected ({outcome.reason})"
            )

    async def _notify_unavailable(self, reason: str | None) -> None:
        if self._unavailable_notice_sent:
            return
        self._unavailable_notice_sent = True

        await self.logger.warning(
            f"Session {self.session_id}: transcription unavailable ({reason}); "
            "continuing without chunk transcription"
        )
        await self._send_notice(UNAVAILABLE_NOTICE)

    async def _send_notice(self, notice: str) -> None:
        if self.on_notice is None:
            return
        try:
            await invoke_callback(self.on_notice, notice)
        except Exception as e:
            await self.logger.error(f"Notice callback failed: {e}")

    async def _handle_segmenter_ended(self, speaker_id: Any, reason: str, fatal: bool) -> None:
        if fatal:
            await self.logger.error(
                f"Session {self.session_id}: recording for speaker {speaker_id} failed "
                f"permanently ({reason})"
            )
            await self._send_notice(
                f"Recording for {self.session_context.resolve_display_name(speaker_id)} "
                f"stopped after repeated errors: {reason}"
            )
        else:
            await self.logger.info(
                f"Session {self.session_id}: source for speaker {speaker_id} ended ({reason})"
            )

    # -------------------------------------------------------------- #
    # Side Channel Path
    # -------------------------------------------------------------- #

    async def _accept_all(self, classified: ClassifiedText) -> bool:
        return not self._closing

    async def _handle_side_channel_text(self, classified: ClassifiedText) -> None:
        await self.assembler.ingest(classified.speaker_id, classified.text, classified.is_final)

    # -------------------------------------------------------------- #
    # Status
    # -------------------------------------------------------------- #

    def get_status(self) -> dict:
        return {
            "session_id": self.session_id,
            "running": self._running,
            "closing": self._closing,
            "language": self.session_context.language,
            "segments": self.assembler.segment_count,
            "chunks_submitted": self.chunks_submitted,
            "chunks_transcribed": self.chunks_transcribed,
            "chunks_empty": self.chunks_empty,
            "chunks_rejected": self.chunks_rejected,
            "chunks_unavailable": self.chunks_unavailable,
            "chunks_dropped": self.chunks_dropped,
            "unavailable_notice_sent": self._unavailable_notice_sent,
            "segmenters": {
                str(speaker_id): segmenter.get_status()
                for speaker_id, segmenter in self.segmenters.items()
            },
            "side_channel": self.listener.get_stats() if self.listener else None,
        }


# -------------------------------------------------------------- #
# Transcription Session Manager Service
# -------------------------------------------------------------- #


class TranscriptionSessionManagerService(BaseTranscriptionSessionServiceManager):
    """
    Manager for transcription sessions.

    This class manages:
    - Multiple concurrent sessions keyed by session id
    - Session lifecycle (start, stop)
    - Stopping every session on shutdown
    """

    def __init__(self, context: Context):
        super().__init__(context)
        self.sessions: dict[str, TranscriptionSession] = {}

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services: ServicesManager) -> None:
        await super().on_start(services)
        await self.services.logging_service.info("Transcription Session Manager started")

    async def on_close(self) -> bool:
        for session_id in list(self.sessions.keys()):
            await self.stop_session(session_id)

        await self.services.logging_service.info("Transcription Session Manager stopped")
        return True

    # -------------------------------------------------------------- #
    # Session Management Methods
    # -------------------------------------------------------------- #

    def _get_config(self) -> EngineConfig:
        if self.context.config is None:
            self.context.set_config(EngineConfig.from_env())
        return self.context.config

    async def start_session(
        self,
        session_id: str | None = None,
        sources: Iterable[AudioSource] = (),
        side_channel: SideChannelTransport | None = None,
        local_speaker_id: Any = None,
        speaker_names: dict[Any, str] | None = None,
        language: str | None = None,
        on_notice: NoticeCallback | None = None,
    ) -> TranscriptionSession:
        """
        Start a transcription session.

        Args:
            session_id: Optional session ID (generated if not provided)
            sources: Audio sources to segment from the start
            side_channel: Optional transport carrying server-side transcription
            local_speaker_id: Speaker shown with the local display name
            speaker_names: Display names for known speakers
            language: Language hint (defaults to the configured language)
            on_notice: Callback for user-facing notices

        Returns:
            The running session

        Raises:
            SessionError: If shutting down or the session id is already in use
        """
        if self.context.is_shutting_down():
            raise SessionError("Engine is shutting down; not starting new sessions")

        session_id = session_id or generate_16_char_uuid()
        if session_id in self.sessions:
            raise SessionError(f"Session already exists: {session_id}")

        if self.server is None:
            raise SessionError("No server manager available for the transcription relay")

        config = self._get_config()
        session_context = SessionContext(
            session_id=session_id,
            local_speaker_id=local_speaker_id,
            local_speaker_name=config.local_speaker_name,
            language=language or config.language,
            speaker_names=dict(speaker_names or {}),
        )

        session = TranscriptionSession(
            session_context=session_context,
            relay_client=self.server.relay_client,
            encoder=self.services.chunk_encoder_service,
            logging_service=self.services.logging_service,
            config=config,
            side_channel=side_channel,
            on_notice=on_notice,
        )
        for source in sources:
            await session.add_source(source)

        self.sessions[session_id] = session
        await session.start()

        await self.services.logging_service.info(f"Started transcription session {session_id}")
        return session

    async def stop_session(self, session_id: str) -> TranscriptAssembler | None:
        session = self.sessions.pop(session_id, None)
        if session is None:
            await self.services.logging_service.warning(f"No active session: {session_id}")
            return None

        try:
            return await session.stop()
        except Exception as e:
            await self.services.logging_service.error(
                f"Failed to stop session {session_id}: {str(e)}"
            )
            raise

    def get_active_session(self, session_id: str) -> TranscriptionSession | None:
        return self.sessions.get(session_id)

    def list_active_sessions(self) -> list[str]:
        return list(self.sessions.keys())
