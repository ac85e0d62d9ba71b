from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from transcription_engine.services.logger import ModuleLogger
from transcription_engine.utils import cancel_task, invoke_callback

if TYPE_CHECKING:
    from transcription_engine.services.audio_segmenter.audio_source import AudioSource
    from transcription_engine.services.chunk_encoder.manager import Chunk
    from transcription_engine.services.manager import (
        BaseAsyncLoggingService,
        BaseChunkEncoderServiceManager,
    )

ChunkHandler = Callable[["Chunk"], Awaitable[None]]
EndedHandler = Callable[[Any, str, bool], Any]


# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


class SegmenterConstants:
    """Default cadence and recovery settings for an audio segmenter."""

    # length of each recording window in seconds
    WINDOW_SECONDS = 3.0

    # pause between two windows (segmenter sits in IDLE)
    SETTLE_SECONDS = 0.1

    # bounded restarts before the segmenter gives up
    MAX_RESTART_ATTEMPTS = 5

    # delay before each restart attempt
    RESTART_DELAY_SECONDS = 1.0

    # period of the background health check
    HEALTH_CHECK_INTERVAL_SECONDS = 10.0


class SegmenterState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    FLUSHING = "flushing"
    ERROR_RECOVERY = "error_recovery"
    ENDED = "ended"


# -------------------------------------------------------------- #
# Audio Segmenter
# -------------------------------------------------------------- #


class AudioSegmenter:
    """
    Cuts one live audio source into a stream of self-contained chunks.

    Every window opens a fresh capture on the source and ends with a fresh
    encoding, so each emitted chunk carries its own container header. A
    chunk is handed to ``on_chunk`` and awaited before the next window
    starts.

    Failures anywhere in a cycle move the segmenter into ERROR_RECOVERY,
    which retries after a fixed delay. Once the restart budget is spent the
    segmenter ends and reports a single fatal notification via
    ``on_ended(speaker_id, reason, fatal)``.
    """

    def __init__(
        self,
        source: AudioSource,
        encoder: BaseChunkEncoderServiceManager,
        on_chunk: ChunkHandler,
        on_ended: EndedHandler | None = None,
        logging_service: BaseAsyncLoggingService | None = None,
        window_seconds: float = SegmenterConstants.WINDOW_SECONDS,
        settle_seconds: float = SegmenterConstants.SETTLE_SECONDS,
        max_restart_attempts: int = SegmenterConstants.MAX_RESTART_ATTEMPTS,
        restart_delay_seconds: float = SegmenterConstants.RESTART_DELAY_SECONDS,
        health_check_interval_seconds: float = SegmenterConstants.HEALTH_CHECK_INTERVAL_SECONDS,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_restart_attempts < 0:
            raise ValueError("max_restart_attempts must not be negative")

        self.source = source
        self.speaker_id = source.speaker_id
        self.encoder = encoder
        self.on_chunk = on_chunk
        self.on_ended = on_ended
        self.logger = logging_service or ModuleLogger(__name__)

        self.window_seconds = window_seconds
        self.settle_seconds = settle_seconds
        self.max_restart_attempts = max_restart_attempts
        self.restart_delay_seconds = restart_delay_seconds
        self.health_check_interval_seconds = health_check_interval_seconds

        self._state = SegmenterState.IDLE
        self._state_changed_at: float | None = None
        self._sequence = 0
        self._chunks_emitted = 0
        self._empty_windows = 0
        self._restart_attempts = 0
        self._ended_reason: str | None = None
        self._fatal = False

        self._stop_requested = False
        self._stop_event = asyncio.Event()
        self._kick = asyncio.Event()
        self._ended_event = asyncio.Event()

        self._loop_task: asyncio.Task | None = None
        self._health_task: asyncio.Task | None = None

    # -------------------------------------------------------------- #
    # Properties
    # -------------------------------------------------------------- #

    @property
    def state(self) -> SegmenterState:
        return self._state

    @property
    def chunks_emitted(self) -> int:
        return self._chunks_emitted

    @property
    def restart_attempts(self) -> int:
        return self._restart_attempts

    @property
    def ended_reason(self) -> str | None:
        return self._ended_reason

    @property
    def is_fatal(self) -> bool:
        return self._fatal

    @property
    def is_running(self) -> bool:
        return (
            self._loop_task is not None
            and not self._loop_task.done()
            and self._state is not SegmenterState.ENDED
        )

    def get_status(self) -> dict:
        return {
            "speaker_id": self.speaker_id,
            "state": self._state.value,
            "is_running": self.is_running,
            "source_live": self.source.is_live,
            "chunks_emitted": self._chunks_emitted,
            "empty_windows": self._empty_windows,
            "restart_attempts": self._restart_attempts,
            "max_restart_attempts": self.max_restart_attempts,
            "window_seconds": self.window_seconds,
            "media_type": self.encoder.get_media_type(),
            "ended_reason": self._ended_reason,
            "fatal": self._fatal,
        }

    # -------------------------------------------------------------- #
    # Lifecycle
    # -------------------------------------------------------------- #

    async def start(self) -> None:
        """Start recording windows and the health check."""
        if self._state is SegmenterState.ENDED:
            await self.logger.warning(
                f"Segmenter for speaker {self.speaker_id} already ended; not restarting"
            )
            return
        if self._loop_task is not None and not self._loop_task.done():
            return

        self._set_state(SegmenterState.IDLE)
        self._loop_task = asyncio.create_task(
            self._run_loop(), name=f"segmenter-{self.speaker_id}"
        )
        self._health_task = asyncio.create_task(
            self._health_check_loop(), name=f"segmenter-health-{self.speaker_id}"
        )

        await self.logger.info(
            f"Started segmenter for speaker {self.speaker_id} "
            f"(window: {self.window_seconds}s, media type: {self.encoder.get_media_type()})"
        )

    async def stop(self, timeout: float | None = None) -> None:
        """
        Request the segmenter to end.

        The current window is cut short and its flush completes before the
        segmenter reaches ENDED and releases its source.

        Args:
            timeout: Seconds to wait for the in-flight flush before cancelling it
        """
        self._stop_requested = True
        self._stop_event.set()
        self._kick.set()

        await cancel_task(self._health_task)
        self._health_task = None

        task = self._loop_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                await self.logger.warning(
                    f"Segmenter for speaker {self.speaker_id} did not finish flushing "
                    f"within {timeout}s; cancelling"
                )
                await cancel_task(task)

        await self._end("stopped", fatal=False)

    async def wait_ended(self) -> None:
        await self._ended_event.wait()

    # -------------------------------------------------------------- #
    # Recording Loop
    # -------------------------------------------------------------- #

    async def _run_loop(self) -> None:
        while not self._stop_requested:
            if not self.source.is_live:
                await self.logger.info(
                    f"Audio source for speaker {self.speaker_id} is no longer live"
                )
                await self._end("source ended", fatal=False)
                return

            try:
                await self._record_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not await self._recover(e):
                    return
                continue

            self._restart_attempts = 0

            if self._stop_requested or not self.source.is_live:
                continue

            self._set_state(SegmenterState.IDLE)
            await self._settle()

        await self._end("stopped", fatal=False)

    async def _record_cycle(self) -> None:
        """One full RECORDING, STOPPING, FLUSHING pass."""
        self._set_state(SegmenterState.RECORDING)
        await self.source.start_capture()
        await self._wait_window()

        self._set_state(SegmenterState.STOPPING)
        pcm = await self.source.stop_capture()

        self._set_state(SegmenterState.FLUSHING)
        if not pcm:
            self._empty_windows += 1
            await self.logger.debug(
                f"Window for speaker {self.speaker_id} captured no audio; skipping chunk"
            )
            return

        chunk = await self.encoder.encode(
            pcm,
            speaker_id=self.speaker_id,
            sequence=self._sequence,
            sample_rate=self.source.sample_rate,
            sample_width=self.source.sample_width,
            channels=self.source.channels,
        )
        self._sequence += 1
        self._chunks_emitted += 1

        await self.logger.debug(
            f"Chunk #{chunk.sequence} for speaker {self.speaker_id}: "
            f"{chunk.size} bytes, {chunk.duration_ms}ms ({chunk.media_type})"
        )

        try:
            await self.on_chunk(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.logger.error(
                f"Chunk handler failed for chunk #{chunk.sequence} ({self.speaker_id}): {e}"
            )

    async def _wait_window(self) -> None:
        """Wait for the window to elapse, a stop request or the source ending."""
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        end_waiter = asyncio.ensure_future(self.source.wait_ended())
        try:
            await asyncio.wait(
                {stop_waiter, end_waiter},
                timeout=self.window_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in (stop_waiter, end_waiter):
                await cancel_task(waiter)

    async def _settle(self) -> None:
        await self._sleep_or_wake(self.settle_seconds)

    async def _sleep_or_wake(self, seconds: float) -> None:
        """Sleep unless stopped or kicked by the health check."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._kick.wait(), timeout=seconds)
        self._kick.clear()

    # -------------------------------------------------------------- #
    # Error Recovery
    # -------------------------------------------------------------- #

    async def _recover(self, error: Exception) -> bool:
        """
        Handle a failed cycle.

        Returns:
            True if the loop should try another cycle, False if it ended
        """
        failed_in = self._state
        self._set_state(SegmenterState.ERROR_RECOVERY)
        await self.logger.error(
            f"Segmenter for speaker {self.speaker_id} failed while {failed_in.value}: {error}"
        )

        if self.source.is_capturing:
            try:
                await self.source.stop_capture()
            except Exception as e:
                await self.logger.debug(
                    f"Discarding partial capture for {self.speaker_id} failed: {e}"
                )

        if self._restart_attempts >= self.max_restart_attempts:
            await self._end(
                f"exceeded {self.max_restart_attempts} restart attempts (last error: {error})",
                fatal=True,
            )
            return False

        self._restart_attempts += 1
        await self.logger.warning(
            f"Restarting segmenter for speaker {self.speaker_id} "
            f"(attempt {self._restart_attempts}/{self.max_restart_attempts}) "
            f"in {self.restart_delay_seconds}s"
        )
        await self._sleep_or_wake(self.restart_delay_seconds)
        return True

    async def _end(self, reason: str, fatal: bool) -> None:
        """Move to ENDED, release the source and notify the owner exactly once."""
        if self._state is SegmenterState.ENDED:
            return

        self._set_state(SegmenterState.ENDED)
        self._ended_reason = reason
        self._fatal = fatal

        try:
            await self.source.release()
        except Exception as e:
            await self.logger.error(f"Failed to release source for speaker {self.speaker_id}: {e}")

        if fatal:
            await self.logger.critical(
                f"Segmenter for speaker {self.speaker_id} stopped permanently: {reason}"
            )
        else:
            await self.logger.info(
                f"Segmenter for speaker {self.speaker_id} ended ({reason}) "
                f"after {self._chunks_emitted} chunks"
            )

        self._ended_event.set()

        if self.on_ended is not None:
            try:
                await invoke_callback(self.on_ended, self.speaker_id, reason, fatal)
            except Exception as e:
                await self.logger.error(f"on_ended callback failed for {self.speaker_id}: {e}")

    # -------------------------------------------------------------- #
    # Health Check
    # -------------------------------------------------------------- #

    async def _health_check_loop(self) -> None:
        while self._state is not SegmenterState.ENDED and not self._stop_requested:
            await asyncio.sleep(self.health_check_interval_seconds)
            if self._state is SegmenterState.ENDED or self._stop_requested:
                return

            try:
                await self._check_health()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await self.logger.error(f"Health check failed for speaker {self.speaker_id}: {e}")

    async def _check_health(self) -> None:
        if not self.source.is_live:
            await self.logger.warning(
                f"Health check: source for speaker {self.speaker_id} is dead; ending segmenter"
            )
            self._kick.set()
            if self._loop_task is None or self._loop_task.done():
                await self._end("source ended", fatal=False)
            return

        loop_dead = self._loop_task is None or self._loop_task.done()
        idle_for = self._seconds_in_state()
        idle_limit = self.window_seconds + self.settle_seconds + self.health_check_interval_seconds
        stuck_idle = self._state is SegmenterState.IDLE and idle_for > idle_limit

        if not (loop_dead or stuck_idle):
            return

        await self.logger.warning(
            f"Health check: segmenter for speaker {self.speaker_id} is stuck "
            f"({'loop stopped' if loop_dead else f'idle for {idle_for:.1f}s'}); forcing restart"
        )

        if self._restart_attempts >= self.max_restart_attempts:
            await cancel_task(self._loop_task)
            await self._end(
                f"exceeded {self.max_restart_attempts} restart attempts (segmenter stuck)",
                fatal=True,
            )
            return

        self._restart_attempts += 1
        if loop_dead:
            self._set_state(SegmenterState.IDLE)
            self._loop_task = asyncio.create_task(
                self._run_loop(), name=f"segmenter-{self.speaker_id}"
            )
        else:
            self._kick.set()

    # -------------------------------------------------------------- #
    # Helper Methods
    # -------------------------------------------------------------- #

    def _set_state(self, state: SegmenterState) -> None:
        self._state = state
        self._state_changed_at = asyncio.get_running_loop().time()

    def _seconds_in_state(self) -> float:
        if self._state_changed_at is None:
            return 0.0
        return asyncio.get_running_loop().time() - self._state_changed_at
