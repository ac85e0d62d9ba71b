from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from transcription_engine.services.logger import ModuleLogger
from transcription_engine.utils import (
    format_elapsed_label,
    get_current_timestamp,
    invoke_callback,
)

if TYPE_CHECKING:
    from transcription_engine.services.manager import BaseAsyncLoggingService
    from transcription_engine.services.session.context import SessionContext

TranscriptObserver = Callable[["TranscriptEvent", "TranscriptSegment"], Any]


# -------------------------------------------------------------- #
# Data Classes
# -------------------------------------------------------------- #


class TranscriptEvent(Enum):
    APPENDED = "appended"
    UPDATED = "updated"


@dataclass
class TranscriptSegment:
    """One line of the live transcript.

    Attributes:
        id: Stable identifier, kept when an interim line is finalized
        speaker_id: Speaker the text belongs to
        display_name: Name shown for the speaker
        timestamp: Elapsed time since session start as HH:MM:SS
        text: Transcribed text
        is_final: False while the line may still be revised
        elapsed_seconds: Numeric form of ``timestamp``
        created_at: When the line was last committed
    """

    id: str
    speaker_id: Any
    display_name: str
    timestamp: str
    text: str
    is_final: bool
    elapsed_seconds: int = 0
    created_at: datetime = field(default_factory=get_current_timestamp)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


# -------------------------------------------------------------- #
# Transcript Assembler
# -------------------------------------------------------------- #


class TranscriptAssembler:
    """
    Merges transcription text from every speaker into one ordered transcript.

    Each speaker has at most one interim line. Interim text updates that
    line in place and a final event settles it without moving it, so a
    line never duplicates while it is being revised. Lines are kept in
    commit order.
    """

    def __init__(
        self,
        context: SessionContext,
        logging_service: BaseAsyncLoggingService | None = None,
    ):
        self.context = context
        self.logger = logging_service or ModuleLogger(__name__)

        self._segments: list[TranscriptSegment] = []
        self._interim: dict[Any, TranscriptSegment] = {}
        self._observers: list[TranscriptObserver] = []
        self._lock = asyncio.Lock()
        self._counter = itertools.count(1)

    # -------------------------------------------------------------- #
    # Observers
    # -------------------------------------------------------------- #

    def subscribe(self, observer: TranscriptObserver) -> None:
        """
        Register a sync or async ``observer(event, segment)``.

        Observers run while the ingest lock is held, so they must not call
        ``ingest`` themselves.
        """
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: TranscriptObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def _notify(self, event: TranscriptEvent, segment: TranscriptSegment) -> None:
        for observer in list(self._observers):
            try:
                await invoke_callback(observer, event, segment)
            except Exception as e:
                await self.logger.error(f"Transcript observer failed on {event.value}: {e}")

    # -------------------------------------------------------------- #
    # Ingestion
    # -------------------------------------------------------------- #

    def _next_id(self) -> str:
        epoch_ms = int(get_current_timestamp().timestamp() * 1000)
        return f"transcript-{epoch_ms}-{next(self._counter)}"

    async def ingest(
        self, speaker_id: Any, text: str, is_final: bool = True
    ) -> TranscriptSegment | None:
        """
        Add recognized text for a speaker.

        Args:
            speaker_id: Speaker the text belongs to
            text: Recognized text
            is_final: Whether the text is settled

        Returns:
            The appended or updated segment, or None for blank text
        """
        if text is None or not text.strip():
            return None
        text = text.strip()

        async with self._lock:
            now = get_current_timestamp()
            elapsed = max(0, int((now - self.context.session_start).total_seconds()))
            label = format_elapsed_label(elapsed)
            display_name = self.context.resolve_display_name(speaker_id)

            existing = self._interim.get(speaker_id)
            if existing is not None:
                existing.text = text
                existing.timestamp = label
                existing.elapsed_seconds = elapsed
                existing.created_at = now
                existing.display_name = display_name
                if is_final:
                    existing.is_final = True
                    del self._interim[speaker_id]
                segment, event = existing, TranscriptEvent.UPDATED
            else:
                segment = TranscriptSegment(
                    id=self._next_id(),
                    speaker_id=speaker_id,
                    display_name=display_name,
                    timestamp=label,
                    text=text,
                    is_final=is_final,
                    elapsed_seconds=elapsed,
                    created_at=now,
                )
                self._segments.append(segment)
                if not is_final:
                    self._interim[speaker_id] = segment
                event = TranscriptEvent.APPENDED

            snapshot = replace(segment)

            # observers see events in commit order, even when they await
            await self._notify(event, snapshot)

        await self.logger.debug(
            f"[{label}] {display_name} ({'final' if is_final else 'interim'}): {text[:80]}"
        )
        return snapshot

    # -------------------------------------------------------------- #
    # Read-out
    # -------------------------------------------------------------- #

    @property
    def segments(self) -> list[TranscriptSegment]:
        return self.get_transcript()

    def get_transcript(self) -> list[TranscriptSegment]:
        """Snapshot of the transcript in commit order."""
        return [replace(segment) for segment in self._segments]

    @property
    def segment_count(self) -> int:
        return len(self._segments)

    def has_interim(self, speaker_id: Any) -> bool:
        return speaker_id in self._interim

    def sorted_by_elapsed(self, final_only: bool = True) -> list[TranscriptSegment]:
        """Chronological view by elapsed time; ties keep commit order."""
        segments = self.get_transcript()
        if final_only:
            segments = [segment for segment in segments if segment.is_final]
        return sorted(segments, key=lambda segment: segment.elapsed_seconds)

    def clear(self) -> None:
        self._segments.clear()
        self._interim.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.context.session_id,
            "session_start": self.context.session_start.isoformat(),
            "language": self.context.language,
            "speakers": {str(k): v for k, v in self.context.speaker_names.items()},
            "segments": [segment.to_dict() for segment in self._segments],
        }

    def render_text(self, final_only: bool = False) -> str:
        lines = []
        for segment in self._segments:
            if final_only and not segment.is_final:
                continue
            marker = "" if segment.is_final else " ..."
            lines.append(f"[{segment.timestamp}] {segment.display_name}: {segment.text}{marker}")
        return "\n".join(lines)
