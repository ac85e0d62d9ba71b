from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from transcription_engine.utils import generate_16_char_uuid, get_current_timestamp

# -------------------------------------------------------------- #
# Session Context
# -------------------------------------------------------------- #


@dataclass
class SessionContext:
    """
    Read-mostly facts about a running transcription session.

    Created when the session starts. Only speaker registration mutates it
    afterwards.
    """

    session_id: str = field(default_factory=generate_16_char_uuid)
    session_start: datetime = field(default_factory=get_current_timestamp)
    local_speaker_id: Any = None
    local_speaker_name: str = "You"
    language: str = "en-US"
    speaker_names: dict[Any, str] = field(default_factory=dict)

    def register_speaker(self, speaker_id: Any, display_name: str | None) -> None:
        if display_name:
            self.speaker_names[speaker_id] = display_name

    def resolve_display_name(self, speaker_id: Any) -> str:
        """Local speaker first, then registered names, then a generic label."""
        if self.local_speaker_id is not None and speaker_id == self.local_speaker_id:
            return self.local_speaker_name
        name = self.speaker_names.get(speaker_id)
        if name:
            return name
        return f"User {speaker_id}"

    def elapsed_seconds(self, now: datetime | None = None) -> float:
        now = now or get_current_timestamp()
        return max(0.0, (now - self.session_start).total_seconds())
