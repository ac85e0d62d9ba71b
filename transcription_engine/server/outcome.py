from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# -------------------------------------------------------------- #
# Outcome Kind Enum
# -------------------------------------------------------------- #


class OutcomeKind(Enum):
    """Possible results of submitting one chunk to the backend."""

    TEXT = "text"
    EMPTY = "empty"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


# -------------------------------------------------------------- #
# Transcription Outcome
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class TranscriptionOutcome:
    """Result of submitting a chunk.

    Attributes:
        kind: Which variant this outcome is
        text: Recognized text (only set for TEXT)
        reason: Short machine-readable reason (REJECTED / UNAVAILABLE)
        status: HTTP status of the backend response, if one was received
    """

    kind: OutcomeKind
    text: str = ""
    reason: str | None = None
    status: int | None = None

    @classmethod
    def of_text(cls, text: str, status: int | None = 200) -> TranscriptionOutcome:
        return cls(kind=OutcomeKind.TEXT, text=text, status=status)

    @classmethod
    def empty(cls, status: int | None = 200) -> TranscriptionOutcome:
        return cls(kind=OutcomeKind.EMPTY, status=status)

    @classmethod
    def rejected(cls, reason: str, status: int | None = None) -> TranscriptionOutcome:
        return cls(kind=OutcomeKind.REJECTED, reason=reason, status=status)

    @classmethod
    def unavailable(cls, reason: str, status: int | None = None) -> TranscriptionOutcome:
        return cls(kind=OutcomeKind.UNAVAILABLE, reason=reason, status=status)

    @property
    def is_text(self) -> bool:
        return self.kind is OutcomeKind.TEXT

    @property
    def is_empty(self) -> bool:
        return self.kind is OutcomeKind.EMPTY

    @property
    def is_rejected(self) -> bool:
        return self.kind is OutcomeKind.REJECTED

    @property
    def is_unavailable(self) -> bool:
        return self.kind is OutcomeKind.UNAVAILABLE
