"""
Side-channel payload classification.

Real-time data channels carry a mix of speech transcription, control
frames, base64-wrapped state objects and other metadata. Everything here
is pure computation: it decides whether a payload holds human speech and
extracts the text if so.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from transcription_engine.utils import get_current_timestamp

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Patterns
# -------------------------------------------------------------- #

# "<hex>|<int>|<int>|" frames the transport uses for acks and stream state
CONTROL_PATTERN = re.compile(r"^[a-f0-9]+\|\d+\|\d+\|?$", re.IGNORECASE)

# control frame prefix followed by an embedded payload
EMBEDDED_PAYLOAD_PATTERN = re.compile(r"^([a-f0-9]+\|[0-9]+\|[0-9]+\|)(.+)$", re.IGNORECASE)

# long unbroken base64 runs are encoded state, never speech
BULK_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9+/=]{30,}$")

BASE64_ALPHABET_PATTERN = re.compile(r"^[A-Za-z0-9+/=]+$")
PURE_HEX_PATTERN = re.compile(r"^[0-9a-f]+$", re.IGNORECASE)

MIN_CONTENT_LENGTH = 2
MIN_PLAIN_TEXT_LENGTH = 3
MAX_PURE_HEX_LENGTH = 15
MIN_BASE64_CANDIDATE_LENGTH = 20

METADATA_OBJECTS = frozenset({"message.state", "assistant.transcript", "user.transcript"})
METADATA_TYPES = frozenset({"metadata", "message.state"})

TEXT_FIELDS = ("text", "transcript", "content", "speech", "utterance", "result", "transcription")
NESTED_CONTAINERS = ("message", "data")
SPEAKER_FIELDS = ("uid", "speakerId")


# -------------------------------------------------------------- #
# Data Classes
# -------------------------------------------------------------- #


@dataclass
class RawSideChannelMessage:
    """A message as delivered by the side-channel transport."""

    sender_id: Any
    payload: str | bytes | dict
    sequence: int = 0
    received_at: Any = field(default_factory=get_current_timestamp)


@dataclass(frozen=True)
class ClassifiedText:
    """Speech text extracted from a side-channel payload."""

    speaker_id: Any
    text: str
    is_final: bool = True


# -------------------------------------------------------------- #
# Pattern Helpers
# -------------------------------------------------------------- #


def is_control_pattern(text: str) -> bool:
    return bool(CONTROL_PATTERN.match(text.strip()))


def is_bulk_token(text: str) -> bool:
    return bool(BULK_TOKEN_PATTERN.match(text.strip()))


def has_letter(text: str) -> bool:
    return any(ch.isalpha() for ch in text)


def is_noise_only(text: str) -> bool:
    """True when every non-empty line is a control frame or a bulk token."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return True
    return all(is_control_pattern(line) or is_bulk_token(line) for line in lines)


def decode_base64_text(candidate: str) -> str | None:
    """
    Decode a base64 string to UTF-8 text.

    Missing padding is tolerated. Returns None when the candidate is not
    valid base64 or does not decode to UTF-8.
    """
    candidate = candidate.strip()
    if not candidate or not BASE64_ALPHABET_PATTERN.match(candidate):
        return None

    padded = candidate + "=" * (-len(candidate) % 4)
    try:
        raw = base64.b64decode(padded, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def parse_structured(text: str) -> dict | list | None:
    """Parse text as a JSON object or array, or return None."""
    stripped = text.strip()
    if not stripped.startswith(("{", "[")):
        return None
    try:
        value = json.loads(stripped)
    except ValueError:
        return None
    return value if isinstance(value, (dict, list)) else None


def normalize_payload(payload: Any) -> str | None:
    """
    Turn a transport payload into text.

    Dicts yield their ``text``, ``message`` or ``data`` string when one is
    present and their JSON dump otherwise. ``classify_payload`` only
    unwraps a dict this way after structured inspection found no speech.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload).decode("utf-8", errors="replace")
    if isinstance(payload, dict):
        for key in ("text", "message", "data"):
            if isinstance(payload.get(key), str):
                return payload[key]
        try:
            return json.dumps(payload)
        except (TypeError, ValueError):
            return None
    return None


# -------------------------------------------------------------- #
# Text Heuristics
# -------------------------------------------------------------- #


def _is_acceptable_text(text: str) -> bool:
    trimmed = text.strip()
    if not trimmed or not has_letter(trimmed):
        return False
    if is_control_pattern(trimmed) or is_bulk_token(trimmed):
        return False
    if EMBEDDED_PAYLOAD_PATTERN.match(trimmed):
        return False
    if PURE_HEX_PATTERN.match(trimmed) and len(trimmed) > MAX_PURE_HEX_LENGTH:
        return False
    return True


def is_likely_transcription(text: str) -> bool:
    """
    Decide whether plain text looks like human speech.

    Example:
        >>> is_likely_transcription("hello there")
        True
        >>> is_likely_transcription("4e7d34a5|1|1|")
        False
    """
    trimmed = text.strip()
    if len(trimmed) < MIN_PLAIN_TEXT_LENGTH:
        return False
    if "\n" in trimmed and is_noise_only(trimmed):
        return False
    return _is_acceptable_text(trimmed)


# -------------------------------------------------------------- #
# Structured Inspection
# -------------------------------------------------------------- #


def is_metadata(value: dict) -> bool:
    return (
        value.get("object") in METADATA_OBJECTS
        or value.get("type") in METADATA_TYPES
        or value.get("event") == "metadata"
    )


def _read_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "")
    return bool(value)


def extract_finality(value: dict) -> bool:
    """Finality from ``isFinal``, then ``final``; defaults to final."""
    for key in ("isFinal", "final"):
        if key in value and value[key] is not None:
            return _read_flag(value[key])
    return True


def extract_candidate_text(value: dict) -> str | None:
    """Return the first acceptable text field, looking one level into message/data."""
    for key in TEXT_FIELDS:
        candidate = value.get(key)
        if isinstance(candidate, str) and _is_acceptable_text(candidate):
            return candidate.strip()

    for container in NESTED_CONTAINERS:
        nested = value.get(container)
        if isinstance(nested, dict):
            for key in TEXT_FIELDS:
                candidate = nested.get(key)
                if isinstance(candidate, str) and _is_acceptable_text(candidate):
                    return candidate.strip()
        elif container == "message" and isinstance(nested, str) and _is_acceptable_text(nested):
            return nested.strip()

    return None


def resolve_speaker(value: dict, sender_id: Any) -> Any:
    for key in SPEAKER_FIELDS:
        if value.get(key) is not None:
            return value[key]
    return sender_id


def inspect_structured(
    value: Any, sender_id: Any, text_before_metadata: bool = False
) -> ClassifiedText | None:
    """
    Extract speech from a decoded JSON value.

    Metadata and state objects are rejected unless ``text_before_metadata``
    is set; control frames wrap user.transcript objects that do carry
    speech, so the embedded path only rejects them when no text field is
    acceptable.
    """
    if not isinstance(value, dict):
        logger.debug("Structured payload is not an object; skipping")
        return None

    if not text_before_metadata and is_metadata(value):
        logger.debug(
            f"Skipping metadata payload "
            f"(object={value.get('object')!r}, type={value.get('type')!r})"
        )
        return None

    text = extract_candidate_text(value)
    if text is None:
        logger.debug(f"Structured payload without transcription text (keys: {list(value)})")
        return None

    return ClassifiedText(
        speaker_id=resolve_speaker(value, sender_id),
        text=text,
        is_final=extract_finality(value),
    )


def _classify_embedded(decoded: str, sender_id: Any) -> ClassifiedText | None:
    structured = parse_structured(decoded)
    if structured is not None:
        return inspect_structured(structured, sender_id, text_before_metadata=True)
    if is_likely_transcription(decoded):
        return ClassifiedText(speaker_id=sender_id, text=decoded.strip(), is_final=True)
    return None


# -------------------------------------------------------------- #
# Classification
# -------------------------------------------------------------- #


def classify_payload(payload: Any, sender_id: Any) -> ClassifiedText | None:
    """
    Classify one side-channel payload.

    Pre-parsed dicts are inspected as structured values first, so their
    finality and speaker fields survive. Otherwise checks run in order and
    the first one that decides wins: minimum content, control frames
    (with an optional embedded base64 payload), bulk base64 tokens,
    structured JSON, base64-wrapped JSON and finally the plain-text
    heuristics.

    Args:
        payload: Raw payload (str, bytes or dict)
        sender_id: Transport sender, used unless the payload names a speaker

    Returns:
        ClassifiedText if the payload carries speech, otherwise None
    """
    if isinstance(payload, dict):
        classified = inspect_structured(payload, sender_id)
        if classified is not None or is_metadata(payload):
            return classified
        # a wrapped string field may still hold a control frame or base64 value
        sender_id = resolve_speaker(payload, sender_id)

    raw = normalize_payload(payload)
    if raw is None:
        logger.debug(
            f"Skipping unsupported payload type from {sender_id}: {type(payload).__name__}"
        )
        return None

    trimmed = raw.strip()
    if len(trimmed) < MIN_CONTENT_LENGTH:
        return None

    # control frame carrying a base64 payload after the prefix
    embedded = EMBEDDED_PAYLOAD_PATTERN.match(trimmed)
    if embedded:
        decoded = decode_base64_text(embedded.group(2))
        if decoded is not None:
            return _classify_embedded(decoded, sender_id)

    if is_control_pattern(trimmed):
        logger.debug(f"Skipping control frame from {sender_id}: {trimmed}")
        return None

    if is_bulk_token(trimmed):
        decoded = decode_base64_text(trimmed)
        structured = parse_structured(decoded) if decoded is not None else None
        if structured is not None:
            return inspect_structured(structured, sender_id)
        logger.debug(f"Skipping bulk-encoded token from {sender_id}: {trimmed[:50]}")
        return None

    if "\n" in trimmed and is_noise_only(trimmed):
        logger.debug(f"Skipping multi-line control data from {sender_id}")
        return None

    structured = parse_structured(trimmed)
    if structured is not None:
        return inspect_structured(structured, sender_id)

    if BASE64_ALPHABET_PATTERN.match(trimmed) and len(trimmed) > MIN_BASE64_CANDIDATE_LENGTH:
        decoded = decode_base64_text(trimmed)
        structured = parse_structured(decoded) if decoded is not None else None
        if structured is not None:
            return inspect_structured(structured, sender_id)

    if is_likely_transcription(trimmed):
        return ClassifiedText(speaker_id=sender_id, text=trimmed, is_final=True)

    logger.debug(f"Skipping non-transcription data from {sender_id}: {trimmed[:50]}")
    return None


def classify_message(message: RawSideChannelMessage) -> ClassifiedText | None:
    return classify_payload(message.payload, message.sender_id)
