"""Transcription relay client implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiohttp

from transcription_engine.server.outcome import TranscriptionOutcome
from transcription_engine.server.services import TranscriptionRelayHandler

if TYPE_CHECKING:
    from transcription_engine.config import EngineConfig
    from transcription_engine.services.chunk_encoder.manager import Chunk

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #

GROQ_TRANSCRIPTION_ENDPOINT = "https://api.groq.com/openai/v1/audio/transcriptions"
GROQ_DEFAULT_MODEL = "whisper-large-v3"

OPENAI_TRANSCRIPTION_ENDPOINT = "https://api.openai.com/v1/audio/transcriptions"
OPENAI_DEFAULT_MODEL = "whisper-1"

# phrases backends use when a chunk's container cannot be decoded
FORMAT_ERROR_PHRASES = (
    "could not process file",
    "invalid media file",
    "unreadable",
)

# ordered: first matching fragment of the base type wins
_MEDIA_TYPE_TABLE = (
    (("webm",), "webm", "audio/webm"),
    (("ogg",), "ogg", "audio/ogg"),
    (("mp4", "m4a"), "m4a", "audio/m4a"),
    (("wav",), "wav", "audio/wav"),
    (("mp3", "mpeg", "mpga"), "mp3", "audio/mp3"),
    (("flac",), "flac", "audio/flac"),
)

_RESPONSE_TEXT_FIELDS = ("text", "transcript", "result")


# -------------------------------------------------------------- #
# Helpers
# -------------------------------------------------------------- #


def normalize_media_type(media_type: str | None) -> tuple[str, str]:
    """
    Strip codec parameters and map a media type to (extension, media type).

    Backends expect simple types such as ``audio/webm`` rather than
    ``audio/webm;codecs=opus``. Unknown types default to webm.

    Example:
        >>> normalize_media_type("audio/ogg;codecs=opus")
        ('ogg', 'audio/ogg')
    """
    base = (media_type or "audio/webm").split(";")[0].strip().lower()
    for fragments, extension, normalized in _MEDIA_TYPE_TABLE:
        if any(fragment in base for fragment in fragments):
            return extension, normalized
    return "webm", "audio/webm"


def language_code(language: str | None) -> str:
    """Reduce a language hint like "en-US" to its primary subtag ("en")."""
    if not language:
        return "en"
    return language.split("-")[0].strip().lower() or "en"


def is_format_error(message: str) -> bool:
    lowered = message.lower()
    return any(phrase in lowered for phrase in FORMAT_ERROR_PHRASES)


def extract_error_message(body: str) -> str:
    """Pull a human-readable error out of a JSON or plain-text error body."""
    try:
        payload = json.loads(body)
    except (ValueError, TypeError):
        return body.strip()

    if not isinstance(payload, dict):
        return body.strip()

    parts: list[str] = []
    for key in ("error", "message", "detail"):
        value = payload.get(key)
        if isinstance(value, str):
            parts.append(value)
        elif isinstance(value, dict) and isinstance(value.get("message"), str):
            parts.append(value["message"])
    return " | ".join(parts) if parts else body.strip()


def extract_response_text(payload: dict[str, Any]) -> str | None:
    for field in _RESPONSE_TEXT_FIELDS:
        value = payload.get(field)
        if isinstance(value, str):
            return value
    return None


# -------------------------------------------------------------- #
# Backend Resolution
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class RelayBackend:
    """Resolved backend target for the relay client."""

    provider: str
    endpoint: str
    api_key: str | None
    model: str


def resolve_backend(config: EngineConfig) -> RelayBackend | None:
    """
    Pick the backend to relay chunks to.

    Order: explicit relay endpoint, then Groq, then OpenAI. Returns None
    when nothing is configured.
    """
    if config.relay_endpoint:
        return RelayBackend(
            provider="relay",
            endpoint=config.relay_endpoint,
            api_key=config.relay_api_key,
            model=config.transcription_model or GROQ_DEFAULT_MODEL,
        )
    if config.groq_api_key:
        return RelayBackend(
            provider="groq",
            endpoint=GROQ_TRANSCRIPTION_ENDPOINT,
            api_key=config.groq_api_key,
            model=config.transcription_model or GROQ_DEFAULT_MODEL,
        )
    if config.openai_api_key:
        return RelayBackend(
            provider="openai",
            endpoint=OPENAI_TRANSCRIPTION_ENDPOINT,
            api_key=config.openai_api_key,
            model=config.transcription_model or OPENAI_DEFAULT_MODEL,
        )
    return None


# -------------------------------------------------------------- #
# Relay Client
# -------------------------------------------------------------- #


class TranscriptionRelayClient(TranscriptionRelayHandler):
    """Client for an OpenAI-compatible speech-recognition endpoint."""

    def __init__(
        self,
        name: str = "transcription_relay",
        endpoint: str | None = None,
        api_key: str | None = None,
        model: str = GROQ_DEFAULT_MODEL,
        provider: str = "relay",
        timeout_seconds: float = 20.0,
    ):
        """
        Initialize the relay client.

        Args:
            name: Name of the client
            endpoint: Transcription endpoint URL (None means unconfigured)
            api_key: Bearer token sent with each request
            model: Model name sent in the form body
            provider: Label used in logs ("groq", "openai", "relay")
            timeout_seconds: Total timeout for one submission
        """
        super().__init__(name, endpoint)
        self.api_key = api_key
        self.model = model
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session used for submissions."""
        if self.session and not self.session.closed:
            return

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        )
        self._connected = True

        if self.is_configured:
            logger.info(f"Transcription relay ready ({self.provider}) at {self.endpoint}")
        else:
            logger.warning(
                "Transcription relay has no backend configured. "
                "Set GROQ_KEY (or GROQ_API_KEY), OPENAI_API_KEY or TRANSCRIPTION_RELAY_ENDPOINT."
            )

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info("Disconnected from transcription relay")

    async def health_check(self) -> bool:
        """The relay is healthy when it has an open session and a backend."""
        return self.is_configured and self.session is not None and not self.session.closed

    # -------------------------------------------------------------- #
    # Submission
    # -------------------------------------------------------------- #

    def _build_form(self, chunk: Chunk, language: str) -> aiohttp.FormData:
        extension, media_type = normalize_media_type(chunk.media_type)

        data = aiohttp.FormData()
        data.add_field(
            "file",
            chunk.payload,
            filename=f"audio.{extension}",
            content_type=media_type,
        )
        data.add_field("model", self.model)
        data.add_field("language", language_code(language))
        data.add_field("response_format", "json")
        return data

    async def submit(self, chunk: Chunk, language: str = "en-US") -> TranscriptionOutcome:
        """
        Upload one chunk and classify the backend's answer.

        Never raises. Failed chunks are not retried; audio is time-sensitive
        and the next window is already being recorded.
        """
        if not self.is_configured:
            return TranscriptionOutcome.unavailable("not configured")

        if not self.session or self.session.closed:
            logger.warning(
                f"Relay not connected; dropping chunk #{chunk.sequence} from {chunk.speaker_id}"
            )
            return TranscriptionOutcome.rejected("not_connected")

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            data = self._build_form(chunk, language)
            async with self.session.post(self.endpoint, data=data, headers=headers) as response:
                status = response.status
                body = await response.text()
        except asyncio.TimeoutError:
            logger.warning(
                f"Transcription request timed out after {self.timeout_seconds}s "
                f"(chunk #{chunk.sequence}, speaker {chunk.speaker_id}) - dropping chunk"
            )
            return TranscriptionOutcome.rejected("timeout")
        except aiohttp.ClientError as e:
            logger.warning(
                f"Network error sending chunk #{chunk.sequence} for speaker {chunk.speaker_id}: {e}"
            )
            return TranscriptionOutcome.rejected("network_error")
        except Exception as e:
            logger.error(f"Unexpected relay failure for chunk #{chunk.sequence}: {e}")
            return TranscriptionOutcome.rejected("client_error")

        return self._classify_response(status, body, chunk)

    def _classify_response(self, status: int, body: str, chunk: Chunk) -> TranscriptionOutcome:
        if 200 <= status < 300:
            try:
                payload = json.loads(body)
            except ValueError:
                logger.warning(f"Backend returned non-JSON body for chunk #{chunk.sequence}")
                return TranscriptionOutcome.rejected("malformed_response", status)

            if not isinstance(payload, dict):
                logger.warning(f"Backend returned unexpected JSON for chunk #{chunk.sequence}")
                return TranscriptionOutcome.rejected("malformed_response", status)

            text = extract_response_text(payload)
            if not text or not text.strip():
                logger.debug(f"No speech detected in chunk #{chunk.sequence} ({chunk.speaker_id})")
                return TranscriptionOutcome.empty(status)

            return TranscriptionOutcome.of_text(text.strip(), status)

        message = extract_error_message(body)

        if is_format_error(message):
            logger.debug(
                f"Chunk #{chunk.sequence} rejected by backend (format issue) - skipping: {message}"
            )
            return TranscriptionOutcome.rejected("unsupported_format", status)

        if status in (401, 403) or (status == 503 and "not configured" in message.lower()):
            logger.warning(f"Transcription backend unavailable ({status}): {message}")
            return TranscriptionOutcome.unavailable(message or "not configured", status)

        logger.warning(f"Transcription backend error ({status}) - continuing: {message}")
        return TranscriptionOutcome.rejected(f"http_{status}", status)


def construct_transcription_relay_client(config: EngineConfig) -> TranscriptionRelayClient:
    """
    Construct and return a relay client for the configured backend.

    Args:
        config: Engine configuration carrying endpoint and credentials

    Returns:
        Relay client (unconfigured when no backend was found)
    """
    backend = resolve_backend(config)
    if backend is None:
        return TranscriptionRelayClient(
            name="transcription_relay",
            endpoint=None,
            provider="none",
            timeout_seconds=config.request_timeout_seconds,
        )

    return TranscriptionRelayClient(
        name="transcription_relay",
        endpoint=backend.endpoint,
        api_key=backend.api_key,
        model=backend.model,
        provider=backend.provider,
        timeout_seconds=config.request_timeout_seconds,
    )
