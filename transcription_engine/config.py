"""
Engine configuration.

All tunables are read from the environment (optionally populated from
``.env.local``) so nothing about cadence, retries or the backend is
hardcoded in the pipeline itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #

MIN_REQUEST_TIMEOUT_SECONDS = 10.0
MAX_REQUEST_TIMEOUT_SECONDS = 30.0


# -------------------------------------------------------------- #
# Env Helpers
# -------------------------------------------------------------- #


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r} (expected a number)") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r} (expected an integer)") from None


def _env_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


# -------------------------------------------------------------- #
# Engine Config
# -------------------------------------------------------------- #


@dataclass
class EngineConfig:
    """Externally supplied settings for a transcription session."""

    # segmenter
    recording_window_seconds: float = 3.0
    restart_settle_seconds: float = 0.1
    max_restart_attempts: int = 5
    restart_delay_seconds: float = 1.0
    health_check_interval_seconds: float = 10.0

    # relay
    relay_endpoint: str | None = None
    relay_api_key: str | None = None
    transcription_model: str | None = None
    groq_api_key: str | None = None
    openai_api_key: str | None = None
    request_timeout_seconds: float = 20.0
    language: str = "en-US"

    # side channel / session
    side_channel_watchdog_seconds: float = 10.0
    local_speaker_name: str = "You"

    # io
    ffmpeg_path: str | None = None
    transcript_export_dir: str = "transcripts"
    log_dir: str = "logs"

    def __post_init__(self):
        if self.recording_window_seconds <= 0:
            raise ValueError("recording_window_seconds must be positive")
        if self.max_restart_attempts < 0:
            raise ValueError("max_restart_attempts cannot be negative")
        if self.health_check_interval_seconds <= 0:
            raise ValueError("health_check_interval_seconds must be positive")

        # keep the relay from hanging a segmenter cycle indefinitely
        self.request_timeout_seconds = min(
            max(self.request_timeout_seconds, MIN_REQUEST_TIMEOUT_SECONDS),
            MAX_REQUEST_TIMEOUT_SECONDS,
        )

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from environment variables."""
        return cls(
            recording_window_seconds=_env_float("RECORDING_WINDOW_SECONDS", 3.0),
            restart_settle_seconds=_env_float("RESTART_SETTLE_SECONDS", 0.1),
            max_restart_attempts=_env_int("MAX_RESTART_ATTEMPTS", 5),
            restart_delay_seconds=_env_float("RESTART_DELAY_SECONDS", 1.0),
            health_check_interval_seconds=_env_float("HEALTH_CHECK_INTERVAL_SECONDS", 10.0),
            relay_endpoint=_env_str("TRANSCRIPTION_RELAY_ENDPOINT"),
            relay_api_key=_env_str("TRANSCRIPTION_RELAY_API_KEY"),
            transcription_model=_env_str("TRANSCRIPTION_MODEL"),
            groq_api_key=_env_str("GROQ_KEY") or _env_str("GROQ_API_KEY"),
            openai_api_key=_env_str("OPENAI_API_KEY"),
            request_timeout_seconds=_env_float("TRANSCRIPTION_TIMEOUT_SECONDS", 20.0),
            language=_env_str("TRANSCRIPTION_LANGUAGE") or "en-US",
            side_channel_watchdog_seconds=_env_float("SIDE_CHANNEL_WATCHDOG_SECONDS", 10.0),
            local_speaker_name=_env_str("LOCAL_SPEAKER_NAME") or "You",
            ffmpeg_path=_env_str("FFMPEG_PATH"),
            transcript_export_dir=_env_str("TRANSCRIPT_EXPORT_DIR") or "transcripts",
            log_dir=_env_str("LOG_DIR") or "logs",
        )
