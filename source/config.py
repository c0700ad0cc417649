"""
Configuration for the live transcription pipeline.

Values are read from the environment (``.env.local`` is loaded first) and
collected into a single ``TranscriptionConfig`` that is injected into every
component. Nothing inside the pipeline reads the environment directly.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# prefer a project-local .env.local file, then fallback to any .env
load_dotenv(dotenv_path=".env.local")

# -------------------------------------------------------------- #
# Configuration Constants
# -------------------------------------------------------------- #


class DiscordAudioConstants:
    """Audio format delivered by py-cord's voice receive."""

    DISCORD_SAMPLE_RATE = 48000  # 48 kHz
    DISCORD_BITS_PER_SAMPLE = 16  # 16-bit signed PCM
    DISCORD_CHANNELS = 2  # Stereo
    BYTES_PER_SAMPLE = DISCORD_BITS_PER_SAMPLE // 8

    # whisper.cpp handles at most 30s windows; keep segments just below that
    MAX_SEGMENT_DURATION_SECONDS = 29

    # Discord rejects messages above 2000 characters
    DISCORD_CHAR_LIMIT = 1900


# -------------------------------------------------------------- #
# Helpers
# -------------------------------------------------------------- #


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_username_mapping(path: str | os.PathLike | None) -> dict[str, str]:
    """
    Load the static username -> display name mapping.

    Keys are lower-cased so lookups can use the lower-cased raw username.
    A missing file yields an empty mapping.

    Args:
        path: Path to a JSON object file

    Returns:
        Mapping of lower-cased username to display name

    Raises:
        ValueError: If the file does not contain a JSON object
    """
    if not path:
        return {}

    mapping_path = Path(path)
    if not mapping_path.exists():
        logger.warning(f"Username mapping file not found: {mapping_path}")
        return {}

    with open(mapping_path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Username mapping must be a JSON object: {mapping_path}")

    return {str(key).lower(): str(value) for key, value in data.items()}


def resolve_display_name(username: str, mapping: dict[str, str]) -> str:
    """Map a raw username to its preferred display name, falling back to the username."""
    return mapping.get(username.lower(), username)


# -------------------------------------------------------------- #
# Transcription Config
# -------------------------------------------------------------- #


@dataclass
class TranscriptionConfig:
    """All tunables consumed by the transcription pipeline."""

    # audio
    sample_rate: int = DiscordAudioConstants.DISCORD_SAMPLE_RATE
    channels: int = DiscordAudioConstants.DISCORD_CHANNELS
    max_segment_duration_seconds: int = DiscordAudioConstants.MAX_SEGMENT_DURATION_SECONDS
    min_utterance_ms: int = 300

    # capture: packets stop for this long -> utterance is complete
    silence_duration_ms: int = 1000

    # aggregation
    silence_threshold_ms: int = 1000
    buffer_window_ms: int = 30_000

    # delivery
    message_char_limit: int = DiscordAudioConstants.DISCORD_CHAR_LIMIT
    similarity_threshold: float = 0.8
    reprefix_continuations: bool = True

    # recognition
    language: str = "en"

    # export
    export_on_close: bool = True
    delete_log_after_export: bool = True

    username_mapping: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.channels <= 0:
            raise ValueError("channels must be positive")
        if self.max_segment_duration_seconds <= 0:
            raise ValueError("max_segment_duration_seconds must be positive")
        if self.message_char_limit <= 0:
            raise ValueError("message_char_limit must be positive")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be between 0 and 1")
        if self.buffer_window_ms < 0 or self.silence_threshold_ms < 0:
            raise ValueError("buffer_window_ms and silence_threshold_ms must not be negative")

    @property
    def max_samples_per_segment(self) -> int:
        return self.max_segment_duration_seconds * self.sample_rate

    @classmethod
    def from_env(cls) -> "TranscriptionConfig":
        """Build a config from environment variables, using defaults for anything unset."""
        defaults = cls()
        return cls(
            sample_rate=_env_int("SAMPLE_RATE", defaults.sample_rate),
            channels=_env_int("AUDIO_CHANNELS", defaults.channels),
            max_segment_duration_seconds=_env_int(
                "MAX_AUDIO_DURATION", defaults.max_segment_duration_seconds
            ),
            min_utterance_ms=_env_int("MIN_UTTERANCE_MS", defaults.min_utterance_ms),
            silence_duration_ms=_env_int("SILENCE_DURATION_MS", defaults.silence_duration_ms),
            silence_threshold_ms=_env_int("SILENCE_THRESHOLD_MS", defaults.silence_threshold_ms),
            buffer_window_ms=_env_int(
                "TRANSCRIPTION_BUFFER_LENGTH_MS", defaults.buffer_window_ms
            ),
            message_char_limit=_env_int("DISCORD_CHAR_LIMIT", defaults.message_char_limit),
            similarity_threshold=_env_float(
                "SIMILARITY_THRESHOLD", defaults.similarity_threshold
            ),
            reprefix_continuations=_env_bool(
                "REPREFIX_CONTINUATIONS", defaults.reprefix_continuations
            ),
            language=os.getenv("TRANSCRIPTION_LANGUAGE", defaults.language),
            export_on_close=_env_bool("EXPORT_TRANSCRIPT_ON_CLOSE", defaults.export_on_close),
            delete_log_after_export=_env_bool(
                "DELETE_TRANSCRIPT_AFTER_EXPORT", defaults.delete_log_after_export
            ),
            username_mapping=load_username_mapping(
                os.getenv("USERNAME_MAPPING_PATH", "username_mapping.json")
            ),
        )
