"""
VOICETURN Configuration

Pydantic models for every tunable knob of a voice session, loaded from YAML
with environment variable overrides.

Resolution order (later wins):
    1. Model defaults
    2. YAML file (explicit path, or the first file found by get_config_paths)
    3. Environment variables named VOICETURN_<SECTION>_<KEY>,
       e.g. VOICETURN_LISTENING_SILENCE_TIMEOUT=1.2 or VOICETURN_LOG_LEVEL=DEBUG

Usage:
    from voiceturn.config import load_config

    config = load_config()
    print(config.listening.silence_timeout)
"""

from __future__ import annotations

import os
import types
import typing
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from voiceturn.exceptions import ConfigurationError
from voiceturn.logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "ListeningConfig",
    "PlaybackConfig",
    "TurnConfig",
    "BackendConfig",
    "VoiceTurnConfig",
    "get_config_paths",
    "load_config",
    "ENV_PREFIX",
]

ENV_PREFIX = "VOICETURN_"

DEFAULT_WELCOME_TEXT = "Hello, I'm listening. How can I help you today?"


# =============================================================================
# Section Models
# =============================================================================


class ListeningConfig(BaseModel):
    """Capture, level metering and recognition settings."""

    mode: Literal["continuous", "push_to_talk"] = "continuous"
    language: str = "ar"

    # Level meter / detector
    silence_threshold: float = Field(default=0.05, ge=0.0, le=1.0)
    min_speech_level: float = Field(default=0.10, ge=0.0, le=1.0)
    silence_timeout: float = Field(default=0.8, gt=0.0)
    speech_confirm_delay: float = Field(default=0.15, ge=0.0)
    level_window: int = Field(default=5, ge=1, le=50)
    level_reference: float = Field(default=128.0, gt=0.0)

    # Watchdogs
    max_listening_continuous: float = Field(default=8.0, gt=0.0)
    max_listening_push_to_talk: float = Field(default=7.0, gt=0.0)
    no_speech_check: float = Field(default=6.5, gt=0.0)

    # Capture device
    sample_rate: int = Field(default=16000, ge=8000, le=48000)
    channels: int = Field(default=1, ge=1, le=2)
    input_device: Optional[str] = None
    min_capture_bytes: int = Field(default=1000, ge=0)
    chunk_interval: float = Field(default=1.0, gt=0.0)

    # Recognizer
    recognizer_retry_attempts: int = Field(default=3, ge=1)
    recognizer_retry_delay: float = Field(default=1.0, ge=0.0)
    interim_results: bool = False

    @model_validator(mode="after")
    def check_thresholds(self) -> "ListeningConfig":
        if self.silence_threshold >= self.min_speech_level:
            raise ValueError(
                "silence_threshold must be lower than min_speech_level"
            )
        if self.no_speech_check >= self.max_listening_push_to_talk:
            raise ValueError(
                "no_speech_check must fire before max_listening_push_to_talk"
            )
        return self

    @property
    def max_listening(self) -> float:
        """Watchdog duration for the active listening mode."""
        if self.mode == "push_to_talk":
            return self.max_listening_push_to_talk
        return self.max_listening_continuous


class PlaybackConfig(BaseModel):
    """Speech synthesis and audio output settings."""

    voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    delivery: Literal["streaming", "buffered"] = "streaming"
    max_attempts: int = Field(default=5, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0.0)
    autoplay_check_delay: float = Field(default=1.0, gt=0.0)
    sample_rate: int = Field(default=16000, ge=8000, le=48000)
    output_format: str = "pcm_16000"
    output_device: Optional[str] = None


class TurnConfig(BaseModel):
    """Turn-taking timings and conversation behaviour."""

    settle_delay: float = Field(default=0.8, ge=0.0)
    barge_in_guard: float = Field(default=0.3, ge=0.0)
    error_backoff: float = Field(default=2.0, ge=0.0)
    reply_retry_delay: float = Field(default=1.0, ge=0.0)
    welcome_delay: float = Field(default=0.8, ge=0.0)
    text_input_delay: float = Field(default=0.2, ge=0.0)
    notice_duration: float = Field(default=5.0, gt=0.0)
    recoverable_notice_duration: float = Field(default=3.0, gt=0.0)
    barge_in_enabled: bool = True
    welcome_text: Optional[str] = DEFAULT_WELCOME_TEXT

    @model_validator(mode="after")
    def check_backoff(self) -> "TurnConfig":
        if self.error_backoff < self.settle_delay:
            raise ValueError("error_backoff must not be shorter than settle_delay")
        return self


class BackendConfig(BaseModel):
    """Remote reasoning, transcription and synthesis endpoints."""

    base_url: str = "http://localhost:54321/functions/v1"
    api_key: Optional[str] = None
    reasoning_path: str = "/ai-assistant"
    transcription_path: str = "/voice-to-text"
    synthesis_path: str = "/text-to-speech"
    timeout: float = Field(default=30.0, gt=0.0)
    system_message: Optional[str] = None

    @field_validator("base_url")
    @classmethod
    def check_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


class VoiceTurnConfig(BaseModel):
    """Root configuration model."""

    listening: ListeningConfig = Field(default_factory=ListeningConfig)
    playback: PlaybackConfig = Field(default_factory=PlaybackConfig)
    turn: TurnConfig = Field(default_factory=TurnConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None


SECTIONS = ("listening", "playback", "turn", "backend")


# =============================================================================
# Loading
# =============================================================================


def get_config_paths() -> list[Path]:
    """Return candidate config file locations in search order."""
    return [
        Path("./voiceturn.yaml"),
        Path.home() / ".voiceturn" / "config.yaml",
        Path("/etc/voiceturn/config.yaml"),
    ]


def _unwrap_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _coerce(raw: str, annotation: Any) -> Any:
    """Convert an environment string to the field's scalar type."""
    target = _unwrap_optional(annotation)
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"not a boolean: {raw!r}")
    if target is int:
        return int(raw)
    if target is float:
        return float(raw)
    return raw


def _apply_env_overrides(data: dict[str, Any], environ: typing.Mapping[str, str]) -> None:
    for env_key, raw in environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        remainder = env_key[len(ENV_PREFIX):].lower()

        section, _, key = remainder.partition("_")
        if section in SECTIONS and key:
            model = VoiceTurnConfig.model_fields[section].default_factory
            fields = model.model_fields
            if key not in fields:
                logger.warning(f"Ignoring unknown setting {env_key}")
                continue
            try:
                value = _coerce(raw, fields[key].annotation)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {env_key}: {e}", config_key=env_key
                ) from e
            data.setdefault(section, {})[key] = value
        elif remainder in VoiceTurnConfig.model_fields and remainder not in SECTIONS:
            data[remainder] = raw.upper() if remainder == "log_level" else raw
        else:
            logger.warning(f"Ignoring unknown setting {env_key}")


def load_config(
    path: Optional[str | Path] = None,
    environ: Optional[typing.Mapping[str, str]] = None,
) -> VoiceTurnConfig:
    """Load configuration from YAML and the environment.

    Args:
        path: Explicit config file. If None, the first existing file from
              get_config_paths() is used; defaults apply when none exists.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated VoiceTurnConfig

    Raises:
        ConfigurationError: File missing, invalid YAML or failed validation
    """
    data: dict[str, Any] = {}
    config_file: Optional[Path] = None

    if path is not None:
        config_file = Path(path)
        if not config_file.exists():
            raise ConfigurationError(
                f"Config file not found: {config_file}", config_file=str(config_file)
            )
    else:
        for candidate in get_config_paths():
            if candidate.exists():
                config_file = candidate
                break

    if config_file is not None:
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in config file: {e}", config_file=str(config_file)
            ) from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                "Config file must contain a mapping", config_file=str(config_file)
            )
        data.update(loaded)
        logger.info(f"Loaded configuration from {config_file}")

    _apply_env_overrides(data, os.environ if environ is None else environ)

    try:
        return VoiceTurnConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}",
            config_file=str(config_file) if config_file else None,
        ) from e
