"""
VOICETURN Custom Exceptions

Domain-specific exception hierarchy for the voice turn-taking system.
Components raise these; the orchestrator turns them into events, notices
and recovery timers so no error is fatal to the session itself.

Exception Hierarchy:
    VoiceTurnError (base)
    ├── ConfigurationError
    ├── DeviceUnavailable
    ├── CaptureError
    │   └── EmptyCapture
    ├── RecognitionError
    │   ├── NoSpeechDetected
    │   └── TranscriptionFailed
    ├── ReplyUnavailable
    └── OutputError
        ├── SynthesisFailed
        └── PlaybackFailed
"""

from typing import Any, Optional


class VoiceTurnError(Exception):
    """Base exception for all voiceturn errors.

    Attributes:
        message: Human-readable error description
        details: Optional dict with additional error context
        soft: False when the turn waits for the user instead of self-healing
    """

    soft = True

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(VoiceTurnError):
    """Error in configuration file or settings."""

    soft = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
    ) -> None:
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_file:
            details["config_file"] = config_file
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file


# =============================================================================
# Capture Errors
# =============================================================================

class DeviceUnavailable(VoiceTurnError):
    """Microphone could not be acquired.

    Raised when permission is denied, no input device exists or the audio
    backend cannot be loaded. Fatal to the current turn only; the user can
    retry once access is granted.
    """

    soft = False

    def __init__(
        self,
        message: str,
        device: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        details = {}
        if device:
            details["device"] = device
        if reason:
            details["reason"] = reason
        super().__init__(message, details)
        self.device = device
        self.reason = reason


class CaptureError(VoiceTurnError):
    """Base class for errors produced while finalizing a capture."""
    pass


class EmptyCapture(CaptureError):
    """Captured payload is too small to contain usable speech."""

    def __init__(
        self,
        message: str = "Captured audio is too short",
        size_bytes: Optional[int] = None,
        min_bytes: Optional[int] = None,
    ) -> None:
        details = {}
        if size_bytes is not None:
            details["size_bytes"] = size_bytes
        if min_bytes is not None:
            details["min_bytes"] = min_bytes
        super().__init__(message, details)
        self.size_bytes = size_bytes
        self.min_bytes = min_bytes


# =============================================================================
# Recognition Errors
# =============================================================================

class RecognitionError(VoiceTurnError):
    """Base class for speech-to-text errors."""

    def __init__(
        self,
        message: str,
        language: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        details = {}
        if language:
            details["language"] = language
        if status is not None:
            details["status"] = status
        super().__init__(message, details)
        self.language = language
        self.status = status


class NoSpeechDetected(RecognitionError):
    """The capture held no recognizable speech."""
    pass


class TranscriptionFailed(RecognitionError):
    """The speech-to-text backend failed to produce a transcript."""
    pass


# =============================================================================
# Reply Errors
# =============================================================================

class ReplyUnavailable(VoiceTurnError):
    """The reasoning backend returned an error or an unusable reply."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        endpoint: Optional[str] = None,
    ) -> None:
        details = {}
        if status is not None:
            details["status"] = status
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, details)
        self.status = status
        self.endpoint = endpoint


# =============================================================================
# Output Errors
# =============================================================================

class OutputError(VoiceTurnError):
    """Base class for synthesis and playback errors.

    An output error completes the turn without audio; the conversation
    still advances to listening.
    """
    pass


class SynthesisFailed(OutputError):
    """The text-to-speech backend failed."""

    def __init__(
        self,
        message: str,
        voice: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        details = {}
        if voice:
            details["voice"] = voice
        if status is not None:
            details["status"] = status
        super().__init__(message, details)
        self.voice = voice
        self.status = status


class PlaybackFailed(OutputError):
    """Audio could not be rendered after all retries."""

    def __init__(
        self,
        message: str,
        attempts: Optional[int] = None,
        handle_id: Optional[int] = None,
    ) -> None:
        details = {}
        if attempts is not None:
            details["attempts"] = attempts
        if handle_id is not None:
            details["handle_id"] = handle_id
        super().__init__(message, details)
        self.attempts = attempts
        self.handle_id = handle_id
