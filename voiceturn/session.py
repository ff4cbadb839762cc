"""
VOICETURN Session Model

Data owned by one call: the phase, user toggles, the turn counter, the
in-memory conversation history and the flags that guard the utterance
pipeline. A Session is created when a call starts and dropped when it ends;
only the orchestrator mutates it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

__all__ = [
    "Phase",
    "Speaker",
    "Utterance",
    "TranscriptDraft",
    "Session",
]


class Phase(Enum):
    """Turn-taking phases."""
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"
    ERROR_RECOVERY = "error_recovery"


class Speaker(Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Utterance:
    """One finalized speech segment."""
    speaker: Speaker
    text: str
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TranscriptDraft:
    """Interim text that is superseded until a final transcript arrives."""
    text: str = ""
    revision: int = 0
    updated_at: float = field(default_factory=time.monotonic)

    def revise(self, text: str) -> None:
        self.text = text
        self.revision += 1
        self.updated_at = time.monotonic()


@dataclass
class Session:
    """State of one conversation.

    Attributes:
        phase: Current turn-taking phase
        muted: Microphone muted by the user
        speaker_enabled: Audio output enabled by the user
        turn_count: Number of user utterances accepted so far
        started_at: Session creation time
        active: Call is open
        welcome_played: One-shot guard for the welcome utterance
        processing: An utterance pipeline (transcribe -> reply) is in flight
        speaking_audio: A playback handle is live
        barge_in_pending: Playback was interrupted; guard interval running
        recording: Push-to-talk capture is held
        speech_heard: Speech was confirmed during the current listen
        draft: Interim transcript, if any
        history: Utterances of this session, oldest first
    """
    phase: Phase = Phase.IDLE
    muted: bool = False
    speaker_enabled: bool = True
    turn_count: int = 0
    started_at: datetime = field(default_factory=datetime.now)

    active: bool = False
    welcome_played: bool = False
    processing: bool = False
    speaking_audio: bool = False
    barge_in_pending: bool = False
    recording: bool = False
    speech_heard: bool = False

    draft: Optional[TranscriptDraft] = None
    history: List[Utterance] = field(default_factory=list)

    def record(self, utterance: Utterance) -> None:
        self.history.append(utterance)

    def recent_history(self, limit: int = 10) -> List[Utterance]:
        if limit <= 0:
            return []
        return self.history[-limit:]

    @property
    def duration_sec(self) -> float:
        return (datetime.now() - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "muted": self.muted,
            "speaker_enabled": self.speaker_enabled,
            "turn_count": self.turn_count,
            "started_at": self.started_at.isoformat(),
            "active": self.active,
            "processing": self.processing,
            "speaking_audio": self.speaking_audio,
            "draft": self.draft.text if self.draft else None,
            "history_length": len(self.history),
        }
