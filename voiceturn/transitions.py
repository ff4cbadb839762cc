"""
VOICETURN Turn-Taking Transitions

The state machine as a pure function:

    transition(session, event, timings) -> Transition(phase, effects, updates)

It reads the Session but never mutates it, never touches I/O and never
reads a clock. The orchestrator applies `updates` to the Session, records
the new phase and then executes `effects` in order. Every delay is an
explicit Schedule effect with a fixed timer key, so leaving a phase can
cancel exactly the timers that guarded it.

Phase flow:

    IDLE --CallStarted/WelcomeDue--> SPEAKING --PlaybackEnded+settle--> LISTENING
    LISTENING --silence / release / watchdog--> TRANSCRIBING
    TRANSCRIBING --TranscriptReady(text)--> AWAITING_REPLY --ReplyReady--> SPEAKING
    SPEAKING --SpeechDetected (barge-in) + guard--> LISTENING
    any --TranscriptionFailed--> ERROR_RECOVERY --backoff--> LISTENING
    any --CallEnded--> IDLE
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from voiceturn.config import VoiceTurnConfig
from voiceturn.exceptions import (
    EmptyCapture,
    NoSpeechDetected,
    VoiceTurnError,
)
from voiceturn.notices import NoticeKind
from voiceturn.session import Phase, Session, Speaker, TranscriptDraft

__all__ = [
    "TimerKey",
    "Timings",
    "Transition",
    "transition",
    "listen_blocked",
    "NOTICE_MESSAGES",
    # events
    "Event",
    "CallStarted",
    "WelcomeDue",
    "ListenRequested",
    "TalkPressed",
    "TalkReleased",
    "SpeechDetected",
    "SilenceTimedOut",
    "ListeningTimedOut",
    "NoSpeechCheckDue",
    "DraftUpdated",
    "TranscriptReady",
    "CaptureFailed",
    "ReplyReady",
    "ReplyFailed",
    "PlaybackStarted",
    "PlaybackEnded",
    "PlaybackFailed",
    "SettleElapsed",
    "BargeInGuardElapsed",
    "BackoffElapsed",
    "ResumeListening",
    "MuteToggled",
    "SpeakerToggled",
    "TextSubmitted",
    "TextInputDue",
    "CallEnded",
    # effects
    "Effect",
    "StartCapture",
    "FinishCapture",
    "StopCapture",
    "StartMonitor",
    "StopMonitor",
    "ResetDetector",
    "RequestReply",
    "CancelPending",
    "StartPlayback",
    "StopPlayback",
    "Schedule",
    "CancelTimer",
    "CancelAllTimers",
    "ShowNotice",
    "DismissNotices",
    "RecordUtterance",
]


class TimerKey(Enum):
    """Keys of the orchestrator-owned timers."""
    WELCOME = "welcome"
    SETTLE = "settle"
    MAX_LISTEN = "max_listen"
    NO_SPEECH = "no_speech"
    BARGE_IN_GUARD = "barge_in_guard"
    BACKOFF = "backoff"
    RESUME = "resume"
    TEXT_INPUT = "text_input"


NOTICE_MESSAGES = {
    "permission": "Microphone access is needed. Allow access, then tap to talk.",
    "empty_capture": "I didn't catch that. Please try again.",
    "no_speech": "No speech detected. Please speak a little louder.",
    "transcription": "Sorry, I couldn't process the audio. Listening again shortly.",
    "capture": "The microphone stopped unexpectedly. Retrying shortly.",
    "reply": "The assistant is unavailable right now. Please try again.",
    "output": "The reply could not be played.",
}


@dataclass(frozen=True)
class Timings:
    """Delays and switches the transition function needs."""
    settle_delay: float = 0.8
    barge_in_guard: float = 0.3
    error_backoff: float = 2.0
    reply_retry_delay: float = 1.0
    welcome_delay: float = 0.8
    text_input_delay: float = 0.2
    max_listening: float = 8.0
    no_speech_check: float = 6.5
    push_to_talk: bool = False
    barge_in_enabled: bool = True
    welcome_text: Optional[str] = None

    @classmethod
    def from_config(cls, config: VoiceTurnConfig) -> "Timings":
        turn, listening = config.turn, config.listening
        return cls(
            settle_delay=turn.settle_delay,
            barge_in_guard=turn.barge_in_guard,
            error_backoff=turn.error_backoff,
            reply_retry_delay=turn.reply_retry_delay,
            welcome_delay=turn.welcome_delay,
            text_input_delay=turn.text_input_delay,
            max_listening=listening.max_listening,
            no_speech_check=listening.no_speech_check,
            push_to_talk=listening.mode == "push_to_talk",
            barge_in_enabled=turn.barge_in_enabled,
            welcome_text=turn.welcome_text or None,
        )


# =============================================================================
# Events
# =============================================================================


class Event:
    """Base class for orchestrator inputs."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class CallStarted(Event):
    pass


@dataclass(frozen=True)
class WelcomeDue(Event):
    pass


@dataclass(frozen=True)
class ListenRequested(Event):
    pass


@dataclass(frozen=True)
class TalkPressed(Event):
    pass


@dataclass(frozen=True)
class TalkReleased(Event):
    pass


@dataclass(frozen=True)
class SpeechDetected(Event):
    pass


@dataclass(frozen=True)
class SilenceTimedOut(Event):
    pass


@dataclass(frozen=True)
class ListeningTimedOut(Event):
    pass


@dataclass(frozen=True)
class NoSpeechCheckDue(Event):
    pass


@dataclass(frozen=True)
class DraftUpdated(Event):
    draft: TranscriptDraft


@dataclass(frozen=True)
class TranscriptReady(Event):
    text: str


@dataclass(frozen=True)
class CaptureFailed(Event):
    error: VoiceTurnError


@dataclass(frozen=True)
class ReplyReady(Event):
    text: str


@dataclass(frozen=True)
class ReplyFailed(Event):
    error: VoiceTurnError


@dataclass(frozen=True)
class PlaybackStarted(Event):
    handle_id: int = 0


@dataclass(frozen=True)
class PlaybackEnded(Event):
    handle_id: int = 0


@dataclass(frozen=True)
class PlaybackFailed(Event):
    error: VoiceTurnError
    handle_id: int = 0


@dataclass(frozen=True)
class SettleElapsed(Event):
    pass


@dataclass(frozen=True)
class BargeInGuardElapsed(Event):
    press: bool = False


@dataclass(frozen=True)
class BackoffElapsed(Event):
    pass


@dataclass(frozen=True)
class ResumeListening(Event):
    pass


@dataclass(frozen=True)
class MuteToggled(Event):
    muted: bool


@dataclass(frozen=True)
class SpeakerToggled(Event):
    enabled: bool


@dataclass(frozen=True)
class TextSubmitted(Event):
    text: str


@dataclass(frozen=True)
class TextInputDue(Event):
    text: str


@dataclass(frozen=True)
class CallEnded(Event):
    pass


# =============================================================================
# Effects
# =============================================================================


class Effect:
    """Base class for orchestrator outputs."""


@dataclass(frozen=True)
class StartCapture(Effect):
    pass


@dataclass(frozen=True)
class FinishCapture(Effect):
    transcribe: bool = True


@dataclass(frozen=True)
class StopCapture(Effect):
    pass


@dataclass(frozen=True)
class StartMonitor(Effect):
    pass


@dataclass(frozen=True)
class StopMonitor(Effect):
    pass


@dataclass(frozen=True)
class ResetDetector(Effect):
    pass


@dataclass(frozen=True)
class RequestReply(Effect):
    text: str


@dataclass(frozen=True)
class CancelPending(Effect):
    pass


@dataclass(frozen=True)
class StartPlayback(Effect):
    text: str


@dataclass(frozen=True)
class StopPlayback(Effect):
    reason: str = "stop"


@dataclass(frozen=True)
class Schedule(Effect):
    timer: TimerKey
    delay: float
    event: Event


@dataclass(frozen=True)
class CancelTimer(Effect):
    timer: TimerKey


@dataclass(frozen=True)
class CancelAllTimers(Effect):
    pass


@dataclass(frozen=True)
class ShowNotice(Effect):
    message: str
    kind: NoticeKind = NoticeKind.INFO


@dataclass(frozen=True)
class DismissNotices(Effect):
    pass


@dataclass(frozen=True)
class RecordUtterance(Effect):
    speaker: Speaker
    text: str


# =============================================================================
# Transition result
# =============================================================================


@dataclass(frozen=True)
class Transition:
    """Outcome of one event."""
    phase: Phase
    effects: Tuple[Effect, ...] = ()
    updates: Dict[str, Any] = field(default_factory=dict)
    ignored: bool = False
    reason: str = ""

    @classmethod
    def ignore(cls, session: Session, reason: str = "") -> "Transition":
        return cls(phase=session.phase, ignored=True, reason=reason)


LISTEN_TIMERS = (CancelTimer(TimerKey.MAX_LISTEN), CancelTimer(TimerKey.NO_SPEECH))


def listen_blocked(session: Session, muted: Optional[bool] = None) -> Optional[str]:
    """Reason listening may not start right now, or None if it may."""
    is_muted = session.muted if muted is None else muted
    if is_muted:
        return "muted"
    if session.phase is Phase.LISTENING:
        return "already listening"
    if session.phase is Phase.TRANSCRIBING:
        return "transcribing"
    if session.phase is Phase.AWAITING_REPLY:
        return "awaiting reply"
    if session.speaking_audio or session.barge_in_pending:
        return "speaking"
    if session.processing:
        return "processing"
    return None


def _enter_listening(
    session: Session,
    timings: Timings,
    effects: Tuple[Effect, ...] = (),
    updates: Optional[Dict[str, Any]] = None,
    muted: Optional[bool] = None,
    press: bool = False,
) -> Transition:
    """Move to LISTENING, or to IDLE when muted."""
    updates = dict(updates or {})
    is_muted = session.muted if muted is None else muted
    if is_muted:
        updates["recording"] = False
        return Transition(Phase.IDLE, effects, updates)

    updates.update({"speech_heard": False, "draft": None, "recording": False})
    effects = effects + (ResetDetector(),)

    if not timings.push_to_talk:
        effects = effects + (
            StartCapture(),
            Schedule(TimerKey.MAX_LISTEN, timings.max_listening, ListeningTimedOut()),
        )
    elif press:
        updates["recording"] = True
        effects = effects + _start_recording(timings)
    return Transition(Phase.LISTENING, effects, updates)


def _start_recording(timings: Timings) -> Tuple[Effect, ...]:
    return (
        StartCapture(),
        Schedule(TimerKey.MAX_LISTEN, timings.max_listening, ListeningTimedOut()),
        Schedule(TimerKey.NO_SPEECH, timings.no_speech_check, NoSpeechCheckDue()),
    )


def _end_utterance(session: Session, transcribe: bool) -> Transition:
    return Transition(
        Phase.TRANSCRIBING,
        LISTEN_TIMERS + (ResetDetector(), FinishCapture(transcribe=transcribe)),
        {"processing": True, "recording": False},
    )


def _barge_in(session: Session, timings: Timings, press: bool = False) -> Transition:
    return Transition(
        Phase.SPEAKING,
        (
            StopPlayback(reason="barge_in"),
            StopMonitor(),
            ResetDetector(),
            CancelTimer(TimerKey.SETTLE),
            Schedule(TimerKey.BARGE_IN_GUARD, timings.barge_in_guard, BargeInGuardElapsed(press=press)),
        ),
        {"speaking_audio": False, "barge_in_pending": True},
    )


def _rearm_guard(timings: Timings, press: bool) -> Transition:
    """Restart the barge-in guard so it honors the latest talk-control state."""
    return Transition(
        Phase.SPEAKING,
        (Schedule(TimerKey.BARGE_IN_GUARD, timings.barge_in_guard, BargeInGuardElapsed(press=press)),),
    )


def _output_finished(session: Session, timings: Timings, notice: Optional[ShowNotice] = None) -> Transition:
    effects: Tuple[Effect, ...] = (
        StopMonitor(),
        Schedule(TimerKey.SETTLE, timings.settle_delay, SettleElapsed()),
    )
    if notice is not None:
        effects = (notice,) + effects
    return Transition(Phase.SPEAKING, effects, {"speaking_audio": False})


def _capture_failed(session: Session, error: VoiceTurnError, timings: Timings) -> Transition:
    """Error policy for capture and transcription failures."""
    base = LISTEN_TIMERS + (ResetDetector(), StopCapture())
    updates = {"processing": False, "recording": False, "draft": None}

    if not error.soft:
        return Transition(
            Phase.IDLE,
            base + (ShowNotice(NOTICE_MESSAGES["permission"], NoticeKind.PERMISSION),),
            updates,
        )
    if isinstance(error, (EmptyCapture, NoSpeechDetected)):
        key = "empty_capture" if isinstance(error, EmptyCapture) else "no_speech"
        return _enter_listening(
            session,
            timings,
            base + (ShowNotice(NOTICE_MESSAGES[key], NoticeKind.RECOVERABLE),),
            updates,
        )

    key = "transcription" if session.phase is Phase.TRANSCRIBING else "capture"
    return Transition(
        Phase.ERROR_RECOVERY,
        base + (
            ShowNotice(NOTICE_MESSAGES[key], NoticeKind.ERROR),
            Schedule(TimerKey.BACKOFF, timings.error_backoff, BackoffElapsed()),
        ),
        updates,
    )


def _reply_failed(session: Session, timings: Timings) -> Transition:
    return Transition(
        Phase.AWAITING_REPLY,
        (
            ShowNotice(NOTICE_MESSAGES["reply"], NoticeKind.RECOVERABLE),
            Schedule(TimerKey.RESUME, timings.reply_retry_delay, ResumeListening()),
        ),
        {"processing": False},
    )


def _accept_user_text(session: Session, text: str) -> Transition:
    return Transition(
        Phase.AWAITING_REPLY,
        (RecordUtterance(Speaker.USER, text), RequestReply(text)),
        {"turn_count": session.turn_count + 1, "draft": None, "processing": True},
    )


# =============================================================================
# Session-wide events
# =============================================================================


def _on_call_ended(session: Session, event: Event, timings: Timings) -> Transition:
    return Transition(
        Phase.IDLE,
        (
            CancelAllTimers(),
            CancelPending(),
            StopCapture(),
            StopMonitor(),
            StopPlayback(reason="call_ended"),
            DismissNotices(),
        ),
        {
            "active": False,
            "processing": False,
            "speaking_audio": False,
            "barge_in_pending": False,
            "recording": False,
            "draft": None,
        },
    )


def _on_mute(session: Session, event: MuteToggled, timings: Timings) -> Transition:
    if event.muted == session.muted:
        return Transition.ignore(session, "mute unchanged")
    updates: Dict[str, Any] = {"muted": event.muted}
    phase = session.phase

    if event.muted:
        if phase is Phase.LISTENING:
            updates["recording"] = False
            return Transition(
                Phase.IDLE, LISTEN_TIMERS + (StopCapture(), ResetDetector()), updates
            )
        if phase is Phase.SPEAKING:
            return Transition(phase, (StopMonitor(),), updates)
        return Transition(phase, (), updates)

    if phase is Phase.IDLE and session.active and not _welcome_pending(session, timings):
        if listen_blocked(session, muted=False) is None:
            return _enter_listening(session, timings, (), updates, muted=False)
    if phase is Phase.SPEAKING and session.speaking_audio and timings.barge_in_enabled:
        return Transition(phase, (ResetDetector(), StartMonitor()), updates)
    return Transition(phase, (), updates)


def _on_speaker(session: Session, event: SpeakerToggled, timings: Timings) -> Transition:
    if event.enabled == session.speaker_enabled:
        return Transition.ignore(session, "speaker unchanged")
    updates: Dict[str, Any] = {"speaker_enabled": event.enabled}
    if not event.enabled and session.phase is Phase.SPEAKING and session.speaking_audio:
        finished = _output_finished(session, timings)
        updates.update(finished.updates)
        return Transition(
            Phase.SPEAKING, (StopPlayback(reason="speaker_off"),) + finished.effects, updates
        )
    return Transition(session.phase, (), updates)


def _on_text(session: Session, event: TextSubmitted, timings: Timings) -> Transition:
    text = event.text.strip()
    if not session.active or not text:
        return Transition.ignore(session, "no call or empty text")
    if session.processing:
        return Transition.ignore(session, "utterance already in flight")

    effects: Tuple[Effect, ...] = (
        CancelTimer(TimerKey.WELCOME),
        CancelTimer(TimerKey.SETTLE),
        CancelTimer(TimerKey.BARGE_IN_GUARD),
        CancelTimer(TimerKey.BACKOFF),
        CancelTimer(TimerKey.RESUME),
    ) + LISTEN_TIMERS
    effects += (ResetDetector(),)
    if session.speaking_audio:
        effects += (StopPlayback(reason="text_input"),)
    effects += (
        StopMonitor(),
        StopCapture(),
        Schedule(TimerKey.TEXT_INPUT, timings.text_input_delay, TextInputDue(text)),
    )
    return Transition(
        Phase.TRANSCRIBING,
        effects,
        {
            "processing": True,
            "speaking_audio": False,
            "barge_in_pending": False,
            "recording": False,
            "draft": None,
            "welcome_played": True,
        },
    )


def _welcome_pending(session: Session, timings: Timings) -> bool:
    return bool(timings.welcome_text) and not session.welcome_played


# =============================================================================
# Per-phase handlers
# =============================================================================


def _idle(session: Session, event: Event, timings: Timings) -> Transition:
    if isinstance(event, CallStarted):
        if session.active:
            return Transition.ignore(session, "call already active")
        if _welcome_pending(session, timings):
            return Transition(
                Phase.IDLE,
                (Schedule(TimerKey.WELCOME, timings.welcome_delay, WelcomeDue()),),
                {"active": True},
            )
        return _enter_listening(session, timings, (), {"active": True})

    if isinstance(event, WelcomeDue):
        if not session.active or session.welcome_played or not timings.welcome_text:
            return Transition.ignore(session, "welcome already played")
        return Transition(
            Phase.SPEAKING,
            (
                RecordUtterance(Speaker.ASSISTANT, timings.welcome_text),
                StartPlayback(timings.welcome_text),
            ),
            {"welcome_played": True, "speaking_audio": True},
        )

    if isinstance(event, (ListenRequested, TalkPressed)):
        if not session.active:
            return Transition.ignore(session, "no active call")
        if _welcome_pending(session, timings):
            return Transition.ignore(session, "welcome pending")
        reason = listen_blocked(session)
        if reason:
            return Transition.ignore(session, reason)
        return _enter_listening(session, timings, press=isinstance(event, TalkPressed))

    return Transition.ignore(session)


def _listening(session: Session, event: Event, timings: Timings) -> Transition:
    recording = session.recording or not timings.push_to_talk

    if isinstance(event, SpeechDetected):
        if not recording or session.speech_heard:
            return Transition.ignore(session)
        return Transition(Phase.LISTENING, (), {"speech_heard": True})

    if isinstance(event, DraftUpdated):
        return Transition(Phase.LISTENING, (), {"draft": event.draft})

    if isinstance(event, (SilenceTimedOut, ListeningTimedOut)):
        if not recording:
            return Transition.ignore(session, "not recording")
        if isinstance(event, SilenceTimedOut) and timings.push_to_talk:
            return Transition.ignore(session, "push-to-talk ends on release")
        return _end_utterance(session, transcribe=session.speech_heard)

    if isinstance(event, TalkPressed):
        if not timings.push_to_talk:
            # tap-to-stop in hands-free mode
            return _end_utterance(session, transcribe=True)
        if session.recording:
            return Transition.ignore(session, "already recording")
        return Transition(
            Phase.LISTENING,
            (ResetDetector(),) + _start_recording(timings),
            {"recording": True, "speech_heard": False},
        )

    if isinstance(event, TalkReleased):
        if not session.recording:
            return Transition.ignore(session, "not recording")
        return _end_utterance(session, transcribe=True)

    if isinstance(event, NoSpeechCheckDue):
        if not session.recording or session.speech_heard:
            return Transition.ignore(session)
        return _enter_listening(
            session,
            timings,
            LISTEN_TIMERS + (
                StopCapture(),
                ShowNotice(NOTICE_MESSAGES["no_speech"], NoticeKind.RECOVERABLE),
            ),
        )

    if isinstance(event, CaptureFailed):
        return _capture_failed(session, event.error, timings)

    return Transition.ignore(session)


def _transcribing(session: Session, event: Event, timings: Timings) -> Transition:
    if isinstance(event, TranscriptReady):
        text = event.text.strip()
        if not text:
            return _enter_listening(
                session, timings, (), {"processing": False, "draft": None}
            )
        return _accept_user_text(session, text)

    if isinstance(event, TextInputDue):
        return _accept_user_text(session, event.text)

    if isinstance(event, CaptureFailed):
        return _capture_failed(session, event.error, timings)

    return Transition.ignore(session)


def _awaiting_reply(session: Session, event: Event, timings: Timings) -> Transition:
    if isinstance(event, ReplyReady):
        text = event.text.strip()
        if not session.processing:
            return Transition.ignore(session, "reply no longer expected")
        if not text:
            return _reply_failed(session, timings)
        return Transition(
            Phase.SPEAKING,
            (RecordUtterance(Speaker.ASSISTANT, text), StartPlayback(text)),
            {"processing": False, "speaking_audio": True},
        )

    if isinstance(event, ReplyFailed):
        if not session.processing:
            return Transition.ignore(session, "reply no longer expected")
        return _reply_failed(session, timings)

    if isinstance(event, ResumeListening):
        return _enter_listening(session, timings)

    return Transition.ignore(session)


def _speaking(session: Session, event: Event, timings: Timings) -> Transition:
    if isinstance(event, PlaybackStarted):
        if not session.speaking_audio or session.muted or not timings.barge_in_enabled:
            return Transition.ignore(session)
        return Transition(Phase.SPEAKING, (ResetDetector(), StartMonitor()))

    if isinstance(event, SpeechDetected):
        if (
            not session.speaking_audio
            or session.barge_in_pending
            or session.muted
            or not timings.barge_in_enabled
        ):
            return Transition.ignore(session, "barge-in not armed")
        return _barge_in(session, timings)

    if isinstance(event, TalkPressed):
        if session.barge_in_pending and timings.push_to_talk:
            return _rearm_guard(timings, press=True)
        if not session.speaking_audio or session.barge_in_pending:
            return Transition.ignore(session)
        return _barge_in(session, timings, press=timings.push_to_talk)

    if isinstance(event, TalkReleased):
        if not session.barge_in_pending or not timings.push_to_talk:
            return Transition.ignore(session)
        # released inside the guard: listen without recording
        return _rearm_guard(timings, press=False)

    if isinstance(event, PlaybackEnded):
        if not session.speaking_audio:
            return Transition.ignore(session, "stale playback end")
        return _output_finished(session, timings)

    if isinstance(event, PlaybackFailed):
        if not session.speaking_audio:
            return Transition.ignore(session, "stale playback error")
        return _output_finished(
            session, timings, ShowNotice(NOTICE_MESSAGES["output"], NoticeKind.RECOVERABLE)
        )

    if isinstance(event, SettleElapsed):
        if session.speaking_audio or session.barge_in_pending:
            return Transition.ignore(session)
        return _enter_listening(session, timings)

    if isinstance(event, BargeInGuardElapsed):
        if not session.barge_in_pending:
            return Transition.ignore(session)
        return _enter_listening(
            session, timings, (), {"barge_in_pending": False}, press=event.press
        )

    return Transition.ignore(session)


def _error_recovery(session: Session, event: Event, timings: Timings) -> Transition:
    if isinstance(event, BackoffElapsed):
        return _enter_listening(session, timings)

    if isinstance(event, ListenRequested):
        if session.muted:
            return Transition.ignore(session, "muted")
        return _enter_listening(session, timings, (CancelTimer(TimerKey.BACKOFF),))

    return Transition.ignore(session)


_PHASE_HANDLERS = {
    Phase.IDLE: _idle,
    Phase.LISTENING: _listening,
    Phase.TRANSCRIBING: _transcribing,
    Phase.AWAITING_REPLY: _awaiting_reply,
    Phase.SPEAKING: _speaking,
    Phase.ERROR_RECOVERY: _error_recovery,
}


def transition(session: Session, event: Event, timings: Timings) -> Transition:
    """
    Compute the next phase, effects and session updates for one event.

    Args:
        session: Current session (read only)
        event: Incoming event
        timings: Delays and switches

    Returns:
        Transition; `ignored` is True when the event has no effect in the
        current phase
    """
    if isinstance(event, CallEnded):
        return _on_call_ended(session, event, timings)
    if isinstance(event, MuteToggled):
        return _on_mute(session, event, timings)
    if isinstance(event, SpeakerToggled):
        return _on_speaker(session, event, timings)
    if isinstance(event, TextSubmitted):
        return _on_text(session, event, timings)
    if not session.active and not isinstance(event, CallStarted):
        return Transition.ignore(session, "no active call")
    return _PHASE_HANDLERS[session.phase](session, event, timings)
