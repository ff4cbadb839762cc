"""
VOICETURN Turn-Taking Orchestrator

The single state-machine object of a call. It owns the Session, the one
TimerSet every delay lives on, the speech activity detector and the
in-flight backend tasks, and it wires the capture pipeline, speech engine
and playback controller callbacks into events.

Architecture:
    ┌──────────────┐ levels  ┌──────────────────────┐
    │CapturePipeline├───────►│SpeechActivityDetector│──speech / silence──┐
    └──────┬───────┘         └──────────────────────┘                    │
           │ payload                                                      ▼
    ┌──────▼──────┐  text   ┌─────────────────────────────────────────────────┐
    │SpeechEngine ├────────►│ dispatch(event) -> transition() -> effects      │
    └─────────────┘         │           TurnTakingOrchestrator                │
    ┌─────────────┐  reply  │                                                 │
    │ Reasoning   ├────────►│                                                 │
    └─────────────┘         └──────────────┬──────────────────────────────────┘
                                           │ start / pause
                                 ┌─────────▼──────────┐
                                 │ PlaybackController │──start / end / error──► events
                                 └────────────────────┘

Events raised while an event is being processed are queued and handled in
order afterwards, so a transition is never re-entered.

Usage:
    orchestrator = create_orchestrator(config, clients)
    orchestrator.start_call()
    ...
    await orchestrator.end_call()
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Protocol, Sequence

from voiceturn.capture import CapturePipeline, InputDevice
from voiceturn.config import VoiceTurnConfig
from voiceturn.exceptions import (
    DeviceUnavailable,
    OutputError,
    ReplyUnavailable,
    TranscriptionFailed,
    VoiceTurnError,
)
from voiceturn.level_meter import AudioLevelSample, SpeechActivityDetector
from voiceturn.logging_config import get_logger
from voiceturn.notices import NoticeBoard
from voiceturn.playback import AudioSink, PlaybackController, PlaybackHandle, Synthesizer
from voiceturn.session import Phase, Session, TranscriptDraft, Utterance
from voiceturn.speech_engine import SpeechEngineAdapter, Transcriber, create_speech_engine
from voiceturn.timers import Scheduler, TimerSet
from voiceturn import transitions as fsm

logger = get_logger(__name__)

__all__ = [
    "ReasoningBackend",
    "TurnTakingOrchestrator",
    "create_orchestrator",
]

HISTORY_CONTEXT_LIMIT = 10


class ReasoningBackend(Protocol):
    async def reply(self, text: str, history: Optional[Sequence[Utterance]] = None) -> str:
        ...


class TurnTakingOrchestrator:
    """Drives one voice conversation through the turn-taking phases."""

    def __init__(
        self,
        config: VoiceTurnConfig,
        engine: SpeechEngineAdapter,
        playback: PlaybackController,
        reasoning: ReasoningBackend,
        timers: Optional[TimerSet] = None,
        notices: Optional[NoticeBoard] = None,
    ):
        self.config = config
        self.timings = fsm.Timings.from_config(config)
        self.engine = engine
        self.capture: CapturePipeline = engine.capture
        self.playback = playback
        self.reasoning = reasoning
        self.timers = timers or playback.timers
        self.notices = notices or NoticeBoard(
            self.timers,
            default_duration=config.turn.notice_duration,
            recoverable_duration=config.turn.recoverable_notice_duration,
        )

        listening = config.listening
        self.detector = SpeechActivityDetector(
            self.timers,
            min_speech_level=listening.min_speech_level,
            silence_threshold=listening.silence_threshold,
            silence_timeout=listening.silence_timeout,
            confirm_delay=listening.speech_confirm_delay,
            on_speech=lambda: self.dispatch(fsm.SpeechDetected()),
            on_silence=lambda: self.dispatch(fsm.SilenceTimedOut()),
        )

        self.session = Session()
        self._queue: Deque[fsm.Event] = deque()
        self._dispatching = False
        self._tasks: Dict[str, asyncio.Task] = {}

        self._callbacks: List[Callable[[Phase], None]] = []
        self._utterance_callbacks: List[Callable[[Utterance], None]] = []
        self._level_callbacks: List[Callable[[AudioLevelSample], None]] = []

        self._metrics: Dict[str, Any] = {
            "calls": 0,
            "replies": 0,
            "barge_ins": 0,
            "phase_changes": 0,
            "ignored_events": 0,
            "errors": {},
            "reply_latency_ms": [],
        }

        self._effect_handlers: Dict[type, Callable[[Any], None]] = {
            fsm.StartCapture: self._do_start_capture,
            fsm.FinishCapture: self._do_finish_capture,
            fsm.StopCapture: self._do_stop_capture,
            fsm.StartMonitor: self._do_start_monitor,
            fsm.StopMonitor: self._do_stop_monitor,
            fsm.ResetDetector: self._do_reset_detector,
            fsm.RequestReply: self._do_request_reply,
            fsm.CancelPending: self._do_cancel_pending,
            fsm.StartPlayback: self._do_start_playback,
            fsm.StopPlayback: self._do_stop_playback,
            fsm.Schedule: self._do_schedule,
            fsm.CancelTimer: self._do_cancel_timer,
            fsm.CancelAllTimers: self._do_cancel_all_timers,
            fsm.ShowNotice: self._do_show_notice,
            fsm.DismissNotices: self._do_dismiss_notices,
            fsm.RecordUtterance: self._do_record_utterance,
        }

        self._wire_components()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def phase(self) -> Phase:
        return self.session.phase

    @property
    def is_active(self) -> bool:
        return self.session.active

    # =========================================================================
    # Public controls
    # =========================================================================

    def start_call(self) -> Session:
        """Open a new session and begin the call (welcome, then listening)."""
        if self.session.active:
            logger.warning("Call already active")
            return self.session
        self.session = Session(
            muted=self.session.muted,
            speaker_enabled=self.session.speaker_enabled,
        )
        self._metrics["calls"] += 1
        logger.info("Call started")
        self.dispatch(fsm.CallStarted())
        return self.session

    async def end_call(self) -> None:
        """Tear down the call: timers, capture, playback and pending requests."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        self.dispatch(fsm.CallEnded())
        self.capture.close()
        await self.playback.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(
            f"Call ended after {self.session.turn_count} turns "
            f"({self.session.duration_sec:.1f}s)"
        )

    def request_listen(self) -> None:
        """Ask to start listening (e.g. tap to talk, retry after a permission notice)."""
        self.dispatch(fsm.ListenRequested())

    def press_to_talk(self) -> None:
        self.dispatch(fsm.TalkPressed())

    def release_to_talk(self) -> None:
        self.dispatch(fsm.TalkReleased())

    def submit_text(self, text: str) -> None:
        """Send typed text (e.g. a suggested question) instead of speech."""
        self.dispatch(fsm.TextSubmitted(text))

    def set_muted(self, muted: bool) -> None:
        self.dispatch(fsm.MuteToggled(muted))

    def set_speaker_enabled(self, enabled: bool) -> None:
        self.playback.set_speaker_enabled(enabled)
        self.dispatch(fsm.SpeakerToggled(enabled))

    def register_callback(self, callback: Callable[[Phase], None]) -> None:
        """Register callback for phase changes."""
        self._callbacks.append(callback)

    def register_utterance_callback(self, callback: Callable[[Utterance], None]) -> None:
        self._utterance_callbacks.append(callback)

    def register_level_callback(self, callback: Callable[[AudioLevelSample], None]) -> None:
        self._level_callbacks.append(callback)

    def get_transcript(self) -> List[Dict[str, Any]]:
        """Conversation of the current session, oldest first."""
        return [u.to_dict() for u in self.session.history]

    def get_metrics(self) -> Dict[str, Any]:
        latencies = self._metrics["reply_latency_ms"]
        avg_latency = sum(latencies) / len(latencies) if latencies else 0.0
        return {
            "calls": self._metrics["calls"],
            "turns": self.session.turn_count,
            "replies": self._metrics["replies"],
            "barge_ins": self._metrics["barge_ins"],
            "phase_changes": self._metrics["phase_changes"],
            "ignored_events": self._metrics["ignored_events"],
            "errors": dict(self._metrics["errors"]),
            "avg_reply_latency_ms": avg_latency,
            "playback": self.playback.get_metrics(),
            "phase": self.session.phase.value,
        }

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(self, event: fsm.Event) -> None:
        """Feed one event to the state machine."""
        self._queue.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            self._dispatching = False

    def _process(self, event: fsm.Event) -> None:
        result = fsm.transition(self.session, event, self.timings)
        if result.ignored:
            self._metrics["ignored_events"] += 1
            logger.debug(
                f"Ignored {event.name} in {self.session.phase.value}"
                + (f" ({result.reason})" if result.reason else "")
            )
            return

        for key, value in result.updates.items():
            setattr(self.session, key, value)
        self._set_phase(result.phase, event)

        for effect in result.effects:
            handler = self._effect_handlers[type(effect)]
            try:
                handler(effect)
            except Exception:
                logger.exception(f"Effect {type(effect).__name__} failed")

    def _set_phase(self, new_phase: Phase, event: fsm.Event) -> None:
        old_phase = self.session.phase
        self.session.phase = new_phase
        if old_phase is new_phase:
            return
        self._metrics["phase_changes"] += 1
        logger.info(f"Phase {old_phase.value} -> {new_phase.value} on {event.name}")
        for callback in self._callbacks:
            try:
                callback(new_phase)
            except Exception as e:
                logger.warning(f"Phase callback error: {e}")

    # =========================================================================
    # Component wiring
    # =========================================================================

    def _wire_components(self) -> None:
        self.capture.on_level = self._on_level
        self.engine.on_draft = self._on_draft
        self.playback.on_start = self._on_playback_start
        self.playback.on_end = self._on_playback_end
        self.playback.on_error = self._on_playback_error

    def _on_level(self, sample: AudioLevelSample) -> None:
        session = self.session
        listening = session.phase is Phase.LISTENING and (
            session.recording or not self.timings.push_to_talk
        )
        speaking = session.phase is Phase.SPEAKING and session.speaking_audio
        if listening or speaking:
            self.detector.update(sample.average)
        for callback in self._level_callbacks:
            try:
                callback(sample)
            except Exception as e:
                logger.warning(f"Level callback error: {e}")

    def _on_draft(self, draft: TranscriptDraft) -> None:
        self.dispatch(fsm.DraftUpdated(draft))

    def _on_playback_start(self, handle: PlaybackHandle) -> None:
        self.dispatch(fsm.PlaybackStarted(handle.handle_id))

    def _on_playback_end(self, handle: PlaybackHandle) -> None:
        self.dispatch(fsm.PlaybackEnded(handle.handle_id))

    def _on_playback_error(self, handle: PlaybackHandle, error: OutputError) -> None:
        self._count_error(error)
        self.dispatch(fsm.PlaybackFailed(error, handle.handle_id))

    # =========================================================================
    # Tasks
    # =========================================================================

    def _spawn(self, name: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        self._cancel_task(name)
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks[name] = task

        def _done(t: asyncio.Task) -> None:
            if self._tasks.get(name) is t:
                del self._tasks[name]

        task.add_done_callback(_done)
        return task

    def _cancel_task(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None and not task.done():
            task.cancel()

    def _count_error(self, error: BaseException) -> None:
        name = type(error).__name__
        errors = self._metrics["errors"]
        errors[name] = errors.get(name, 0) + 1

    async def _begin_capture(self) -> None:
        try:
            await self.engine.begin()
        except asyncio.CancelledError:
            raise
        except VoiceTurnError as e:
            logger.warning(f"Capture start failed: {e}")
            self._count_error(e)
            self.dispatch(fsm.CaptureFailed(e))
        except Exception as e:
            logger.exception("Unexpected capture start failure")
            error = DeviceUnavailable("Microphone could not be started", reason=str(e))
            self._count_error(error)
            self.dispatch(fsm.CaptureFailed(error))

    async def _finish_capture(self, transcribe: bool) -> None:
        try:
            text = await self.engine.finish(transcribe)
        except asyncio.CancelledError:
            raise
        except VoiceTurnError as e:
            logger.warning(f"Utterance failed: {e}")
            self._count_error(e)
            self.dispatch(fsm.CaptureFailed(e))
            return
        except Exception as e:
            logger.exception("Unexpected transcription failure")
            error = TranscriptionFailed(str(e))
            self._count_error(error)
            self.dispatch(fsm.CaptureFailed(error))
            return
        self.dispatch(fsm.TranscriptReady(text))

    async def _request_reply(self, text: str) -> None:
        history = self.session.recent_history(HISTORY_CONTEXT_LIMIT + 1)[:-1]
        started = time.monotonic()
        try:
            reply = await self.reasoning.reply(text, history)
        except asyncio.CancelledError:
            raise
        except VoiceTurnError as e:
            logger.warning(f"Reply failed: {e}")
            self._count_error(e)
            self.dispatch(fsm.ReplyFailed(e))
            return
        except Exception as e:
            logger.exception("Unexpected reasoning failure")
            error = ReplyUnavailable(str(e))
            self._count_error(error)
            self.dispatch(fsm.ReplyFailed(error))
            return

        latency_ms = (time.monotonic() - started) * 1000
        self._metrics["reply_latency_ms"].append(latency_ms)
        del self._metrics["reply_latency_ms"][:-100]
        self._metrics["replies"] += 1
        logger.info(f"Reply received in {latency_ms:.0f}ms")
        self.dispatch(fsm.ReplyReady(reply))

    # =========================================================================
    # Effects
    # =========================================================================

    def _do_start_capture(self, effect: fsm.StartCapture) -> None:
        self._spawn("capture", self._begin_capture())

    def _do_finish_capture(self, effect: fsm.FinishCapture) -> None:
        self._cancel_task("capture")
        self._spawn("transcribe", self._finish_capture(effect.transcribe))

    def _do_stop_capture(self, effect: fsm.StopCapture) -> None:
        self._cancel_task("capture")
        self.engine.cancel()

    def _do_start_monitor(self, effect: fsm.StartMonitor) -> None:
        try:
            self.capture.start_monitoring()
        except VoiceTurnError as e:
            logger.warning(f"Barge-in monitoring unavailable: {e}")

    def _do_stop_monitor(self, effect: fsm.StopMonitor) -> None:
        self.capture.stop_monitoring()

    def _do_reset_detector(self, effect: fsm.ResetDetector) -> None:
        self.detector.reset()
        self.capture.meter.reset()

    def _do_request_reply(self, effect: fsm.RequestReply) -> None:
        self._spawn("reply", self._request_reply(effect.text))

    def _do_cancel_pending(self, effect: fsm.CancelPending) -> None:
        for name in list(self._tasks):
            self._cancel_task(name)

    def _do_start_playback(self, effect: fsm.StartPlayback) -> None:
        self.playback.start(effect.text)

    def _do_stop_playback(self, effect: fsm.StopPlayback) -> None:
        stopped = self.playback.pause()
        if effect.reason == "barge_in":
            self._metrics["barge_ins"] += 1
            logger.info("Barge-in: playback interrupted")
        elif stopped:
            logger.debug(f"Playback stopped ({effect.reason})")

    def _do_schedule(self, effect: fsm.Schedule) -> None:
        event = effect.event
        self.timers.start(effect.timer.value, effect.delay, lambda: self.dispatch(event))

    def _do_cancel_timer(self, effect: fsm.CancelTimer) -> None:
        self.timers.cancel(effect.timer.value)

    def _do_cancel_all_timers(self, effect: fsm.CancelAllTimers) -> None:
        count = self.timers.cancel_all()
        logger.debug(f"Cancelled {count} timers")

    def _do_show_notice(self, effect: fsm.ShowNotice) -> None:
        self.notices.show(effect.message, effect.kind)

    def _do_dismiss_notices(self, effect: fsm.DismissNotices) -> None:
        self.notices.dismiss_all()

    def _do_record_utterance(self, effect: fsm.RecordUtterance) -> None:
        utterance = Utterance(speaker=effect.speaker, text=effect.text)
        self.session.record(utterance)
        logger.info(f"[{effect.speaker.value}] {effect.text}")
        for callback in self._utterance_callbacks:
            try:
                callback(utterance)
            except Exception as e:
                logger.warning(f"Utterance callback error: {e}")


def create_orchestrator(
    config: VoiceTurnConfig,
    transcriber: Transcriber,
    synthesizer: Synthesizer,
    reasoning: ReasoningBackend,
    input_device: Optional[InputDevice] = None,
    sink: Optional[AudioSink] = None,
    scheduler: Optional[Scheduler] = None,
    sleep: Optional[Callable[[float], Any]] = None,
) -> TurnTakingOrchestrator:
    """
    Build an orchestrator with its components sharing one TimerSet.

    Args:
        config: Full configuration
        transcriber: Speech-to-text backend
        synthesizer: Text-to-speech backend
        reasoning: Reasoning backend
        input_device: Microphone (default: sounddevice)
        sink: Speaker (default: sounddevice)
        scheduler: call_later provider (default: running event loop)
        sleep: Delay function for retries (default: asyncio.sleep)

    Returns:
        Ready TurnTakingOrchestrator; call start_call() inside a running loop
    """
    timers = TimerSet(scheduler)
    extra: Dict[str, Any] = {}
    if sleep is not None:
        extra["sleep"] = sleep

    capture = CapturePipeline(config.listening, device=input_device)
    engine = create_speech_engine(capture, transcriber, config.listening, **extra)
    playback = PlaybackController(
        synthesizer,
        sink=sink,
        config=config.playback,
        timers=timers,
        **extra,
    )
    return TurnTakingOrchestrator(config, engine, playback, reasoning, timers=timers)
