"""
VOICETURN Speech Engine Adapters

Two ways of turning microphone input into a final transcript, behind one
contract the orchestrator drives:

    await engine.begin()               start capturing (DeviceUnavailable)
    text = await engine.finish(...)    stop, transcribe, return final text
    engine.cancel()                    discard the capture

ContinuousSpeechEngine
    Hands-free listening. Capture start is retried (recognizer re-init) with
    a RetryPolicy; optional interim drafts are produced by transcribing the
    audio buffered so far each time the encoder flushes a chunk.

PushToTalkSpeechEngine
    Capture bounded by a user-held control; a single start attempt.

Errors follow the exception taxonomy: EmptyCapture for short payloads,
NoSpeechDetected / TranscriptionFailed from the transcription backend.
"""

from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from voiceturn.capture import CapturePipeline
from voiceturn.config import ListeningConfig
from voiceturn.exceptions import DeviceUnavailable, VoiceTurnError
from voiceturn.logging_config import get_logger
from voiceturn.retry import RetryPolicy
from voiceturn.session import TranscriptDraft

logger = get_logger(__name__)

__all__ = [
    "ListeningMode",
    "Transcriber",
    "SpeechEngineAdapter",
    "ContinuousSpeechEngine",
    "PushToTalkSpeechEngine",
    "create_speech_engine",
    "normalize_transcript",
]


class ListeningMode(Enum):
    """How an utterance is bounded."""
    CONTINUOUS = "continuous"
    PUSH_TO_TALK = "push_to_talk"


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, language: str) -> str:
        ...


_WHITESPACE = re.compile(r"\s+")


def normalize_transcript(text: Optional[str]) -> str:
    """Collapse whitespace and strip; None becomes an empty string."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


class SpeechEngineAdapter:
    """Shared capture -> transcript behaviour."""

    mode: ListeningMode = ListeningMode.CONTINUOUS

    def __init__(
        self,
        capture: CapturePipeline,
        transcriber: Transcriber,
        config: Optional[ListeningConfig] = None,
    ):
        self.capture = capture
        self.transcriber = transcriber
        self.config = config or capture.config
        self.on_draft: Optional[Callable[[TranscriptDraft], None]] = None

    @property
    def is_active(self) -> bool:
        return self.capture.is_recording

    async def begin(self) -> None:
        """Start capturing for one utterance."""
        self.capture.start()

    async def finish(self, transcribe: bool = True) -> str:
        """
        End the utterance and produce its final transcript.

        Args:
            transcribe: False skips the backend (nothing worth sending) and
                        yields an empty transcript

        Returns:
            Normalized transcript, possibly empty

        Raises:
            EmptyCapture: payload below the minimum size
            NoSpeechDetected, TranscriptionFailed: backend result
        """
        if not transcribe:
            self.capture.cancel()
            logger.debug("Utterance ended without speech; skipping transcription")
            return ""

        payload = self.capture.stop()
        logger.info(f"Transcribing {len(payload)} bytes ({self.config.language})")
        text = await self.transcriber.transcribe(payload, self.config.language)
        text = normalize_transcript(text)
        logger.info(f"Final transcript: {text!r}")
        return text

    def cancel(self) -> None:
        self.capture.cancel()


class ContinuousSpeechEngine(SpeechEngineAdapter):
    """Hands-free engine with re-init retry and optional interim drafts."""

    mode = ListeningMode.CONTINUOUS

    def __init__(
        self,
        capture: CapturePipeline,
        transcriber: Transcriber,
        config: Optional[ListeningConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        super().__init__(capture, transcriber, config)
        self.retry_policy = retry_policy or RetryPolicy.constant(
            self.config.recognizer_retry_attempts,
            self.config.recognizer_retry_delay,
            retry_on=(DeviceUnavailable,),
        )
        self._sleep = sleep
        self._draft: Optional[TranscriptDraft] = None
        self._interim_task: Optional[asyncio.Task] = None
        self.restart_count = 0

        if self.config.interim_results:
            self.capture.on_chunk = self._on_chunk

    @property
    def draft(self) -> Optional[TranscriptDraft]:
        return self._draft

    async def begin(self) -> None:
        self._draft = None

        async def attempt(n: int) -> None:
            if n > 1:
                self.restart_count += 1
                logger.info(f"Re-initialising recognition (attempt {n})")
            self.capture.start()

        await self.retry_policy.run(attempt, sleep=self._sleep)

    async def finish(self, transcribe: bool = True) -> str:
        self._cancel_interim()
        try:
            return await super().finish(transcribe)
        finally:
            self._draft = None

    def cancel(self) -> None:
        self._cancel_interim()
        self._draft = None
        super().cancel()

    def _cancel_interim(self) -> None:
        if self._interim_task is not None and not self._interim_task.done():
            self._interim_task.cancel()
        self._interim_task = None

    def _on_chunk(self, index: int, chunk: bytes) -> None:
        if self._interim_task is not None and not self._interim_task.done():
            return
        self._interim_task = asyncio.get_running_loop().create_task(self._transcribe_interim())

    async def _transcribe_interim(self) -> None:
        payload = self.capture.snapshot()
        if len(payload) < self.config.min_capture_bytes:
            return
        try:
            text = normalize_transcript(
                await self.transcriber.transcribe(payload, self.config.language)
            )
        except VoiceTurnError as e:
            logger.debug(f"Interim transcription skipped: {e}")
            return
        if not text or not self.capture.is_recording:
            return
        if self._draft is None:
            self._draft = TranscriptDraft(text=text)
        else:
            self._draft.revise(text)
        if self.on_draft is not None:
            self.on_draft(self._draft)


class PushToTalkSpeechEngine(SpeechEngineAdapter):
    """Engine for captures bounded by press and release."""

    mode = ListeningMode.PUSH_TO_TALK


def create_speech_engine(
    capture: CapturePipeline,
    transcriber: Transcriber,
    config: Optional[ListeningConfig] = None,
    **kwargs,
) -> SpeechEngineAdapter:
    """Build the engine matching config.mode."""
    config = config or capture.config
    if config.mode == ListeningMode.PUSH_TO_TALK.value:
        return PushToTalkSpeechEngine(capture, transcriber, config)
    return ContinuousSpeechEngine(capture, transcriber, config, **kwargs)
