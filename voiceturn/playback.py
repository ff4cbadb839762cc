"""
VOICETURN Playback Controller

Renders one synthesized reply at a time through an audio sink.

Delivery modes (one controller, one contract):
    BUFFERED    synthesize the full payload, then play it; failed renders
                are retried with a linear backoff (0.5s x attempt, 5 tries)
    STREAMING   play synthesized chunks as they arrive; any chunk failure
                aborts the stream and falls back to BUFFERED for the same text

Contract:
    handle = controller.start(text)     replaces any current handle
    controller.pause()                  idempotent; no on_end for the handle
    controller.is_playing               flips False immediately on pause
    on_start / on_end / on_error / on_progress callbacks

Autoplay reconciliation: once audio is ready, a check runs after
autoplay_check_delay; if the sink never reported that playback started,
the render is retried once and then abandoned with PlaybackFailed so the
turn still advances.

Usage:
    controller = PlaybackController(synthesis_client, SoundDeviceSink())
    controller.on_end = lambda handle: print("done")
    controller.start("Hello there")
"""

from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

from voiceturn.audio import decode_audio, pcm16_to_float
from voiceturn.config import PlaybackConfig
from voiceturn.exceptions import OutputError, PlaybackFailed, SynthesisFailed
from voiceturn.logging_config import get_logger
from voiceturn.retry import RetryPolicy
from voiceturn.timers import TimerSet

logger = get_logger(__name__)

__all__ = [
    "DeliveryMode",
    "PlaybackHandle",
    "Synthesizer",
    "AudioSink",
    "SoundDeviceSink",
    "PlaybackController",
    "AUTOPLAY_TIMER",
]

AUTOPLAY_TIMER = "autoplay"


class DeliveryMode(Enum):
    BUFFERED = "buffered"
    STREAMING = "streaming"


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes:
        ...

    def stream(self, text: str) -> AsyncIterator[bytes]:
        ...


class AudioSink(Protocol):
    """Audio output device."""

    async def play(self, data: bytes, on_started: Callable[[], None]) -> None:
        """Play a complete payload; call on_started once audio is audible."""
        ...

    async def begin_stream(self) -> None: ...

    async def play_chunk(self, pcm: bytes) -> None: ...

    async def end_stream(self) -> None: ...

    def stop(self) -> None: ...


@dataclass
class PlaybackHandle:
    """One in-flight rendering of one reply."""
    handle_id: int
    text: str
    mode: DeliveryMode
    playing: bool = False
    started: bool = False
    finished: bool = False
    cancelled: bool = False
    audio_ready: bool = False
    fell_back: bool = False
    retries: int = 0
    chunks_played: int = 0
    reconcile_attempts: int = 0
    created_at: float = field(default_factory=time.monotonic)

    @property
    def active(self) -> bool:
        return not (self.finished or self.cancelled)


# =============================================================================
# sounddevice sink
# =============================================================================


class SoundDeviceSink:
    """Speaker output through sounddevice; accepts WAV or raw PCM16 mono."""

    def __init__(self, sample_rate: int = 16000, device: Optional[str] = None):
        self.sample_rate = sample_rate
        self.device = device
        self._sd = None
        self._stream = None
        self._carry = b""

    def _ensure_loaded(self):
        if self._sd is not None:
            return self._sd
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise PlaybackFailed(f"Audio output backend is not available: {e}") from e
        self._sd = sd
        logger.info("Audio output initialized")
        return sd

    async def play(self, data: bytes, on_started: Callable[[], None]) -> None:
        sd = self._ensure_loaded()
        try:
            audio, sample_rate = decode_audio(data, self.sample_rate)
        except ValueError as e:
            raise PlaybackFailed(f"Undecodable audio payload: {e}") from e

        sd.play(audio, sample_rate, device=self.device)
        on_started()
        await asyncio.get_running_loop().run_in_executor(None, sd.wait)
        logger.debug(f"Audio playback complete: {len(audio)} frames")

    async def begin_stream(self) -> None:
        sd = self._ensure_loaded()
        self._carry = b""
        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            device=self.device,
        )
        self._stream.start()

    async def play_chunk(self, pcm: bytes) -> None:
        if self._stream is None:
            raise PlaybackFailed("Output stream is not open")
        data = self._carry + pcm
        usable = len(data) - (len(data) % 2)
        self._carry = data[usable:]
        if not usable:
            return
        samples = pcm16_to_float(data[:usable]).reshape(-1, 1)
        await asyncio.get_running_loop().run_in_executor(None, self._stream.write, samples)

    async def end_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def stop(self) -> None:
        if self._sd is not None:
            self._sd.stop()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.abort()
            stream.close()


# =============================================================================
# Controller
# =============================================================================


class PlaybackController:
    """Owns the audio output and the single active PlaybackHandle."""

    def __init__(
        self,
        synthesizer: Synthesizer,
        sink: Optional[AudioSink] = None,
        config: Optional[PlaybackConfig] = None,
        timers: Optional[TimerSet] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or PlaybackConfig()
        self.synthesizer = synthesizer
        self.sink = sink or SoundDeviceSink(self.config.sample_rate, self.config.output_device)
        self.timers = timers or TimerSet()
        self.retry_policy = retry_policy or RetryPolicy.linear(
            self.config.max_attempts, self.config.retry_base_delay
        )
        self.mode = DeliveryMode(self.config.delivery)
        self._sleep = sleep

        self.on_start: Optional[Callable[[PlaybackHandle], None]] = None
        self.on_end: Optional[Callable[[PlaybackHandle], None]] = None
        self.on_error: Optional[Callable[[PlaybackHandle, OutputError], None]] = None
        self.on_progress: Optional[Callable[[PlaybackHandle], None]] = None

        self._handle: Optional[PlaybackHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)
        self._speaker_enabled = True

        self._metrics = {
            "started": 0,
            "completed": 0,
            "failed": 0,
            "paused": 0,
            "fallbacks": 0,
            "retries": 0,
        }

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        return self._handle is not None and self._handle.playing

    @property
    def current_handle(self) -> Optional[PlaybackHandle]:
        return self._handle

    @property
    def speaker_enabled(self) -> bool:
        return self._speaker_enabled

    def set_speaker_enabled(self, enabled: bool) -> bool:
        """Enable or disable output. Disabling stops current audio.

        Returns:
            True if a live handle was stopped
        """
        self._speaker_enabled = enabled
        logger.info(f"Speaker {'enabled' if enabled else 'disabled'}")
        if not enabled:
            return self.pause()
        return False

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def start(self, text: str, mode: Optional[DeliveryMode] = None) -> PlaybackHandle:
        """Render text; any current handle is cancelled first."""
        self.pause()

        handle = PlaybackHandle(next(self._ids), text, mode or self.mode)
        self._handle = handle
        self._metrics["started"] += 1
        loop = asyncio.get_running_loop()

        if not self._speaker_enabled:
            logger.info(f"Speaker off; completing handle {handle.handle_id} silently")
            loop.call_soon(self._complete, handle)
            return handle

        logger.info(f"Playback {handle.handle_id} started ({handle.mode.value})")
        self._task = loop.create_task(self._run(handle))
        return handle

    def pause(self) -> bool:
        """Stop the current handle. Safe at any time; no-op when nothing plays.

        Returns:
            True if a live handle was stopped
        """
        handle = self._handle
        if handle is None or not handle.active:
            return False

        handle.cancelled = True
        handle.playing = False
        self._handle = None
        self.timers.cancel(AUTOPLAY_TIMER)
        self._metrics["paused"] += 1

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._stop_sink()
        logger.info(f"Playback {handle.handle_id} paused")
        return True

    async def close(self) -> None:
        self.pause()

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    async def _run(self, handle: PlaybackHandle) -> None:
        try:
            if handle.mode is DeliveryMode.STREAMING:
                try:
                    await self._play_streaming(handle)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._check_live(handle)
                    logger.warning(
                        f"Streaming playback {handle.handle_id} failed, "
                        f"falling back to buffered: {e}"
                    )
                    handle.fell_back = True
                    handle.playing = False
                    self._metrics["fallbacks"] += 1
                    await self._play_buffered(handle)
            else:
                await self._play_buffered(handle)
        except asyncio.CancelledError:
            raise
        except OutputError as e:
            self._fail(handle, e)
        except Exception as e:
            logger.exception(f"Unexpected playback error on handle {handle.handle_id}")
            self._fail(handle, PlaybackFailed(str(e), handle_id=handle.handle_id))
        else:
            self._complete(handle)

    async def _play_streaming(self, handle: PlaybackHandle) -> None:
        await self.sink.begin_stream()
        try:
            async for chunk in self.synthesizer.stream(handle.text):
                self._check_live(handle)
                if not chunk:
                    continue
                handle.audio_ready = True
                self._mark_playing(handle)
                await self.sink.play_chunk(chunk)
                handle.chunks_played += 1
                if self.on_progress is not None:
                    try:
                        self.on_progress(handle)
                    except Exception as e:
                        logger.warning(f"Progress callback error: {e}")
            if handle.chunks_played == 0:
                raise SynthesisFailed("Synthesis stream produced no audio")
        finally:
            await self.sink.end_stream()

    async def _play_buffered(self, handle: PlaybackHandle) -> None:
        audio = await self.synthesizer.synthesize(handle.text)
        self._check_live(handle)
        if not audio:
            raise SynthesisFailed("Synthesis returned no audio")

        handle.audio_ready = True
        self._schedule_reconcile(handle)

        async def attempt(n: int) -> None:
            self._check_live(handle)
            handle.retries = n - 1
            try:
                await self.sink.play(audio, lambda: self._mark_playing(handle))
            except Exception:
                handle.playing = False
                raise

        def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
            self._metrics["retries"] += 1

        try:
            await self.retry_policy.run(attempt, on_retry=on_retry, sleep=self._sleep)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._check_live(handle)
            raise PlaybackFailed(
                f"Playback failed: {e}",
                attempts=handle.retries + 1,
                handle_id=handle.handle_id,
            ) from e

    # -------------------------------------------------------------------------
    # Autoplay reconciliation
    # -------------------------------------------------------------------------

    def _schedule_reconcile(self, handle: PlaybackHandle) -> None:
        self.timers.start(
            AUTOPLAY_TIMER,
            self.config.autoplay_check_delay,
            lambda: self._reconcile(handle.handle_id),
        )

    def _reconcile(self, handle_id: int) -> None:
        handle = self._handle
        if handle is None or handle.handle_id != handle_id or not handle.active:
            return
        if not self._speaker_enabled or handle.started or handle.retries > 0:
            return
        if not handle.audio_ready:
            return

        if handle.reconcile_attempts == 0:
            handle.reconcile_attempts = 1
            logger.warning(f"Playback {handle_id} did not start; retrying once")
            task, self._task = self._task, None
            if task is not None and not task.done():
                task.cancel()
            self._stop_sink()
            handle.audio_ready = False
            self._task = asyncio.get_running_loop().create_task(self._run(handle))
            return

        logger.warning(f"Playback {handle_id} still not started; giving up")
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._stop_sink()
        self._fail(handle, PlaybackFailed("Playback did not start", handle_id=handle_id))

    # -------------------------------------------------------------------------
    # Handle bookkeeping
    # -------------------------------------------------------------------------

    def _check_live(self, handle: PlaybackHandle) -> None:
        if handle is not self._handle or not handle.active:
            raise asyncio.CancelledError()

    def _mark_playing(self, handle: PlaybackHandle) -> None:
        if handle is not self._handle or not handle.active:
            return
        handle.playing = True
        if handle.started:
            return
        handle.started = True
        self.timers.cancel(AUTOPLAY_TIMER)
        if self.on_start is not None:
            try:
                self.on_start(handle)
            except Exception as e:
                logger.warning(f"Playback start callback error: {e}")

    def _complete(self, handle: PlaybackHandle) -> None:
        if handle is not self._handle or not handle.active:
            return
        handle.playing = False
        handle.finished = True
        self._handle = None
        self._task = None
        self.timers.cancel(AUTOPLAY_TIMER)
        self._metrics["completed"] += 1
        logger.info(f"Playback {handle.handle_id} ended")
        if self.on_end is not None:
            try:
                self.on_end(handle)
            except Exception as e:
                logger.warning(f"Playback end callback error: {e}")

    def _fail(self, handle: PlaybackHandle, error: OutputError) -> None:
        if handle is not self._handle or not handle.active:
            return
        handle.playing = False
        handle.finished = True
        self._handle = None
        self._task = None
        self.timers.cancel(AUTOPLAY_TIMER)
        self._metrics["failed"] += 1
        logger.warning(f"Playback {handle.handle_id} failed: {error}")
        if self.on_error is not None:
            try:
                self.on_error(handle, error)
            except Exception as e:
                logger.warning(f"Playback error callback error: {e}")

    def _stop_sink(self) -> None:
        try:
            self.sink.stop()
        except Exception as e:
            logger.warning(f"Audio sink stop failed: {e}")
