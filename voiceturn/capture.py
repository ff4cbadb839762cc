"""
VOICETURN Capture Pipeline

Owns microphone acquisition. One input device feeds two consumers:

    level tap   every block goes through the LevelMeter and is reported
                via on_level (used while listening and, for barge-in,
                while the assistant is speaking)
    encoder     while recording, blocks are buffered, flushed into
                chunk_interval-sized sub-buffers (reported via on_chunk)
                and packed into one WAV payload at stop()

The device is held only while recording or monitoring. Device callbacks
run on the audio backend's thread and are marshalled onto the event loop
before touching any state.

Usage:
    capture = CapturePipeline(config.listening)
    capture.start()              # DeviceUnavailable if no microphone
    ...
    payload = capture.stop()     # EmptyCapture if too little audio
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional, Protocol

import numpy as np

from voiceturn.audio import encode_wav
from voiceturn.config import ListeningConfig
from voiceturn.exceptions import DeviceUnavailable, EmptyCapture
from voiceturn.level_meter import AudioLevelSample, LevelMeter
from voiceturn.logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "InputDevice",
    "InputStreamHandle",
    "SoundDeviceInput",
    "CapturePipeline",
    "describe_input_devices",
]

BLOCK_DURATION_MS = 32


# =============================================================================
# Input Devices
# =============================================================================


class InputStreamHandle(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def close(self) -> None: ...


class InputDevice(Protocol):
    """Opens a capture stream delivering int16 blocks to a callback."""

    def open(
        self,
        callback: Callable[[np.ndarray], None],
        sample_rate: int,
        channels: int,
        blocksize: int,
    ) -> InputStreamHandle:
        ...


class SoundDeviceInput:
    """Microphone input through sounddevice (PortAudio)."""

    def __init__(self, device: Optional[str] = None):
        self.device = device
        self._sd = None

    def _ensure_loaded(self):
        """Lazily load sounddevice so importing this module needs no PortAudio."""
        if self._sd is not None:
            return self._sd
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceUnavailable(
                "Audio input backend is not available",
                device=self.device,
                reason=str(e),
            ) from e
        self._sd = sd
        return sd

    def open(
        self,
        callback: Callable[[np.ndarray], None],
        sample_rate: int,
        channels: int,
        blocksize: int,
    ) -> InputStreamHandle:
        sd = self._ensure_loaded()

        def audio_callback(indata, frames_count, time_info, status):
            if status:
                logger.warning(f"Audio capture status: {status}")
            callback(indata.copy())

        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="int16",
                blocksize=blocksize,
                callback=audio_callback,
                device=self.device,
            )
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(
                "Could not open microphone", device=self.device, reason=str(e)
            ) from e
        return stream


# =============================================================================
# Capture Pipeline
# =============================================================================


class CapturePipeline:
    """Microphone owner with a level tap and a chunked encoder."""

    def __init__(
        self,
        config: Optional[ListeningConfig] = None,
        device: Optional[InputDevice] = None,
        meter: Optional[LevelMeter] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.config = config or ListeningConfig()
        self.device = device or SoundDeviceInput(self.config.input_device)
        self.meter = meter or LevelMeter(
            window_size=self.config.level_window,
            reference=self.config.level_reference,
        )
        self._loop = loop

        self.on_level: Optional[Callable[[AudioLevelSample], None]] = None
        self.on_chunk: Optional[Callable[[int, bytes], None]] = None

        self._stream: Optional[InputStreamHandle] = None
        self._recording = False
        self._monitoring = False

        self._pending: List[np.ndarray] = []
        self._pending_samples = 0
        self._chunks: List[np.ndarray] = []

        self._samples_per_chunk = max(
            1, int(self.config.sample_rate * self.config.chunk_interval)
        )
        self._blocksize = int(self.config.sample_rate * BLOCK_DURATION_MS / 1000)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring

    @property
    def device_open(self) -> bool:
        return self._stream is not None

    @property
    def chunk_count(self) -> int:
        return len(self._chunks)

    @property
    def buffered_samples(self) -> int:
        return sum(len(c) for c in self._chunks) + self._pending_samples

    # -------------------------------------------------------------------------
    # Device ownership
    # -------------------------------------------------------------------------

    def _acquire(self) -> None:
        if self._stream is not None:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        stream = self.device.open(
            self._on_device_block,
            self.config.sample_rate,
            self.config.channels,
            self._blocksize,
        )
        try:
            stream.start()
        except Exception as e:
            stream.close()
            raise DeviceUnavailable("Could not start microphone", reason=str(e)) from e
        self._stream = stream
        logger.info("Microphone acquired")

    def _release_if_unused(self) -> None:
        if self._recording or self._monitoring or self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("Microphone released")

    def _on_device_block(self, block: np.ndarray) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.process_block, block)

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Begin recording. No-op when already recording.

        Raises:
            DeviceUnavailable: permission denied or no input device
        """
        if self._recording:
            return
        self._acquire()
        self._reset_buffers()
        self.meter.reset()
        self._recording = True
        logger.info("Recording started")

    def stop(self) -> bytes:
        """Finish recording and return the WAV payload.

        Raises:
            EmptyCapture: payload smaller than min_capture_bytes, or nothing
                          was being recorded
        """
        was_recording = self._recording
        self._recording = False
        self._flush_pending()
        blocks, self._chunks = self._chunks, []
        self._release_if_unused()

        if not was_recording:
            raise EmptyCapture("No recording in progress", size_bytes=0,
                               min_bytes=self.config.min_capture_bytes)

        payload = encode_wav(blocks, self.config.sample_rate, self.config.channels)
        logger.info(f"Recording stopped: {len(payload)} bytes")
        if len(payload) < self.config.min_capture_bytes:
            raise EmptyCapture(
                size_bytes=len(payload), min_bytes=self.config.min_capture_bytes
            )
        return payload

    def cancel(self) -> None:
        """Discard the current recording, if any."""
        if self._recording:
            logger.info("Recording cancelled")
        self._recording = False
        self._reset_buffers()
        self._release_if_unused()

    def snapshot(self) -> bytes:
        """WAV payload of the flushed chunks so far, without stopping."""
        return encode_wav(list(self._chunks), self.config.sample_rate, self.config.channels)

    # -------------------------------------------------------------------------
    # Monitoring (level tap only)
    # -------------------------------------------------------------------------

    def start_monitoring(self) -> None:
        if self._monitoring:
            return
        self._acquire()
        self._monitoring = True
        logger.debug("Level monitoring started")

    def stop_monitoring(self) -> None:
        if not self._monitoring:
            return
        self._monitoring = False
        logger.debug("Level monitoring stopped")
        self._release_if_unused()

    def close(self) -> None:
        """Release the device unconditionally."""
        self._recording = False
        self._monitoring = False
        self._reset_buffers()
        self._release_if_unused()

    # -------------------------------------------------------------------------
    # Block processing (event loop thread)
    # -------------------------------------------------------------------------

    def process_block(self, block: np.ndarray) -> Optional[AudioLevelSample]:
        """Feed one int16 block through the encoder and level tap."""
        if not (self._recording or self._monitoring):
            return None

        if self._recording:
            samples = np.asarray(block, dtype=np.int16).reshape(-1)
            self._pending.append(samples)
            self._pending_samples += len(samples)
            if self._pending_samples >= self._samples_per_chunk:
                self._flush_pending()

        sample = self.meter.push_samples(block)
        if self.on_level is not None:
            try:
                self.on_level(sample)
            except Exception as e:
                logger.warning(f"Level callback error: {e}")
        return sample

    def _flush_pending(self) -> None:
        if not self._pending:
            return
        chunk = np.concatenate(self._pending)
        self._pending = []
        self._pending_samples = 0
        self._chunks.append(chunk)
        if self.on_chunk is not None and self._recording:
            try:
                self.on_chunk(len(self._chunks), chunk.tobytes())
            except Exception as e:
                logger.warning(f"Chunk callback error: {e}")

    def _reset_buffers(self) -> None:
        self._pending = []
        self._pending_samples = 0
        self._chunks = []

    def __repr__(self) -> str:
        return (
            f"CapturePipeline(recording={self._recording}, "
            f"monitoring={self._monitoring}, device_open={self.device_open})"
        )


def describe_input_devices() -> List[dict[str, Any]]:
    """List input-capable devices known to sounddevice."""
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise DeviceUnavailable("Audio input backend is not available", reason=str(e)) from e
    return [
        {"index": i, "name": d["name"], "channels": d["max_input_channels"]}
        for i, d in enumerate(sd.query_devices())
        if d["max_input_channels"] > 0
    ]
