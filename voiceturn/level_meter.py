"""
VOICETURN Level Meter and Speech Activity Detector

Turns raw microphone blocks into a normalized energy level with a short
rolling average, and derives two edge events from that average:

    speech detected   rolling average rises above min_speech_level and is
                      still above it after a short confirmation delay
    silence timeout   after confirmed speech, the average stays at or below
                      silence_threshold for silence_timeout seconds

Spectrum scaling follows a browser analyser node: Blackman-windowed FFT,
magnitudes in dB mapped from [-100, -30] onto byte values 0..255. The level
is the mean byte magnitude divided by a reference ceiling (128), clamped.

Usage:
    meter = LevelMeter(window_size=5)
    detector = SpeechActivityDetector(timers, on_speech=..., on_silence=...)

    sample = meter.push_samples(block)
    detector.update(sample.average)
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Optional

import numpy as np

from voiceturn.logging_config import get_logger
from voiceturn.timers import TimerSet

logger = get_logger(__name__)

__all__ = [
    "AudioLevelSample",
    "LevelMeter",
    "SpeechActivityDetector",
    "frequency_magnitudes",
    "DEFAULT_FFT_SIZE",
    "LEVEL_REFERENCE",
]

DEFAULT_FFT_SIZE = 256
LEVEL_REFERENCE = 128.0
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

SPEECH_CONFIRM_TIMER = "speech_confirm"
SILENCE_TIMER = "silence"


def frequency_magnitudes(samples: np.ndarray, fft_size: int = DEFAULT_FFT_SIZE) -> np.ndarray:
    """
    Byte-scaled frequency magnitudes for one block of audio.

    Args:
        samples: int16 PCM or float samples in [-1, 1]; multichannel input is
                 averaged down to mono
        fft_size: FFT length; the block is zero-padded or trimmed to it

    Returns:
        uint8 array of fft_size // 2 bins
    """
    data = np.asarray(samples)
    if data.ndim > 1:
        data = data.mean(axis=1)
    if data.dtype == np.int16:
        data = data.astype(np.float32) / 32768.0
    else:
        data = data.astype(np.float32)

    if len(data) >= fft_size:
        frame = data[-fft_size:]
    else:
        frame = np.zeros(fft_size, dtype=np.float32)
        frame[: len(data)] = data

    spectrum = np.fft.rfft(frame * np.blackman(fft_size))[: fft_size // 2]
    magnitude = np.abs(spectrum) / fft_size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitude)
    scaled = (decibels - MIN_DECIBELS) * (255.0 / (MAX_DECIBELS - MIN_DECIBELS))
    return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


@dataclass(frozen=True)
class AudioLevelSample:
    """One level reading.

    Attributes:
        level: Normalized instantaneous level in [0, 1]
        average: Rolling average over the meter window
        visual_level: Perceptually boosted level for UI meters
        timestamp: Monotonic time of the reading
    """
    level: float
    average: float
    visual_level: float = 0.0
    timestamp: float = field(default_factory=time.monotonic)


class LevelMeter:
    """Normalizes spectrum batches and keeps a fixed-length rolling window."""

    def __init__(
        self,
        window_size: int = 5,
        reference: float = LEVEL_REFERENCE,
        fft_size: int = DEFAULT_FFT_SIZE,
    ):
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        self.window_size = window_size
        self.reference = reference
        self.fft_size = fft_size
        self._history: Deque[float] = deque(maxlen=window_size)

    @property
    def history(self) -> list[float]:
        return list(self._history)

    @property
    def average(self) -> float:
        if not self._history:
            return 0.0
        return sum(self._history) / len(self._history)

    def normalize(self, magnitudes: np.ndarray) -> float:
        """Mean magnitude divided by the reference ceiling, clamped to [0, 1]."""
        values = np.asarray(magnitudes, dtype=np.float64)
        if values.size == 0:
            return 0.0
        return float(min(1.0, max(0.0, values.mean() / self.reference)))

    def push(self, magnitudes: np.ndarray) -> AudioLevelSample:
        """Add one spectrum batch and return the resulting reading."""
        values = np.asarray(magnitudes, dtype=np.float64)
        level = self.normalize(values)
        self._history.append(level)

        mean = float(values.mean()) if values.size else 0.0
        visual = min(1.0, (mean / 255.0) ** 0.8 * 2.0)
        return AudioLevelSample(level=level, average=self.average, visual_level=visual)

    def push_samples(self, samples: np.ndarray) -> AudioLevelSample:
        """Analyse one block of PCM samples."""
        return self.push(frequency_magnitudes(samples, self.fft_size))

    def reset(self) -> None:
        self._history.clear()


class SpeechActivityDetector:
    """
    Edge detector over the rolling level average.

    Holds two flags (speech candidate / confirmed, silence reported) and
    two keyed timers on the shared TimerSet. Purely reactive: nothing
    happens unless update() is called or one of its timers fires.
    """

    def __init__(
        self,
        timers: TimerSet,
        min_speech_level: float = 0.10,
        silence_threshold: float = 0.05,
        silence_timeout: float = 0.8,
        confirm_delay: float = 0.15,
        on_speech: Optional[Callable[[], None]] = None,
        on_silence: Optional[Callable[[], None]] = None,
    ):
        if silence_threshold >= min_speech_level:
            raise ValueError("silence_threshold must be below min_speech_level")
        self.timers = timers
        self.min_speech_level = min_speech_level
        self.silence_threshold = silence_threshold
        self.silence_timeout = silence_timeout
        self.confirm_delay = confirm_delay
        self.on_speech = on_speech
        self.on_silence = on_silence

        self._last_average = 0.0
        self._speech_candidate = False
        self._speech_confirmed = False
        self._silence_reported = False

    @property
    def speech_confirmed(self) -> bool:
        return self._speech_confirmed

    @property
    def silence_pending(self) -> bool:
        return self.timers.is_pending(SILENCE_TIMER)

    @property
    def last_average(self) -> float:
        return self._last_average

    def update(self, average: float) -> None:
        """Feed the latest rolling average."""
        self._last_average = average

        if average > self.silence_threshold:
            self.timers.cancel(SILENCE_TIMER)

        if average > self.min_speech_level and not self._speech_candidate:
            self._speech_candidate = True
            self.timers.start(SPEECH_CONFIRM_TIMER, self.confirm_delay, self._confirm_speech)
            return

        if (
            self._speech_confirmed
            and not self._silence_reported
            and average <= self.silence_threshold
            and not self.timers.is_pending(SILENCE_TIMER)
        ):
            self.timers.start(SILENCE_TIMER, self.silence_timeout, self._silence_elapsed)

    def reset(self) -> None:
        """Clear flags and timers; called whenever listening (re)starts."""
        self.timers.cancel(SPEECH_CONFIRM_TIMER)
        self.timers.cancel(SILENCE_TIMER)
        self._last_average = 0.0
        self._speech_candidate = False
        self._speech_confirmed = False
        self._silence_reported = False

    def _confirm_speech(self) -> None:
        if self._last_average > self.min_speech_level:
            first = not self._speech_confirmed
            self._speech_confirmed = True
            logger.debug(f"Speech confirmed (avg={self._last_average:.3f})")
            if first and self.on_speech is not None:
                self.on_speech()
        else:
            # spike did not last through the confirmation window
            self._speech_candidate = False

    def _silence_elapsed(self) -> None:
        if self._last_average > self.silence_threshold or self._silence_reported:
            return
        self._silence_reported = True
        logger.debug(f"Silence timeout after {self.silence_timeout:.2f}s")
        if self.on_silence is not None:
            self.on_silence()
