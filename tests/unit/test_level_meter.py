"""
Unit tests for the level meter and the speech activity detector.
"""

import numpy as np
import pytest

from voiceturn.level_meter import (
    DEFAULT_FFT_SIZE,
    LevelMeter,
    SpeechActivityDetector,
    frequency_magnitudes,
)

from tests.fixtures.mock_audio import silence_block, speech_block


class TestFrequencyMagnitudes:
    """Tests for the analyser-style spectrum."""

    def test_silence_is_zero(self):
        mags = frequency_magnitudes(silence_block())
        assert mags.dtype == np.uint8
        assert len(mags) == DEFAULT_FFT_SIZE // 2
        assert mags.max() == 0

    def test_speech_is_loud(self):
        assert frequency_magnitudes(speech_block()).mean() > 128

    def test_short_block_zero_padded(self):
        assert len(frequency_magnitudes(np.ones(10, dtype=np.float32) * 0.1)) == 128


class TestLevelMeter:
    """Tests for normalization and the rolling window."""

    def test_normalize(self):
        meter = LevelMeter()
        assert meter.normalize(np.full(128, 64)) == pytest.approx(0.5)
        assert meter.normalize(np.full(128, 255)) == 1.0
        assert meter.normalize(np.array([])) == 0.0

    def test_rolling_average(self):
        meter = LevelMeter(window_size=3)
        meter.push(np.full(4, 128))
        meter.push(np.full(4, 0))
        sample = meter.push(np.full(4, 64))
        assert sample.level == pytest.approx(0.5)
        assert sample.average == pytest.approx(0.5)

        sample = meter.push(np.full(4, 0))
        assert meter.history == pytest.approx([0.0, 0.5, 0.0])
        assert sample.average == pytest.approx(1 / 6)

    def test_push_samples(self):
        meter = LevelMeter()
        assert meter.push_samples(speech_block()).level > 0.5
        assert meter.push_samples(silence_block()).level == 0.0

    def test_reset(self):
        meter = LevelMeter()
        meter.push(np.full(4, 128))
        meter.reset()
        assert meter.average == 0.0

    def test_window_size_validated(self):
        with pytest.raises(ValueError):
            LevelMeter(window_size=0)


class TestSpeechActivityDetector:
    """Tests for the speech / silence edge detector."""

    @pytest.fixture
    def events(self):
        return []

    @pytest.fixture
    def detector(self, timers, events):
        return SpeechActivityDetector(
            timers,
            on_speech=lambda: events.append("speech"),
            on_silence=lambda: events.append("silence"),
        )

    def test_speech_confirmed_after_delay(self, scheduler, detector, events):
        detector.update(0.3)
        scheduler.advance(0.1)
        assert events == []
        scheduler.advance(0.05)
        assert events == ["speech"]
        assert detector.speech_confirmed

    def test_spike_rejected(self, scheduler, detector, events):
        detector.update(0.3)
        detector.update(0.02)
        scheduler.advance(0.15)
        assert events == []
        assert not detector.speech_confirmed

    def test_speech_reported_once(self, scheduler, detector, events):
        detector.update(0.3)
        scheduler.advance(0.15)
        detector.update(0.02)
        detector.update(0.3)
        scheduler.advance(0.15)
        assert events == ["speech"]

    def test_silence_after_speech(self, scheduler, detector, events):
        detector.update(0.3)
        scheduler.advance(0.15)
        detector.update(0.03)
        assert detector.silence_pending
        scheduler.advance(0.8)
        assert events == ["speech", "silence"]

    def test_no_silence_without_speech(self, scheduler, detector, events):
        detector.update(0.0)
        scheduler.advance(5)
        assert events == []

    def test_noise_restarts_silence_window(self, scheduler, detector, events):
        detector.update(0.3)
        scheduler.advance(0.15)
        detector.update(0.03)
        scheduler.advance(0.5)
        detector.update(0.08)
        assert not detector.silence_pending
        detector.update(0.03)
        scheduler.advance(0.5)
        assert events == ["speech"]
        scheduler.advance(0.3)
        assert events == ["speech", "silence"]

    def test_silence_reported_once(self, scheduler, detector, events):
        detector.update(0.3)
        scheduler.advance(0.15)
        detector.update(0.03)
        scheduler.advance(0.8)
        detector.update(0.01)
        scheduler.advance(2)
        assert events.count("silence") == 1

    def test_reset_cancels_timers(self, scheduler, timers, detector, events):
        detector.update(0.3)
        detector.reset()
        scheduler.advance(1)
        assert events == []
        assert timers.pending == []

    def test_thresholds_validated(self, timers):
        with pytest.raises(ValueError):
            SpeechActivityDetector(timers, min_speech_level=0.05, silence_threshold=0.05)
