"""
Unit tests for the VOICETURN exception hierarchy.
"""

import pytest

from voiceturn.exceptions import (
    CaptureError,
    ConfigurationError,
    DeviceUnavailable,
    EmptyCapture,
    NoSpeechDetected,
    OutputError,
    PlaybackFailed,
    RecognitionError,
    ReplyUnavailable,
    SynthesisFailed,
    TranscriptionFailed,
    VoiceTurnError,
)


class TestVoiceTurnError:
    """Tests for the base exception."""

    def test_message_only(self):
        err = VoiceTurnError("something broke")
        assert str(err) == "something broke"
        assert err.details == {}

    def test_details_rendered(self):
        err = VoiceTurnError("something broke", {"phase": "listening"})
        assert str(err) == "something broke (phase=listening)"

    @pytest.mark.parametrize(
        "cls",
        [
            ConfigurationError,
            DeviceUnavailable,
            CaptureError,
            EmptyCapture,
            RecognitionError,
            NoSpeechDetected,
            TranscriptionFailed,
            ReplyUnavailable,
            OutputError,
            SynthesisFailed,
            PlaybackFailed,
        ],
    )
    def test_all_derive_from_base(self, cls):
        assert issubclass(cls, VoiceTurnError)


class TestSpecificErrors:
    """Tests for the context each error carries."""

    def test_configuration_error(self):
        err = ConfigurationError("bad", config_key="listening.mode", config_file="a.yaml")
        assert err.config_key == "listening.mode"
        assert "config_file=a.yaml" in str(err)
        assert err.soft is False

    def test_device_unavailable_is_hard(self):
        err = DeviceUnavailable("no mic", device="hw:0", reason="denied")
        assert err.soft is False
        assert err.reason == "denied"

    def test_empty_capture_defaults(self):
        err = EmptyCapture(size_bytes=44, min_bytes=1000)
        assert err.message == "Captured audio is too short"
        assert err.details == {"size_bytes": 44, "min_bytes": 1000}
        assert isinstance(err, CaptureError)
        assert err.soft is True

    def test_recognition_errors_share_fields(self):
        err = NoSpeechDetected("nothing", language="ar", status=422)
        assert isinstance(err, RecognitionError)
        assert err.status == 422
        assert "language=ar" in str(err)

    def test_output_errors(self):
        assert issubclass(SynthesisFailed, OutputError)
        err = PlaybackFailed("gave up", attempts=5, handle_id=3)
        assert err.attempts == 5
        assert err.handle_id == 3

    def test_reply_unavailable(self):
        err = ReplyUnavailable("down", status=503, endpoint="http://x/ai")
        assert err.status == 503
        assert "endpoint=http://x/ai" in str(err)
