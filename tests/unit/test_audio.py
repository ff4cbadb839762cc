"""
Unit tests for PCM16 / WAV helpers.
"""

import io
import wave

import numpy as np
import pytest

from voiceturn.audio import WAV_HEADER_BYTES, decode_audio, encode_wav, is_wav, pcm16_to_float


class TestEncodeWav:
    """Tests for encode_wav."""

    def test_header_and_frames(self):
        blocks = [np.arange(100, dtype=np.int16), np.arange(50, dtype=np.int16)]
        payload = encode_wav(blocks, 16000)

        assert is_wav(payload)
        assert len(payload) == WAV_HEADER_BYTES + 150 * 2
        with wave.open(io.BytesIO(payload), "rb") as wav_file:
            assert wav_file.getframerate() == 16000
            assert wav_file.getnchannels() == 1
            assert wav_file.getnframes() == 150

    def test_empty_is_bare_header(self):
        assert len(encode_wav([], 16000)) == WAV_HEADER_BYTES

    def test_column_blocks_flattened(self):
        block = np.ones((64, 1), dtype=np.int16)
        assert len(encode_wav([block], 16000)) == WAV_HEADER_BYTES + 128


class TestDecodeAudio:
    """Tests for decode_audio and pcm16_to_float."""

    def test_pcm16_to_float_range(self):
        pcm = np.array([-32768, 0, 16384], dtype="<i2").tobytes()
        samples = pcm16_to_float(pcm)
        assert samples.dtype == np.float32
        assert samples.tolist() == [-1.0, 0.0, 0.5]

    def test_pcm16_odd_byte_dropped(self):
        assert len(pcm16_to_float(b"\x00\x01\x02")) == 1

    def test_wav_round_trip_keeps_rate(self):
        payload = encode_wav([np.full(10, 16384, dtype=np.int16)], 22050)
        audio, rate = decode_audio(payload, 16000)
        assert rate == 22050
        assert len(audio) == 10
        assert audio[0] == pytest.approx(0.5)

    def test_raw_pcm_uses_default_rate(self):
        audio, rate = decode_audio(b"\x00\x40" * 4, 16000)
        assert rate == 16000
        assert len(audio) == 4

    def test_empty_payload(self):
        with pytest.raises(ValueError):
            decode_audio(b"", 16000)

    def test_truncated_wav(self):
        with pytest.raises(ValueError):
            decode_audio(b"RIFF\x00\x00\x00\x00WAVEjunk", 16000)
