"""
VOICETURN Audio Helpers

PCM16 / WAV conversions shared by the capture pipeline and the playback
sinks. Captured audio is packed as 16-bit mono WAV; synthesized audio
arrives as raw PCM16 (streaming) or as WAV/PCM16 payloads (buffered).
"""

from __future__ import annotations

import io
import wave
from typing import Iterable, Tuple

import numpy as np

__all__ = [
    "WAV_HEADER_BYTES",
    "encode_wav",
    "decode_audio",
    "pcm16_to_float",
    "is_wav",
]

WAV_HEADER_BYTES = 44


def is_wav(data: bytes) -> bool:
    """Check for a RIFF/WAVE header."""
    return len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WAVE"


def encode_wav(blocks: Iterable[np.ndarray], sample_rate: int, channels: int = 1) -> bytes:
    """
    Pack int16 sample blocks into a WAV payload.

    Args:
        blocks: Arrays of int16 samples (frames x channels or flat)
        sample_rate: Sample rate in Hz
        channels: Channel count

    Returns:
        WAV file bytes (a bare header when no samples were given)
    """
    arrays = [np.asarray(b, dtype=np.int16).reshape(-1) for b in blocks]
    samples = np.concatenate(arrays) if arrays else np.zeros(0, dtype=np.int16)

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(samples.tobytes())
    return buffer.getvalue()


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    """Convert little-endian PCM16 bytes to float32 in [-1, 1)."""
    usable = len(pcm) - (len(pcm) % 2)
    samples = np.frombuffer(pcm[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0


def decode_audio(data: bytes, default_sample_rate: int) -> Tuple[np.ndarray, int]:
    """
    Decode a WAV or raw PCM16 payload for playback.

    Args:
        data: WAV bytes or headerless PCM16 mono bytes
        default_sample_rate: Rate assumed for headerless PCM

    Returns:
        (float32 samples shaped frames x channels when multichannel, sample rate)

    Raises:
        ValueError: Payload is empty or not decodable
    """
    if not data:
        raise ValueError("empty audio payload")

    if is_wav(data):
        try:
            with wave.open(io.BytesIO(data), "rb") as wav_file:
                sample_rate = wav_file.getframerate()
                n_channels = wav_file.getnchannels()
                sample_width = wav_file.getsampwidth()
                frames = wav_file.readframes(wav_file.getnframes())
        except (wave.Error, EOFError) as e:
            raise ValueError(f"invalid WAV payload: {e}") from e
        if sample_width != 2:
            raise ValueError(f"unsupported sample width: {sample_width}")
        audio = pcm16_to_float(frames)
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels)
        return audio, sample_rate

    return pcm16_to_float(data), default_sample_rate
