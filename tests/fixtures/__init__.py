"""
VOICETURN Test Fixtures Package.

Test doubles for the hardware and remote services around the orchestrator:

- FakeScheduler: manual clock implementing call_later
- FakeInputDevice / FakeSink: microphone and speaker
- FakeTranscriber / FakeReasoning / FakeSynthesizer: remote backends

Usage:
    from tests.fixtures import FakeScheduler, FakeInputDevice

    def test_settle():
        scheduler = FakeScheduler()
        timers = TimerSet(scheduler)
        ...
        scheduler.advance(0.8)
"""

from tests.fixtures.fake_clock import FakeScheduler, FakeTimerHandle
from tests.fixtures.mock_audio import (
    FakeInputDevice,
    FakeSink,
    FakeStream,
    silence_block,
    speech_block,
)
from tests.fixtures.mock_backends import (
    AUDIO_PAYLOAD,
    FakeReasoning,
    FakeSynthesizer,
    FakeTranscriber,
)

__all__ = [
    "FakeScheduler",
    "FakeTimerHandle",
    "FakeInputDevice",
    "FakeSink",
    "FakeStream",
    "silence_block",
    "speech_block",
    "AUDIO_PAYLOAD",
    "FakeReasoning",
    "FakeSynthesizer",
    "FakeTranscriber",
]
