"""
Shared pytest fixtures for VOICETURN tests.

Orchestrator tests run on the real asyncio loop for tasks but drive every
timer through a FakeScheduler, so a test advances time explicitly and
drains the loop to let spawned tasks finish.
"""

import asyncio
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio

from voiceturn.config import VoiceTurnConfig
from voiceturn.orchestrator import create_orchestrator
from voiceturn.timers import TimerSet

from tests.fixtures.fake_clock import FakeScheduler
from tests.fixtures.mock_audio import FakeInputDevice, FakeSink, silence_block, speech_block
from tests.fixtures.mock_backends import FakeReasoning, FakeSynthesizer, FakeTranscriber


async def drain(rounds: int = 10) -> None:
    """Let pending tasks run to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


def make_config(**sections: Dict[str, Any]) -> VoiceTurnConfig:
    """Config with the welcome utterance off unless a turn section sets it."""
    data: Dict[str, Any] = {"turn": {"welcome_text": None}}
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return VoiceTurnConfig.model_validate(data)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def timers(scheduler) -> TimerSet:
    return TimerSet(scheduler)


@pytest.fixture
def input_device() -> FakeInputDevice:
    return FakeInputDevice()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def reasoning() -> FakeReasoning:
    return FakeReasoning()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


class Harness:
    """An orchestrator plus the doubles around it."""

    def __init__(self, orchestrator, scheduler, device, sink, transcriber, reasoning, synthesizer):
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.device = device
        self.sink = sink
        self.transcriber = transcriber
        self.reasoning = reasoning
        self.synthesizer = synthesizer

    @property
    def phase(self):
        return self.orchestrator.phase

    @property
    def session(self):
        return self.orchestrator.session

    async def advance(self, seconds: float) -> None:
        self.scheduler.advance(seconds)
        await drain()

    async def speak(self, blocks: int = 1) -> None:
        """Loud audio long enough for speech to be confirmed."""
        for _ in range(blocks):
            self.orchestrator.capture.process_block(speech_block())
        await self.advance(self.orchestrator.config.listening.speech_confirm_delay)

    async def go_quiet(self) -> None:
        """Silence long enough for the rolling average to drop and the timer to fire."""
        for _ in range(self.orchestrator.config.listening.level_window + 1):
            self.orchestrator.capture.process_block(silence_block())
        await self.advance(self.orchestrator.config.listening.silence_timeout)

    async def complete_turn(self) -> None:
        """Speak, go quiet and let transcription, reply and playback run."""
        await self.speak()
        await self.go_quiet()
        await drain()

    async def settle(self) -> None:
        await self.advance(self.orchestrator.config.turn.settle_delay)


@pytest_asyncio.fixture
async def make_harness(scheduler, input_device, sink, transcriber, reasoning, synthesizer):
    """Factory building a Harness; every call is ended on teardown."""
    created = []

    def _make(config: Optional[VoiceTurnConfig] = None, **sections) -> Harness:
        orchestrator = create_orchestrator(
            config or make_config(**sections),
            transcriber=transcriber,
            synthesizer=synthesizer,
            reasoning=reasoning,
            input_device=input_device,
            sink=sink,
            scheduler=scheduler,
            sleep=no_sleep,
        )
        harness = Harness(
            orchestrator, scheduler, input_device, sink, transcriber, reasoning, synthesizer
        )
        created.append(harness)
        return harness

    yield _make

    for harness in created:
        if harness.orchestrator.is_active:
            await harness.orchestrator.end_call()
