"""
Unit tests for the keyed TimerSet.
"""

import asyncio

import pytest

from voiceturn.timers import TimerSet


class TestTimerSet:
    """Tests for TimerSet on a fake clock."""

    def test_fires_after_delay(self, scheduler, timers):
        fired = []
        timers.start("settle", 0.8, lambda: fired.append("settle"))

        scheduler.advance(0.79)
        assert fired == []
        scheduler.advance(0.01)
        assert fired == ["settle"]
        assert not timers.is_pending("settle")

    def test_restart_replaces(self, scheduler, timers):
        fired = []
        timers.start("silence", 0.8, lambda: fired.append(1))
        scheduler.advance(0.5)
        timers.start("silence", 0.8, lambda: fired.append(2))

        scheduler.advance(0.5)
        assert fired == []
        scheduler.advance(0.3)
        assert fired == [2]

    def test_cancel(self, scheduler, timers):
        fired = []
        timers.start("backoff", 2.0, lambda: fired.append(1))
        assert timers.cancel("backoff") is True
        assert timers.cancel("backoff") is False

        scheduler.advance(5)
        assert fired == []

    def test_cancel_all_with_prefix(self, scheduler, timers):
        fired = []
        timers.start("notice:1", 3, lambda: fired.append("n1"))
        timers.start("notice:2", 3, lambda: fired.append("n2"))
        timers.start("settle", 3, lambda: fired.append("settle"))

        assert timers.cancel_all(prefix="notice:") == 2
        scheduler.advance(3)
        assert fired == ["settle"]

    def test_cancel_all(self, scheduler, timers):
        timers.start("a", 1, lambda: None)
        timers.start("b", 1, lambda: None)
        assert timers.cancel_all() == 2
        assert timers.pending == []
        assert scheduler.pending == []

    def test_callback_error_is_contained(self, scheduler, timers):
        fired = []

        def broken():
            raise RuntimeError("boom")

        timers.start("a", 1, broken)
        timers.start("b", 1, lambda: fired.append("b"))
        scheduler.advance(1)
        assert fired == ["b"]

    def test_negative_delay_clamped(self, scheduler, timers):
        fired = []
        timers.start("now", -1, lambda: fired.append(1))
        scheduler.advance(0)
        assert fired == [1]

    @pytest.mark.asyncio
    async def test_defaults_to_running_loop(self):
        timers = TimerSet()
        done = asyncio.Event()
        timers.start("quick", 0.01, done.set)
        await asyncio.wait_for(done.wait(), timeout=1)
        assert timers.pending == []
