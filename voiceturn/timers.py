"""
VOICETURN Timer Ownership

A keyed set of one-shot timers on the asyncio event loop. The orchestrator
owns exactly one TimerSet; every delay in a session (settle, silence,
watchdogs, notice dismissal, ...) is registered here under a fixed key so
that leaving a phase or ending the call can cancel it deterministically.

Starting a timer under a key that is already pending replaces it; a key can
never have two live callbacks.

Usage:
    timers = TimerSet()
    timers.start("settle", 0.8, on_settled)
    timers.cancel("settle")
    timers.cancel_all()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Protocol

from voiceturn.logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["Scheduler", "TimerSet"]


class Scheduler(Protocol):
    """Anything with the call_later signature of an asyncio loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any:
        ...


class TimerSet:
    """Named one-shot timers with replace-on-start semantics."""

    def __init__(self, scheduler: Optional[Scheduler] = None):
        """
        Args:
            scheduler: Object providing call_later(); defaults to the running
                       event loop, resolved on first use
        """
        self._scheduler = scheduler
        self._handles: Dict[str, Any] = {}

    def _get_scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    def start(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        """Start (or restart) the timer called name."""
        self.cancel(name)
        handle = self._get_scheduler().call_later(
            max(0.0, delay), self._fire, name, callback
        )
        self._handles[name] = handle
        logger.debug(f"Timer '{name}' started ({delay:.3f}s)")

    def cancel(self, name: str) -> bool:
        """Cancel a pending timer. Returns True if one was pending."""
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"Timer '{name}' cancelled")
        return True

    def cancel_all(self, prefix: Optional[str] = None) -> int:
        """Cancel every pending timer, or only those whose key starts with prefix."""
        names = [n for n in self._handles if prefix is None or n.startswith(prefix)]
        for name in names:
            self.cancel(name)
        return len(names)

    def is_pending(self, name: str) -> bool:
        return name in self._handles

    @property
    def pending(self) -> List[str]:
        return list(self._handles)

    def _fire(self, name: str, callback: Callable[[], None]) -> None:
        self._handles.pop(name, None)
        logger.debug(f"Timer '{name}' fired")
        try:
            callback()
        except Exception:
            logger.exception(f"Timer '{name}' callback failed")
