"""
VOICETURN Notices

Short-lived user-facing messages raised by the orchestrator (microphone
permission, "didn't catch that", backend trouble). Each notice dismisses
itself after a duration that depends on its kind; listeners are told about
every show and dismiss so a front end can render them.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from voiceturn.logging_config import get_logger
from voiceturn.timers import TimerSet

logger = get_logger(__name__)

__all__ = ["NoticeKind", "Notice", "NoticeBoard", "NOTICE_TIMER_PREFIX"]

NOTICE_TIMER_PREFIX = "notice:"


class NoticeKind(Enum):
    INFO = "info"
    RECOVERABLE = "recoverable"
    PERMISSION = "permission"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    notice_id: int
    message: str
    kind: NoticeKind
    duration: float
    created_at: float = field(default_factory=time.monotonic)


class NoticeBoard:
    """Active notices with auto-dismiss timers on the shared TimerSet."""

    def __init__(
        self,
        timers: TimerSet,
        default_duration: float = 5.0,
        recoverable_duration: float = 3.0,
    ):
        self.timers = timers
        self.default_duration = default_duration
        self.recoverable_duration = recoverable_duration
        self._active: Dict[int, Notice] = {}
        self._ids = itertools.count(1)
        self._callbacks: List[Callable[[Notice, bool], None]] = []

    @property
    def active(self) -> List[Notice]:
        return list(self._active.values())

    def register_callback(self, callback: Callable[[Notice, bool], None]) -> None:
        """Register callback(notice, shown); shown is False on dismissal."""
        self._callbacks.append(callback)

    def duration_for(self, kind: NoticeKind) -> float:
        if kind is NoticeKind.RECOVERABLE:
            return self.recoverable_duration
        return self.default_duration

    def show(
        self,
        message: str,
        kind: NoticeKind = NoticeKind.INFO,
        duration: Optional[float] = None,
    ) -> Notice:
        notice = Notice(
            notice_id=next(self._ids),
            message=message,
            kind=kind,
            duration=self.duration_for(kind) if duration is None else duration,
        )
        self._active[notice.notice_id] = notice
        self.timers.start(
            f"{NOTICE_TIMER_PREFIX}{notice.notice_id}",
            notice.duration,
            lambda: self.dismiss(notice.notice_id),
        )
        logger.info(f"Notice [{kind.value}]: {message}")
        self._notify(notice, True)
        return notice

    def dismiss(self, notice_id: int) -> bool:
        notice = self._active.pop(notice_id, None)
        if notice is None:
            return False
        self.timers.cancel(f"{NOTICE_TIMER_PREFIX}{notice_id}")
        self._notify(notice, False)
        return True

    def dismiss_all(self) -> int:
        ids = list(self._active)
        for notice_id in ids:
            self.dismiss(notice_id)
        return len(ids)

    def _notify(self, notice: Notice, shown: bool) -> None:
        for callback in self._callbacks:
            try:
                callback(notice, shown)
            except Exception as e:
                logger.warning(f"Notice callback error: {e}")
