"""
VOICETURN Retry Policy

Reusable retry-with-backoff for transient failures: audio playback attempts
and recognizer (capture) re-initialisation share one implementation.

Usage:
    policy = RetryPolicy.linear(max_attempts=5, base_delay=0.5)
    audio = await policy.run(lambda attempt: sink.play(payload))
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from voiceturn.logging_config import get_logger

logger = get_logger(__name__)

__all__ = ["BackoffKind", "RetryPolicy"]


class BackoffKind(Enum):
    """How the delay grows between attempts."""
    CONSTANT = "constant"
    LINEAR = "linear"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a delay function.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds; the delay before attempt n+1 is base_delay
                    (constant) or base_delay * n (linear)
        backoff: Delay growth
        retry_on: Exception types that trigger a retry; others propagate
        give_up_on: Exception types that never retry, even if they match retry_on
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff: BackoffKind = BackoffKind.CONSTANT
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    give_up_on: Tuple[Type[BaseException], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay cannot be negative")

    @classmethod
    def linear(cls, max_attempts: int, base_delay: float, **kwargs: Any) -> "RetryPolicy":
        return cls(max_attempts, base_delay, BackoffKind.LINEAR, **kwargs)

    @classmethod
    def constant(cls, max_attempts: int, base_delay: float, **kwargs: Any) -> "RetryPolicy":
        return cls(max_attempts, base_delay, BackoffKind.CONSTANT, **kwargs)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt` (1-based)."""
        if self.backoff is BackoffKind.LINEAR:
            return self.base_delay * attempt
        return self.base_delay

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if self.give_up_on and isinstance(error, self.give_up_on):
            return False
        return isinstance(error, self.retry_on)

    async def run(
        self,
        operation: Callable[[int], Awaitable[Any]],
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> Any:
        """
        Run operation until it succeeds or the policy is exhausted.

        Args:
            operation: Coroutine function receiving the 1-based attempt number
            on_retry: Called with (attempt, error, delay) before each wait
            sleep: Awaitable delay function (injectable for tests)

        Returns:
            The operation's result

        Raises:
            The last error once attempts are exhausted, or immediately for
            errors the policy does not retry
        """
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {e}; "
                    f"retrying in {delay:.2f}s"
                )
                if on_retry is not None:
                    on_retry(attempt, e, delay)
                await sleep(delay)
                attempt += 1
