"""Bounded retry policy for exchange calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

import config
from trading.positions import TradingError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(TradingError):
    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(f"retries exhausted after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def fixed_delay(delay_seconds: float) -> Callable[[int], float]:
    return lambda _attempt: max(0.0, float(delay_seconds))


@dataclass
class RetryPolicy:
    """Run an async operation up to `max_attempts` times.

    `backoff(attempt)` gives the pause after a failed attempt (1-based). The
    sleep function is injectable so tests can run without waiting.
    """

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: fixed_delay(5.0))
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def for_sells(cls, retry_on: tuple[type[BaseException], ...] = (Exception,)) -> "RetryPolicy":
        return cls(
            max_attempts=int(config.SELL_RETRY_ATTEMPTS),
            backoff=fixed_delay(float(config.SELL_RETRY_DELAY_SECONDS)),
            retry_on=retry_on,
        )

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        label: str = "",
    ) -> T:
        attempts = max(1, int(self.max_attempts))
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await operation(attempt)
            except self.retry_on as exc:
                last_error = exc
                if attempt >= attempts:
                    break
                delay = self.backoff(attempt)
                logger.warning(
                    "RETRY op=%s attempt=%s/%s delay=%.2fs err=%s",
                    label or getattr(operation, "__name__", "operation"),
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                if delay > 0:
                    await self.sleep(delay)
        raise RetryExhausted(attempts, last_error)
