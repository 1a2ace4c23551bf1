import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")
SleepFunc = Callable[[float], Awaitable[Any]]


class Backoff(StrEnum):
    FIXED = "fixed"
    LINEAR = "linear"


@dataclass
class RetryPolicy:
    """Bounded retry with a fixed or linearly growing delay between attempts.

    The sleep function is injectable so callers and tests control the clock.
    """

    max_attempts: int
    delay: float
    backoff: Backoff = Backoff.FIXED
    sleep: SleepFunc = field(default=asyncio.sleep, repr=False)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt"""
        if self.backoff == Backoff.LINEAR:
            return self.delay * attempt
        return self.delay

    async def run(
        self,
        func: Callable[[], Awaitable[T]],
        should_retry: Callable[[Exception], bool] = lambda _: True,
        operation: str = "operation",
    ) -> T:
        """Run ``func`` until it succeeds or attempts are exhausted, raising the last error"""
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func()
            except Exception as e:
                last_error = e
                if not should_retry(e) or attempt == self.max_attempts:
                    break
                logger.debug(
                    f"Attempt {attempt}/{self.max_attempts} of {operation} failed: {e}"
                )
                await self.sleep(self.delay_for(attempt))

        assert last_error is not None
        raise last_error
