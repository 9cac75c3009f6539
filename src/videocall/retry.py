"""Bounded retry for local track creation.

The default policy waits a fixed delay between attempts. Exponential backoff
is available as an alternative strategy but is not the default.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

from videocall.config import RetryConfig
from videocall.errors import MediaError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_DELAY_S = 1.0


class BackoffStrategy(ABC):
    """Computes the wait between a failed attempt and the next one."""

    @abstractmethod
    def delay(self, attempt: int) -> float:
        """Return the delay in seconds after failed attempt number ``attempt`` (1-based)."""


class ConstantBackoff(BackoffStrategy):
    """Same delay after every failed attempt."""

    def __init__(self, delay_s: float = DEFAULT_DELAY_S) -> None:
        if delay_s < 0:
            raise ValueError(f"delay_s must be >= 0, got {delay_s}")
        self.delay_s = delay_s

    def delay(self, attempt: int) -> float:
        return self.delay_s


class ExponentialBackoff(BackoffStrategy):
    """Delay grows by ``multiplier`` after each failed attempt, capped at ``max_delay_s``."""

    def __init__(
        self,
        initial_s: float = DEFAULT_DELAY_S,
        multiplier: float = 2.0,
        max_delay_s: float = 30.0,
    ) -> None:
        if initial_s < 0:
            raise ValueError(f"initial_s must be >= 0, got {initial_s}")
        if multiplier < 1.0:
            raise ValueError(f"multiplier must be >= 1.0, got {multiplier}")
        self.initial_s = initial_s
        self.multiplier = multiplier
        self.max_delay_s = max_delay_s

    def delay(self, attempt: int) -> float:
        return min(self.initial_s * self.multiplier ** (attempt - 1), self.max_delay_s)


def backoff_from_config(config: RetryConfig) -> BackoffStrategy:
    """Build the backoff strategy named in the retry configuration."""
    if config.strategy == "exponential":
        return ExponentialBackoff(config.delay_s, config.multiplier, config.max_delay_s)
    return ConstantBackoff(config.delay_s)


async def create_with_retry(
    factory: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: BackoffStrategy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "track",
) -> T:
    """Call ``factory`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        factory: Zero-argument coroutine function producing the handle
        max_attempts: Total number of attempts (not retries)
        backoff: Delay policy between attempts, constant 1s when omitted
        sleep: Awaitable sleep, injectable for tests
        label: Name used in log records

    Returns:
        Whatever the first successful call to ``factory`` returned

    Raises:
        ValueError: If max_attempts is less than 1
        MediaError: If every attempt failed, chained to the last failure
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    strategy = backoff if backoff is not None else ConstantBackoff()
    last_error: Exception | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await factory()
        except Exception as e:
            last_error = e
            logger.warning(
                "Track creation attempt failed",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error": str(e),
                },
            )
            if attempt < max_attempts:
                await sleep(strategy.delay(attempt))

    raise MediaError(
        f"Failed to create {label} after {max_attempts} attempt(s): {last_error}",
        cause=last_error,
    ) from last_error
