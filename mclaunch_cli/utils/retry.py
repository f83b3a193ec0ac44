"""
A small retry policy shared by the auth, resolution and download layers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import aiohttp

from mclaunch_cli.exceptions import ApiResponseError

log = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def is_transient(error: BaseException) -> bool:
    """Tells whether an error is worth retrying (network hiccup, throttling, 5xx)."""
    if isinstance(error, ApiResponseError):
        return error.status in TRANSIENT_STATUS_CODES or error.status >= 500
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status in TRANSIENT_STATUS_CODES or error.status >= 500
    return isinstance(
        error,
        (
            aiohttp.ClientConnectionError,
            aiohttp.ClientPayloadError,
            asyncio.TimeoutError,
        ),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """
    Maximum attempt count plus a delay schedule.

    The delay before attempt ``n + 1`` is ``base_delay * backoff ** (n - 1)``,
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.5
    backoff: float = 2.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * self.backoff ** (attempt - 1))

    def delays(self) -> list[float]:
        """The full schedule, one entry per retry."""
        return [self.delay_for(n) for n in range(1, self.max_attempts)]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_if: Callable[[BaseException], bool] = is_transient,
        description: str = "operation",
    ) -> T:
        """
        Runs ``operation`` until it succeeds, raises a non-retryable error, or
        the attempt budget is exhausted. The last error is re-raised.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not retry_if(e):
                    raise
                delay = self.delay_for(attempt)
                log.debug(
                    f"{description} attempt {attempt}/{self.max_attempts} failed: "
                    f"{e}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")
