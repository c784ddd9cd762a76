"""
Retry/Backoff Controller

Wraps remote reads with bounded retries. Each failure is classified first:
permanent failures (permission denied, expired auth) and anything that is not
a service outage stop immediately; outages wait attempt * base_delay and retry.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from vibesync.core.models import SyncError, SyncErrorKind, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0

T = TypeVar('T')


def classify(exc: BaseException) -> SyncError:
    """Map any exception raised by a collaborator onto the sync error taxonomy."""
    if isinstance(exc, SyncError):
        return exc
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError, OSError)):
        return SyncError(SyncErrorKind.SERVICE_UNAVAILABLE, f"Network error: {exc}")
    return SyncError(SyncErrorKind.UNKNOWN, f"Unexpected error: {exc}")


class RetryController:
    """Runs an async operation up to max_attempts times with linear backoff."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 base_delay: float = DEFAULT_BASE_DELAY,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def with_attempts(self, max_attempts: int) -> "RetryController":
        return RetryController(max_attempts, self.base_delay, self._sleep)

    async def run(self, operation: Callable[[], Awaitable[T]], name: str) -> SyncResult[T]:
        last_error: SyncError | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return SyncResult.ok(await operation())
            except Exception as e:
                error = classify(e)

                if not error.retryable:
                    logger.error(f"{error.kind.value} on {name}, not retrying: {error.message}")
                    return SyncResult.failure(error)

                last_error = error
                if attempt < self.max_attempts:
                    wait = attempt * self.base_delay
                    logger.warning(f"{error.kind.value} on {name} "
                                   f"(attempt {attempt}/{self.max_attempts}), retrying in {wait:.1f}s...")
                    await self._sleep(wait)

        logger.error(f"{name} failed after {self.max_attempts} attempts")
        return SyncResult.failure(SyncError(
            SyncErrorKind.SERVICE_UNAVAILABLE,
            f"{name} failed after {self.max_attempts} attempts: {last_error.message}"
        ))
