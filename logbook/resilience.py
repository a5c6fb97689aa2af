"""Retry-with-backoff wrapper for remote calls.

Every remote call made by the sync engine goes through ``call_with_retry``,
which turns exceptions into a tagged ``RemoteResult`` so callers branch on
``result.ok`` instead of catching.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from logbook.errors import RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for remote call retry behavior."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.1

    @staticmethod
    def default() -> "RetryPolicy":
        """Default retry policy."""
        return RetryPolicy()

    @staticmethod
    def for_push() -> "RetryPolicy":
        """Retry policy for outbox replay (a failure halts the drain, so try harder)."""
        return RetryPolicy(max_attempts=4, base_delay=0.5)

    @staticmethod
    def for_pull() -> "RetryPolicy":
        """Retry policy for snapshot fetches."""
        return RetryPolicy(max_attempts=3, base_delay=1.0)

    @staticmethod
    def none() -> "RetryPolicy":
        """Single attempt, no waiting."""
        return RetryPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        if self.jitter:
            delay += delay * random.uniform(0, self.jitter)  # noqa: S311
        return delay


@dataclass
class RemoteResult(Generic[T]):
    """Outcome of a remote call: either a value or the last error."""

    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    context: str = ""

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error is not None else ""


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, RemoteError):
        return error.retryable
    return True


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    context: str = "remote call",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> RemoteResult[T]:
    """
    Run ``fn`` up to ``policy.max_attempts`` times with exponential backoff.

    Args:
        fn: Zero-argument coroutine factory performing the remote call
        policy: Retry policy (defaults to RetryPolicy.default())
        context: Short label for logs, e.g. "upsert txns"
        sleep: Awaitable sleep, injectable for tests

    Returns:
        RemoteResult with ok=True and the value, or ok=False and the last error.
        Never raises, except for task cancellation.
    """
    policy = policy or RetryPolicy.default()
    attempts = max(1, policy.max_attempts)
    last_error: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            value = await fn()
            return RemoteResult(ok=True, value=value, attempts=attempt + 1, context=context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            extra = {"context": context, "attempt": attempt + 1, "max_attempts": attempts}
            if not _is_retryable(e):
                logger.error(f"{context} rejected (attempt {attempt + 1}/{attempts}): {e}", extra=extra)
                return RemoteResult(ok=False, error=e, attempts=attempt + 1, context=context)
            if attempt + 1 < attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"{context} failed (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {e}",
                    extra=extra,
                )
                await sleep(delay)

    logger.error(
        f"{context} failed after {attempts} attempts: {last_error}",
        extra={"context": context, "attempt": attempts, "max_attempts": attempts},
    )
    return RemoteResult(ok=False, error=last_error, attempts=attempts, context=context)
