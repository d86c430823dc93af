"""
Retry mechanics for idempotent API calls.

RetryPolicy only knows how to re-run an operation; whether an operation is
safe to re-run is decided by the caller (the service layer). Non-idempotent
calls such as "toggle like" must never be passed through it.

Strategy:
- Retryable: NetworkError, RequestTimeout, and HttpError with status >= 500
- Never retried: any status < 500 (caller/input errors surface immediately)
- Backoff: linear, base * attempt (1s, 2s, ... with the default base)
- After max_attempts the last error is re-raised unchanged
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from .transport import HttpError, NetworkError, RequestTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 1.0


def is_retryable(exc: BaseException) -> bool:
    """Whether a failed attempt may be repeated."""
    if isinstance(exc, (NetworkError, RequestTimeout)):
        return True
    if isinstance(exc, HttpError):
        return exc.status >= 500
    return False


class RetryPolicy:
    """Re-runs a zero-argument async operation on transient failures."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff_base < 0:
            raise ValueError("backoff_base must not be negative")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Wait applied after the given (1-indexed) failed attempt."""
        return self.backoff_base * attempt

    async def execute(
        self,
        op: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
    ) -> T:
        """
        Run op, retrying retryable failures.

        Args:
            op: Zero-argument coroutine function performing one attempt.
            max_attempts: Total attempts including the first (defaults to the
                policy's configured value).

        Returns:
            The first successful result of op.

        Raises:
            The last error raised by op, unwrapped.
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(start=self.backoff_base, increment=self.backoff_base),
            retry=retry_if_exception(is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await op()
        # AsyncRetrying either returns from inside the loop or re-raises
        raise AssertionError("unreachable")
