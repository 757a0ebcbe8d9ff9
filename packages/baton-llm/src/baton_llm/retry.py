"""Retry policy with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from baton_llm.errors import (
    AbortError,
    AccessDeniedError,
    AuthenticationError,
    NetworkError,
    ProviderError,
    RateLimitError,
    RequestTimeoutError,
    SDKError,
    ServerError,
    StreamError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    RateLimitError,
    ServerError,
    RequestTimeoutError,
    NetworkError,
    StreamError,
    TimeoutError,
    ConnectionResetError,
    ConnectionRefusedError,
    httpx.TimeoutException,
    httpx.NetworkError,
)

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

DEFAULT_RETRYABLE_MESSAGES = ("rate limit", "timeout", "service unavailable")

_FATAL_ERRORS = (AuthenticationError, AccessDeniedError)


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: tuple[type[BaseException], ...] = DEFAULT_RETRYABLE_EXCEPTIONS
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    retryable_messages: tuple[str, ...] = DEFAULT_RETRYABLE_MESSAGES
    respect_retry_after: bool = True
    deadline: float | None = None
    on_retry: Callable[[BaseException, int, float], Any] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.jitter < 0:
            raise ValueError("jitter must be non-negative")

    def calculate_delay(
        self, attempt: int, *, retry_after: float | None = None
    ) -> float | None:
        """Delay to sleep after failed attempt number ``attempt`` (1-based).

        Returns None if retry_after exceeds max_delay (caller should not retry).
        """
        if retry_after is not None and self.respect_retry_after:
            if retry_after > self.max_delay:
                return None
            return max(retry_after, 0.0)

        delay = min(
            self.base_delay * (self.multiplier ** (attempt - 1)),
            self.max_delay,
        )
        if self.jitter:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return min(max(delay, 0.0), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, _FATAL_ERRORS):
            return False
        if isinstance(error, self.retryable_exceptions):
            return True
        if isinstance(error, ProviderError) and error.status_code in self.retryable_status_codes:
            return True
        if isinstance(error, SDKError):
            return error.retryable
        message = str(error).lower()
        return any(pattern in message for pattern in self.retryable_messages)


@dataclass
class RetryStats:
    total_attempts: int = 0
    successful_retries: int = 0
    failed_operations: int = 0
    by_error_type: Counter = field(default_factory=Counter)

    @property
    def failure_rate(self) -> float:
        total = self.total_attempts + self.successful_retries + self.failed_operations
        return round(self.failed_operations / total, 3) if total else 0.0


def _record_attempts(error: BaseException, attempts: int) -> None:
    try:
        error.attempts = attempts  # type: ignore[attr-defined]
    except AttributeError:
        logger.debug("Cannot annotate %s with attempt count", type(error).__name__)


class RetryExecutor:
    """Runs a zero-argument coroutine function under a RetryPolicy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._stats = RetryStats()
        self._lock = threading.Lock()

    @property
    def stats(self) -> RetryStats:
        with self._lock:
            return RetryStats(
                total_attempts=self._stats.total_attempts,
                successful_retries=self._stats.successful_retries,
                failed_operations=self._stats.failed_operations,
                by_error_type=Counter(self._stats.by_error_type),
            )

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        operation: str = "operation",
        abort: asyncio.Event | None = None,
    ) -> T:
        policy = self.policy
        started = self._clock()
        attempt = 1

        while True:
            try:
                result = await fn()
            except Exception as err:
                if not policy.is_retryable(err):
                    self._record_failure()
                    raise

                self._record_attempt(err)
                if attempt >= policy.max_attempts:
                    _record_attempts(err, attempt)
                    self._record_failure()
                    logger.error(
                        "All %d retry attempts failed for %s: %s: %s",
                        attempt, operation, type(err).__name__, err,
                    )
                    raise

                delay = policy.calculate_delay(
                    attempt, retry_after=getattr(err, "retry_after", None)
                )
                if delay is None:
                    _record_attempts(err, attempt)
                    self._record_failure()
                    raise

                if abort is not None and abort.is_set():
                    _record_attempts(err, attempt)
                    self._record_failure()
                    raise AbortError(
                        f"{operation} aborted after {attempt} attempt(s)",
                        cause=err,
                        attempts=attempt,
                    ) from err

                if policy.deadline is not None:
                    elapsed = self._clock() - started
                    if elapsed + delay > policy.deadline:
                        _record_attempts(err, attempt)
                        self._record_failure()
                        logger.error(
                            "Retry deadline of %.2fs exceeded for %s after %d attempt(s)",
                            policy.deadline, operation, attempt,
                        )
                        raise

                logger.warning(
                    "Retry attempt %d/%d for %s in %.2fs (%s: %s)",
                    attempt, policy.max_attempts, operation, delay,
                    type(err).__name__, err,
                )
                if policy.on_retry:
                    policy.on_retry(err, attempt, delay)

                await self._sleep(delay)
                attempt += 1
            else:
                if attempt > 1:
                    with self._lock:
                        self._stats.successful_retries += 1
                return result

    def _record_attempt(self, error: BaseException) -> None:
        with self._lock:
            self._stats.total_attempts += 1
            self._stats.by_error_type[type(error).__name__] += 1

    def _record_failure(self) -> None:
        with self._lock:
            self._stats.failed_operations += 1


async def retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
) -> T:
    """Execute fn with retry according to policy."""
    return await RetryExecutor(policy).execute(fn)
