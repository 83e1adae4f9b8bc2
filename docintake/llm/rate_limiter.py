"""
RateLimiter — client-side throttling guard around the extraction provider

One instance per process (owned by PipelineContext) wraps every classifier
and extraction call. Two independent admission gates:

  1. Sliding request window
       At most `max_requests` dispatches per `window_seconds`. The window
       resets lazily (count → 0, start → now) the first time it is read
       after it has elapsed.

  2. Backoff penalty
       Each throttling response (HTTP 429) sets `is_limited` for
       min(base_delay * 2^(consecutive_errors-1), max_delay) seconds, or for
       the provider's Retry-After when supplied. The penalty clears lazily
       against the clock and is also scheduled on the event loop so
       subscribers are told when it lifts.

    with_rate_limit(fn)
      attempt 0..max_retries:
        limited?       → sleep the remaining penalty
        window full?   → sleep until the window rolls over
        record_request → await fn()
          429          → handle_rate_limit_error, sleep base*2^attempt, retry
          other error  → re-raise immediately (no retry consumed)
      budget spent     → MaxRetriesExceededError (fatal for the document)

Concurrency: the caller is single-threaded asyncio. No state read-modify-
write spans an await, so no lock is needed.

The clock and sleep function are injectable so tests can drive time
deterministically.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from docintake.core.exceptions import MaxRetriesExceededError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

MAX_REQUESTS_PER_WINDOW = 60
WINDOW_SECONDS          = 60.0
BASE_DELAY_SECONDS      = 1.0
MAX_DELAY_SECONDS       = 60.0
MAX_RETRIES             = 5

# Lower bound for a single admission sleep; keeps a zero-length wait from spinning
_MIN_SLEEP_SECONDS = 0.001


# ---------------------------------------------------------------------------
# Rate-limit error detection
# ---------------------------------------------------------------------------

def is_rate_limit_error(exc: BaseException) -> bool:
    """True for HTTP 429 or any message mentioning '429' / 'rate limit'."""
    if getattr(exc, "status_code", None) == 429 or getattr(exc, "status", None) == 429:
        return True
    message = str(exc).lower()
    return "429" in message or "rate limit" in message


# ---------------------------------------------------------------------------
# Status snapshot (pushed to subscribers, served by GET /rate-limit)
# ---------------------------------------------------------------------------

@dataclass
class RateLimitStatus:
    is_limited:         bool
    retry_after:        Optional[float]   # seconds left on the current penalty
    requests_remaining: int
    message:            str

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_limited":         self.is_limited,
            "retry_after":        self.retry_after,
            "requests_remaining": self.requests_remaining,
            "message":            self.message,
        }


StatusCallback = Callable[[RateLimitStatus], None]
RetryCallback = Callable[[int, float], None]


# ---------------------------------------------------------------------------
# RateLimiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """
    Usage::

        limiter = RateLimiter(max_requests=60, window_seconds=60)
        response = await limiter.with_rate_limit(lambda: provider.call(...))
    """

    def __init__(
        self,
        max_requests:   int   = MAX_REQUESTS_PER_WINDOW,
        window_seconds: float = WINDOW_SECONDS,
        base_delay:     float = BASE_DELAY_SECONDS,
        max_delay:      float = MAX_DELAY_SECONDS,
        max_retries:    int   = MAX_RETRIES,
        clock:          Callable[[], float] = time.monotonic,
        sleep:          Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.max_requests   = max_requests
        self.window_seconds = window_seconds
        self.base_delay     = base_delay
        self.max_delay      = max_delay
        self.max_retries    = max_retries
        self._clock = clock
        self._sleep = sleep

        self._requests_in_window = 0
        self._window_start       = clock()
        self._consecutive_errors = 0
        self._limited_until: Optional[float] = None
        self._unlimit_handle: Optional[asyncio.TimerHandle] = None
        self._subscribers: list[StatusCallback] = []

    # -----------------------------------------------------------------------
    # State
    # -----------------------------------------------------------------------

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def requests_in_window(self) -> int:
        self._roll_window()
        return self._requests_in_window

    def is_limited(self) -> bool:
        if self._limited_until is None:
            return False
        if self._clock() >= self._limited_until:
            self._lift_limit()
            return False
        return True

    def remaining_backoff(self) -> float:
        """Seconds until the current penalty lifts (0.0 when not limited)."""
        if not self.is_limited():
            return 0.0
        return max(self._limited_until - self._clock(), 0.0)

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._requests_in_window = 0

    def _lift_limit(self) -> None:
        self._limited_until = None
        if self._unlimit_handle is not None:
            self._unlimit_handle.cancel()
            self._unlimit_handle = None
        logger.info("RateLimiter | backoff elapsed, resuming")
        self._notify()

    def _on_unlimit_timer(self) -> None:
        self._unlimit_handle = None
        # lazy check: lifts the limit only if the clock really passed it
        self.is_limited()

    # -----------------------------------------------------------------------
    # Admission
    # -----------------------------------------------------------------------

    def can_make_request(self) -> bool:
        if self.is_limited():
            return False
        self._roll_window()
        return self._requests_in_window < self.max_requests

    def record_request(self) -> None:
        """Count one dispatch attempt (successful or not)."""
        self._roll_window()
        self._requests_in_window += 1
        self._consecutive_errors = 0
        self._notify()

    def _seconds_until_slot(self) -> float:
        if self.is_limited():
            wait = self._limited_until - self._clock()
        else:
            wait = self._window_start + self.window_seconds - self._clock()
        return max(wait, _MIN_SLEEP_SECONDS)

    async def wait_for_slot(self) -> None:
        """Suspend until can_make_request() is true."""
        while not self.can_make_request():
            wait = self._seconds_until_slot()
            logger.debug("RateLimiter | window full, sleeping %.3fs", wait)
            await self._sleep(wait)

    # -----------------------------------------------------------------------
    # Throttling
    # -----------------------------------------------------------------------

    def handle_rate_limit_error(self, retry_after: Optional[float] = None) -> float:
        """
        Enter the limited state; returns the penalty length in seconds.

        An explicit provider retry_after wins over the computed backoff.
        """
        self._consecutive_errors += 1
        if retry_after is not None and retry_after > 0:
            backoff = float(retry_after)
        else:
            backoff = min(
                self.base_delay * 2 ** (self._consecutive_errors - 1),
                self.max_delay,
            )

        self._limited_until = self._clock() + backoff
        self._schedule_unlimit(backoff)

        logger.warning(
            "RateLimiter | throttled backoff=%.1fs consecutive_errors=%d",
            backoff, self._consecutive_errors,
        )
        self._notify()
        return backoff

    def _schedule_unlimit(self, delay: float) -> None:
        if self._unlimit_handle is not None:
            self._unlimit_handle.cancel()
            self._unlimit_handle = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: the lazy clock check still lifts the limit
        self._unlimit_handle = loop.call_later(delay, self._on_unlimit_timer)

    # -----------------------------------------------------------------------
    # Wrapper
    # -----------------------------------------------------------------------

    async def with_rate_limit(
        self,
        fn: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        on_retry: Optional[RetryCallback] = None,
    ) -> T:
        retries = self.max_retries if max_retries is None else max_retries
        last_error: Optional[BaseException] = None

        for attempt in range(retries + 1):
            if self.is_limited():
                wait = self.remaining_backoff()
                if on_retry:
                    on_retry(attempt, wait)
                await self._sleep(wait)

            await self.wait_for_slot()
            self.record_request()

            try:
                return await fn()
            except Exception as exc:
                if not is_rate_limit_error(exc):
                    raise
                last_error = exc
                self.handle_rate_limit_error(getattr(exc, "retry_after", None))

                if attempt < retries:
                    delay = min(self.base_delay * 2 ** attempt, self.max_delay)
                    if on_retry:
                        on_retry(attempt + 1, delay)
                    logger.warning(
                        "RateLimiter | retrying attempt=%d/%d delay=%.1fs",
                        attempt + 1, retries, delay,
                    )
                    await self._sleep(delay)

        raise MaxRetriesExceededError(retries + 1) from last_error

    # -----------------------------------------------------------------------
    # Status broadcast
    # -----------------------------------------------------------------------

    def get_status(self) -> RateLimitStatus:
        limited = self.is_limited()
        self._roll_window()
        remaining = max(0, self.max_requests - self._requests_in_window)

        if limited:
            retry_after = self.remaining_backoff()
            message = f"Rate limited. Resuming in {math.ceil(retry_after)} seconds..."
        else:
            retry_after = None
            message = f"{remaining} requests remaining"

        return RateLimitStatus(
            is_limited=limited,
            retry_after=retry_after,
            requests_remaining=remaining,
            message=message,
        )

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a status listener; returns the unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _notify(self) -> None:
        if not self._subscribers:
            return
        status = self.get_status()
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception as exc:
                logger.warning("RateLimiter | subscriber raised (ignored): %s", exc)

    def reset(self) -> None:
        if self._unlimit_handle is not None:
            self._unlimit_handle.cancel()
        self._unlimit_handle     = None
        self._limited_until      = None
        self._requests_in_window = 0
        self._window_start       = self._clock()
        self._consecutive_errors = 0
