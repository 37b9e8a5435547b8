"""Service for executing API calls with automatic retries.

Implements bounded exponential backoff for transient failures: rate limits
(429, or 403 with an exhausted quota), 5xx responses from the retryable set,
and network errors including per-attempt timeouts. Any other client error is
terminal and surfaces after a single attempt.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Coroutine, FrozenSet, Iterable, List, Optional

from ghstats.infrastructure.resilience.rate_limiter import RateLimiter
from ghstats.domain.errors import FetchError, NetworkError, RateLimited
from ghstats.domain.events.api_events import (
    ApiCallDeferred, ApiCallFailed, ApiCallInitiated, ApiCallSucceeded, DomainEvent, RetryScheduled,
)
from ghstats.domain.models.common import BackoffPolicy, FetchAttempt

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_S = 1.0
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_MAX_DELAY_S = 30.0
DEFAULT_JITTER = 0.25


class ApiRetryService:
    """Handles API call execution with rate-limit gating and retries."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY_S,
        factor: float = DEFAULT_BACKOFF_FACTOR,
        max_delay: float = DEFAULT_MAX_DELAY_S,
        jitter: float = DEFAULT_JITTER,
        retryable_status_codes: Iterable[int] = RETRYABLE_STATUS_CODES,
        event_listener: Optional[Callable[[DomainEvent], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        """Initializes the ApiRetryService.

        Args:
            rate_limiter: Shared rate tracker consulted before each attempt.
            max_retries: Retries after the first attempt (total = max_retries + 1).
            initial_delay: Delay in seconds before the first retry.
            factor: Multiplier applied to the delay for each further retry.
            max_delay: Cap on the backoff delay (rate-limit waits are not capped).
            jitter: Fraction of the delay to randomize by, e.g. 0.25 for +/-25%.
            retryable_status_codes: Status codes worth retrying.
            event_listener: Optional callable receiving domain events.
            sleep: Async sleep function, injectable for tests.
            rng: Random source in [0, 1) used for jitter.
        """
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.factor = factor
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_status_codes = frozenset(retryable_status_codes)
        self.event_listener = event_listener
        self._sleep = sleep
        self._rng = rng

        logger.info(
            f"ApiRetryService initialized: max_retries={max_retries}, "
            f"initial_delay={initial_delay}s, factor={factor}, max_delay={max_delay}s, jitter={jitter}"
        )
        logger.debug(f"Retryable status codes: {sorted(self.retryable_status_codes)}")

    @classmethod
    def from_policy(cls, rate_limiter: RateLimiter, policy: BackoffPolicy, **kwargs: Any) -> "ApiRetryService":
        return cls(rate_limiter, **policy, **kwargs)

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based): initial * factor^(n-1), capped and jittered."""
        delay = min(self.initial_delay * (self.factor ** (retry_number - 1)), self.max_delay)
        if self.jitter:
            delay += delay * self.jitter * (2 * self._rng() - 1)
        return max(0.0, delay)

    def is_retryable(self, error: FetchError) -> bool:
        if isinstance(error, (NetworkError, RateLimited)):
            return True
        return error.status_code in self.retryable_status_codes

    def _dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is not None:
            self.event_listener(event)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        endpoint_name: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Executes an async request function with rate gating and retries.

        Args:
            func: The async function performing a single HTTP attempt. It must
                raise FetchError subclasses for failures.
            *args: Positional arguments for the function.
            endpoint_name: Name used in logs and events (defaults to func name).
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the first successful attempt.

        Raises:
            FetchError: The last classified error, with its attempt history,
                once retries are exhausted or a terminal error occurs.
        """
        endpoint = endpoint_name or getattr(func, "__name__", "request")
        attempts: List[FetchAttempt] = []
        delay = 0.0

        for attempt in range(1, self.max_retries + 2):
            # 1. Wait for rate limit permission (raises RateLimited when the wait is too long)
            decision = self.rate_limiter.can_proceed()
            if not decision.allow:
                self._dispatch(ApiCallDeferred(endpoint=endpoint, wait_time_seconds=decision.retry_after))
            try:
                await self.rate_limiter.wait_for_permission()
            except RateLimited as e:
                e.endpoint = e.endpoint or endpoint
                e.attempts = attempts
                self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=len(attempts)))
                raise

            # 2. Execute the function
            self._dispatch(ApiCallInitiated(endpoint=endpoint, attempt_number=attempt))
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except FetchError as e:
                attempts.append(FetchAttempt(attempt, delay, e.status_code, str(e)))
                e.endpoint = e.endpoint or endpoint

                if not self.is_retryable(e):
                    logger.error(f"Non-retryable error calling {endpoint} on attempt {attempt}: {e}")
                    e.attempts = attempts
                    self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=attempt))
                    raise

                if attempt > self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for {endpoint}. Last error: {e}")
                    e.attempts = attempts
                    self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=attempt))
                    raise

                delay = self.backoff_delay(attempt)
                if isinstance(e, RateLimited):
                    rate_wait = max(self.rate_limiter.retry_after(), e.retry_after)
                    if rate_wait > self.rate_limiter.max_wait:
                        logger.warning(f"Rate limited on {endpoint}; reset in {rate_wait:.0f}s exceeds max wait. Giving up.")
                        e.attempts = attempts
                        self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=attempt))
                        raise
                    delay = max(delay, rate_wait)

                logger.warning(
                    f"Retryable error calling {endpoint} on attempt {attempt}/{self.max_retries + 1}: "
                    f"{type(e).__name__}. Waiting {delay:.2f}s..."
                )
                self._dispatch(RetryScheduled(endpoint=endpoint, attempt_number=attempt + 1, delay_seconds=delay, status_code=e.status_code))
                await self._sleep(delay)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            self._dispatch(ApiCallSucceeded(endpoint=endpoint, latency_ms=latency_ms, status_code=getattr(result, "status_code", None)))
            return result

        # Unreachable: the loop either returns or raises on the final attempt.
        raise FetchError("Retry loop exited without a result", endpoint=endpoint)

    execute = execute_with_retry
