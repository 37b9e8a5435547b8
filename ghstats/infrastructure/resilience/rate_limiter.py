"""Implementation of the rate tracker.

Tracks GitHub's quota window (limit, remaining, reset time) as reported in
response headers and decides whether the next request may go out now, must
wait for the window to reset, or should fail fast.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Optional

from ghstats.domain.errors import RateLimited
from ghstats.domain.models.common import RateDecision, RateLimitState

logger = logging.getLogger(__name__)

DEFAULT_MAX_WAIT_SECONDS = 60.0  # Longer waits fail fast instead of sleeping
LOW_QUOTA_WARNING = 10

HEADER_LIMIT = "x-ratelimit-limit"
HEADER_REMAINING = "x-ratelimit-remaining"
HEADER_RESET = "x-ratelimit-reset"
HEADER_USED = "x-ratelimit-used"


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed rate-limit header value: {value!r}")
        return None


class RateLimiter:
    """Header-driven rate tracker shared by all fetch paths."""

    def __init__(
        self,
        max_wait: float = DEFAULT_MAX_WAIT_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initializes the rate tracker.

        Args:
            max_wait: Longest wait, in seconds, that wait_for_permission will
                sleep through before raising RateLimited instead.
            clock: Wall-clock time source (reset times are Unix timestamps).
            sleep: Async sleep function, injectable for tests.
        """
        self.max_wait = max_wait
        self._clock = clock
        self._sleep = sleep
        self._state: Optional[RateLimitState] = None
        self._lock = asyncio.Lock()
        logger.info(f"RateLimiter initialized: max_wait={max_wait}s")

    @property
    def state(self) -> Optional[RateLimitState]:
        return self._state

    def can_proceed(self) -> RateDecision:
        """Denies only when the quota is spent and the window has not reset yet."""
        state = self._state
        if state is None or state.remaining > 0:
            return RateDecision(allow=True)
        wait = state.reset_at - self._clock()
        if wait > 0:
            return RateDecision(allow=False, retry_after=wait)
        return RateDecision(allow=True)

    def retry_after(self) -> float:
        return self.can_proceed().retry_after

    async def wait_for_permission(self) -> None:
        """Waits out an exhausted window, or raises RateLimited if the wait is too long."""
        decision = self.can_proceed()
        if decision.allow:
            return
        state = self._state
        if decision.retry_after > self.max_wait:
            logger.warning(f"Rate limit exhausted; reset in {decision.retry_after:.0f}s exceeds max wait. Failing fast.")
            raise RateLimited(
                "Rate limit exhausted",
                status_code=None,
                reset_at=state.reset_at if state else None,
                retry_after=decision.retry_after,
            )
        logger.info(f"Rate limit exhausted. Waiting {decision.retry_after:.2f}s for reset.")
        await self._sleep(decision.retry_after)

    async def record_response(self, headers: Mapping[str, str]) -> None:
        """Updates state from a response's rate-limit headers (any status code).

        Responses without rate-limit headers leave the state untouched.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        remaining = _parse_int(lowered.get(HEADER_REMAINING))
        reset = _parse_int(lowered.get(HEADER_RESET))
        if remaining is None and reset is None:
            return
        limit = _parse_int(lowered.get(HEADER_LIMIT))
        used = _parse_int(lowered.get(HEADER_USED))
        await self._update(limit=limit, remaining=remaining, reset_at=reset, used=used)

    async def update_from_payload(self, payload: Mapping[str, Any]) -> Optional[RateLimitState]:
        """Updates state from a ``GET /rate_limit`` body (``resources.core`` or ``rate``)."""
        core = None
        resources = payload.get("resources")
        if isinstance(resources, Mapping):
            core = resources.get("core")
        if not isinstance(core, Mapping):
            core = payload.get("rate")
        if not isinstance(core, Mapping):
            return self._state
        await self._update(
            limit=_parse_int(core.get("limit")),
            remaining=_parse_int(core.get("remaining")),
            reset_at=_parse_int(core.get("reset")),
            used=_parse_int(core.get("used")),
        )
        return self._state

    async def _update(
        self,
        limit: Optional[int],
        remaining: Optional[int],
        reset_at: Optional[int],
        used: Optional[int],
    ) -> None:
        async with self._lock:
            previous = self._state
            if previous is None and remaining is None:
                logger.debug("Ignoring rate-limit reset without a remaining count; no quota known yet.")
                return
            if limit is None:
                limit = previous.limit if previous else max(remaining or 0, 0)
            if remaining is None:
                remaining = previous.remaining if previous else limit
            new_reset = float(reset_at) if reset_at is not None else (previous.reset_at if previous else self._clock())
            # Same window: a reset time must never move backwards.
            if previous is not None and previous.reset_at > self._clock() and new_reset < previous.reset_at:
                new_reset = previous.reset_at
            remaining = min(max(remaining, 0), limit)
            if used is None:
                used = limit - remaining
            self._state = RateLimitState(limit=limit, remaining=remaining, reset_at=new_reset, used=used)

        if remaining <= LOW_QUOTA_WARNING:
            logger.warning(f"GitHub rate limit low: {remaining}/{limit} remaining")
        else:
            logger.debug(f"Rate limit updated: {remaining}/{limit} remaining, reset_at={new_reset:.0f}")
