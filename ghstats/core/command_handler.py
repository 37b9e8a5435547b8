"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), calls the stats
client and hands the results to the user interface. This is the catch site
for domain errors: they are displayed with a retry hint and logged, never
surfaced as tracebacks.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from ghstats.core.services.stats_client import GitHubStatsClient
from ghstats.domain.errors import FetchError, RateLimited
from ghstats.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_HINT = "Run `ghstats refresh` to retry."
DEFAULT_POLL_INTERVAL_S = 300


class CommandHandler:
    """Handles incoming commands and delegates to the stats client."""

    def __init__(
        self,
        client: GitHubStatsClient,
        ui: UserInterface,
        include_traffic: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        """Initializes the CommandHandler with required services."""
        self.client = client
        self.ui = ui
        self.include_traffic = include_traffic
        self.poll_interval = poll_interval
        self._sleep = sleep

    async def _guarded(self, action: str, call: Callable[[], Awaitable[T]]) -> Optional[T]:
        """Runs ``call``, turning fetch errors into an error panel. Returns None on failure."""
        try:
            return await call()
        except RateLimited as e:
            logger.error(f"{action} failed: {e}", exc_info=True)
            reset = f" Quota resets in {e.retry_after:.0f}s." if e.retry_after else ""
            self.ui.display_error(f"{action} failed: GitHub rate limit exceeded.{reset}", hint=RETRY_HINT)
        except FetchError as e:
            logger.error(f"{action} failed: {e}", exc_info=True)
            self.ui.display_error(f"{action} failed: {e}", hint=RETRY_HINT)
        return None

    async def handle_stats(self, refresh: bool = False, include_traffic: Optional[bool] = None) -> bool:
        """Handles the 'stats' command. Returns True when a snapshot was shown."""
        with_traffic = self.include_traffic if include_traffic is None else include_traffic
        logger.info(f"Handling 'stats' command (refresh={refresh}, traffic={with_traffic})")
        if refresh:
            call = lambda: self.client.refresh(include_traffic=with_traffic)
        else:
            call = lambda: self.client.get_statistics(include_traffic=with_traffic)
        snapshot = await self._guarded("Fetching statistics", call)
        if snapshot is None:
            return False
        self.ui.display_snapshot(snapshot, show_traffic=with_traffic)
        return True

    async def handle_refresh(self, include_traffic: Optional[bool] = None) -> bool:
        """Handles the 'refresh' command."""
        shown = await self.handle_stats(refresh=True, include_traffic=include_traffic)
        if shown:
            self.ui.display_info("Statistics refreshed from GitHub.")
        return shown

    async def handle_rate_limit(self) -> bool:
        """Handles the 'rate-limit' command."""
        logger.info("Handling 'rate-limit' command")
        state = await self._guarded("Querying rate limit", self.client.get_rate_limit)
        if state is None:
            return False
        self.ui.display_rate_limit(state)
        return True

    async def handle_activity(self) -> bool:
        """Handles the 'activity' command."""
        logger.info("Handling 'activity' command")
        activity = await self._guarded("Fetching activity", self.client.get_activity)
        if activity is None:
            return False
        self.ui.display_activity(activity)
        return True

    async def handle_search(
        self,
        query: str = "",
        language: Optional[str] = None,
        min_stars: Optional[int] = None,
        max_stars: Optional[int] = None,
        sort: Optional[str] = None,
        descending: bool = False,
    ) -> bool:
        """Handles the 'search' command: filters the user's repositories locally."""
        logger.info(f"Handling 'search' command (query={query!r}, language={language}, sort={sort})")
        results = await self._guarded(
            "Searching repositories",
            lambda: self.client.search_repositories(
                query, language=language, min_stars=min_stars, max_stars=max_stars, sort=sort, descending=descending,
            ),
        )
        if results is None:
            return False
        title = f"Repositories matching '{query}'" if query else "Repositories"
        self.ui.display_repositories(results, title=title)
        return True

    async def handle_watch(self, interval: Optional[float] = None, iterations: Optional[int] = None) -> None:
        """Handles the 'watch' command: polls the snapshot every ``interval`` seconds.

        Expired entries are pruned before each poll and entries still fresh
        are reused, so a short interval costs no extra quota. Cache occupancy
        is shown after each poll. A failed poll is shown and the loop carries on.

        Args:
            interval: Seconds between polls; defaults to the configured poll interval.
            iterations: Stop after this many polls; None polls until cancelled.
        """
        if interval is None:
            interval = self.poll_interval
        if interval <= 0:
            raise ValueError("interval must be positive")
        logger.info(f"Handling 'watch' command (interval={interval}s)")
        count = 0
        while iterations is None or count < iterations:
            await self.client.prune_cache()
            await self.handle_stats()
            self.ui.display_cache_stats(await self.client.cache_stats())
            count += 1
            if iterations is not None and count >= iterations:
                break
            await self._sleep(interval)
