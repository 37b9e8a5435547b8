"""GitHub Stats Client: the single entry point for the presentation layer.

Exposes cache-aware getters for the composite snapshot and for individual
resources, a manual refresh that forces every tracked key to be fetched
again, local repository search and cache maintenance.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from ghstats.core.services.aggregator import StatisticsAggregator
from ghstats.domain.errors import ParseError
from ghstats.domain.interfaces.cache import CacheService
from ghstats.domain.models.common import CacheStats, Login, RateLimitState, RepoFullName
from ghstats.domain.models.github import Event, LanguageBreakdown, Repository, TrafficSummary, UserProfile
from ghstats.domain.models.snapshot import ActivityStats, StatisticsSnapshot
from ghstats.infrastructure.github.fetchers import FetcherSet
from ghstats.infrastructure.github.http_client import GitHubHttpClient
from ghstats.infrastructure.github.resources import RATE_LIMIT_ENDPOINT
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# ISO-8601 timestamps from the API sort chronologically as strings.
SORT_FIELDS: Dict[str, Callable[[Repository], Any]] = {
    "stars": lambda repo: repo.stargazers_count,
    "updated": lambda repo: repo.updated_at or "",
    "created": lambda repo: repo.created_at or "",
}


class GitHubStatsClient:
    """Facade over the fetchers, the aggregator and the shared cache."""

    def __init__(
        self,
        login: Login,
        aggregator: StatisticsAggregator,
        fetchers: FetcherSet,
        cache: CacheService,
        rate_limiter: RateLimiter,
        http_client: GitHubHttpClient,
    ):
        self.login = login
        self.aggregator = aggregator
        self.fetchers = fetchers
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.http_client = http_client

    async def __aenter__(self) -> "GitHubStatsClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http_client.aclose()

    # --- Composite ---

    async def get_statistics(self, include_traffic: Optional[bool] = None) -> StatisticsSnapshot:
        """Returns the snapshot, served from cache wherever entries are still fresh."""
        return await self.aggregator.build_snapshot(self.login, include_traffic=include_traffic)

    async def refresh(self, include_traffic: Optional[bool] = None) -> StatisticsSnapshot:
        """Invalidates all tracked keys, then rebuilds the snapshot from upstream."""
        logger.info("Manual refresh requested; invalidating cache.")
        await self.cache.invalidate_all()
        return await self.aggregator.build_snapshot(self.login, include_traffic=include_traffic)

    # --- Single resources ---

    async def get_profile(self) -> UserProfile:
        return await self.fetchers.get_profile(self.login)

    async def get_repositories(self) -> Tuple[Repository, ...]:
        return await self.fetchers.get_repositories(self.login)

    async def get_events(self) -> Tuple[Event, ...]:
        return await self.fetchers.get_events(self.login)

    async def get_activity(self) -> ActivityStats:
        return ActivityStats.from_events(await self.get_events())

    async def get_languages(self, full_name: str) -> LanguageBreakdown:
        return await self.fetchers.get_languages(RepoFullName(full_name))

    async def get_traffic(self, full_name: str) -> TrafficSummary:
        return await self.fetchers.get_traffic(RepoFullName(full_name))

    async def get_rate_limit(self) -> RateLimitState:
        """Queries ``GET /rate_limit`` and updates the tracker.

        The endpoint does not count against the quota, so it bypasses the
        rate gate and is attempted once.
        """
        response = await self.http_client.get(RATE_LIMIT_ENDPOINT)
        if not isinstance(response.data, dict):
            raise ParseError("Expected an object from /rate_limit", endpoint=RATE_LIMIT_ENDPOINT)
        state = await self.rate_limiter.update_from_payload(response.data)
        if state is None:
            raise ParseError("No core rate limit in /rate_limit response", endpoint=RATE_LIMIT_ENDPOINT)
        return state

    # --- Repository search ---

    async def search_repositories(
        self,
        query: str = "",
        language: Optional[str] = None,
        min_stars: Optional[int] = None,
        max_stars: Optional[int] = None,
        sort: Optional[str] = None,
        descending: bool = False,
    ) -> Tuple[Repository, ...]:
        """Filters the (cached) repository list locally; costs no extra requests once cached.

        Args:
            query: Case-insensitive text matched against name, description and topics.
            language: Primary language, compared case-insensitively.
            min_stars: Inclusive lower bound on stargazers.
            max_stars: Inclusive upper bound on stargazers.
            sort: One of ``stars``, ``updated`` or ``created``; None keeps upstream order.
            descending: Reverse the sort order.

        Raises:
            ValueError: If ``sort`` is not a known field.
        """
        if sort is not None and sort not in SORT_FIELDS:
            raise ValueError(f"Unknown sort field {sort!r}; expected one of {', '.join(SORT_FIELDS)}")
        repositories = await self.get_repositories()
        term = query.strip().lower()
        matches = [
            repo for repo in repositories
            if (not term or _matches_text(repo, term))
            and (language is None or (repo.language or "").lower() == language.lower())
            and (min_stars is None or repo.stargazers_count >= min_stars)
            and (max_stars is None or repo.stargazers_count <= max_stars)
        ]
        if sort is not None:
            matches.sort(key=SORT_FIELDS[sort], reverse=descending)
        logger.debug(f"Repository search {query!r}: {len(matches)}/{len(repositories)} matched")
        return tuple(matches)

    # --- Cache maintenance ---

    async def cache_stats(self) -> CacheStats:
        entries, expired = await self.cache.occupancy()
        return CacheStats(entries=entries, expired=expired, in_flight=len(self.fetchers.coalescer))

    async def prune_cache(self) -> int:
        """Deletes expired entries. Returns how many were removed."""
        removed = await self.cache.sweep()
        if removed:
            logger.info(f"Pruned {removed} expired cache entries.")
        return removed


def _matches_text(repo: Repository, term: str) -> bool:
    if term in repo.name.lower():
        return True
    if repo.description and term in repo.description.lower():
        return True
    return any(term in topic.lower() for topic in repo.topics)
