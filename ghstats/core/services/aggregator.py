"""Statistics Aggregator: assembles one snapshot from many fetches.

The profile and the repository list gate everything else and must succeed.
Per-repository languages and traffic are then fetched concurrently, bounded
by a semaphore; each failure is recorded on the snapshot instead of aborting
the whole aggregation.
"""

import asyncio
import logging
import time
from types import MappingProxyType
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from ghstats.domain.errors import FetchError
from ghstats.domain.models.common import CacheKey, Login, RepoFullName, ResourceKind
from ghstats.domain.models.github import LanguageBreakdown, Repository, TrafficSummary
from ghstats.domain.models.snapshot import ActivityStats, StatisticsSnapshot, summarize_languages
from ghstats.infrastructure.github.fetchers import FetcherSet
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 6


class StatisticsAggregator:
    """Builds StatisticsSnapshot instances for one user."""

    def __init__(
        self,
        fetchers: FetcherSet,
        rate_limiter: RateLimiter,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        include_traffic: bool = True,
        include_events: bool = True,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.fetchers = fetchers
        self.rate_limiter = rate_limiter
        self.max_concurrency = max_concurrency
        self.include_traffic = include_traffic
        self.include_events = include_events

    async def build_snapshot(self, login: Login, include_traffic: Optional[bool] = None) -> StatisticsSnapshot:
        """Fetches everything needed and merges it into a snapshot.

        Raises:
            FetchError: If the profile or the repository list cannot be fetched.
        """
        with_traffic = self.include_traffic if include_traffic is None else include_traffic
        failures: Dict[CacheKey, str] = {}

        events_task = None
        if self.include_events:
            events_task = asyncio.ensure_future(self.fetchers.get_events(login))

        try:
            user, repositories = await asyncio.gather(
                self.fetchers.get_profile(login),
                self.fetchers.get_repositories(login),
            )
        except FetchError:
            if events_task is not None:
                # The events fetch keeps running and warms the cache; only our interest is dropped.
                events_task.add_done_callback(_consume_exception)
            raise

        semaphore = asyncio.Semaphore(self.max_concurrency)
        languages: Dict[RepoFullName, LanguageBreakdown] = {}
        traffic: Dict[RepoFullName, TrafficSummary] = {}

        async def bounded(key: CacheKey, call: Callable[[], Awaitable[T]]) -> Tuple[CacheKey, Optional[T]]:
            async with semaphore:
                try:
                    return key, await call()
                except FetchError as e:
                    logger.warning(f"Failed to fetch {key}: {e}")
                    failures[key] = str(e)
                    return key, None

        jobs = []
        for repo in repositories:
            jobs.append(bounded(CacheKey(ResourceKind.LANGUAGES, repo.full_name), _bind(self.fetchers.get_languages, repo.full_name)))
            if with_traffic:
                jobs.append(bounded(CacheKey(ResourceKind.TRAFFIC, repo.full_name), _bind(self.fetchers.get_traffic, repo.full_name)))

        for key, value in await asyncio.gather(*jobs):
            if value is None:
                continue
            if key.kind is ResourceKind.LANGUAGES:
                languages[RepoFullName(key.resource_id)] = value
            else:
                traffic[RepoFullName(key.resource_id)] = value

        activity = None
        if events_task is not None:
            try:
                activity = ActivityStats.from_events(await events_task)
            except FetchError as e:
                key = CacheKey(ResourceKind.EVENTS, login)
                logger.warning(f"Failed to fetch {key}: {e}")
                failures[key] = str(e)

        # Keep repository order for the per-repository maps too.
        ordered_languages = {r.full_name: languages[r.full_name] for r in repositories if r.full_name in languages}
        ordered_traffic = {r.full_name: traffic[r.full_name] for r in repositories if r.full_name in traffic}

        snapshot = StatisticsSnapshot(
            user=user,
            repositories=tuple(repositories),
            total_stars=_sum_field(repositories, "stargazers_count"),
            total_forks=_sum_field(repositories, "forks_count"),
            languages=MappingProxyType(ordered_languages),
            traffic=MappingProxyType(ordered_traffic),
            language_totals=summarize_languages(ordered_languages),
            activity=activity,
            rate_limit=self.rate_limiter.state,
            fetched_at=time.time(),
            partial=bool(failures),
            failed_resources=frozenset(failures),
            errors=MappingProxyType(dict(failures)),
        )
        logger.info(
            f"Snapshot for {login}: {len(repositories)} repos, {snapshot.total_stars} stars, "
            f"partial={snapshot.partial} ({len(failures)} failed)"
        )
        return snapshot


def _bind(func: Callable[[RepoFullName], Awaitable[T]], full_name: RepoFullName) -> Callable[[], Awaitable[T]]:
    return lambda: func(full_name)


def _sum_field(repositories: Tuple[Repository, ...], name: str) -> int:
    return sum(getattr(repo, name) or 0 for repo in repositories)


def _consume_exception(task: "asyncio.Future") -> None:
    if not task.cancelled():
        task.exception()
