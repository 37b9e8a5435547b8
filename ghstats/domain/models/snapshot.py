"""Aggregate statistics models.

The ``StatisticsSnapshot`` is built once per facade call and handed to the
caller; nothing mutates it afterwards.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .common import CacheKey, RateLimitState, RepoFullName
from .github import Event, LanguageBreakdown, Repository, TrafficSummary, UserProfile

RECENT_ACTIVITY_LIMIT = 10


@dataclass(frozen=True)
class LanguageStat:
    """Share of one language across all repositories."""
    language: str
    bytes: int
    percentage: float
    repos: Tuple[str, ...]


@dataclass(frozen=True)
class ActivityStats:
    """Summary of recent public events."""
    total_events: int
    event_types: Mapping[str, int]
    commit_frequency: Mapping[str, int]  # YYYY-MM-DD -> number of push events
    recent: Tuple[Event, ...]

    @classmethod
    def from_events(cls, events: Iterable[Event]) -> "ActivityStats":
        events = tuple(events)
        event_types = Counter(e.type for e in events)
        pushes = Counter(e.date for e in events if e.type == "PushEvent")
        return cls(
            total_events=len(events),
            event_types=MappingProxyType(dict(event_types)),
            commit_frequency=MappingProxyType(dict(pushes)),
            recent=events[:RECENT_ACTIVITY_LIMIT],
        )


def summarize_languages(languages: Mapping[RepoFullName, LanguageBreakdown]) -> Tuple[LanguageStat, ...]:
    """Combine per-repository language bytes into overall shares, largest first."""
    totals: Dict[str, int] = {}
    repos: Dict[str, List[str]] = {}
    for full_name, breakdown in languages.items():
        for language, size in breakdown.bytes_by_language.items():
            totals[language] = totals.get(language, 0) + size
            repos.setdefault(language, []).append(full_name)

    grand_total = sum(totals.values())
    stats = [
        LanguageStat(
            language=language,
            bytes=size,
            percentage=(size / grand_total * 100) if grand_total > 0 else 0.0,
            repos=tuple(dict.fromkeys(repos[language])),
        )
        for language, size in totals.items()
    ]
    stats.sort(key=lambda s: (-s.bytes, s.language))
    return tuple(stats)


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Composite statistics for one user.

    ``partial`` is set when any non-gating resource failed; the failed keys
    are listed in ``failed_resources`` with a message per key in ``errors``.
    """
    user: UserProfile
    repositories: Tuple[Repository, ...]
    total_stars: int
    total_forks: int
    languages: Mapping[RepoFullName, LanguageBreakdown]
    traffic: Mapping[RepoFullName, TrafficSummary]
    language_totals: Tuple[LanguageStat, ...] = ()
    activity: Optional[ActivityStats] = None
    rate_limit: Optional[RateLimitState] = None
    fetched_at: float = field(default_factory=time.time)
    partial: bool = False
    failed_resources: FrozenSet[CacheKey] = frozenset()
    errors: Mapping[CacheKey, str] = field(default_factory=lambda: MappingProxyType({}))

    def failed_for(self, full_name: str) -> FrozenSet[CacheKey]:
        """Keys that failed for a particular repository."""
        return frozenset(k for k in self.failed_resources if k.resource_id == full_name)
