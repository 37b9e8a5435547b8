"""Defines common Value Objects used across different domain contexts.

These objects represent simple values such as resource kinds, cache keys
and rate-limit state, ensuring consistency and type safety between the
fetchers, the cache and the rate tracker.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NewType, Optional, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
Login = NewType("Login", str)                # GitHub account login, e.g. 'octocat'
RepoFullName = NewType("RepoFullName", str)  # 'owner/name'
Endpoint = NewType("Endpoint", str)          # API path relative to the base URL

# === Caching Context ===

class ResourceKind(str, enum.Enum):
    """Kinds of upstream resources, each with its own freshness requirement."""
    PROFILE = "profile"
    REPOSITORIES = "repositories"
    EVENTS = "events"
    LANGUAGES = "languages"
    TRAFFIC = "traffic"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CacheKey:
    """Composite cache key: resource kind plus an optional identifier.

    The identifier (a login or a repository full name) keeps data for
    different repositories from colliding under the same kind.
    """
    kind: ResourceKind
    resource_id: Optional[str] = None

    def __str__(self) -> str:
        if self.resource_id is None:
            return self.kind.value
        return f"{self.kind.value}:{self.resource_id}"


# === Rate Limiting Context ===

@dataclass(frozen=True)
class RateLimitState:
    """Snapshot of the remote quota window as last reported by GitHub."""
    limit: int
    remaining: int
    reset_at: float  # Unix timestamp when the window resets
    used: int = 0

    @property
    def reset_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)


@dataclass(frozen=True)
class CacheStats:
    """Occupancy of the response cache and the in-flight registry."""
    entries: int
    expired: int
    in_flight: int

    @property
    def fresh(self) -> int:
        return self.entries - self.expired


@dataclass(frozen=True)
class RateDecision:
    """Outcome of asking the rate tracker whether a request may go out now."""
    allow: bool
    retry_after: float = 0.0


# === Resilience Context ===

@dataclass(frozen=True)
class FetchAttempt:
    """One attempt made by the retry policy. Kept only for diagnostics."""
    attempt_number: int
    delay_before_attempt: float
    status_code: Optional[int] = None
    error: Optional[str] = field(default=None, compare=False)


class BackoffPolicy(TypedDict):
    """Value Object representing retry backoff configuration."""
    max_retries: int
    initial_delay: float
    factor: float
    max_delay: float
    jitter: float
