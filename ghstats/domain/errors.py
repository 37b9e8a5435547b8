"""Error taxonomy for fetching GitHub resources.

Every failure that leaves the fetcher boundary is one of these types, so the
aggregator and the presentation layer never have to reason about raw
transport exceptions or HTTP status codes.
"""

from typing import List, Optional

from .models.common import FetchAttempt


class GhStatsError(Exception):
    """Base class for all ghstats errors."""


class ConfigurationError(GhStatsError):
    """Raised when required configuration (e.g. the username) is missing."""


class FetchError(GhStatsError):
    """A terminal failure to fetch a resource.

    Attributes:
        status_code: HTTP status of the last attempt, if a response arrived.
        endpoint: The API path that was requested.
        attempts: History of attempts made by the retry policy.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint
        self.attempts: List[FetchAttempt] = []

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.endpoint:
            parts.append(f"endpoint={self.endpoint}")
        if len(self.attempts) > 1:
            parts.append(f"attempts={len(self.attempts)}")
        return " ".join(parts)


class NetworkError(FetchError):
    """Timeout, DNS or connection failure."""

    retryable = True

    def __init__(self, message: str, endpoint: Optional[str] = None, timeout: bool = False):
        super().__init__(message, status_code=None, endpoint=endpoint)
        self.timeout = timeout


class RateLimited(FetchError):
    """Quota exhausted (429, or 403 with no remaining quota)."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = 429,
        endpoint: Optional[str] = None,
        reset_at: Optional[float] = None,
        retry_after: float = 0.0,
    ):
        super().__init__(message, status_code=status_code, endpoint=endpoint)
        self.reset_at = reset_at
        self.retry_after = retry_after


class ServerError(FetchError):
    """5xx response from GitHub."""

    retryable = True


class ClientError(FetchError):
    """4xx response other than rate limiting. Retrying cannot fix it."""


class ParseError(FetchError):
    """Response body did not have the expected shape."""
