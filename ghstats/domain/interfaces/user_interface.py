"""Interface for presenting statistics to the user.

Defines the contract for displaying snapshots, rate-limit state, activity,
errors and informational messages, allowing different UI implementations
(e.g., console, web).
"""

import abc
from typing import Any, Sequence

# Import relevant domain models
from ghstats.domain.models.common import CacheStats, RateLimitState
from ghstats.domain.models.github import Repository
from ghstats.domain.models.snapshot import ActivityStats, StatisticsSnapshot


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_snapshot(self, snapshot: StatisticsSnapshot, **kwargs: Any) -> None:
        """Renders a full or partial statistics snapshot.

        Partial snapshots must show which resources are missing.
        """
        pass

    @abc.abstractmethod
    def display_rate_limit(self, state: RateLimitState, **kwargs: Any) -> None:
        """Renders the current quota window."""
        pass

    @abc.abstractmethod
    def display_activity(self, activity: ActivityStats, **kwargs: Any) -> None:
        """Renders recent activity statistics."""
        pass

    @abc.abstractmethod
    def display_repositories(self, repositories: Sequence[Repository], **kwargs: Any) -> None:
        """Renders a list of repositories, e.g. search results."""
        pass

    @abc.abstractmethod
    def display_cache_stats(self, stats: CacheStats, **kwargs: Any) -> None:
        """Renders cache and in-flight request occupancy."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting (e.g. a retry hint).
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass
