import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ghstats.domain.interfaces.user_interface import UserInterface
from ghstats.domain.models.common import CacheStats, RateLimitState, ResourceKind
from ghstats.domain.models.github import Repository
from ghstats.domain.models.snapshot import ActivityStats, StatisticsSnapshot

logger = logging.getLogger(__name__)

MAX_LANGUAGE_ROWS = 10
MISSING = "[dim red]unavailable[/dim red]"


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self):
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, value):
        self._console = value

    def display_snapshot(self, snapshot: StatisticsSnapshot, **kwargs: Any) -> None:
        """Displays profile, repository, language and traffic tables.

        Args:
            snapshot: The snapshot to render.
            **kwargs: Additional arguments including:
                - show_traffic: Whether to render the traffic column (default: True)
        """
        show_traffic = kwargs.get("show_traffic", True)
        user = snapshot.user
        fetched = datetime.fromtimestamp(snapshot.fetched_at).strftime("%H:%M:%S")
        logger.debug(f"display_snapshot called: repos={len(snapshot.repositories)}, partial={snapshot.partial}")

        # Profile header
        header = Table(show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        header.add_column("Field", style="bold cyan")
        header.add_column("Value", style="white")
        header.add_row("User", f"{user.name or user.login} (@{user.login})")
        if user.bio:
            header.add_row("Bio", user.bio)
        header.add_row("Public repos", str(user.public_repos))
        header.add_row("Followers", f"{user.followers} · following {user.following}")
        header.add_row("Stars", str(snapshot.total_stars))
        header.add_row("Forks", str(snapshot.total_forks))
        header.add_row("Fetched", fetched)
        self.console.print(Panel(header, title="[bold cyan]GitHub Statistics[/bold cyan]", box=SIMPLE, border_style="cyan"))

        # Repositories, in upstream order
        repos = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        repos.add_column("Repository", style="bold white")
        repos.add_column("★", justify="right")
        repos.add_column("Forks", justify="right")
        repos.add_column("Top language")
        if show_traffic:
            repos.add_column("Views (14d)", justify="right")
            repos.add_column("Clones (14d)", justify="right")
        for repo in snapshot.repositories:
            breakdown = snapshot.languages.get(repo.full_name)
            if breakdown is None:
                top_language = MISSING
            elif breakdown.bytes_by_language:
                top_language = max(breakdown.bytes_by_language.items(), key=lambda item: item[1])[0]
            else:
                top_language = "-"
            row = [repo.full_name, str(repo.stargazers_count), str(repo.forks_count), top_language]
            if show_traffic:
                traffic = snapshot.traffic.get(repo.full_name)
                if traffic is None:
                    row.extend([MISSING, MISSING])
                else:
                    row.extend([str(traffic.views.count), str(traffic.clones.count)])
            repos.add_row(*row)
        self.console.print(repos)

        # Language totals
        if snapshot.language_totals:
            languages = Table(show_header=True, box=SIMPLE, border_style="cyan", padding=(0, 1))
            languages.add_column("Language", style="bold")
            languages.add_column("Share", justify="right")
            languages.add_column("Repos", justify="right")
            for stat in snapshot.language_totals[:MAX_LANGUAGE_ROWS]:
                languages.add_row(stat.language, f"{stat.percentage:.1f}%", str(len(stat.repos)))
            self.console.print(languages)

        if snapshot.rate_limit is not None:
            self.display_rate_limit(snapshot.rate_limit, compact=True)

        if snapshot.partial:
            failed_kinds = sorted({str(k.kind) for k in snapshot.failed_resources})
            traffic_only = all(k.kind is ResourceKind.TRAFFIC for k in snapshot.failed_resources)
            message = f"{len(snapshot.failed_resources)} resource(s) could not be fetched ({', '.join(failed_kinds)})."
            if traffic_only:
                message += " Traffic needs a token with push access to each repository."
            self.display_warning(message)

    def display_rate_limit(self, state: RateLimitState, **kwargs: Any) -> None:
        """Displays the quota window, as a single line when ``compact`` is set."""
        reset = state.reset_datetime.astimezone().strftime("%H:%M:%S")
        style = "red" if state.remaining == 0 else ("yellow" if state.remaining < state.limit * 0.1 else "green")
        line = f"[{style}]{state.remaining}/{state.limit}[/{style}] requests remaining · resets at {reset}"
        if kwargs.get("compact"):
            self.console.print(Text.from_markup(f"[dim]Rate limit:[/dim] {line}"))
            return
        self.console.print(Panel(Text.from_markup(line), title="[bold cyan]Rate Limit[/bold cyan]", box=ROUNDED, border_style="cyan"))

    def display_activity(self, activity: ActivityStats, **kwargs: Any) -> None:
        """Displays event type counts and the most recent events."""
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Event type", style="bold")
        table.add_column("Count", justify="right")
        for event_type, count in sorted(activity.event_types.items(), key=lambda item: -item[1]):
            table.add_row(event_type, str(count))
        self.console.print(Panel(table, title=f"[bold cyan]Activity ({activity.total_events} events)[/bold cyan]", box=SIMPLE))

        if activity.recent:
            recent = Table(show_header=True, box=SIMPLE, padding=(0, 1))
            recent.add_column("When", style="dim")
            recent.add_column("Type")
            recent.add_column("Repository")
            for event in activity.recent:
                recent.add_row(event.created_at, event.type, event.repo_name or "-")
            self.console.print(recent)

    def display_repositories(self, repositories: Sequence[Repository], **kwargs: Any) -> None:
        """Displays repositories as a table.

        Args:
            repositories: Repositories to list, in display order.
            **kwargs: ``title`` for the table (default: "Repositories").
        """
        title = kwargs.get("title", "Repositories")
        if not repositories:
            self.display_info(f"{title}: no matching repositories.")
            return
        table = Table(title=f"[bold cyan]{title}[/bold cyan]", show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Repository", style="bold white")
        table.add_column("★", justify="right")
        table.add_column("Language")
        table.add_column("Updated", style="dim")
        table.add_column("Description")
        for repo in repositories:
            updated = (repo.updated_at or "-")[:10]
            table.add_row(repo.full_name, str(repo.stargazers_count), repo.language or "-", updated, repo.description or "")
        self.console.print(table)

    def display_cache_stats(self, stats: CacheStats, **kwargs: Any) -> None:
        """Displays cache occupancy on a single dim line."""
        self.console.print(Text.from_markup(
            f"[dim]Cache:[/dim] {stats.fresh} fresh · {stats.expired} expired · {stats.in_flight} in flight"
        ))

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
            **kwargs: ``hint`` adds a dim second line, e.g. how to retry.
        """
        text = Text(error_message, style="white")
        hint = kwargs.get("hint")
        if hint:
            text.append(f"\n{hint}", style="dim")
        panel = Panel(
            text,
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message."""
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message."""
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)
