"""Main entry point for the ghstats application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, Dict, Optional

import httpx
import typer

from ghstats import __version__

# --- Core Layer ---
from ghstats.core.command_handler import CommandHandler
from ghstats.core.services.aggregator import StatisticsAggregator
from ghstats.core.services.stats_client import GitHubStatsClient
from ghstats.domain.errors import ConfigurationError
from ghstats.domain.models.common import Login

# --- Infrastructure Layer ---
from ghstats.infrastructure.cache.caching_service import CachingServiceImpl
from ghstats.infrastructure.cli.display import ConsoleDisplay
from ghstats.infrastructure.config.settings import ClientSettings, load_configuration
from ghstats.infrastructure.github.fetchers import FetcherSet
from ghstats.infrastructure.github.http_client import GitHubHttpClient
from ghstats.infrastructure.github.resources import build_descriptors
from ghstats.infrastructure.monitoring.logger_setup import setup_logging
from ghstats.infrastructure.resilience.api_retry import ApiRetryService
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter
from ghstats.infrastructure.resilience.request_coalescer import RequestCoalescer

logger = logging.getLogger(__name__)


# --- Dependency Injection Container (Manual) ---

def create_dependencies(
    settings: ClientSettings,
    ui: Optional[ConsoleDisplay] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root.

    Args:
        settings: Resolved client settings.
        ui: Display to use; a fresh ConsoleDisplay if None.
        transport: Optional httpx transport, e.g. a MockTransport in tests.
    """
    logger.debug("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {}

    dependencies['ui'] = ui or ConsoleDisplay()
    dependencies['cache_service'] = CachingServiceImpl(max_entries=settings.cache_max_entries)
    dependencies['rate_limiter'] = RateLimiter(max_wait=settings.rate_limit_max_wait)
    dependencies['http_client'] = GitHubHttpClient(
        rate_limiter=dependencies['rate_limiter'],
        token=settings.token,
        base_url=settings.base_url,
        timeout=settings.timeout,
        transport=transport,
    )
    dependencies['api_retry_service'] = ApiRetryService.from_policy(
        dependencies['rate_limiter'],
        settings.backoff_policy(),
    )
    dependencies['fetchers'] = FetcherSet(
        descriptors=build_descriptors(settings.ttls),
        http_client=dependencies['http_client'],
        retry_service=dependencies['api_retry_service'],
        cache=dependencies['cache_service'],
        coalescer=RequestCoalescer(),
        per_page=settings.per_page,
        max_pages=settings.max_pages,
    )
    dependencies['aggregator'] = StatisticsAggregator(
        fetchers=dependencies['fetchers'],
        rate_limiter=dependencies['rate_limiter'],
        max_concurrency=settings.max_concurrency,
        include_traffic=settings.include_traffic,
        include_events=settings.include_events,
    )
    dependencies['client'] = GitHubStatsClient(
        login=Login(settings.username),
        aggregator=dependencies['aggregator'],
        fetchers=dependencies['fetchers'],
        cache=dependencies['cache_service'],
        rate_limiter=dependencies['rate_limiter'],
        http_client=dependencies['http_client'],
    )
    dependencies['command_handler'] = CommandHandler(
        client=dependencies['client'],
        ui=dependencies['ui'],
        include_traffic=settings.include_traffic,
        poll_interval=settings.poll_interval,
    )
    logger.debug("All dependencies initialized successfully.")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="ghstats",
    help="ghstats: GitHub profile and repository statistics with caching, retries and rate-limit awareness.",
    add_completion=False,
)

_state: Dict[str, Any] = {}


def _load_settings(username: Optional[str]) -> ClientSettings:
    """Loads configuration and logging, exiting with an error panel when incomplete."""
    load_configuration()
    try:
        settings = ClientSettings.from_config(username=username)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        ConsoleDisplay().display_error(str(e))
        raise typer.Exit(code=2)
    setup_logging(log_level=settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    return settings


# --- Helper for Running Async Commands ---
def run_async(command: Callable[[CommandHandler], Awaitable[Any]]) -> Any:
    """Builds the dependencies, runs ``command`` on a fresh event loop and closes the client."""
    settings = _load_settings(_state.get('username'))
    dependencies = create_dependencies(settings)
    handler: CommandHandler = dependencies['command_handler']
    client: GitHubStatsClient = dependencies['client']

    async def _run() -> Any:
        async with client:
            return await command(handler)

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")
        return None


def _exit_on_failure(ok: Optional[bool]) -> None:
    if ok is False:
        raise typer.Exit(code=1)


# --- CLI Commands ---

NoTrafficOption = Annotated[
    bool,
    typer.Option("--no-traffic", help="Skip per-repository traffic (needs push access).")
]


@app.command()
def stats(
    refresh: Annotated[bool, typer.Option("--refresh", "-r", help="Ignore cached data and fetch everything again.")] = False,
    no_traffic: NoTrafficOption = False,
):
    """Show profile, repository, language and traffic statistics."""
    include_traffic = False if no_traffic else None
    _exit_on_failure(run_async(lambda h: h.handle_stats(refresh=refresh, include_traffic=include_traffic)))


@app.command(name="refresh")
def refresh_command(no_traffic: NoTrafficOption = False):
    """Invalidate the cache and fetch fresh statistics."""
    include_traffic = False if no_traffic else None
    _exit_on_failure(run_async(lambda h: h.handle_refresh(include_traffic=include_traffic)))


@app.command(name="rate-limit")
def rate_limit_command():
    """Show the current GitHub API quota."""
    _exit_on_failure(run_async(lambda h: h.handle_rate_limit()))


@app.command()
def activity():
    """Show recent public activity."""
    _exit_on_failure(run_async(lambda h: h.handle_activity()))


class SortField(str, Enum):
    stars = "stars"
    updated = "updated"
    created = "created"


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Text matched against name, description and topics.")] = "",
    language: Annotated[Optional[str], typer.Option("--language", "-l", help="Primary language.")] = None,
    min_stars: Annotated[Optional[int], typer.Option("--min-stars", min=0)] = None,
    max_stars: Annotated[Optional[int], typer.Option("--max-stars", min=0)] = None,
    sort: Annotated[Optional[SortField], typer.Option("--sort", "-s", help="Sort field.")] = None,
    desc: Annotated[bool, typer.Option("--desc", help="Sort in descending order.")] = False,
):
    """Search your repositories by text, language and stars."""
    sort_field = sort.value if sort is not None else None
    _exit_on_failure(run_async(lambda h: h.handle_search(
        query, language=language, min_stars=min_stars, max_stars=max_stars, sort=sort_field, descending=desc,
    )))


@app.command()
def watch(
    interval: Annotated[
        Optional[int],
        typer.Option("--interval", "-n", min=1, help="Seconds between polls. Defaults to watch.interval (300).")
    ] = None,
    count: Annotated[Optional[int], typer.Option("--count", min=1, help="Stop after this many polls.")] = None,
):
    """Poll statistics periodically until interrupted."""
    run_async(lambda h: h.handle_watch(interval=interval, iterations=count))


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ghstats {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    user: Annotated[Optional[str], typer.Option("--user", "-u", help="GitHub login; overrides github.username.")] = None,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show the version and exit.")
    ] = None,
):
    """GitHub statistics for one user."""
    _state['username'] = user


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
