import asyncio
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest
from typer.testing import CliRunner

from ghstats.core.services.aggregator import StatisticsAggregator
from ghstats.core.services.stats_client import GitHubStatsClient
from ghstats.domain.models.common import Login
from ghstats.infrastructure.cache.caching_service import CachingServiceImpl
from ghstats.infrastructure.config.settings import clear_test_config
from ghstats.infrastructure.github.fetchers import FetcherSet
from ghstats.infrastructure.github.http_client import GitHubHttpClient
from ghstats.infrastructure.github.resources import build_descriptors
from ghstats.infrastructure.resilience.api_retry import ApiRetryService
from ghstats.infrastructure.resilience.rate_limiter import RateLimiter

BASE_URL = "https://api.github.test"
START_TIME = 1_700_000_000.0

Handler = Callable[[httpx.Request], httpx.Response]


class FakeClock:
    """Clock plus async sleep; sleeping advances time instead of waiting."""

    def __init__(self, start: float = START_TIME):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


# --- Payload builders ---

def user_payload(login: str = "octocat", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "login": login,
        "id": 583231,
        "name": "The Octocat",
        "bio": None,
        "avatar_url": f"https://avatars.example/{login}",
        "html_url": f"https://github.com/{login}",
        "public_repos": 5,
        "followers": 120,
        "following": 9,
        "created_at": "2011-01-25T18:44:36Z",
    }
    payload.update(overrides)
    return payload


def repo_payload(owner: str, name: str, stars: int = 1, forks: int = 0, **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": abs(hash((owner, name))) % 10_000_000,
        "name": name,
        "full_name": f"{owner}/{name}",
        "description": None,
        "html_url": f"https://github.com/{owner}/{name}",
        "language": "Python",
        "stargazers_count": stars,
        "forks_count": forks,
        "fork": False,
        "archived": False,
        "topics": [],
        "pushed_at": "2024-05-01T10:00:00Z",
        "created_at": "2020-01-01T00:00:00Z",
        "updated_at": "2024-05-01T10:00:00Z",
    }
    payload.update(overrides)
    return payload


def event_payload(event_id: str, event_type: str = "PushEvent", repo: str = "octocat/repo-1",
                  created_at: str = "2024-05-01T10:00:00Z") -> Dict[str, Any]:
    return {"id": event_id, "type": event_type, "repo": {"name": repo}, "created_at": created_at}


def traffic_payloads(views: int = 10, clones: int = 2) -> Dict[str, Any]:
    return {
        "views": {"count": views, "uniques": views // 2, "views": []},
        "clones": {"count": clones, "uniques": 1, "clones": []},
        "popular/referrers": [{"referrer": "github.com", "count": 4, "uniques": 2}],
        "popular/paths": [{"path": "/octocat/repo-1", "title": "repo-1", "count": 3, "uniques": 1}],
    }


def rate_headers(remaining: int = 4999, limit: int = 5000, reset: float = START_TIME + 3600) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(int(reset)),
        "X-RateLimit-Used": str(limit - remaining),
    }


class FakeGitHub:
    """In-memory GitHub API behind an httpx.MockTransport.

    Routes map a request path to a JSON payload, a list of responses served
    in order (the last one repeats), or a callable producing a response.
    Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: Dict[str, Union[Handler, List[httpx.Response]]] = {}
        self.calls: Counter = Counter()
        self.requests: List[httpx.Request] = []

    def json(self, path: str, payload: Any, status: int = 200, headers: Optional[Dict[str, str]] = None) -> None:
        self.routes[path] = [httpx.Response(status, json=payload, headers=rate_headers() if headers is None else headers)]

    def sequence(self, path: str, *responses: httpx.Response) -> None:
        self.routes[path] = list(responses)

    def handler(self, path: str, func: Handler) -> None:
        self.routes[path] = func

    def seed_user(self, login: str = "octocat", repos: int = 5, events: int = 3) -> List[str]:
        """Registers profile, repositories, events, languages and traffic. Returns full names."""
        names = [f"{login}/repo-{i}" for i in range(1, repos + 1)]
        self.json(f"/users/{login}", user_payload(login, public_repos=repos), headers={**rate_headers(), "ETag": '"profile-v1"'})
        self.json(
            f"/users/{login}/repos",
            [repo_payload(login, name.split("/")[1], stars=i, forks=i % 2) for i, name in enumerate(names, start=1)],
        )
        self.json(
            f"/users/{login}/events",
            [event_payload(str(i), "PushEvent" if i % 2 else "WatchEvent", names[0] if names else f"{login}/x")
             for i in range(events)],
        )
        for name in names:
            self.json(f"/repos/{name}/languages", {"Python": 1000, "Shell": 100})
            for part, payload in traffic_payloads().items():
                self.json(f"/repos/{name}/traffic/{part}", payload)
        return names

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls[path] += 1
        self.requests.append(request)
        # Yield so concurrent callers overlap the way real network I/O does.
        await asyncio.sleep(0)
        route = self.routes.get(path)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"}, headers=rate_headers())
        if callable(route):
            return route(request)
        response = route.pop(0) if len(route) > 1 else route[0]
        # Responses are single-use; hand out a copy of the repeating one.
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def build_client(
    github: FakeGitHub,
    clock: FakeClock,
    login: str = "octocat",
    token: Optional[str] = "test-token",
    max_retries: int = 3,
    max_concurrency: int = 6,
    include_traffic: bool = True,
    include_events: bool = True,
    per_page: int = 100,
    max_pages: int = 10,
    max_wait: float = 60.0,
    event_listener: Optional[Callable[[Any], None]] = None,
) -> GitHubStatsClient:
    """Assembles a full client on fake time and a fake GitHub, the same way main.create_dependencies does."""
    cache = CachingServiceImpl(clock=clock)
    limiter = RateLimiter(max_wait=max_wait, clock=clock, sleep=clock.sleep)
    http_client = GitHubHttpClient(limiter, token=token, base_url=BASE_URL, transport=github.transport())
    # rng=0.5 cancels the jitter so delays are exact
    retry = ApiRetryService(limiter, max_retries=max_retries, event_listener=event_listener, sleep=clock.sleep, rng=lambda: 0.5)
    fetchers = FetcherSet(build_descriptors(), http_client, retry, cache, per_page=per_page, max_pages=max_pages)
    aggregator = StatisticsAggregator(
        fetchers, limiter, max_concurrency=max_concurrency, include_traffic=include_traffic, include_events=include_events,
    )
    return GitHubStatsClient(Login(login), aggregator, fetchers, cache, limiter, http_client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def make_client(github: FakeGitHub, clock: FakeClock):
    """Factory fixture: ``make_client(**options)`` builds a client against the fake API."""
    def factory(**options: Any) -> GitHubStatsClient:
        return build_client(github, clock, **options)
    return factory


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps a developer's environment and config overrides out of the tests."""
    for name in ("GHSTATS_GITHUB_USERNAME", "GITHUB_USERNAME", "GHSTATS_GITHUB_TOKEN", "GITHUB_TOKEN", "GITHUB_USER"):
        monkeypatch.delenv(name, raising=False)
    clear_test_config()
    yield
    clear_test_config()
