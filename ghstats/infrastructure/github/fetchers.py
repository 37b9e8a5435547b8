"""Resource fetchers: one per resource kind.

Each fetcher maps a resource identifier to a typed value. A fresh cache hit
returns without touching the network; otherwise the request runs under the
retry policy (which gates on the rate tracker), the body is parsed into its
domain record and stored with the kind's TTL. Failures are never cached, so
the next call tries again.
"""

import logging
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from ghstats.domain.errors import ParseError
from ghstats.domain.interfaces.cache import CacheService
from ghstats.domain.models.common import CacheKey, Login, RepoFullName, ResourceKind
from ghstats.domain.models.github import Event, LanguageBreakdown, Repository, TrafficSummary, UserProfile
from ghstats.infrastructure.github.http_client import ApiResponse, GitHubHttpClient
from ghstats.infrastructure.github.resources import TRAFFIC_PARTS, ResourceDescriptor
from ghstats.infrastructure.resilience.api_retry import ApiRetryService
from ghstats.infrastructure.resilience.request_coalescer import RequestCoalescer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PER_PAGE = 100
DEFAULT_MAX_PAGES = 10
EVENTS_MAX_PAGES = 3  # GitHub serves at most 300 events


def _as_list(data: Any) -> List[Any]:
    if not isinstance(data, list):
        raise ParseError(f"Expected a list, got {type(data).__name__}")
    return data


class ResourceFetcher(Generic[T]):
    """Cache-aware, coalescing fetcher for one resource kind."""

    kind: ResourceKind
    id_param = "login"
    uses_etag = False
    list_params: Mapping[str, Any] = {}
    page_cap: Optional[int] = None

    def __init__(
        self,
        descriptor: ResourceDescriptor,
        http_client: GitHubHttpClient,
        retry_service: ApiRetryService,
        cache: CacheService,
        coalescer: RequestCoalescer,
        per_page: int = DEFAULT_PER_PAGE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        if descriptor.kind != self.kind:
            raise ValueError(f"{type(self).__name__} needs a {self.kind} descriptor, got {descriptor.kind}")
        self.descriptor = descriptor
        self.http_client = http_client
        self.retry_service = retry_service
        self.cache = cache
        self.coalescer = coalescer
        self.per_page = per_page
        self.max_pages = max_pages

    def key(self, resource_id: str) -> CacheKey:
        return CacheKey(self.kind, resource_id)

    async def fetch(self, resource_id: str) -> T:
        """Returns the cached value if fresh, otherwise fetches it once for all concurrent callers."""
        key = self.key(resource_id)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached
        generation = await self.cache.generation(key)
        return await self.coalescer.run((key, generation), lambda: self._load(key, generation))

    async def _load(self, key: CacheKey, generation: int) -> T:
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        revalidate = self.uses_etag and not self.descriptor.paginated
        stale = await self.cache.get_entry(key) if revalidate else None
        etag = stale.etag if stale is not None else None
        logger.debug(f"Fetching {key} (generation={generation}, revalidate={bool(etag)})")

        response: Optional[ApiResponse] = None
        try:
            value, response = await self._request(key.resource_id, etag)
        except ParseError as e:
            e.endpoint = e.endpoint or self._endpoint(key.resource_id)
            raise

        if response is not None and response.not_modified and stale is not None:
            logger.debug(f"{key} not modified; reusing stored value")
            value = stale.value
        new_etag = response.etag if response is not None else None

        await self.cache.set(key, value, self.descriptor.ttl, etag=new_etag, generation=generation)
        return value

    def _endpoint(self, resource_id: Optional[str]) -> str:
        return self.descriptor.endpoint(**{self.id_param: resource_id})

    def _parse(self, data: Any) -> T:
        raise NotImplementedError

    async def _request(self, resource_id: Optional[str], etag: Optional[str]) -> Tuple[Any, Optional[ApiResponse]]:
        """Performs the upstream request(s). Returns (parsed value, last response).

        Paginated descriptors collect every page into one list; the others
        are a single, optionally conditional, GET.
        """
        path = self._endpoint(resource_id)
        if self.descriptor.paginated:
            cap = min(self.max_pages, self.page_cap) if self.page_cap else self.max_pages
            items = await self._get_pages(path, self.list_params, max_pages=cap)
            return self._parse(items), None
        response = await self._get(path, params=self.list_params or None, etag=etag)
        if response.not_modified:
            return None, response
        return self._parse(response.data), response

    async def _get(self, path: str, params: Optional[Mapping[str, Any]] = None, etag: Optional[str] = None) -> ApiResponse:
        return await self.retry_service.execute_with_retry(
            self.http_client.get, path, params=params, etag=etag, endpoint_name=path,
        )

    async def _get_pages(self, path: str, params: Mapping[str, Any], max_pages: Optional[int] = None) -> List[Any]:
        """Collects list pages until a short page, stopping at the page cap."""
        items: List[Any] = []
        limit = max_pages or self.max_pages
        for page in range(1, limit + 1):
            response = await self._get(path, params={**params, "per_page": self.per_page, "page": page})
            if not isinstance(response.data, list):
                raise ParseError(f"Expected a list page, got {type(response.data).__name__}", endpoint=path)
            items.extend(response.data)
            if len(response.data) < self.per_page:
                break
        else:
            logger.info(f"Stopped paginating {path} at the {limit}-page cap; later pages not fetched.")
        return items


class ProfileFetcher(ResourceFetcher[UserProfile]):
    kind = ResourceKind.PROFILE
    uses_etag = True

    def _parse(self, data):
        return UserProfile.from_api(data)


class RepositoryListFetcher(ResourceFetcher[Tuple[Repository, ...]]):
    kind = ResourceKind.REPOSITORIES
    # Most recently pushed first; callers keep this order.
    list_params = {"type": "owner", "sort": "pushed", "direction": "desc"}

    def _parse(self, data):
        return tuple(Repository.from_api(item) for item in _as_list(data))


class EventsFetcher(ResourceFetcher[Tuple[Event, ...]]):
    kind = ResourceKind.EVENTS
    page_cap = EVENTS_MAX_PAGES

    def _parse(self, data):
        return tuple(Event.from_api(item) for item in _as_list(data))


class LanguagesFetcher(ResourceFetcher[LanguageBreakdown]):
    kind = ResourceKind.LANGUAGES
    id_param = "full_name"
    uses_etag = True

    def _parse(self, data):
        return LanguageBreakdown.from_api(data)


class TrafficFetcher(ResourceFetcher[TrafficSummary]):
    """Views, clones, referrers and popular paths. Needs push access to the repository."""
    kind = ResourceKind.TRAFFIC
    id_param = "full_name"

    async def _request(self, resource_id, etag):
        if self.descriptor.requires_auth and not self.http_client.authenticated:
            logger.debug(f"Requesting traffic for {resource_id} without a token; expect 401/403.")
        base = self._endpoint(resource_id)
        parts: Dict[str, Any] = {}
        for part in TRAFFIC_PARTS:
            response = await self._get(f"{base}/{part}")
            parts[part] = response.data
        summary = TrafficSummary.from_api(
            views=parts["views"],
            clones=parts["clones"],
            referrers=parts["popular/referrers"],
            paths=parts["popular/paths"],
        )
        return summary, None


class FetcherSet:
    """The fetchers for every resource kind, sharing one cache, tracker and registry."""

    def __init__(
        self,
        descriptors: Mapping[ResourceKind, ResourceDescriptor],
        http_client: GitHubHttpClient,
        retry_service: ApiRetryService,
        cache: CacheService,
        coalescer: Optional[RequestCoalescer] = None,
        per_page: int = DEFAULT_PER_PAGE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        coalescer = coalescer or RequestCoalescer()
        common = dict(
            http_client=http_client,
            retry_service=retry_service,
            cache=cache,
            coalescer=coalescer,
            per_page=per_page,
            max_pages=max_pages,
        )
        self.coalescer = coalescer
        self.profile = ProfileFetcher(descriptors[ResourceKind.PROFILE], **common)
        self.repositories = RepositoryListFetcher(descriptors[ResourceKind.REPOSITORIES], **common)
        self.events = EventsFetcher(descriptors[ResourceKind.EVENTS], **common)
        self.languages = LanguagesFetcher(descriptors[ResourceKind.LANGUAGES], **common)
        self.traffic = TrafficFetcher(descriptors[ResourceKind.TRAFFIC], **common)

    async def get_profile(self, login: Login) -> UserProfile:
        return await self.profile.fetch(login)

    async def get_repositories(self, login: Login) -> Tuple[Repository, ...]:
        return await self.repositories.fetch(login)

    async def get_events(self, login: Login) -> Tuple[Event, ...]:
        return await self.events.fetch(login)

    async def get_languages(self, full_name: RepoFullName) -> LanguageBreakdown:
        return await self.languages.fetch(full_name)

    async def get_traffic(self, full_name: RepoFullName) -> TrafficSummary:
        return await self.traffic.fetch(full_name)
