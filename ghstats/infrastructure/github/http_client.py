"""GitHub REST API transport.

Async httpx wrapper that performs a single GET attempt, feeds every
response's rate-limit headers to the rate tracker, and converts transport
exceptions and error statuses into the ghstats error taxonomy. Retrying is
the retry policy's job, not this module's.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from ghstats import __version__
from ghstats.domain.errors import ClientError, NetworkError, ParseError, RateLimited, ServerError
from ghstats.infrastructure.resilience.rate_limiter import HEADER_REMAINING, HEADER_RESET, RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"
DEFAULT_TIMEOUT_S = 10.0
API_VERSION = "2022-11-28"


@dataclass(frozen=True)
class ApiResponse:
    """Decoded response of one successful (2xx or 304) request."""
    status_code: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return response.reason_phrase or f"HTTP {response.status_code}"


def _float_header(headers: httpx.Headers, name: str) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GitHubHttpClient:
    """Single-attempt GitHub GET client."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        token: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the HTTP client.

        Args:
            rate_limiter: Tracker updated from every response.
            token: Optional token sent as a bearer authorization header.
            base_url: API root.
            timeout: Per-attempt timeout in seconds.
            user_agent: Versioned User-Agent header value.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        self.rate_limiter = rate_limiter
        self.authenticated = bool(token)
        self.timeout = timeout
        headers: Dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "User-Agent": user_agent or f"ghstats/{__version__}",
            "X-GitHub-Api-Version": API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )
        logger.info(f"GitHubHttpClient initialized: base_url={base_url}, timeout={timeout}s, authenticated={self.authenticated}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GitHubHttpClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        etag: Optional[str] = None,
    ) -> ApiResponse:
        """Performs one GET request.

        Raises:
            NetworkError: On timeouts (the whole attempt is bounded by
                ``timeout``), connection failures and any other request error.
            RateLimited: On 429, or 403 caused by an exhausted quota.
            ServerError: On 5xx.
            ClientError: On any other 4xx, or a redirect loop.
            ParseError: When the body cannot be decoded, or a 2xx body is
                not valid JSON.
        """
        request_headers = {"If-None-Match": etag} if etag else None
        try:
            # httpx timeouts are per phase; this bounds the whole attempt, body included.
            response = await asyncio.wait_for(
                self._client.get(path, params=params, headers=request_headers),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise NetworkError(f"Timed out after {self.timeout}s: {e!r}", endpoint=path, timeout=True) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Connection failed: {e!r}", endpoint=path) from e
        except httpx.DecodingError as e:
            raise ParseError(f"Undecodable response body: {e}", endpoint=path) from e
        except httpx.TooManyRedirects as e:
            raise ClientError(f"Too many redirects: {e}", endpoint=path) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request failed: {e!r}", endpoint=path) from e

        await self.rate_limiter.record_response(response.headers)
        status = response.status_code
        logger.debug(f"GET {path} -> {status}")

        if status == 304:
            return ApiResponse(status_code=status, data=None, headers=dict(response.headers))
        if 200 <= status < 300:
            try:
                data = response.json() if response.content else None
            except ValueError as e:
                raise ParseError(f"Malformed JSON body: {e}", status_code=status, endpoint=path) from e
            return ApiResponse(status_code=status, data=data, headers=dict(response.headers))

        message = _error_message(response)
        if status == 429 or (status == 403 and self._is_rate_limit_403(response, message)):
            reset_at = _float_header(response.headers, HEADER_RESET)
            retry_after = _float_header(response.headers, "retry-after") or 0.0
            raise RateLimited(message, status_code=status, endpoint=path, reset_at=reset_at, retry_after=retry_after)
        if status >= 500:
            raise ServerError(message, status_code=status, endpoint=path)
        raise ClientError(message, status_code=status, endpoint=path)

    @staticmethod
    def _is_rate_limit_403(response: httpx.Response, message: str) -> bool:
        if response.headers.get(HEADER_REMAINING) == "0":
            return True
        if "retry-after" in response.headers:
            return True
        return "rate limit" in message.lower()
