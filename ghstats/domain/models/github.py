"""Domain models for GitHub resources.

Each record is built from a decoded JSON payload via ``from_api``. Shape
mismatches raise ``ParseError`` at this boundary so that untyped data never
travels further up than the fetchers.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import ParseError
from .common import Login, RepoFullName


def _require(payload: Any, key: str, kind: type, resource: str) -> Any:
    """Fetch ``payload[key]`` and check its type, raising ParseError otherwise."""
    if not isinstance(payload, dict):
        raise ParseError(f"Expected an object for {resource}, got {type(payload).__name__}")
    if key not in payload:
        raise ParseError(f"Missing field '{key}' in {resource}")
    value = payload[key]
    # bool is an int subclass; counts must not silently accept it
    if kind is int and isinstance(value, bool):
        raise ParseError(f"Field '{key}' in {resource} must be int, got bool")
    if not isinstance(value, kind):
        raise ParseError(f"Field '{key}' in {resource} must be {kind.__name__}, got {type(value).__name__}")
    return value


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _require_list(payload: Any, resource: str) -> list:
    if not isinstance(payload, list):
        raise ParseError(f"Expected a list for {resource}, got {type(payload).__name__}")
    return payload


@dataclass(frozen=True)
class UserProfile:
    """Public profile of a GitHub account."""
    login: Login
    id: int
    name: Optional[str]
    bio: Optional[str]
    avatar_url: Optional[str]
    html_url: Optional[str]
    public_repos: int
    followers: int
    following: int
    created_at: Optional[str]

    @classmethod
    def from_api(cls, payload: Any) -> "UserProfile":
        resource = "user profile"
        return cls(
            login=Login(_require(payload, "login", str, resource)),
            id=_require(payload, "id", int, resource),
            name=_optional_str(payload, "name"),
            bio=_optional_str(payload, "bio"),
            avatar_url=_optional_str(payload, "avatar_url"),
            html_url=_optional_str(payload, "html_url"),
            public_repos=_require(payload, "public_repos", int, resource),
            followers=_require(payload, "followers", int, resource),
            following=_require(payload, "following", int, resource),
            created_at=_optional_str(payload, "created_at"),
        )


@dataclass(frozen=True)
class Repository:
    """A repository as listed by ``GET /users/{login}/repos``."""
    id: int
    name: str
    full_name: RepoFullName
    description: Optional[str]
    html_url: Optional[str]
    language: Optional[str]
    stargazers_count: int
    forks_count: int
    fork: bool
    archived: bool
    topics: Tuple[str, ...]
    pushed_at: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @classmethod
    def from_api(cls, payload: Any) -> "Repository":
        resource = "repository"
        topics = payload.get("topics") if isinstance(payload, dict) else None
        return cls(
            id=_require(payload, "id", int, resource),
            name=_require(payload, "name", str, resource),
            full_name=RepoFullName(_require(payload, "full_name", str, resource)),
            description=_optional_str(payload, "description"),
            html_url=_optional_str(payload, "html_url"),
            language=_optional_str(payload, "language"),
            stargazers_count=_require(payload, "stargazers_count", int, resource),
            forks_count=_require(payload, "forks_count", int, resource),
            fork=bool(payload.get("fork", False)),
            archived=bool(payload.get("archived", False)),
            topics=tuple(t for t in (topics or []) if isinstance(t, str)),
            pushed_at=_optional_str(payload, "pushed_at"),
            created_at=_optional_str(payload, "created_at"),
            updated_at=_optional_str(payload, "updated_at"),
        )


@dataclass(frozen=True)
class LanguageBreakdown:
    """Bytes of code per language for one repository."""
    bytes_by_language: Mapping[str, int]

    @property
    def total_bytes(self) -> int:
        return sum(self.bytes_by_language.values())

    @classmethod
    def from_api(cls, payload: Any) -> "LanguageBreakdown":
        if not isinstance(payload, dict):
            raise ParseError(f"Expected an object for languages, got {type(payload).__name__}")
        parsed: Dict[str, int] = {}
        for language, size in payload.items():
            if not isinstance(size, int) or isinstance(size, bool):
                raise ParseError(f"Language '{language}' has non-integer byte count")
            parsed[language] = size
        return cls(bytes_by_language=MappingProxyType(parsed))


@dataclass(frozen=True)
class TrafficCount:
    """Views or clones over the last 14 days."""
    count: int
    uniques: int

    @classmethod
    def from_api(cls, payload: Any, resource: str) -> "TrafficCount":
        return cls(
            count=_require(payload, "count", int, resource),
            uniques=_require(payload, "uniques", int, resource),
        )


@dataclass(frozen=True)
class Referrer:
    referrer: str
    count: int
    uniques: int

    @classmethod
    def from_api(cls, payload: Any) -> "Referrer":
        resource = "traffic referrer"
        return cls(
            referrer=_require(payload, "referrer", str, resource),
            count=_require(payload, "count", int, resource),
            uniques=_require(payload, "uniques", int, resource),
        )


@dataclass(frozen=True)
class PopularPath:
    path: str
    title: str
    count: int
    uniques: int

    @classmethod
    def from_api(cls, payload: Any) -> "PopularPath":
        resource = "traffic path"
        return cls(
            path=_require(payload, "path", str, resource),
            title=_optional_str(payload, "title") or "",
            count=_require(payload, "count", int, resource),
            uniques=_require(payload, "uniques", int, resource),
        )


@dataclass(frozen=True)
class TrafficSummary:
    """All four traffic endpoints of a repository, combined."""
    views: TrafficCount
    clones: TrafficCount
    referrers: Tuple[Referrer, ...]
    paths: Tuple[PopularPath, ...]

    @classmethod
    def from_api(cls, views: Any, clones: Any, referrers: Any, paths: Any) -> "TrafficSummary":
        return cls(
            views=TrafficCount.from_api(views, "traffic views"),
            clones=TrafficCount.from_api(clones, "traffic clones"),
            referrers=tuple(Referrer.from_api(r) for r in _require_list(referrers, "traffic referrers")),
            paths=tuple(PopularPath.from_api(p) for p in _require_list(paths, "traffic paths")),
        )


@dataclass(frozen=True)
class Event:
    """A public activity event of the user."""
    id: str
    type: str
    repo_name: Optional[str]
    created_at: str

    @property
    def date(self) -> str:
        """Day of the event in ``YYYY-MM-DD`` form."""
        return self.created_at[:10]

    @classmethod
    def from_api(cls, payload: Any) -> "Event":
        resource = "event"
        repo = payload.get("repo") if isinstance(payload, dict) else None
        return cls(
            id=_require(payload, "id", str, resource),
            type=_require(payload, "type", str, resource),
            repo_name=_optional_str(repo, "name") if isinstance(repo, dict) else None,
            created_at=_require(payload, "created_at", str, resource),
        )
