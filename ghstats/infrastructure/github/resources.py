"""Static descriptions of the upstream resources.

One descriptor per resource kind: where it lives, how long it stays fresh,
whether it needs an authorized token and whether it is paginated.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ghstats.domain.models.common import ResourceKind

MINUTE = 60.0

DEFAULT_TTLS: Dict[ResourceKind, float] = {
    ResourceKind.PROFILE: 15 * MINUTE,
    ResourceKind.REPOSITORIES: 30 * MINUTE,
    ResourceKind.EVENTS: 5 * MINUTE,
    ResourceKind.LANGUAGES: 60 * MINUTE,
    # Shorter: traffic needs push access and fails more often.
    ResourceKind.TRAFFIC: 10 * MINUTE,
}

TRAFFIC_PARTS = ("views", "clones", "popular/referrers", "popular/paths")

RATE_LIMIT_ENDPOINT = "/rate_limit"


@dataclass(frozen=True)
class ResourceDescriptor:
    kind: ResourceKind
    endpoint_template: str
    ttl: float
    requires_auth: bool = False
    paginated: bool = False

    def endpoint(self, **params: str) -> str:
        return self.endpoint_template.format(**params)


_TEMPLATES = {
    ResourceKind.PROFILE: ("/users/{login}", False, False),
    ResourceKind.REPOSITORIES: ("/users/{login}/repos", False, True),
    ResourceKind.EVENTS: ("/users/{login}/events", False, True),
    ResourceKind.LANGUAGES: ("/repos/{full_name}/languages", False, False),
    ResourceKind.TRAFFIC: ("/repos/{full_name}/traffic", True, False),
}


def build_descriptors(ttls: Optional[Mapping[ResourceKind, float]] = None) -> Dict[ResourceKind, ResourceDescriptor]:
    """Builds the descriptor table, overriding default TTLs where given."""
    merged = dict(DEFAULT_TTLS)
    merged.update(ttls or {})
    return {
        kind: ResourceDescriptor(
            kind=kind,
            endpoint_template=template,
            ttl=merged[kind],
            requires_auth=requires_auth,
            paginated=paginated,
        )
        for kind, (template, requires_auth, paginated) in _TEMPLATES.items()
    }
