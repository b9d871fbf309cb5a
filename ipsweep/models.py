"""
Data models for IPSweep collectors.

Every provider adapter returns instances of the Resource variants below. Each
variant pins its provider and kind, carries the set of addresses it was matched
on, and knows its own DNS-style name (if it has one) so the reconciliation
engine never has to inspect provider-specific fields.
"""
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from .constants import (
    PROVIDER_CLOUDFLARE,
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_GCP,
)


class ResourceKind(str, Enum):
    """Closed set of resource kinds the adapters can report."""
    DNS_RECORD = "dns_record"
    APPLICATION = "application"
    SERVICE = "service"
    DATABASE = "database"
    DROPLET = "droplet"
    LOAD_BALANCER = "load_balancer"
    FLOATING_IP = "floating_ip"
    DOMAIN_RECORD = "domain_record"
    COMPUTE_INSTANCE = "compute_instance"
    CLOUD_RUN = "cloud_run"
    GKE_CLUSTER = "gke_cluster"


def normalize_dns_name(name: str) -> str:
    """Lowercase a DNS name and drop the trailing root dot."""
    return name.strip().lower().rstrip('.')


def hostname_from_url(value: Optional[str]) -> Optional[str]:
    """
    Extract the first hostname from a URL or FQDN string.

    Accepts bare hostnames ("app.example.com"), URLs
    ("https://app.example.com:8443/path") and comma-separated lists of
    either, as stored by Coolify.
    """
    if not value:
        return None
    first = value.split(',')[0].strip()
    if not first:
        return None
    if '://' in first:
        host = urlparse(first).hostname
    else:
        host = first.split('/')[0].split(':')[0]
    return host or None


# =============================================================================
# Resource Variants
# =============================================================================

@dataclass(frozen=True)
class Resource:
    """
    One discovered item from one provider.

    ip_candidates holds every address of the item that equals the queried IP
    or that the item is known to own; matching is exact string membership.
    """
    kind: ClassVar[ResourceKind]

    provider: str = ""
    name: str = ""
    ip_candidates: FrozenSet[str] = frozenset()
    project_id: Optional[str] = None
    region: Optional[str] = None
    status: Optional[str] = None
    tags: Tuple[str, ...] = ()

    @property
    def dns_name(self) -> Optional[str]:
        return None

    @property
    def identifier(self) -> str:
        """DNS-style name when the resource has one, else its bare name."""
        dns_name = self.dns_name
        if dns_name:
            return normalize_dns_name(dns_name)
        return self.name

    def matches(self, ip: str) -> bool:
        return ip in self.ip_candidates

    def sort_key(self) -> Tuple[Any, ...]:
        """Deterministic ordering key, used to pick one of several duplicates."""
        return (
            self.kind.value,
            self.identifier,
            self.name,
            self.project_id or "",
            self.region or "",
            tuple(sorted(self.ip_candidates)),
            json.dumps(self.to_dict(), sort_keys=True, default=str),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data['kind'] = self.kind.value
        data['identifier'] = self.identifier
        data['ip_candidates'] = sorted(self.ip_candidates)
        data['tags'] = list(self.tags)
        return data


# Cloudflare ------------------------------------------------------------------

@dataclass(frozen=True)
class DnsRecord(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.DNS_RECORD

    provider: str = PROVIDER_CLOUDFLARE
    zone_id: str = ""
    zone_name: str = ""
    record_id: str = ""
    record_type: str = ""
    content: str = ""
    proxied: bool = False
    ttl: Optional[int] = None

    @property
    def dns_name(self) -> Optional[str]:
        return self.name or None


# Coolify ---------------------------------------------------------------------

@dataclass(frozen=True)
class CoolifyResource(Resource):
    """Shared fields of everything Coolify deploys onto a server."""
    kind: ClassVar[ResourceKind] = ResourceKind.APPLICATION

    provider: str = PROVIDER_COOLIFY
    uuid: Optional[str] = None
    fqdn: Optional[str] = None
    server_name: Optional[str] = None
    server_ip: Optional[str] = None
    environment: Optional[str] = None
    project_name: Optional[str] = None

    @property
    def dns_name(self) -> Optional[str]:
        return hostname_from_url(self.fqdn)


@dataclass(frozen=True)
class CoolifyApplication(CoolifyResource):
    kind: ClassVar[ResourceKind] = ResourceKind.APPLICATION


@dataclass(frozen=True)
class CoolifyService(CoolifyResource):
    kind: ClassVar[ResourceKind] = ResourceKind.SERVICE


@dataclass(frozen=True)
class CoolifyDatabase(CoolifyResource):
    kind: ClassVar[ResourceKind] = ResourceKind.DATABASE


# DigitalOcean ----------------------------------------------------------------

@dataclass(frozen=True)
class Droplet(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.DROPLET

    provider: str = PROVIDER_DIGITALOCEAN
    droplet_id: Optional[int] = None
    size_slug: Optional[str] = None


@dataclass(frozen=True)
class LoadBalancer(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.LOAD_BALANCER

    provider: str = PROVIDER_DIGITALOCEAN
    load_balancer_id: Optional[str] = None


@dataclass(frozen=True)
class FloatingIp(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.FLOATING_IP

    provider: str = PROVIDER_DIGITALOCEAN
    droplet_id: Optional[int] = None
    locked: bool = False


@dataclass(frozen=True)
class DomainRecord(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.DOMAIN_RECORD

    provider: str = PROVIDER_DIGITALOCEAN
    domain: str = ""
    record_id: Optional[int] = None
    record_type: str = ""
    ttl: Optional[int] = None

    @property
    def dns_name(self) -> Optional[str]:
        return self.name or None


# Google Cloud ----------------------------------------------------------------

@dataclass(frozen=True)
class ComputeInstance(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.COMPUTE_INSTANCE

    provider: str = PROVIDER_GCP
    zone: Optional[str] = None
    machine_type: Optional[str] = None
    internal_ips: Tuple[str, ...] = ()
    external_ips: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ForwardingRule(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.LOAD_BALANCER

    provider: str = PROVIDER_GCP
    scheme: Optional[str] = None
    target: Optional[str] = None
    backend_service: Optional[str] = None
    is_global: bool = False


@dataclass(frozen=True)
class CloudRunService(Resource):
    """
    Cloud Run service matched through a live DNS lookup of its URL.

    The binding is inferred from whatever the resolver returned at discovery
    time, so every match is flagged approximate.
    """
    kind: ClassVar[ResourceKind] = ResourceKind.CLOUD_RUN

    provider: str = PROVIDER_GCP
    url: Optional[str] = None
    approximate: bool = True

    @property
    def dns_name(self) -> Optional[str]:
        return hostname_from_url(self.url)


@dataclass(frozen=True)
class GkeCluster(Resource):
    kind: ClassVar[ResourceKind] = ResourceKind.GKE_CLUSTER

    provider: str = PROVIDER_GCP
    endpoint: Optional[str] = None
    location: Optional[str] = None


# =============================================================================
# Discovery Results
# =============================================================================

@dataclass(frozen=True)
class ProviderError:
    """A non-fatal sub-call failure (one page, project, region or environment)."""
    provider: str
    context: str
    message: str

    def __str__(self) -> str:
        return f"{self.provider}: {self.context}: {self.message}"

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass
class DiscoveryOutcome:
    """Result of one provider's discovery run."""
    resources: List[Resource] = field(default_factory=list)
    errors: List[ProviderError] = field(default_factory=list)

    def record_error(self, provider: str, context: str, exc: Exception) -> ProviderError:
        error = ProviderError(provider=provider, context=context, message=str(exc))
        self.errors.append(error)
        return error

    def merge(self, other: 'DiscoveryOutcome') -> None:
        """Fold another outcome into this one, preserving order."""
        self.resources.extend(other.resources)
        self.errors.extend(other.errors)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class ProjectSet:
    """GCP project ids in scope for one run, in listing order."""
    ids: Tuple[str, ...] = ()
    discovered: bool = False

    @classmethod
    def from_ids(cls, ids: Iterable[str], discovered: bool = False) -> 'ProjectSet':
        seen: Dict[str, None] = {}
        for project_id in ids:
            project_id = (project_id or '').strip()
            if project_id:
                seen.setdefault(project_id, None)
        return cls(ids=tuple(seen), discovered=discovered)

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids)

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(frozen=True)
class CanonicalEntry:
    """
    One real-world resource as seen across providers.

    details holds one Resource per provider that reported the identifier.
    primary_provider is the highest-priority member of providers.
    """
    identifier: str
    providers: FrozenSet[str]
    details: Dict[str, Resource]
    label: str
    primary_provider: str

    @property
    def primary(self) -> Resource:
        return self.details[self.primary_provider]

    @property
    def resource_kind(self) -> ResourceKind:
        return self.primary.kind

    @property
    def kinds(self) -> Dict[str, ResourceKind]:
        return {provider: resource.kind for provider, resource in self.details.items()}

    def in_provider(self, provider: str) -> bool:
        return provider in self.providers

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identifier': self.identifier,
            'providers': self.label,
            'provider_set': sorted(self.providers),
            'primary_provider': self.primary_provider,
            'resource_kind': self.resource_kind.value,
            'kinds': {p: k.value for p, k in sorted(self.kinds.items())},
            'details': {p: r.to_dict() for p, r in sorted(self.details.items())},
        }
