#!/usr/bin/env python3
"""
IPSweep - Google Cloud Collector

Finds Compute Engine instances, forwarding rules (load balancers), Cloud Run
services and GKE clusters bound to an IP across one or more projects.

Projects come from, in order of precedence:
    1. Auto-discovery of every ACTIVE project (--all-projects / GCP_AUTO_DISCOVER)
    2. An explicit list (--projects / GCP_PROJECT_IDS)
    3. A single project (--project / GCP_PROJECT_ID)

Credentials are GCP_ACCESS_TOKEN when set, otherwise application default
credentials (gcloud auth application-default login, a service account key in
GOOGLE_APPLICATION_CREDENTIALS, or the metadata server).

Usage:
    python3 gcp_collect.py ip 34.120.0.10 --project my-project-id
    python3 gcp_collect.py ip 34.120.0.10 --all-projects
    python3 gcp_collect.py test --all-projects
"""
import logging
import sys
from typing import Any, Dict, Iterable, List, Optional, Tuple

import dns.exception
import dns.resolver
import google.auth
from google.api_core import exceptions as gcp_exceptions
from google.cloud import compute_v1, container_v1, resourcemanager_v3, run_v2
from google.oauth2.credentials import Credentials as OAuthCredentials

from ipsweep.config import GcpConfig
from ipsweep.constants import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    GCP_ACTIVE_STATE,
    GCP_LOCATION_LABEL,
    PROVIDER_GCP,
)
from ipsweep.models import (
    CloudRunService,
    ComputeInstance,
    DiscoveryOutcome,
    ForwardingRule,
    GkeCluster,
    ProjectSet,
    ProviderError,
    Resource,
    hostname_from_url,
)
from ipsweep.sweep import ProviderAdapter
from ipsweep.utils import AuthError, is_auth_error, parallel_collect, retry_with_backoff

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = 'https://www.googleapis.com/auth/cloud-platform'

# Retried with backoff; everything else fails the sub-call immediately
TRANSIENT_GCP_ERRORS = (
    gcp_exceptions.ServiceUnavailable,
    gcp_exceptions.TooManyRequests,
    gcp_exceptions.DeadlineExceeded,
    gcp_exceptions.InternalServerError,
)


def _last_segment(value: Optional[str]) -> Optional[str]:
    """'projects/p/zones/us-central1-a' -> 'us-central1-a'."""
    if not value:
        return None
    return value.rstrip('/').split('/')[-1] or None


def _enum_name(value: Any) -> Optional[str]:
    """Name of a proto enum value, or the value itself if it is already a string."""
    if isinstance(value, str):
        return value or None
    name = getattr(value, 'name', None)
    return name if isinstance(name, str) else None


def _labels_to_tags(labels: Any) -> Tuple[str, ...]:
    if not labels:
        return ()
    return tuple(sorted(f"{k}={v}" for k, v in dict(labels).items()))


# =============================================================================
# Authentication & Projects
# =============================================================================

def get_credentials(access_token: Optional[str] = None):
    """
    Build GCP credentials.

    An explicit access token wins; otherwise application default credentials
    are used.
    """
    if access_token:
        return OAuthCredentials(token=access_token)
    credentials, _project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    return credentials


def discover_projects(credentials) -> List[str]:
    """
    List every ACTIVE project the credentials can see.

    The client pager follows nextPageToken until the listing is exhausted.
    An empty list is a valid answer (authenticated, nothing accessible); a
    failed call is raised as AuthError.
    """
    try:
        client = resourcemanager_v3.ProjectsClient(credentials=credentials)
        request = resourcemanager_v3.SearchProjectsRequest(query=f"state:{GCP_ACTIVE_STATE}")
        project_ids = [
            project.project_id
            for project in client.search_projects(request=request, timeout=DEFAULT_TIMEOUT_SECONDS)
            if project.project_id and _enum_name(project.state) == GCP_ACTIVE_STATE
        ]
    except Exception as e:
        raise AuthError(
            f"Failed to discover GCP projects (needs resourcemanager.projects.get): {e}",
            provider=PROVIDER_GCP,
            original_error=e,
        ) from e

    logger.info(f"Discovered {len(project_ids)} accessible GCP project(s)")
    return project_ids


def check_project_access(project_id: str, credentials) -> None:
    """Fetch one project through the Compute API; raises on failure."""
    client = compute_v1.ProjectsClient(credentials=credentials)
    client.get(project=project_id, timeout=DEFAULT_TIMEOUT_SECONDS)


def resolve_ipv4(hostname: str) -> List[str]:
    """Resolve a hostname to its IPv4 addresses with the per-call timeout."""
    answer = dns.resolver.resolve(hostname, 'A', lifetime=DEFAULT_TIMEOUT_SECONDS)
    return [rdata.address for rdata in answer]


# =============================================================================
# Compute Engine
# =============================================================================

def instance_addresses(instance) -> Tuple[List[str], List[str]]:
    """Return (internal, external) addresses of an instance's interfaces."""
    internal, external = [], []
    for nic in instance.network_interfaces or []:
        if nic.network_i_p:
            internal.append(nic.network_i_p)
        for access_config in nic.access_configs or []:
            if access_config.nat_i_p:
                external.append(access_config.nat_i_p)
    return internal, external


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=TRANSIENT_GCP_ERRORS)
def collect_compute_instances(project_id: str, ip: str, credentials) -> List[ComputeInstance]:
    """Collect instances across all zones whose internal or NAT IP is the IP."""
    resources = []
    client = compute_v1.InstancesClient(credentials=credentials)
    request = compute_v1.AggregatedListInstancesRequest(project=project_id)

    for zone, response in client.aggregated_list(request=request, timeout=DEFAULT_TIMEOUT_SECONDS):
        for instance in response.instances or []:
            internal, external = instance_addresses(instance)
            if ip not in internal and ip not in external:
                continue
            zone_name = _last_segment(instance.zone) or _last_segment(zone)
            resources.append(ComputeInstance(
                name=instance.name,
                ip_candidates=frozenset(internal + external),
                project_id=project_id,
                region=zone_name,
                status=_enum_name(instance.status),
                tags=_labels_to_tags(instance.labels),
                zone=zone_name,
                machine_type=_last_segment(instance.machine_type),
                internal_ips=tuple(internal),
                external_ips=tuple(external),
            ))

    logger.debug(f"Found {len(resources)} matching instances in {project_id}")
    return resources


# =============================================================================
# Load Balancers (Forwarding Rules)
# =============================================================================

def _to_forwarding_rule(rule, project_id: str, is_global: bool) -> ForwardingRule:
    return ForwardingRule(
        name=rule.name,
        ip_candidates=frozenset([rule.I_p_address]),
        project_id=project_id,
        region='global' if is_global else _last_segment(rule.region),
        tags=_labels_to_tags(rule.labels),
        scheme=rule.load_balancing_scheme or None,
        target=_last_segment(rule.target),
        backend_service=_last_segment(rule.backend_service),
        is_global=is_global,
    )


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=TRANSIENT_GCP_ERRORS)
def collect_global_forwarding_rules(project_id: str, ip: str, credentials) -> List[ForwardingRule]:
    client = compute_v1.GlobalForwardingRulesClient(credentials=credentials)
    return [
        _to_forwarding_rule(rule, project_id, is_global=True)
        for rule in client.list(project=project_id, timeout=DEFAULT_TIMEOUT_SECONDS)
        if rule.I_p_address == ip
    ]


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=TRANSIENT_GCP_ERRORS)
def collect_regional_forwarding_rules(project_id: str, ip: str, credentials) -> List[ForwardingRule]:
    client = compute_v1.ForwardingRulesClient(credentials=credentials)
    request = compute_v1.AggregatedListForwardingRulesRequest(project=project_id)
    resources = []
    for _scope, response in client.aggregated_list(request=request, timeout=DEFAULT_TIMEOUT_SECONDS):
        for rule in response.forwarding_rules or []:
            if rule.I_p_address == ip:
                resources.append(_to_forwarding_rule(rule, project_id, is_global=not rule.region))
    return resources


# =============================================================================
# Cloud Run
# =============================================================================

def _service_region(service, region: str) -> str:
    labels = dict(service.labels) if service.labels else {}
    if labels.get(GCP_LOCATION_LABEL):
        return labels[GCP_LOCATION_LABEL]
    parts = (service.name or '').split('/')
    if 'locations' in parts and parts.index('locations') + 1 < len(parts):
        return parts[parts.index('locations') + 1]
    return region


def service_matches(url: str, ip: str) -> bool:
    """
    Resolve a service URL's hostname and check the IP is among the answers.

    A failed lookup means no match for this service only.
    """
    hostname = hostname_from_url(url)
    if not hostname:
        return False
    try:
        return ip in resolve_ipv4(hostname)
    except dns.exception.DNSException as e:
        logger.debug(f"DNS lookup failed for {hostname}: {e}")
        return False


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=TRANSIENT_GCP_ERRORS)
def _list_services(project_id: str, region: str, credentials) -> list:
    client = run_v2.ServicesClient(credentials=credentials)
    parent = f"projects/{project_id}/locations/{region}"
    return list(client.list_services(parent=parent, timeout=DEFAULT_TIMEOUT_SECONDS))


def collect_cloud_run_services(project_id: str, region: str, ip: str, credentials) -> List[CloudRunService]:
    """
    Collect Cloud Run services in one region whose URL resolves to the IP.

    The match reflects DNS at lookup time, so results are marked approximate.
    """
    resources = []
    for service in _list_services(project_id, region, credentials):
        url = service.uri
        if not url or not service_matches(url, ip):
            continue
        resources.append(CloudRunService(
            name=_last_segment(service.name) or '',
            ip_candidates=frozenset([ip]),
            project_id=project_id,
            region=_service_region(service, region),
            status=_enum_name(getattr(service.terminal_condition, 'state', None)),
            tags=_labels_to_tags(service.labels),
            url=url,
        ))
    return resources


# =============================================================================
# GKE
# =============================================================================

@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, exceptions=TRANSIENT_GCP_ERRORS)
def collect_gke_clusters(project_id: str, ip: str, credentials) -> List[GkeCluster]:
    """Collect clusters in all locations whose control-plane endpoint is the IP."""
    client = container_v1.ClusterManagerClient(credentials=credentials)
    response = client.list_clusters(
        parent=f"projects/{project_id}/locations/-",
        timeout=DEFAULT_TIMEOUT_SECONDS,
    )

    resources = []
    for cluster in response.clusters or []:
        if cluster.endpoint != ip:
            continue
        resources.append(GkeCluster(
            name=cluster.name,
            ip_candidates=frozenset([cluster.endpoint]),
            project_id=project_id,
            region=cluster.location,
            status=_enum_name(cluster.status),
            tags=_labels_to_tags(cluster.resource_labels),
            endpoint=cluster.endpoint,
            location=cluster.location,
        ))
    return resources


# =============================================================================
# Per-Project Collection
# =============================================================================

def _dedupe_rules(resources: Iterable[Resource]) -> List[Resource]:
    """The global and aggregated listings can both return a global rule."""
    seen = set()
    unique = []
    for resource in resources:
        key = (type(resource), resource.name, resource.region)
        if key in seen:
            continue
        seen.add(key)
        unique.append(resource)
    return unique


def collect_project(
    project_id: str,
    ip: str,
    credentials,
    cloud_run_regions: Iterable[str],
) -> DiscoveryOutcome:
    """
    Search one project.

    Every service listing (and every Cloud Run region) is its own sub-call:
    a failure is recorded on the outcome and the rest still run.
    """
    outcome = DiscoveryOutcome()

    sub_calls: List[Tuple[str, Any, tuple]] = [
        ("compute instances", collect_compute_instances, (project_id, ip, credentials)),
        ("global forwarding rules", collect_global_forwarding_rules, (project_id, ip, credentials)),
        ("regional forwarding rules", collect_regional_forwarding_rules, (project_id, ip, credentials)),
    ]
    for region in cloud_run_regions:
        sub_calls.append(
            (f"Cloud Run services in {region}", collect_cloud_run_services, (project_id, region, ip, credentials))
        )
    sub_calls.append(("GKE clusters", collect_gke_clusters, (project_id, ip, credentials)))

    for name, collect_fn, args in sub_calls:
        try:
            outcome.resources.extend(collect_fn(*args))
        except Exception as e:
            logger.debug(f"Failed to list {name} for {project_id}: {e}")
            outcome.record_error(PROVIDER_GCP, f"{name} for {project_id}", e)

    outcome.resources = _dedupe_rules(outcome.resources)
    if outcome.resources:
        logger.info(f"Found {len(outcome.resources)} matching resource(s) in project {project_id}")
    return outcome


# =============================================================================
# Adapter
# =============================================================================

class GcpAdapter(ProviderAdapter):
    """
    Multi-project GCP discovery.

    The project set is resolved at most once per adapter and reused by every
    later call.
    """
    provider = PROVIDER_GCP

    def __init__(self, config: GcpConfig, credentials=None):
        self.config = config
        self._credentials = credentials
        self._project_set: Optional[ProjectSet] = None

    @property
    def credentials(self):
        if self._credentials is None:
            try:
                self._credentials = get_credentials(self.config.access_token)
            except Exception as e:
                raise AuthError(f"No usable GCP credentials: {e}", provider=PROVIDER_GCP, original_error=e) from e
        return self._credentials

    def resolve_projects(self) -> ProjectSet:
        """
        Raises:
            AuthError: if auto-discovery fails
        """
        if self._project_set is None:
            if self.config.auto_discover:
                self._project_set = ProjectSet.from_ids(discover_projects(self.credentials), discovered=True)
            else:
                self._project_set = ProjectSet.from_ids(self.config.static_project_ids)
        return self._project_set

    def test_connection(self) -> bool:
        """
        An auto-discovered but empty project set still counts as connected;
        discover_by_ip reports it as a skipped sub-call.

        Raises:
            AuthError: if the credentials are rejected or project discovery fails
        """
        projects = self.resolve_projects()
        if not projects:
            if projects.discovered:
                logger.warning("GCP credentials are valid but no projects are accessible")
                return True
            logger.warning("No GCP project configured")
            return False

        if not projects.discovered:
            project_id = projects.ids[0]
            try:
                check_project_access(project_id, self.credentials)
            except Exception as e:
                if is_auth_error(e):
                    raise AuthError(
                        f"GCP denied access to project {project_id}: {e}",
                        provider=PROVIDER_GCP,
                        original_error=e,
                    ) from e
                raise
        return True

    def discover_by_ip(self, ip: str) -> DiscoveryOutcome:
        projects = self.resolve_projects()
        if not projects:
            outcome = DiscoveryOutcome()
            outcome.errors.append(ProviderError(
                PROVIDER_GCP, "project discovery", "credentials are valid but no projects are accessible"
            ))
            return outcome

        logger.info(f"Scanning {len(projects)} GCP project(s)...")
        tasks = [
            (f"project {project_id}", collect_project,
             (project_id, ip, self.credentials, self.config.cloud_run_regions))
            for project_id in projects
        ]
        return parallel_collect(
            tasks,
            provider=PROVIDER_GCP,
            parallel_workers=self.config.parallel_workers,
            logger=logger,
        )


def main():
    from collect import main as collect_main
    sys.exit(collect_main([PROVIDER_GCP] + sys.argv[1:]))


if __name__ == '__main__':
    main()
