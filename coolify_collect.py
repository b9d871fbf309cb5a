#!/usr/bin/env python3
"""
IPSweep - Coolify Collector

Finds the applications, services and databases Coolify has deployed onto
the server(s) that own an IP.

Walk: servers -> projects -> environments -> environment resource tree.
A project or environment that fails to load is skipped and reported as a
warning; the rest of the walk continues.

Configuration:
    COOLIFY_URL         - base URL of the Coolify instance (required)
    COOLIFY_API_TOKEN   - API token

Usage:
    python3 coolify_collect.py ip 203.0.113.9
    python3 coolify_collect.py test
"""
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple, Type
from urllib.parse import quote

import httpx

from ipsweep.config import CoolifyConfig
from ipsweep.constants import COOLIFY_API_PREFIX, PROVIDER_COOLIFY
from ipsweep.http import create_client, get_json, unwrap_list
from ipsweep.models import (
    CoolifyApplication,
    CoolifyDatabase,
    CoolifyResource,
    CoolifyService,
    DiscoveryOutcome,
)
from ipsweep.sweep import ProviderAdapter

logger = logging.getLogger(__name__)

# Resource tree key -> (model, where the owning server is embedded)
RESOURCE_SECTIONS: List[Tuple[str, Type[CoolifyResource], Tuple[str, ...]]] = [
    ('applications', CoolifyApplication, ('destination', 'server')),
    ('services', CoolifyService, ('server',)),
    ('databases', CoolifyDatabase, ('destination', 'server')),
]


def _get_list(client: httpx.Client, path: str) -> List[Dict[str, Any]]:
    payload = get_json(client, path, provider=PROVIDER_COOLIFY)
    return [item for item in unwrap_list(payload) if isinstance(item, dict)]


# =============================================================================
# Listing
# =============================================================================

def list_servers(client: httpx.Client) -> List[Dict[str, Any]]:
    return _get_list(client, '/servers')


def list_projects(client: httpx.Client) -> List[Dict[str, Any]]:
    return _get_list(client, '/projects')


def list_environments(client: httpx.Client, project_uuid: str) -> List[Dict[str, Any]]:
    return _get_list(client, f'/projects/{quote(project_uuid, safe="")}/environments')


def get_environment_resources(client: httpx.Client, project_uuid: str, environment_name: str) -> Dict[str, Any]:
    payload = get_json(
        client,
        f'/projects/{quote(project_uuid, safe="")}/{quote(environment_name, safe="")}',
        provider=PROVIDER_COOLIFY,
    )
    return payload if isinstance(payload, dict) else {}


# =============================================================================
# Matching
# =============================================================================

def _embedded_server(item: Dict[str, Any], path: Tuple[str, ...]) -> Dict[str, Any]:
    value: Any = item
    for key in path:
        value = value.get(key) if isinstance(value, dict) else None
    return value if isinstance(value, dict) else {}


def find_server(
    server: Dict[str, Any],
    matching_servers: List[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Return the matching server an embedded server reference points at."""
    for candidate in matching_servers:
        if server.get('uuid') is not None and server.get('uuid') == candidate.get('uuid'):
            return candidate
        if server.get('id') is not None and server.get('id') == candidate.get('id'):
            return candidate
    return None


def collect_environment(
    tree: Dict[str, Any],
    ip: str,
    matching_servers: List[Dict[str, Any]],
    project: Dict[str, Any],
    environment_name: str,
) -> List[CoolifyResource]:
    """Return every resource in one environment tree hosted on the IP."""
    resources: List[CoolifyResource] = []

    for section, model, server_path in RESOURCE_SECTIONS:
        items = tree.get(section)
        if not isinstance(items, list):
            continue
        for item in items:
            if not isinstance(item, dict):
                continue
            embedded = _embedded_server(item, server_path)
            server = find_server(embedded, matching_servers)
            if server is None and embedded.get('ip') != ip:
                continue
            server = server or embedded
            resources.append(model(
                name=item.get('name') or item.get('uuid') or '',
                ip_candidates=frozenset([ip]),
                status=item.get('status'),
                uuid=item.get('uuid'),
                fqdn=item.get('fqdn') or None,
                server_name=server.get('name'),
                server_ip=ip,
                environment=environment_name,
                project_name=project.get('name'),
            ))

    return resources


def collect_resources(client: httpx.Client, ip: str) -> DiscoveryOutcome:
    """
    Walk projects and environments for resources on the IP's server(s).

    Listing servers or projects failing aborts the provider; a single project
    or environment failing is recorded and skipped.
    """
    outcome = DiscoveryOutcome()

    matching_servers = [s for s in list_servers(client) if s.get('ip') == ip]
    if not matching_servers:
        logger.info(f"No Coolify server has IP {ip}")
        return outcome
    logger.info(f"Found {len(matching_servers)} Coolify server(s) with IP {ip}")

    projects = list_projects(client)
    for project in projects:
        project_uuid = project.get('uuid')
        project_label = project.get('name') or project_uuid
        if not project_uuid:
            continue
        try:
            environments = list_environments(client, project_uuid)
        except Exception as e:
            logger.debug(f"Failed to list environments for Coolify project {project_label}: {e}")
            outcome.record_error(PROVIDER_COOLIFY, f"project {project_label}", e)
            continue

        for environment in environments:
            environment_name = environment.get('name')
            if not environment_name:
                continue
            try:
                tree = get_environment_resources(client, project_uuid, environment_name)
            except Exception as e:
                logger.debug(f"Failed to load Coolify environment {project_label}/{environment_name}: {e}")
                outcome.record_error(PROVIDER_COOLIFY, f"environment {project_label}/{environment_name}", e)
                continue
            outcome.resources.extend(
                collect_environment(tree, ip, matching_servers, project, environment_name)
            )

    logger.info(f"Found {len(outcome.resources)} Coolify resources across {len(projects)} projects")
    return outcome


# =============================================================================
# Adapter
# =============================================================================

class CoolifyAdapter(ProviderAdapter):
    """Coolify deployment discovery."""
    provider = PROVIDER_COOLIFY

    def __init__(self, config: CoolifyConfig, client: Optional[httpx.Client] = None):
        if not config.url:
            raise ValueError("Coolify requires a base URL (COOLIFY_URL)")
        self.config = config
        self.client = client or create_client(
            f"{config.url.rstrip('/')}{COOLIFY_API_PREFIX}",
            {'Authorization': f'Bearer {config.api_token}'},
        )

    def test_connection(self) -> bool:
        list_servers(self.client)
        return True

    def discover_by_ip(self, ip: str) -> DiscoveryOutcome:
        return collect_resources(self.client, ip)

    def close(self) -> None:
        self.client.close()


def main():
    from collect import main as collect_main
    sys.exit(collect_main([PROVIDER_COOLIFY] + sys.argv[1:]))


if __name__ == '__main__':
    main()
