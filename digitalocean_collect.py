#!/usr/bin/env python3
"""
IPSweep - DigitalOcean Collector

Finds droplets, load balancers, floating IPs and domain records bound to an
IP in one DigitalOcean account.

Configuration:
    DIGITALOCEAN_TOKEN  - personal access token (read scope is enough)

Usage:
    python3 digitalocean_collect.py ip 165.227.123.45
    python3 digitalocean_collect.py ip 165.227.123.45 --csv
    python3 digitalocean_collect.py test
"""
import logging
import math
import re
import sys
from typing import Any, Dict, Iterator, List, Optional

import httpx

from ipsweep.config import DigitalOceanConfig
from ipsweep.constants import (
    ADDRESS_RECORD_TYPES,
    DIGITALOCEAN_API_BASE,
    DIGITALOCEAN_PER_PAGE,
    PROVIDER_DIGITALOCEAN,
)
from ipsweep.http import ApiError, create_client, get_json, iter_pages
from ipsweep.models import (
    DiscoveryOutcome,
    DomainRecord,
    Droplet,
    FloatingIp,
    LoadBalancer,
)
from ipsweep.sweep import ProviderAdapter

logger = logging.getLogger(__name__)

_LAST_PAGE_PATTERN = re.compile(r'[?&]page=(\d+)')


# =============================================================================
# Pagination
# =============================================================================

def total_pages(payload: Dict[str, Any], per_page: int) -> int:
    """
    Page count of a DigitalOcean collection response.

    Uses meta.total when present, else the page number in links.pages.last.
    """
    meta = payload.get('meta') or {}
    total = meta.get('total')
    if total:
        return max(1, math.ceil(int(total) / per_page))

    last = ((payload.get('links') or {}).get('pages') or {}).get('last')
    if last:
        match = _LAST_PAGE_PATTERN.search(last)
        if match:
            return int(match.group(1))
    return 1


def _iter_collection(client: httpx.Client, path: str, key: str) -> Iterator[Dict[str, Any]]:
    for payload in iter_pages(client, path, total_pages, per_page=DIGITALOCEAN_PER_PAGE,
                              provider=PROVIDER_DIGITALOCEAN):
        for item in payload.get(key) or []:
            yield item


def _region_name(item: Dict[str, Any]) -> Optional[str]:
    region = item.get('region')
    if isinstance(region, dict):
        return region.get('name') or region.get('slug')
    return region


# =============================================================================
# Droplets
# =============================================================================

def droplet_addresses(droplet: Dict[str, Any]) -> List[str]:
    """Every IPv4 and IPv6 address on a droplet's network interfaces."""
    networks = droplet.get('networks') or {}
    addresses = []
    for family in ('v4', 'v6'):
        for network in networks.get(family) or []:
            address = network.get('ip_address')
            if address:
                addresses.append(address)
    return addresses


def collect_droplets(client: httpx.Client, ip: str) -> List[Droplet]:
    """Collect droplets with any network address equal to the IP."""
    resources = []
    for droplet in _iter_collection(client, '/droplets', 'droplets'):
        addresses = droplet_addresses(droplet)
        if ip not in addresses:
            continue
        resources.append(Droplet(
            name=droplet.get('name', ''),
            ip_candidates=frozenset(addresses),
            region=_region_name(droplet),
            status=droplet.get('status'),
            tags=tuple(droplet.get('tags') or ()),
            droplet_id=droplet.get('id'),
            size_slug=droplet.get('size_slug'),
        ))
    logger.info(f"Found {len(resources)} matching droplets")
    return resources


# =============================================================================
# Load Balancers & Floating IPs
# =============================================================================

def collect_load_balancers(client: httpx.Client, ip: str) -> List[LoadBalancer]:
    resources = []
    for lb in _iter_collection(client, '/load_balancers', 'load_balancers'):
        if lb.get('ip') != ip:
            continue
        resources.append(LoadBalancer(
            name=lb.get('name', ''),
            ip_candidates=frozenset([ip]),
            region=_region_name(lb),
            status=lb.get('status'),
            tags=(lb['tag'],) if lb.get('tag') else (),
            load_balancer_id=lb.get('id'),
        ))
    logger.info(f"Found {len(resources)} matching load balancers")
    return resources


def collect_floating_ips(client: httpx.Client, ip: str) -> List[FloatingIp]:
    """Floating IPs come back as a single page."""
    payload = get_json(client, '/floating_ips', provider=PROVIDER_DIGITALOCEAN)
    resources = []
    for fip in payload.get('floating_ips') or []:
        if fip.get('ip') != ip:
            continue
        droplet = fip.get('droplet') or {}
        locked = bool(fip.get('locked'))
        resources.append(FloatingIp(
            name=droplet.get('name') or 'Unassigned',
            ip_candidates=frozenset([ip]),
            region=_region_name(fip),
            status='locked' if locked else 'active',
            droplet_id=droplet.get('id'),
            locked=locked,
        ))
    logger.info(f"Found {len(resources)} matching floating IPs")
    return resources


# =============================================================================
# Domains
# =============================================================================

def list_domains(client: httpx.Client) -> List[Dict[str, Any]]:
    return list(_iter_collection(client, '/domains', 'domains'))


def list_domain_records(client: httpx.Client, domain_name: str) -> List[Dict[str, Any]]:
    """List a domain's records; a domain that no longer exists has none."""
    try:
        return list(_iter_collection(client, f'/domains/{domain_name}/records', 'domain_records'))
    except ApiError as e:
        if e.status_code == 404:
            logger.debug(f"Domain {domain_name} not found while listing records")
            return []
        raise


def record_fqdn(record_name: str, domain_name: str) -> str:
    if not record_name or record_name == '@':
        return domain_name
    return f"{record_name}.{domain_name}"


def collect_domain_records(client: httpx.Client, ip: str, outcome: DiscoveryOutcome) -> None:
    """
    Append matching A/AAAA records to outcome.

    Each domain is independent: a failure listing one domain's records is
    recorded on the outcome and the remaining domains are still searched.
    """
    domains = list_domains(client)
    matched = 0
    for domain in domains:
        domain_name = domain.get('name')
        if not domain_name:
            continue
        try:
            records = list_domain_records(client, domain_name)
        except Exception as e:
            logger.debug(f"Failed to list records for domain {domain_name}: {e}")
            outcome.record_error(PROVIDER_DIGITALOCEAN, f"domain {domain_name}", e)
            continue

        for record in records:
            if record.get('type') not in ADDRESS_RECORD_TYPES or record.get('data') != ip:
                continue
            outcome.resources.append(DomainRecord(
                name=record_fqdn(record.get('name', ''), domain_name),
                ip_candidates=frozenset([ip]),
                domain=domain_name,
                record_id=record.get('id'),
                record_type=record.get('type', ''),
                ttl=record.get('ttl'),
            ))
            matched += 1

    logger.info(f"Found {matched} matching domain records in {len(domains)} domains")


def collect_resources(client: httpx.Client, ip: str) -> DiscoveryOutcome:
    """Search every DigitalOcean collection for the IP."""
    outcome = DiscoveryOutcome()
    outcome.resources.extend(collect_droplets(client, ip))
    outcome.resources.extend(collect_load_balancers(client, ip))
    outcome.resources.extend(collect_floating_ips(client, ip))
    collect_domain_records(client, ip, outcome)
    return outcome


# =============================================================================
# Adapter
# =============================================================================

class DigitalOceanAdapter(ProviderAdapter):
    """DigitalOcean account discovery."""
    provider = PROVIDER_DIGITALOCEAN

    def __init__(self, config: DigitalOceanConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or create_client(
            DIGITALOCEAN_API_BASE, {'Authorization': f'Bearer {config.token}'}
        )

    def test_connection(self) -> bool:
        payload = get_json(self.client, '/account', provider=PROVIDER_DIGITALOCEAN)
        return isinstance(payload, dict) and isinstance(payload.get('account'), dict)

    def discover_by_ip(self, ip: str) -> DiscoveryOutcome:
        return collect_resources(self.client, ip)

    def close(self) -> None:
        self.client.close()


def main():
    from collect import main as collect_main
    sys.exit(collect_main([PROVIDER_DIGITALOCEAN] + sys.argv[1:]))


if __name__ == '__main__':
    main()
