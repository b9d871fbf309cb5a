#!/usr/bin/env python3
"""
IPSweep - Cloudflare DNS Collector

Finds A/AAAA records pointing at an IP across every zone the credentials
can read.

Authentication (first match wins):
    CLOUDFLARE_API_TOKEN                      - scoped API token (preferred)
    CLOUDFLARE_EMAIL + CLOUDFLARE_API_KEY     - global API key

Usage:
    python3 cloudflare_collect.py ip 203.0.113.9
    python3 cloudflare_collect.py ip 203.0.113.9 --json --output records.json
    python3 cloudflare_collect.py test
"""
import logging
import sys
from typing import Any, Dict, Iterator, List, Optional

import httpx

from ipsweep.config import CloudflareConfig
from ipsweep.constants import (
    ADDRESS_RECORD_TYPES,
    CLOUDFLARE_API_BASE,
    CLOUDFLARE_RECORDS_PER_PAGE,
    CLOUDFLARE_ZONES_PER_PAGE,
    PROVIDER_CLOUDFLARE,
)
from ipsweep.http import ApiError, create_client, get_json, iter_pages
from ipsweep.models import DiscoveryOutcome, DnsRecord
from ipsweep.sweep import ProviderAdapter

logger = logging.getLogger(__name__)


# =============================================================================
# Authentication
# =============================================================================

def build_auth_headers(config: CloudflareConfig) -> Dict[str, str]:
    """Bearer token when available, otherwise the email/global key pair."""
    if config.api_token:
        return {'Authorization': f'Bearer {config.api_token}'}
    if config.email and config.api_key:
        return {'X-Auth-Email': config.email, 'X-Auth-Key': config.api_key}
    raise ValueError("Cloudflare requires an API token, or an email plus API key")


def _envelope_errors(payload: Any) -> str:
    if isinstance(payload, dict):
        errors = payload.get('errors') or []
        messages = [e.get('message', str(e)) if isinstance(e, dict) else str(e) for e in errors]
        if messages:
            return '; '.join(messages)
    return "request was not successful"


def _get_result(client: httpx.Client, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """GET a Cloudflare endpoint and check the {success, result} envelope."""
    payload = get_json(client, path, params=params, provider=PROVIDER_CLOUDFLARE)
    return _check_envelope(payload, path)


def _check_envelope(payload: Any, path: str) -> Dict[str, Any]:
    if not isinstance(payload, dict) or payload.get('success') is not True:
        raise ApiError(f"{path}: {_envelope_errors(payload)}", provider=PROVIDER_CLOUDFLARE)
    return payload


def verify_credentials(client: httpx.Client, uses_token: bool = True) -> bool:
    """
    Probe the credentials without listing records.

    Tokens are checked with /user/tokens/verify. Global API keys cannot call
    that endpoint (Cloudflare answers 400), so they are checked with a
    one-item zone listing instead.
    """
    if uses_token:
        try:
            payload = _get_result(client, '/user/tokens/verify')
            status = (payload.get('result') or {}).get('status', 'active')
            if status != 'active':
                logger.warning(f"Cloudflare API token status is {status}")
            return status == 'active'
        except ApiError as e:
            if e.status_code != 400:
                raise
            logger.debug("Token verification returned 400, falling back to zone listing")

    _get_result(client, '/zones', params={'per_page': 1})
    return True


# =============================================================================
# Collectors
# =============================================================================

def _total_pages(payload: Dict[str, Any], per_page: int) -> int:
    info = payload.get('result_info') or {}
    try:
        return int(info.get('total_pages') or 1)
    except (TypeError, ValueError):
        return 1


def _iter_results(client: httpx.Client, path: str, per_page: int) -> Iterator[Dict[str, Any]]:
    for payload in iter_pages(client, path, _total_pages, per_page=per_page, provider=PROVIDER_CLOUDFLARE):
        _check_envelope(payload, path)
        for item in payload.get('result') or []:
            yield item


def list_zones(client: httpx.Client) -> List[Dict[str, Any]]:
    """List every zone visible to the credentials."""
    zones = list(_iter_results(client, '/zones', CLOUDFLARE_ZONES_PER_PAGE))
    logger.info(f"Found {len(zones)} Cloudflare zones")
    return zones


def list_dns_records(client: httpx.Client, zone_id: str) -> Iterator[Dict[str, Any]]:
    """Yield every DNS record in a zone."""
    return _iter_results(client, f'/zones/{zone_id}/dns_records', CLOUDFLARE_RECORDS_PER_PAGE)


def record_matches(record: Dict[str, Any], ip: str) -> bool:
    return record.get('type') in ADDRESS_RECORD_TYPES and record.get('content') == ip


def to_dns_record(record: Dict[str, Any], zone: Dict[str, Any]) -> DnsRecord:
    zone_name = zone.get('name') or record.get('zone_name') or ''
    return DnsRecord(
        name=record.get('name', ''),
        ip_candidates=frozenset([record['content']]),
        tags=(f"zone={zone_name}",) if zone_name else (),
        zone_id=zone.get('id') or record.get('zone_id', ''),
        zone_name=zone_name,
        record_id=record.get('id', ''),
        record_type=record.get('type', ''),
        content=record['content'],
        proxied=bool(record.get('proxied', False)),
        ttl=record.get('ttl'),
    )


def collect_dns_records(client: httpx.Client, ip: str) -> DiscoveryOutcome:
    """
    Walk every zone and return the A/AAAA records whose content is the IP.

    Listing zones failing aborts the provider. A zone whose records cannot be
    listed is recorded on the outcome and the remaining zones are still
    searched; matches from pages read before the failure are kept.
    """
    outcome = DiscoveryOutcome()
    zones = list_zones(client)

    for zone in zones:
        zone_id = zone.get('id')
        if not zone_id:
            continue
        zone_name = zone.get('name') or zone_id
        try:
            for record in list_dns_records(client, zone_id):
                if record_matches(record, ip):
                    outcome.resources.append(to_dns_record(record, zone))
        except Exception as e:
            logger.debug(f"Failed to list DNS records for zone {zone_name}: {e}")
            outcome.record_error(PROVIDER_CLOUDFLARE, f"zone {zone_name}", e)

    logger.info(f"Found {len(outcome.resources)} matching DNS records in {len(zones)} zones")
    return outcome


# =============================================================================
# Adapter
# =============================================================================

class CloudflareAdapter(ProviderAdapter):
    """Cloudflare DNS discovery."""
    provider = PROVIDER_CLOUDFLARE

    def __init__(self, config: CloudflareConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or create_client(CLOUDFLARE_API_BASE, build_auth_headers(config))

    def test_connection(self) -> bool:
        """
        Raises:
            AuthError: if Cloudflare rejects the credentials
        """
        return verify_credentials(self.client, self.config.uses_token)

    def discover_by_ip(self, ip: str) -> DiscoveryOutcome:
        return collect_dns_records(self.client, ip)

    def close(self) -> None:
        self.client.close()


def main():
    from collect import main as collect_main
    sys.exit(collect_main([PROVIDER_CLOUDFLARE] + sys.argv[1:]))


if __name__ == '__main__':
    main()
