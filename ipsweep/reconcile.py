"""
Cross-provider reconciliation.

Merges the per-provider DiscoveryOutcomes of one sweep into a flat list of
CanonicalEntry values, one per distinct identifier, sorted by identifier.
The result depends only on the set of resources each provider reported,
not on the order they were listed in.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .constants import LABEL_ALL, LABEL_SEPARATOR, PROVIDER_PRIORITY
from .models import CanonicalEntry, DiscoveryOutcome, Resource

logger = logging.getLogger(__name__)


def order_providers(
    providers: Iterable[str],
    priority: Sequence[str] = PROVIDER_PRIORITY,
) -> List[str]:
    """Sort providers by priority; unknown providers follow alphabetically."""
    rank = {provider: i for i, provider in enumerate(priority)}
    return sorted(set(providers), key=lambda p: (rank.get(p, len(rank)), p))


def provider_label(
    providers: Iterable[str],
    priority: Sequence[str] = PROVIDER_PRIORITY,
) -> str:
    """
    Render a provider-combination label from a provider set.

    {"cloudflare", "coolify"} -> "cloudflare+coolify"; the full set of known
    providers renders as "all".
    """
    members = set(providers)
    if priority and members == set(priority):
        return LABEL_ALL
    return LABEL_SEPARATOR.join(sorted(members))


def _dedupe(resources: Iterable[Resource]) -> Dict[str, Resource]:
    """Keep one resource per identifier, the one with the smallest sort key."""
    chosen: Dict[str, Resource] = {}
    for resource in resources:
        identifier = resource.identifier
        if not identifier:
            continue
        current = chosen.get(identifier)
        if current is None or resource.sort_key() < current.sort_key():
            chosen[identifier] = resource
    return chosen


def reconcile(
    ip: str,
    outcomes: Mapping[str, Optional[DiscoveryOutcome]],
    priority: Sequence[str] = PROVIDER_PRIORITY,
) -> List[CanonicalEntry]:
    """
    Merge provider outcomes into the canonical inventory.

    Args:
        ip: The queried address; used for diagnostics only
        outcomes: Provider name -> outcome. A missing key or None means the
                  provider was not configured and contributes nothing.
        priority: Provider priority order

    Returns:
        CanonicalEntry list sorted by identifier
    """
    merged: Dict[str, Tuple[List[str], Dict[str, Resource]]] = {}

    for provider in order_providers(outcomes.keys(), priority):
        outcome = outcomes.get(provider)
        if outcome is None:
            continue
        for identifier, resource in _dedupe(outcome.resources).items():
            if not resource.matches(ip):
                logger.debug(f"{provider} reported {identifier} without a candidate equal to {ip}")
            members, details = merged.setdefault(identifier, ([], {}))
            members.append(provider)
            details[provider] = resource

    entries = []
    for identifier in sorted(merged):
        members, details = merged[identifier]
        entries.append(CanonicalEntry(
            identifier=identifier,
            providers=frozenset(members),
            details=details,
            label=provider_label(members, priority),
            primary_provider=members[0],
        ))

    logger.debug(f"Reconciled {len(entries)} entries for {ip}")
    return entries
