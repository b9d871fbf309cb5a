"""
Sweep runner.

Drives the configured provider adapters for one IP, classifies each
provider's state, and hands the completed outcomes to the reconciliation
engine. Providers run one after another in priority order.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .constants import PROVIDER_PRIORITY, PROVIDER_TYPES
from .models import CanonicalEntry, DiscoveryOutcome
from .reconcile import order_providers, reconcile
from .utils import AuthError, ProgressTracker

logger = logging.getLogger(__name__)


class ProviderAdapter(ABC):
    """
    Discovery contract implemented once per provider.

    test_connection() is a cheap credential check. It returns False when the
    provider answers but the credentials are unusable, and raises AuthError
    with the provider's reason when they are rejected. discover_by_ip() does
    the full provider walk and returns matches plus non-fatal sub-call errors.
    """
    provider: str = ""

    @abstractmethod
    def test_connection(self) -> bool:
        """Verify that the configured credentials are valid."""
        raise NotImplementedError()

    @abstractmethod
    def discover_by_ip(self, ip: str) -> DiscoveryOutcome:
        """Find every resource of this provider bound to ip."""
        raise NotImplementedError()

    def close(self) -> None:
        """Release any network clients held by the adapter."""


class ProviderStatus(str, Enum):
    NOT_CONFIGURED = "not_configured"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"
    PARTIAL = "partial"
    EMPTY = "empty"
    FOUND = "found"


STATUS_DESCRIPTIONS = {
    ProviderStatus.NOT_CONFIGURED: "not configured",
    ProviderStatus.AUTH_FAILED: "authentication failed",
    ProviderStatus.FAILED: "discovery failed",
    ProviderStatus.PARTIAL: "configured, discovery partially failed",
    ProviderStatus.EMPTY: "configured, zero resources found",
    ProviderStatus.FOUND: "configured, resources found",
}


@dataclass
class ProviderReport:
    provider: str
    status: ProviderStatus
    outcome: Optional[DiscoveryOutcome] = None
    message: Optional[str] = None

    @property
    def resource_count(self) -> int:
        return len(self.outcome.resources) if self.outcome else 0

    @property
    def warnings(self) -> List[str]:
        """Human-readable warnings for this provider, fatal ones first."""
        warnings = []
        if self.message and self.status in (ProviderStatus.AUTH_FAILED, ProviderStatus.FAILED):
            warnings.append(f"{self.provider}: {self.message}")
        if self.outcome:
            warnings.extend(str(e) for e in self.outcome.errors)
        return warnings

    def to_dict(self) -> Dict:
        return {
            'provider': self.provider,
            'type': PROVIDER_TYPES.get(self.provider, 'unknown'),
            'status': self.status.value,
            'description': STATUS_DESCRIPTIONS[self.status],
            'resource_count': self.resource_count,
            'message': self.message,
            'errors': [e.to_dict() for e in self.outcome.errors] if self.outcome else [],
        }


@dataclass
class SweepReport:
    ip: str
    providers: Dict[str, ProviderReport] = field(default_factory=dict)
    entries: List[CanonicalEntry] = field(default_factory=list)

    @property
    def no_providers_configured(self) -> bool:
        return all(r.status == ProviderStatus.NOT_CONFIGURED for r in self.providers.values())

    @property
    def warnings(self) -> List[str]:
        warnings: List[str] = []
        for provider in order_providers(self.providers):
            warnings.extend(self.providers[provider].warnings)
        return warnings

    @property
    def providers_with_results(self) -> List[str]:
        return [p for p in order_providers(self.providers) if self.providers[p].resource_count]


def run_provider(adapter: ProviderAdapter, ip: str, tracker: Optional[ProgressTracker] = None) -> ProviderReport:
    """
    Test one adapter's credentials, then run its discovery.

    Never raises for provider failures: authentication problems and crashes
    become the report's status and message.
    """
    provider = adapter.provider

    if tracker:
        tracker.update_task("Testing connection...")
    try:
        connected = adapter.test_connection()
    except AuthError as e:
        logger.warning(f"{provider} authentication failed: {e}")
        return ProviderReport(provider, ProviderStatus.AUTH_FAILED, message=str(e))
    except Exception as e:
        logger.warning(f"{provider} connection test failed: {e}")
        return ProviderReport(provider, ProviderStatus.AUTH_FAILED, message=str(e))

    if not connected:
        logger.warning(f"{provider} connection test failed")
        return ProviderReport(provider, ProviderStatus.AUTH_FAILED, message="connection test failed")

    if tracker:
        tracker.update_task(f"Searching for {ip}...")
    try:
        outcome = adapter.discover_by_ip(ip)
    except AuthError as e:
        logger.warning(f"{provider} authentication failed during discovery: {e}")
        return ProviderReport(provider, ProviderStatus.AUTH_FAILED, message=str(e))
    except Exception as e:
        logger.error(f"Failed to search {provider} for {ip}: {e}")
        return ProviderReport(provider, ProviderStatus.FAILED, message=str(e))

    if outcome.errors:
        status = ProviderStatus.PARTIAL
        logger.warning(f"{provider} discovery finished with {len(outcome.errors)} skipped sub-call(s)")
    elif outcome.resources:
        status = ProviderStatus.FOUND
    else:
        status = ProviderStatus.EMPTY

    logger.info(f"{provider}: {len(outcome.resources)} matching resource(s)")
    return ProviderReport(provider, status, outcome=outcome)


def run_single(adapter: ProviderAdapter, ip: str, tracker: Optional[ProgressTracker] = None) -> SweepReport:
    """
    Single-provider mode: an authentication failure is fatal.

    Raises:
        AuthError: if the provider rejects the configured credentials
    """
    report = run_provider(adapter, ip, tracker)
    if report.status == ProviderStatus.AUTH_FAILED:
        raise AuthError(
            f"{adapter.provider} authentication failed: {report.message}",
            provider=adapter.provider,
        )
    outcomes = {adapter.provider: report.outcome}
    return SweepReport(ip=ip, providers={adapter.provider: report}, entries=reconcile(ip, outcomes))


def sweep(
    ip: str,
    adapters: Mapping[str, ProviderAdapter],
    tracker: Optional[ProgressTracker] = None,
) -> SweepReport:
    """
    Run every configured adapter in priority order and reconcile the results.

    Providers in PROVIDER_PRIORITY with no adapter are reported as not
    configured. One provider failing never stops the others.
    """
    report = SweepReport(ip=ip)
    outcomes: Dict[str, Optional[DiscoveryOutcome]] = {}

    for provider in order_providers(list(PROVIDER_PRIORITY) + list(adapters)):
        adapter = adapters.get(provider)
        if adapter is None:
            report.providers[provider] = ProviderReport(provider, ProviderStatus.NOT_CONFIGURED)
            continue

        if tracker:
            tracker.start_provider(provider)
        provider_report = run_provider(adapter, ip, tracker)
        report.providers[provider] = provider_report
        outcomes[provider] = provider_report.outcome
        if tracker:
            tracker.add_resources(provider_report.resource_count, len(provider_report.warnings))
            tracker.complete_provider()

    if report.no_providers_configured:
        logger.warning("No providers are configured")
        return report

    report.entries = reconcile(ip, outcomes)
    return report
