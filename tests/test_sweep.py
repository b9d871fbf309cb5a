"""
Tests for ipsweep/sweep.py.

Covers:
- provider state classification (not configured, auth failed, failed,
  partial, empty, found)
- no providers configured
- one provider failing without stopping the others
- single-provider mode raising AuthError
- adapters missing part of the contract
"""
import os
import sys
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ipsweep.models import CoolifyApplication, DiscoveryOutcome, DnsRecord, Droplet
from ipsweep.sweep import (
    ProviderAdapter,
    ProviderStatus,
    run_provider,
    run_single,
    sweep,
)
from ipsweep.utils import AuthError

IP = "203.0.113.9"


class FakeAdapter(ProviderAdapter):
    """Adapter returning canned results."""

    def __init__(self, provider, connected=True, outcome=None, error=None):
        self.provider = provider
        self.connected = connected
        self.outcome = outcome or DiscoveryOutcome()
        self.error = error
        self.discover_calls = 0

    def test_connection(self):
        if isinstance(self.connected, Exception):
            raise self.connected
        return self.connected

    def discover_by_ip(self, ip):
        self.discover_calls += 1
        if self.error:
            raise self.error
        return self.outcome


# =============================================================================
# run_provider
# =============================================================================

class TestRunProvider:
    """Tests for run_provider classification."""

    def test_found(self):
        adapter = FakeAdapter("digitalocean", outcome=DiscoveryOutcome(resources=[Droplet(name="web-1")]))
        report = run_provider(adapter, IP)
        assert report.status == ProviderStatus.FOUND
        assert report.resource_count == 1
        assert report.warnings == []

    def test_empty(self):
        report = run_provider(FakeAdapter("digitalocean"), IP)
        assert report.status == ProviderStatus.EMPTY
        assert report.resource_count == 0

    def test_partial(self):
        outcome = DiscoveryOutcome(resources=[Droplet(name="web-1")])
        outcome.record_error("digitalocean", "domain example.com", RuntimeError("HTTP 500"))
        report = run_provider(FakeAdapter("digitalocean", outcome=outcome), IP)
        assert report.status == ProviderStatus.PARTIAL
        assert report.warnings == ["digitalocean: domain example.com: HTTP 500"]

    def test_connection_false_is_auth_failed(self):
        adapter = FakeAdapter("cloudflare", connected=False)
        report = run_provider(adapter, IP)
        assert report.status == ProviderStatus.AUTH_FAILED
        assert adapter.discover_calls == 0

    def test_connection_exception_is_auth_failed(self):
        report = run_provider(FakeAdapter("cloudflare", connected=RuntimeError("boom")), IP)
        assert report.status == ProviderStatus.AUTH_FAILED
        assert report.warnings == ["cloudflare: boom"]

    def test_auth_error_reason_reaches_warnings(self):
        error = AuthError("digitalocean rejected the configured credentials (HTTP 401): Unable to authenticate you",
                          provider="digitalocean")
        report = run_provider(FakeAdapter("digitalocean", connected=error), IP)
        assert report.status == ProviderStatus.AUTH_FAILED
        assert report.warnings == [f"digitalocean: {error}"]

    def test_auth_error_during_discovery(self):
        adapter = FakeAdapter("coolify", error=AuthError("token revoked", provider="coolify"))
        assert run_provider(adapter, IP).status == ProviderStatus.AUTH_FAILED

    def test_crash_is_failed(self):
        report = run_provider(FakeAdapter("gcp", error=RuntimeError("quota")), IP)
        assert report.status == ProviderStatus.FAILED
        assert report.outcome is None
        assert report.to_dict()['status'] == "failed"

    def test_tracker_updates(self):
        tracker = Mock()
        run_provider(FakeAdapter("gcp"), IP, tracker)
        assert tracker.update_task.call_count == 2


# =============================================================================
# sweep
# =============================================================================

class TestSweep:
    """Tests for sweep."""

    def test_no_providers_configured(self):
        report = sweep(IP, {})
        assert report.no_providers_configured
        assert report.entries == []
        assert set(report.providers) == {"cloudflare", "coolify", "digitalocean", "gcp"}
        assert all(r.status == ProviderStatus.NOT_CONFIGURED for r in report.providers.values())

    def test_zero_found_is_not_no_providers(self):
        report = sweep(IP, {"digitalocean": FakeAdapter("digitalocean")})
        assert not report.no_providers_configured
        assert report.providers["digitalocean"].status == ProviderStatus.EMPTY
        assert report.providers["gcp"].status == ProviderStatus.NOT_CONFIGURED
        assert report.entries == []

    def test_failure_does_not_stop_others(self):
        record = DnsRecord(name="api.example.com", ip_candidates=frozenset([IP]))
        app = CoolifyApplication(name="api", ip_candidates=frozenset([IP]), fqdn="api.example.com")
        adapters = {
            "cloudflare": FakeAdapter("cloudflare", outcome=DiscoveryOutcome(resources=[record])),
            "coolify": FakeAdapter("coolify", outcome=DiscoveryOutcome(resources=[app])),
            "gcp": FakeAdapter("gcp", error=RuntimeError("quota")),
        }
        report = sweep(IP, adapters)

        assert report.providers["gcp"].status == ProviderStatus.FAILED
        assert len(report.entries) == 1
        assert report.entries[0].label == "cloudflare+coolify"
        assert report.providers_with_results == ["cloudflare", "coolify"]
        assert report.warnings == ["gcp: quota"]

    def test_tracker_counts_providers(self):
        tracker = Mock()
        sweep(IP, {"digitalocean": FakeAdapter("digitalocean"), "gcp": FakeAdapter("gcp")}, tracker)
        assert tracker.start_provider.call_count == 2
        assert tracker.complete_provider.call_count == 2


class TestRunSingle:
    """Tests for run_single."""

    def test_auth_failure_raises(self):
        with pytest.raises(AuthError) as exc_info:
            run_single(FakeAdapter("digitalocean", connected=False), IP)
        assert exc_info.value.provider == "digitalocean"

    def test_success(self):
        droplet = Droplet(name="web-1", ip_candidates=frozenset([IP]))
        report = run_single(
            FakeAdapter("digitalocean", outcome=DiscoveryOutcome(resources=[droplet])), IP,
        )
        assert list(report.providers) == ["digitalocean"]
        assert [e.identifier for e in report.entries] == ["web-1"]


class TestProviderAdapter:
    """Tests for the ProviderAdapter contract."""

    def test_incomplete_adapter_cannot_be_created(self):
        class ConnectOnly(ProviderAdapter):
            provider = "digitalocean"

            def test_connection(self):
                return True

        with pytest.raises(TypeError):
            ConnectOnly()

    def test_close_is_optional(self):
        FakeAdapter("digitalocean").close()
