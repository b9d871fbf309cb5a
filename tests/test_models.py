"""
Tests for ipsweep/models.py.

Covers:
- identifier derivation per variant (DNS name vs bare name)
- hostname extraction from URLs and Coolify fqdn lists
- exact-string IP matching
- DiscoveryOutcome error recording and merging
- ProjectSet de-duplication
- CanonicalEntry derived fields
"""
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ipsweep.models import (
    CanonicalEntry,
    CloudRunService,
    ComputeInstance,
    CoolifyApplication,
    CoolifyDatabase,
    DiscoveryOutcome,
    DnsRecord,
    DomainRecord,
    Droplet,
    ForwardingRule,
    ProjectSet,
    ResourceKind,
    hostname_from_url,
    normalize_dns_name,
)

# =============================================================================
# Helpers
# =============================================================================

class TestHostnameFromUrl:
    """Tests for hostname_from_url."""

    def test_bare_hostname(self):
        assert hostname_from_url("app.example.com") == "app.example.com"

    def test_url_with_port_and_path(self):
        assert hostname_from_url("https://app.example.com:8443/health") == "app.example.com"

    def test_comma_separated_list_uses_first(self):
        assert hostname_from_url("https://a.example.com,https://b.example.com") == "a.example.com"

    def test_empty_values(self):
        assert hostname_from_url(None) is None
        assert hostname_from_url("") is None
        assert hostname_from_url(" ,https://b.example.com") is None


class TestNormalizeDnsName:
    """Tests for normalize_dns_name."""

    def test_lowercases_and_strips_root_dot(self):
        assert normalize_dns_name("API.Example.COM.") == "api.example.com"


# =============================================================================
# Resource Variants
# =============================================================================

class TestResourceIdentifier:
    """Identifier derivation for each variant."""

    def test_dns_record_uses_record_name(self):
        record = DnsRecord(name="Api.Example.com", ip_candidates=frozenset(["203.0.113.9"]))
        assert record.identifier == "api.example.com"
        assert record.provider == "cloudflare"
        assert record.kind == ResourceKind.DNS_RECORD

    def test_coolify_uses_fqdn_host(self):
        app = CoolifyApplication(name="web", fqdn="https://API.example.com")
        assert app.identifier == "api.example.com"
        assert app.kind == ResourceKind.APPLICATION

    def test_coolify_without_fqdn_uses_name(self):
        db = CoolifyDatabase(name="postgres-main")
        assert db.identifier == "postgres-main"
        assert db.kind == ResourceKind.DATABASE

    def test_droplet_uses_name(self):
        droplet = Droplet(name="web-1", ip_candidates=frozenset(["165.227.123.45"]))
        assert droplet.identifier == "web-1"
        assert droplet.provider == "digitalocean"

    def test_domain_record_uses_fqdn(self):
        record = DomainRecord(name="www.example.com", domain="example.com")
        assert record.identifier == "www.example.com"

    def test_cloud_run_uses_url_host_and_is_approximate(self):
        service = CloudRunService(name="api", url="https://api-abc123-uc.a.run.app")
        assert service.identifier == "api-abc123-uc.a.run.app"
        assert service.approximate is True

    def test_forwarding_rule_kind_is_load_balancer(self):
        rule = ForwardingRule(name="lb-rule")
        assert rule.kind == ResourceKind.LOAD_BALANCER
        assert rule.provider == "gcp"


class TestResourceMatching:
    """IP matching is exact string membership."""

    def test_exact_match(self):
        droplet = Droplet(name="web-1", ip_candidates=frozenset(["192.168.1.1", "10.0.0.5"]))
        assert droplet.matches("192.168.1.1")
        assert droplet.matches("10.0.0.5")

    def test_no_prefix_or_zero_padded_match(self):
        droplet = Droplet(name="web-1", ip_candidates=frozenset(["192.168.1.1"]))
        assert not droplet.matches("192.168.1.10")
        assert not droplet.matches("192.168.1.01")
        assert not droplet.matches("192.168.1")

    def test_ipv6_is_not_normalized(self):
        instance = ComputeInstance(name="vm", ip_candidates=frozenset(["2001:db8::1"]))
        assert instance.matches("2001:db8::1")
        assert not instance.matches("2001:0db8:0000:0000:0000:0000:0000:0001")


class TestResourceSerialization:
    """to_dict and sort_key."""

    def test_to_dict_includes_kind_and_identifier(self):
        droplet = Droplet(name="web-1", ip_candidates=frozenset(["b", "a"]), tags=("prod",))
        data = droplet.to_dict()
        assert data['kind'] == "droplet"
        assert data['identifier'] == "web-1"
        assert data['ip_candidates'] == ["a", "b"]
        assert data['tags'] == ["prod"]

    def test_sort_key_is_total_over_metadata(self):
        a = Droplet(name="web-1", ip_candidates=frozenset(["1.1.1.1"]), droplet_id=1)
        b = Droplet(name="web-1", ip_candidates=frozenset(["1.1.1.1"]), droplet_id=2)
        assert a.sort_key() != b.sort_key()
        assert min(a.sort_key(), b.sort_key()) == a.sort_key()

    def test_resources_are_frozen(self):
        droplet = Droplet(name="web-1")
        with pytest.raises(Exception):
            droplet.name = "other"


# =============================================================================
# Discovery Results
# =============================================================================

class TestDiscoveryOutcome:
    """Tests for DiscoveryOutcome."""

    def test_record_error(self):
        outcome = DiscoveryOutcome()
        error = outcome.record_error("coolify", "project shop", RuntimeError("boom"))
        assert outcome.partial
        assert error.message == "boom"
        assert str(error) == "coolify: project shop: boom"

    def test_merge_preserves_order(self):
        first = DiscoveryOutcome(resources=[Droplet(name="a")])
        second = DiscoveryOutcome(resources=[Droplet(name="b")])
        second.record_error("gcp", "project p2", ValueError("nope"))
        first.merge(second)
        assert [r.name for r in first.resources] == ["a", "b"]
        assert len(first.errors) == 1

    def test_empty_outcome_is_not_partial(self):
        assert not DiscoveryOutcome().partial


class TestProjectSet:
    """Tests for ProjectSet."""

    def test_from_ids_dedupes_preserving_order(self):
        projects = ProjectSet.from_ids(["p2", "p1", "p2", " ", "p3"])
        assert projects.ids == ("p2", "p1", "p3")
        assert len(projects) == 3
        assert list(projects) == ["p2", "p1", "p3"]
        assert projects.discovered is False

    def test_empty_set_is_falsy(self):
        assert not ProjectSet.from_ids([], discovered=True)


class TestCanonicalEntry:
    """Tests for CanonicalEntry derived fields."""

    def test_primary_and_kinds(self):
        record = DnsRecord(name="api.example.com")
        app = CoolifyApplication(name="api", fqdn="api.example.com")
        entry = CanonicalEntry(
            identifier="api.example.com",
            providers=frozenset(["cloudflare", "coolify"]),
            details={"cloudflare": record, "coolify": app},
            label="cloudflare+coolify",
            primary_provider="cloudflare",
        )
        assert entry.primary is record
        assert entry.resource_kind == ResourceKind.DNS_RECORD
        assert entry.kinds == {"cloudflare": ResourceKind.DNS_RECORD, "coolify": ResourceKind.APPLICATION}
        assert entry.in_provider("coolify")
        assert not entry.in_provider("gcp")

        data = entry.to_dict()
        assert data['providers'] == "cloudflare+coolify"
        assert data['provider_set'] == ["cloudflare", "coolify"]
        assert data['resource_kind'] == "dns_record"
        assert set(data['details']) == {"cloudflare", "coolify"}
