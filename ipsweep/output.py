"""
Output projections of a SweepReport: JSON, CSV, simple and a rich table.

The projections only read the canonical inventory; they never re-run
matching. JSON and CSV derive their per-provider flags from the same
CanonicalEntry.in_provider() call so the two always agree.
"""
import csv
import io
import json
from collections import Counter
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from .constants import (
    CSV_HEADER,
    FLAG_PROVIDERS,
    PROVIDER_DISPLAY_NAMES,
    PROVIDER_TYPES,
)
from .models import CanonicalEntry
from .reconcile import order_providers
from .sweep import ProviderStatus, STATUS_DESCRIPTIONS, SweepReport


def _flags(entry: CanonicalEntry) -> Dict[str, bool]:
    return {f"in_{provider}": entry.in_provider(provider) for provider in FLAG_PROVIDERS}


def entry_to_dict(entry: CanonicalEntry) -> Dict[str, Any]:
    data = entry.to_dict()
    data.update(_flags(entry))
    return data


def build_summary(report: SweepReport) -> Dict[str, Any]:
    kinds = Counter(entry.resource_kind.value for entry in report.entries)
    configured = [
        p for p in order_providers(report.providers)
        if report.providers[p].status != ProviderStatus.NOT_CONFIGURED
    ]
    return {
        'total_entries': len(report.entries),
        'total_resources': sum(r.resource_count for r in report.providers.values()),
        'providers_configured': configured,
        'providers_with_results': report.providers_with_results,
        'no_providers_configured': report.no_providers_configured,
        'by_kind': dict(sorted(kinds.items())),
    }


def to_json_data(report: SweepReport, run_id: str, timestamp: str) -> Dict[str, Any]:
    """Full JSON projection including per-provider detail blobs."""
    return {
        'ip': report.ip,
        'run_id': run_id,
        'timestamp': timestamp,
        'entries': [entry_to_dict(entry) for entry in report.entries],
        'providers': {
            p: report.providers[p].to_dict() for p in order_providers(report.providers)
        },
        'warnings': report.warnings,
        'summary': build_summary(report),
    }


def to_csv(report: SweepReport) -> str:
    """
    CSV projection: one row per canonical entry.

    Example row: 165.227.123.45,web-1,droplet,digitalocean,No,Yes,No
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(CSV_HEADER)
    for entry in report.entries:
        flags = ['Yes' if entry.in_provider(p) else 'No' for p in FLAG_PROVIDERS]
        writer.writerow([
            report.ip,
            entry.identifier,
            entry.resource_kind.value,
            entry.label,
        ] + flags)
    return buffer.getvalue()


def to_simple(report: SweepReport, provider: Optional[str] = None) -> Dict[str, Any]:
    """
    Simple projection.

    With a provider (single-provider mode): {ip: [sorted identifiers]}.
    Otherwise a per-provider breakdown plus a summary.
    """
    if provider:
        return {report.ip: sorted(entry.identifier for entry in report.entries)}

    providers: List[Dict[str, Any]] = []
    for name in order_providers(report.providers):
        provider_report = report.providers[name]
        if provider_report.status == ProviderStatus.NOT_CONFIGURED:
            continue
        providers.append({
            'name': name,
            'type': PROVIDER_TYPES.get(name, 'unknown'),
            'status': provider_report.status.value,
            'resources': sorted(
                entry.identifier for entry in report.entries if entry.in_provider(name)
            ),
        })

    return {
        'ip': report.ip,
        'providers': providers,
        'summary': {
            'total_resources': len(report.entries),
            'providers_with_results': report.providers_with_results,
        },
    }


def dumps(data: Any) -> str:
    return json.dumps(data, indent=2, default=str) + '\n'


# =============================================================================
# Console Rendering
# =============================================================================

_STATUS_STYLES = {
    ProviderStatus.NOT_CONFIGURED: "dim",
    ProviderStatus.AUTH_FAILED: "red",
    ProviderStatus.FAILED: "red",
    ProviderStatus.PARTIAL: "yellow",
    ProviderStatus.EMPTY: "cyan",
    ProviderStatus.FOUND: "green",
}


def _is_approximate(entry: CanonicalEntry) -> bool:
    return any(getattr(resource, 'approximate', False) for resource in entry.details.values())


def _location(entry: CanonicalEntry) -> str:
    primary = entry.primary
    parts = [primary.project_id, primary.region]
    return ' / '.join(p for p in parts if p) or '-'


def render_report(report: SweepReport, console: Optional[Console] = None) -> None:
    """Print provider states, the canonical inventory and warnings."""
    console = console or Console()

    status_table = Table(title=f"Providers searched for {report.ip}")
    status_table.add_column("Provider", style="bold")
    status_table.add_column("Type")
    status_table.add_column("Status")
    status_table.add_column("Matches", justify="right")
    for name in order_providers(report.providers):
        provider_report = report.providers[name]
        style = _STATUS_STYLES[provider_report.status]
        status_table.add_row(
            PROVIDER_DISPLAY_NAMES.get(name, name),
            PROVIDER_TYPES.get(name, 'unknown'),
            f"[{style}]{STATUS_DESCRIPTIONS[provider_report.status]}[/{style}]",
            str(provider_report.resource_count),
        )
    console.print(status_table)

    if report.no_providers_configured:
        console.print("[red]No providers are configured.[/red] Run 'ipsweep <provider> config' for setup help.")
        return

    if report.entries:
        table = Table(title=f"Resources bound to {report.ip}")
        table.add_column("Identifier", style="cyan")
        table.add_column("Kind")
        table.add_column("Providers", style="green")
        table.add_column("Status")
        table.add_column("Location")
        for entry in report.entries:
            table.add_row(
                entry.identifier + (" (via DNS)" if _is_approximate(entry) else ""),
                entry.resource_kind.value,
                entry.label,
                entry.primary.status or '-',
                _location(entry),
            )
        console.print(table)
    else:
        console.print(f"[yellow]No resources found for {report.ip}[/yellow]")

    warnings = report.warnings
    if warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in warnings:
            console.print(f"  - {warning}", style="yellow", markup=False, highlight=False)
