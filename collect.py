#!/usr/bin/env python3
"""
IPSweep - Unified IP Resource Sweep

Answers "what is bound to this IP?" across Cloudflare DNS, Coolify
deployments, DigitalOcean and Google Cloud, and reconciles the findings into
one inventory with a single entry per resource identifier.

Usage:
    # Sweep every configured provider
    python collect.py all ip 203.0.113.9
    python collect.py all ip 203.0.113.9 --csv --output sweep.csv

    # One provider only
    python collect.py cloudflare ip 203.0.113.9 --json
    python collect.py gcp ip 34.120.0.10 --all-projects --parallel-workers 8

    # Check credentials
    python collect.py all test

    # Show resolved configuration (secrets masked) or write a sample file
    python collect.py all config
    python collect.py all config --init ipsweep.yaml
"""
import argparse
import logging
import os
import sys
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape

from ipsweep import __version__
from ipsweep.config import ResolvedConfig, generate_sample_config, load_config, resolve_config
from ipsweep.constants import (
    OUTPUT_FORMAT_CSV,
    OUTPUT_FORMAT_JSON,
    OUTPUT_FORMAT_SIMPLE,
    OUTPUT_FORMAT_TABLE,
    PROVIDER_CLOUDFLARE,
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_DISPLAY_NAMES,
    PROVIDER_GCP,
    PROVIDER_PRIORITY,
)
from ipsweep.output import dumps, render_report, to_csv, to_json_data, to_simple
from ipsweep.sweep import ProviderAdapter, SweepReport, run_single, sweep
from ipsweep.utils import (
    AuthError,
    InvalidIPError,
    ProgressTracker,
    generate_run_id,
    get_timestamp,
    mask_token,
    setup_logging,
    validate_ip,
    validate_output_path,
    write_text,
)

logger = logging.getLogger(__name__)

ALL_PROVIDERS = 'all'

SETUP_HINTS = {
    PROVIDER_CLOUDFLARE: "Set CLOUDFLARE_API_TOKEN (or CLOUDFLARE_EMAIL + CLOUDFLARE_API_KEY)",
    PROVIDER_COOLIFY: "Set COOLIFY_URL and COOLIFY_API_TOKEN",
    PROVIDER_DIGITALOCEAN: "Set DIGITALOCEAN_TOKEN",
    PROVIDER_GCP: "Set GCP_PROJECT_ID, GCP_PROJECT_IDS or GCP_AUTO_DISCOVER=true "
                  "(credentials: GCP_ACCESS_TOKEN or gcloud auth application-default login)",
}


# =============================================================================
# Adapter Construction
# =============================================================================

def create_adapter(provider: str, config: ResolvedConfig) -> ProviderAdapter:
    """Construct one provider's adapter from its resolved config section."""
    # Provider modules are imported lazily so a sweep only loads the SDKs it needs
    if provider == PROVIDER_CLOUDFLARE:
        from cloudflare_collect import CloudflareAdapter
        return CloudflareAdapter(config.cloudflare)
    if provider == PROVIDER_COOLIFY:
        from coolify_collect import CoolifyAdapter
        return CoolifyAdapter(config.coolify)
    if provider == PROVIDER_DIGITALOCEAN:
        from digitalocean_collect import DigitalOceanAdapter
        return DigitalOceanAdapter(config.digitalocean)
    if provider == PROVIDER_GCP:
        from gcp_collect import GcpAdapter
        return GcpAdapter(config.gcp)
    raise ValueError(f"Unknown provider: {provider}")


def build_adapters(config: ResolvedConfig, providers: Optional[List[str]] = None) -> Dict[str, ProviderAdapter]:
    """Build adapters for the configured providers; unconfigured ones are skipped."""
    adapters: Dict[str, ProviderAdapter] = {}
    for provider in providers or PROVIDER_PRIORITY:
        if not config.is_configured(provider):
            logger.debug(f"{provider} is not configured, skipping")
            continue
        adapters[provider] = create_adapter(provider, config)
    return adapters


def close_adapters(adapters: Dict[str, ProviderAdapter]) -> None:
    for adapter in adapters.values():
        adapter.close()


# =============================================================================
# Commands
# =============================================================================

def _output_format(args) -> str:
    if args.json:
        return OUTPUT_FORMAT_JSON
    if args.csv:
        return OUTPUT_FORMAT_CSV
    if args.simple:
        return OUTPUT_FORMAT_SIMPLE
    return OUTPUT_FORMAT_TABLE


def emit_report(report: SweepReport, args, console: Console) -> None:
    """Render the report in the requested format to stdout or --output."""
    output_format = _output_format(args)
    single_provider = None if args.provider == ALL_PROVIDERS else args.provider

    if output_format == OUTPUT_FORMAT_TABLE and not args.output:
        render_report(report, console)
        return

    if output_format == OUTPUT_FORMAT_CSV:
        content = to_csv(report)
    elif output_format == OUTPUT_FORMAT_SIMPLE:
        content = dumps(to_simple(report, provider=single_provider))
    else:
        content = dumps(to_json_data(report, generate_run_id(), get_timestamp()))

    if args.output:
        path = validate_output_path(args.output)
        write_text(content, path)
        console.print(f"[green]✓[/green] Wrote {path}")
    else:
        sys.stdout.write(content)


def cmd_ip(args, config: ResolvedConfig, console: Console) -> int:
    try:
        ip = validate_ip(args.address)
    except InvalidIPError as e:
        console.print(f"[red]Error:[/red] {e}", highlight=False)
        return 1

    if args.provider == ALL_PROVIDERS:
        adapters = build_adapters(config)
        if not adapters:
            console.print("[red]Error:[/red] No providers are configured.")
            for provider in PROVIDER_PRIORITY:
                console.print(f"  {PROVIDER_DISPLAY_NAMES[provider]}: {SETUP_HINTS[provider]}", highlight=False)
            return 1
    else:
        if not config.is_configured(args.provider):
            console.print(
                f"[red]Error:[/red] {PROVIDER_DISPLAY_NAMES[args.provider]} is not configured. "
                f"{SETUP_HINTS[args.provider]}",
                highlight=False,
            )
            return 1
        adapters = build_adapters(config, [args.provider])

    try:
        with ProgressTracker(ip, total_providers=len(adapters), show_progress=not args.quiet) as tracker:
            if args.provider == ALL_PROVIDERS:
                report = sweep(ip, adapters, tracker)
            else:
                adapter = adapters[args.provider]
                tracker.start_provider(adapter.provider)
                report = run_single(adapter, ip, tracker)
                tracker.add_resources(report.providers[adapter.provider].resource_count,
                                      len(report.warnings))
                tracker.complete_provider()
    except AuthError as e:
        logger.error(f"Authentication failed: {e}")
        console.print(f"[red]Error:[/red] {e}", highlight=False)
        return 1
    finally:
        close_adapters(adapters)

    emit_report(report, args, console)
    return 0


def cmd_test(args, config: ResolvedConfig, console: Console) -> int:
    """Test credentials; exit 1 if any tested provider fails or none is configured."""
    providers = list(PROVIDER_PRIORITY) if args.provider == ALL_PROVIDERS else [args.provider]

    tested = 0
    failures = 0
    for provider in providers:
        name = PROVIDER_DISPLAY_NAMES[provider]
        if not config.is_configured(provider):
            console.print(f"  [dim]-[/dim] {name}: not configured ({SETUP_HINTS[provider]})", highlight=False)
            continue

        adapter = create_adapter(provider, config)
        reason = None
        try:
            ok = adapter.test_connection()
        except Exception as e:
            logger.warning(f"{provider} connection test failed: {e}")
            ok = False
            reason = str(e)
        finally:
            adapter.close()

        tested += 1
        if ok:
            console.print(f"  [green]✓[/green] {name}: connected")
        else:
            failures += 1
            detail = f" ({escape(reason)})" if reason else ""
            console.print(f"  [red]✗[/red] {name}: connection failed{detail}", highlight=False)

    if tested == 0:
        console.print("[red]Error:[/red] No providers are configured.")
        return 1
    return 1 if failures else 0


def _config_lines(provider: str, config: ResolvedConfig) -> List[str]:
    if provider == PROVIDER_CLOUDFLARE:
        section = config.cloudflare
        if section.api_token:
            return [f"api_token: {mask_token(section.api_token)}"]
        return [f"email: {section.email or '-'}", f"api_key: {mask_token(section.api_key)}"]
    if provider == PROVIDER_COOLIFY:
        return [f"url: {config.coolify.url or '-'}", f"api_token: {mask_token(config.coolify.api_token)}"]
    if provider == PROVIDER_DIGITALOCEAN:
        return [f"token: {mask_token(config.digitalocean.token)}"]

    gcp = config.gcp
    if gcp.auto_discover:
        projects = "auto-discover"
    else:
        projects = ', '.join(gcp.static_project_ids) or '-'
    credentials = mask_token(gcp.access_token) if gcp.access_token else "application default"
    return [
        f"projects: {projects}",
        f"credentials: {credentials}",
        f"cloud_run_regions: {', '.join(gcp.cloud_run_regions)}",
        f"parallel_workers: {gcp.parallel_workers}",
    ]


def cmd_config(args, config: ResolvedConfig, console: Console) -> int:
    """Show resolved configuration with masked secrets, or write a sample file."""
    if args.init:
        path = validate_output_path(args.init)
        if os.path.exists(path):
            console.print(f"[red]Error:[/red] {path} already exists", highlight=False)
            return 1
        write_text(generate_sample_config(), path)
        console.print(f"[green]✓[/green] Wrote sample config to {path}")
        console.print("  Edit it, then keep it private: chmod 600 " + path, highlight=False)
        return 0

    providers = list(PROVIDER_PRIORITY) if args.provider == ALL_PROVIDERS else [args.provider]
    for provider in providers:
        configured = config.is_configured(provider)
        state = "[green]configured[/green]" if configured else "[dim]not configured[/dim]"
        console.print(f"[bold]{PROVIDER_DISPLAY_NAMES[provider]}[/bold]: {state}")
        if configured:
            for line in _config_lines(provider, config):
                console.print(f"    {line}", highlight=False, markup=False)
        else:
            console.print(f"    {SETUP_HINTS[provider]}", highlight=False, markup=False)
    console.print(f"\nlog_level: {config.log_level}", highlight=False)
    return 0


# =============================================================================
# Argument Parsing
# =============================================================================

def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--config', metavar='FILE', help='Path to YAML config file')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: WARNING)')
    parser.add_argument('--log-dir', metavar='DIR', help='Also write logs to a file in this directory')


def _add_gcp_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('GCP options')
    group.add_argument('--project', help='Single GCP project ID')
    group.add_argument('--projects', help='Comma-separated GCP project IDs')
    group.add_argument('--all-projects', action='store_true',
                       help='Discover and scan every accessible ACTIVE project')
    group.add_argument('--parallel-workers', type=int, metavar='N',
                       help='Projects scanned concurrently (1-10, default: 5)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ipsweep',
        description="IPSweep - find every resource bound to an IP address",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ipsweep all ip 203.0.113.9                 # Sweep every configured provider
  ipsweep all ip 203.0.113.9 --csv           # CSV inventory on stdout
  ipsweep digitalocean ip 165.227.123.45     # One provider only
  ipsweep gcp ip 34.120.0.10 --all-projects  # Every accessible GCP project
  ipsweep all test                           # Check credentials
  ipsweep all config --init ipsweep.yaml     # Write a sample config file
"""
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    providers = parser.add_subparsers(dest='provider', metavar='PROVIDER')
    providers.required = True

    for provider in list(PROVIDER_PRIORITY) + [ALL_PROVIDERS]:
        title = "all configured providers" if provider == ALL_PROVIDERS else PROVIDER_DISPLAY_NAMES[provider]
        provider_parser = providers.add_parser(provider, help=f"Search {title}")
        commands = provider_parser.add_subparsers(dest='command', metavar='COMMAND')
        commands.required = True

        ip_parser = commands.add_parser('ip', help='Find resources bound to an IP address')
        ip_parser.add_argument('address', help='IPv4 or IPv6 address')
        formats = ip_parser.add_mutually_exclusive_group()
        formats.add_argument('--json', action='store_true', help='Full JSON inventory')
        formats.add_argument('--simple', action='store_true', help='Identifiers only, as JSON')
        formats.add_argument('--csv', action='store_true', help='CSV inventory')
        ip_parser.add_argument('--output', '-o', metavar='FILE', help='Write output to a file (JSON unless --csv/--simple)')
        ip_parser.add_argument('--quiet', '-q', action='store_true', help='Hide the progress display')

        test_parser = commands.add_parser('test', help='Test provider credentials')

        config_parser = commands.add_parser('config', help='Show configuration or write a sample file')
        config_parser.add_argument('--init', metavar='PATH', help='Write a sample config file to PATH')

        for sub in (ip_parser, test_parser, config_parser):
            _add_common_args(sub)
            if provider in (PROVIDER_GCP, ALL_PROVIDERS):
                _add_gcp_args(sub)

    return parser


COMMANDS = {
    'ip': cmd_ip,
    'test': cmd_test,
    'config': cmd_config,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = resolve_config(load_config(args))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_dir)
    logger.debug(f"ipsweep {__version__}: {args.provider} {args.command}")

    # Status lines go to stderr unless the table itself is the stdout output
    machine_output = args.command == 'ip' and (
        bool(args.output) or _output_format(args) != OUTPUT_FORMAT_TABLE
    )
    console = Console(stderr=machine_output)

    try:
        return COMMANDS[args.command](args, config, console)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}", highlight=False)
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130


if __name__ == '__main__':
    sys.exit(main())
