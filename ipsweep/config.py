"""
IPSweep - Configuration Management

Supports loading configuration from:
1. Environment variables (CLOUDFLARE_*, COOLIFY_*, DIGITALOCEAN_*, GCP_*)
2. YAML config file (--config or a default location)
3. Command-line arguments (highest priority)

Config file example:
```yaml
log_level: INFO

cloudflare:
  api_token: ${CLOUDFLARE_API_TOKEN}  # env var substitution

coolify:
  url: https://coolify.example.com
  api_token: ${COOLIFY_API_TOKEN}

gcp:
  auto_discover: true
```

The merged dict is turned into a frozen ResolvedConfig by resolve_config();
adapters only ever see that resolved value.
"""
import logging
import os
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .constants import (
    CLOUD_RUN_REGIONS,
    DEFAULT_PARALLEL_WORKERS,
    MAX_PARALLEL_WORKERS,
    PROVIDER_CLOUDFLARE,
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_GCP,
)

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './ipsweep.yaml',
    './ipsweep.yml',
    '~/.ipsweep/config.yaml',
    '~/.ipsweep/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'log_level': 'IPSWEEP_LOG_LEVEL',
    'log_dir': 'IPSWEEP_LOG_DIR',
    'cloudflare.api_token': 'CLOUDFLARE_API_TOKEN',
    'cloudflare.email': 'CLOUDFLARE_EMAIL',
    'cloudflare.api_key': 'CLOUDFLARE_API_KEY',
    'coolify.api_token': 'COOLIFY_API_TOKEN',
    'coolify.url': 'COOLIFY_URL',
    'digitalocean.token': 'DIGITALOCEAN_TOKEN',
    'gcp.access_token': 'GCP_ACCESS_TOKEN',
    'gcp.project_id': 'GCP_PROJECT_ID',
    'gcp.project_ids': 'GCP_PROJECT_IDS',
    'gcp.auto_discover': 'GCP_AUTO_DISCOVER',
    'gcp.cloud_run_regions': 'GCP_CLOUD_RUN_REGIONS',
    'gcp.parallel_workers': 'GCP_PARALLEL_WORKERS',
}

_LIST_KEYS = ('gcp.project_ids', 'gcp.cloud_run_regions')
_BOOL_KEYS = ('gcp.auto_discover',)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            return os.environ.get(match.group(1), match.group(2) or '')

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _split_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def _clean(value: Any) -> Optional[str]:
    """Blank strings (e.g. an unset ${VAR} substitution) count as absent."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Config files hold API tokens; warn on group/world access
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    with open(path) as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping at the top level")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is None or value == '':
            continue
        if config_key in _LIST_KEYS:
            value = _split_list(value)
        elif config_key in _BOOL_KEYS:
            value = _to_bool(value)
        _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'log_level': 'log_level',
        'log_dir': 'log_dir',
        'project': 'gcp.project_id',
        'projects': 'gcp.project_ids',
        'all_projects': 'gcp.auto_discover',
        'parallel_workers': 'gcp.parallel_workers',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        if value is None or value is False:
            continue
        if config_key in _LIST_KEYS:
            value = _split_list(value)
        _set_nested(config, config_key, value)

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return merge_configs(*configs)


# =============================================================================
# Resolved Configuration
# =============================================================================

@dataclass(frozen=True)
class CloudflareConfig:
    """Either api_token, or email plus api_key (global API key auth)."""
    api_token: Optional[str] = None
    email: Optional[str] = None
    api_key: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token or (self.email and self.api_key))

    @property
    def uses_token(self) -> bool:
        return bool(self.api_token)


@dataclass(frozen=True)
class CoolifyConfig:
    api_token: Optional[str] = None
    url: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.api_token and self.url)


@dataclass(frozen=True)
class DigitalOceanConfig:
    token: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.token)


@dataclass(frozen=True)
class GcpConfig:
    """
    GCP scope. Project precedence: auto_discover, then project_ids, then the
    single project_id. access_token is optional; without it application
    default credentials are used.
    """
    access_token: Optional[str] = None
    project_id: Optional[str] = None
    project_ids: Tuple[str, ...] = ()
    auto_discover: bool = False
    cloud_run_regions: Tuple[str, ...] = CLOUD_RUN_REGIONS
    parallel_workers: int = DEFAULT_PARALLEL_WORKERS

    @property
    def is_configured(self) -> bool:
        return bool(self.auto_discover or self.project_ids or self.project_id)

    @property
    def static_project_ids(self) -> Tuple[str, ...]:
        if self.project_ids:
            return self.project_ids
        if self.project_id:
            return (self.project_id,)
        return ()


@dataclass(frozen=True)
class ResolvedConfig:
    cloudflare: CloudflareConfig = field(default_factory=CloudflareConfig)
    coolify: CoolifyConfig = field(default_factory=CoolifyConfig)
    digitalocean: DigitalOceanConfig = field(default_factory=DigitalOceanConfig)
    gcp: GcpConfig = field(default_factory=GcpConfig)
    log_level: str = "WARNING"
    log_dir: Optional[str] = None

    def section(self, provider: str):
        return {
            PROVIDER_CLOUDFLARE: self.cloudflare,
            PROVIDER_COOLIFY: self.coolify,
            PROVIDER_DIGITALOCEAN: self.digitalocean,
            PROVIDER_GCP: self.gcp,
        }[provider]

    def is_configured(self, provider: str) -> bool:
        return self.section(provider).is_configured


def resolve_config(raw: Dict[str, Any]) -> ResolvedConfig:
    """Turn a merged config dict into the typed, read-only ResolvedConfig."""
    workers = _get_nested(raw, 'gcp.parallel_workers', DEFAULT_PARALLEL_WORKERS)
    try:
        workers = int(workers)
    except (TypeError, ValueError):
        logger.warning(f"Invalid gcp.parallel_workers value {workers!r}; using {DEFAULT_PARALLEL_WORKERS}")
        workers = DEFAULT_PARALLEL_WORKERS
    workers = max(1, min(workers, MAX_PARALLEL_WORKERS))

    regions = tuple(_split_list(_get_nested(raw, 'gcp.cloud_run_regions'))) or CLOUD_RUN_REGIONS

    coolify_url = _clean(_get_nested(raw, 'coolify.url'))
    if coolify_url:
        coolify_url = coolify_url.rstrip('/')

    return ResolvedConfig(
        cloudflare=CloudflareConfig(
            api_token=_clean(_get_nested(raw, 'cloudflare.api_token')),
            email=_clean(_get_nested(raw, 'cloudflare.email')),
            api_key=_clean(_get_nested(raw, 'cloudflare.api_key')),
        ),
        coolify=CoolifyConfig(
            api_token=_clean(_get_nested(raw, 'coolify.api_token')),
            url=coolify_url,
        ),
        digitalocean=DigitalOceanConfig(
            token=_clean(_get_nested(raw, 'digitalocean.token')),
        ),
        gcp=GcpConfig(
            access_token=_clean(_get_nested(raw, 'gcp.access_token')),
            project_id=_clean(_get_nested(raw, 'gcp.project_id')),
            project_ids=tuple(_split_list(_get_nested(raw, 'gcp.project_ids'))),
            auto_discover=_to_bool(_get_nested(raw, 'gcp.auto_discover', False)),
            cloud_run_regions=regions,
            parallel_workers=workers,
        ),
        log_level=str(raw.get('log_level') or 'WARNING').upper(),
        log_dir=_clean(raw.get('log_dir')),
    )


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# IPSweep Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value
#
# Keep secrets in environment variables and reference them here.

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: WARNING

# Directory for log files (optional)
# log_dir: ./logs


# =============================================================================
# Cloudflare (DNS records)
# =============================================================================
cloudflare:
  # API token with Zone:Read and DNS:Read permissions (preferred)
  api_token: ${CLOUDFLARE_API_TOKEN}

  # Or global API key authentication
  # email: ${CLOUDFLARE_EMAIL}
  # api_key: ${CLOUDFLARE_API_KEY}


# =============================================================================
# Coolify (applications, services, databases)
# =============================================================================
coolify:
  # Base URL of your Coolify instance (required)
  url: ${COOLIFY_URL}
  api_token: ${COOLIFY_API_TOKEN}


# =============================================================================
# DigitalOcean (droplets, load balancers, floating IPs, domain records)
# =============================================================================
digitalocean:
  token: ${DIGITALOCEAN_TOKEN}


# =============================================================================
# Google Cloud (instances, forwarding rules, Cloud Run, GKE)
# =============================================================================
gcp:
  # OAuth access token (optional, uses application default credentials if unset)
  # access_token: ${GCP_ACCESS_TOKEN}

  # Scan every ACTIVE project the credentials can see
  auto_discover: false

  # Or a fixed list of projects
  # project_ids:
  #   - my-project
  #   - my-other-project

  # Or a single project
  # project_id: my-project

  # Regions searched for Cloud Run services
  # cloud_run_regions:
  #   - us-central1
  #   - europe-west1

  # Concurrent project scans
  parallel_workers: 5
'''
