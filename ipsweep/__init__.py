"""
IPSweep shared library.
"""
__version__ = "1.0.0"

# Import constants module for easy access
from . import constants
from .constants import (
    DEFAULT_PARALLEL_WORKERS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    PROVIDER_CLOUDFLARE,
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_GCP,
    PROVIDER_PRIORITY,
)
from .models import (
    CanonicalEntry,
    DiscoveryOutcome,
    ProjectSet,
    ProviderError,
    Resource,
    ResourceKind,
)
from .reconcile import provider_label, reconcile
from .utils import (
    AuthError,
    InvalidIPError,
    generate_run_id,
    get_timestamp,
    mask_token,
    setup_logging,
    validate_ip,
    write_text,
)

__all__ = [
    '__version__',
    # Constants
    'constants',
    'DEFAULT_PARALLEL_WORKERS',
    'DEFAULT_RETRY_ATTEMPTS',
    'DEFAULT_TIMEOUT_SECONDS',
    'PROVIDER_CLOUDFLARE',
    'PROVIDER_COOLIFY',
    'PROVIDER_DIGITALOCEAN',
    'PROVIDER_GCP',
    'PROVIDER_PRIORITY',
    # Models
    'CanonicalEntry',
    'DiscoveryOutcome',
    'ProjectSet',
    'ProviderError',
    'Resource',
    'ResourceKind',
    # Reconciliation
    'provider_label',
    'reconcile',
    # Utils
    'AuthError',
    'InvalidIPError',
    'generate_run_id',
    'get_timestamp',
    'mask_token',
    'setup_logging',
    'validate_ip',
    'write_text',
]
