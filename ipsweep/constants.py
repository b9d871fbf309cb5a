"""
Constants for IPSweep collectors.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Providers
# =============================================================================

PROVIDER_CLOUDFLARE = "cloudflare"
PROVIDER_COOLIFY = "coolify"
PROVIDER_DIGITALOCEAN = "digitalocean"
PROVIDER_GCP = "gcp"

# Priority order used when identifiers collide across providers
PROVIDER_PRIORITY = (
    PROVIDER_CLOUDFLARE,
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_GCP,
)

PROVIDER_TYPES = {
    PROVIDER_CLOUDFLARE: "dns",
    PROVIDER_COOLIFY: "deployment",
    PROVIDER_DIGITALOCEAN: "cloud",
    PROVIDER_GCP: "cloud",
}

PROVIDER_DISPLAY_NAMES = {
    PROVIDER_CLOUDFLARE: "Cloudflare",
    PROVIDER_COOLIFY: "Coolify",
    PROVIDER_DIGITALOCEAN: "DigitalOcean",
    PROVIDER_GCP: "GCP",
}

# Provider combination labels
LABEL_SEPARATOR = "+"
LABEL_ALL = "all"

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_PARALLEL_WORKERS = 5
MAX_PARALLEL_WORKERS = 10

# =============================================================================
# Cloudflare
# =============================================================================

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
CLOUDFLARE_ZONES_PER_PAGE = 50
CLOUDFLARE_RECORDS_PER_PAGE = 100

# =============================================================================
# Coolify
# =============================================================================

COOLIFY_API_PREFIX = "/api/v1"

# =============================================================================
# DigitalOcean
# =============================================================================

DIGITALOCEAN_API_BASE = "https://api.digitalocean.com/v2"
DIGITALOCEAN_PER_PAGE = 100

# =============================================================================
# Google Cloud
# =============================================================================

CLOUD_RUN_REGIONS = (
    "us-central1",
    "us-east1",
    "us-west1",
    "europe-west1",
    "asia-east1",
)

GCP_ACTIVE_STATE = "ACTIVE"
GCP_LOCATION_LABEL = "cloud.googleapis.com/location"

# =============================================================================
# DNS Record Types
# =============================================================================

ADDRESS_RECORD_TYPES = ("A", "AAAA")

# =============================================================================
# Output
# =============================================================================

OUTPUT_FORMAT_TABLE = "table"
OUTPUT_FORMAT_JSON = "json"
OUTPUT_FORMAT_SIMPLE = "simple"
OUTPUT_FORMAT_CSV = "csv"

CSV_HEADER = [
    "IP",
    "Identifier",
    "ResourceKind",
    "Providers",
    "InCoolify",
    "InDigitalOcean",
    "InGCP",
]

# Providers that get an In<Provider> flag column, in CSV column order
FLAG_PROVIDERS = (
    PROVIDER_COOLIFY,
    PROVIDER_DIGITALOCEAN,
    PROVIDER_GCP,
)
