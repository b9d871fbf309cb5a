"""
Utility functions for IPSweep collectors.

Logging Level Standards:
------------------------
- ERROR: Discovery failures that stop an entire provider
         "Failed to collect Cloudflare DNS records: {e}"
- WARNING: Authentication failures, soft failures, retries
           "Cloudflare connection test failed"
           "GCP credentials are valid but no projects are accessible"
- INFO: Progress messages, resource counts
        "Found 3 matching DNS records in 12 zones"
        "Scanning 4 GCP project(s)..."
- DEBUG: Per-item failures that don't affect the rest of the sweep
         "Failed to list Cloud Run services in us-east1 for my-project: {e}"
"""
import ipaddress
import logging
import os
import re
import sys
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .models import DiscoveryOutcome

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 10)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=5, exceptions=(TransientApiError,))
        def call_api():
            ...
    """
    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for a sweep with rich display.

    Falls back to plain lines on stderr when stderr is not a TTY (e.g. when
    running under cron or with output piped to a file). All output goes to
    stderr so JSON/CSV written to stdout stays machine-readable.

    Usage:
        with ProgressTracker("203.0.113.9", total_providers=4) as tracker:
            for adapter in adapters:
                tracker.start_provider(adapter.provider)
                tracker.update_task("Listing zones...")
                ...
                tracker.add_resources(len(outcome.resources))
                tracker.complete_provider()
    """

    def __init__(
        self,
        title: str,
        total_providers: int = 0,
        show_progress: bool = True
    ):
        self.title = title
        self.total_providers = total_providers
        self.show_progress = show_progress

        # Counters
        self.completed_providers = 0
        self.total_resources = 0
        self.total_warnings = 0
        self.current_provider = ""
        self.current_task = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None
        self._use_rich = show_progress and sys.stderr.isatty()

    def __enter__(self):
        if self._use_rich:
            self._console = Console(stderr=True)
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )
            self._main_task = self._progress.add_task(
                f"Sweeping {self.title}", total=self.total_providers or 1
            )
            self._progress.start()
        elif self.show_progress:
            _stderr(f"Sweeping {self.title} across {self.total_providers} provider(s)")

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            self._progress.stop()
            self._print_summary_rich()
        elif self.show_progress:
            _stderr(
                f"Sweep complete: {self.total_resources} resource(s), "
                f"{self.total_warnings} warning(s)"
            )
        return False

    def start_provider(self, provider: str):
        """Mark the start of processing a provider."""
        self.current_provider = provider
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, description=f"[{provider}] Connecting...")
        elif self.show_progress:
            _stderr(f"  [{provider}] Starting discovery...")

    def update_task(self, task_description: str):
        """Update the current task being performed."""
        self.current_task = task_description
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            provider_info = f"[{self.current_provider}] " if self.current_provider else ""
            self._progress.update(
                self._main_task,
                description=f"{provider_info}{task_description}"
            )

    def add_resources(self, count: int, warnings: int = 0):
        """Add discovered resources to the running total."""
        self.total_resources += count
        self.total_warnings += warnings

    def complete_provider(self):
        """Mark a provider as complete."""
        self.completed_providers += 1
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        elif self.show_progress:
            _stderr(f"  [{self.current_provider}] Complete - Running total: {self.total_resources} resource(s)")

    def _print_summary_rich(self):
        """Print a formatted summary using rich."""
        table = Table(title=f"Sweep of {self.title}", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Providers", f"{self.completed_providers}/{self.total_providers}")
        table.add_row("Matching Resources", str(self.total_resources))
        table.add_row("Warnings", str(self.total_warnings))

        assert self._console is not None
        self._console.print(Panel(table))


def _stderr(message: str) -> None:
    print(message, file=sys.stderr)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


# =============================================================================
# Input Validation
# =============================================================================

class InvalidIPError(ValueError):
    """Raised when the queried address is not a valid IPv4 or IPv6 literal."""


def validate_ip(value: str) -> str:
    """
    Validate an IP argument and return it unchanged (apart from surrounding
    whitespace).

    The returned string is what adapters compare against, so it is never
    normalized: "2001:db8::1" stays compressed and "192.168.1.01" is rejected
    rather than rewritten.
    """
    candidate = (value or '').strip()
    if not candidate or '%' in candidate or '/' in candidate:
        raise InvalidIPError(f"Invalid IP address: {value!r}")
    try:
        ipaddress.ip_address(candidate)
    except ValueError as e:
        raise InvalidIPError(f"Invalid IP address: {value!r}") from e
    return candidate


_SYSTEM_DIRECTORIES = ('/etc', '/usr', '/bin', '/sbin', '/boot', '/dev', '/proc', '/sys')


def validate_output_path(filepath: str) -> str:
    """Resolve an output path, refusing traversal and system directories."""
    if '..' in Path(filepath).parts:
        raise ValueError(f"Path traversal detected in output path: {filepath}")
    resolved = Path(filepath).expanduser().resolve()
    for restricted in _SYSTEM_DIRECTORIES:
        if str(resolved) == restricted or str(resolved).startswith(restricted + '/'):
            raise ValueError(f"Refusing to write into system directory: {restricted}")
    return str(resolved)


# =============================================================================
# Authentication Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when a provider rejects the configured credentials. Stops discovery
    for that provider rather than being silently caught and logged.
    """
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


# HTTP status codes that indicate auth/permission issues
HTTP_AUTH_STATUS_CODES = {401, 403}

# GCP exception types that indicate auth/permission issues
GCP_AUTH_EXCEPTION_NAMES = {
    'PermissionDenied', 'Unauthenticated', 'Forbidden', 'Unauthorized',
    'DefaultCredentialsError', 'RefreshError',
}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - AuthError raised by the HTTP layer
    - httpx.HTTPStatusError with a 401/403 response
    - GCP PermissionDenied, Unauthenticated and credential errors
    """
    if isinstance(exc, AuthError):
        return True

    exc_type_name = type(exc).__name__

    if exc_type_name == 'HTTPStatusError':
        response = getattr(exc, 'response', None)
        return getattr(response, 'status_code', None) in HTTP_AUTH_STATUS_CODES

    return exc_type_name in GCP_AUTH_EXCEPTION_NAMES


# =============================================================================
# Parallel Collection
# =============================================================================

def parallel_collect(
    collection_tasks: List[Tuple[str, Callable[..., DiscoveryOutcome], tuple]],
    provider: str,
    parallel_workers: int = 1,
    tracker: Optional['ProgressTracker'] = None,
    logger: Optional[logging.Logger] = None
) -> DiscoveryOutcome:
    """
    Execute discovery tasks either serially or in a bounded thread pool.

    Each task is a tuple of (name, function, args) whose function returns a
    DiscoveryOutcome. Outcomes are folded back in task order regardless of
    completion order, so parallel and serial runs produce the same result.
    A task that raises is recorded as a ProviderError and never stops the
    remaining tasks.

    Args:
        collection_tasks: List of (name, collect_fn, args) tuples
        provider: Provider name used for recorded errors
        parallel_workers: Number of threads (1 = serial, >1 = parallel)
        tracker: Optional ProgressTracker for UI updates
        logger: Optional logger for debug/warning messages

    Returns:
        Combined DiscoveryOutcome
    """
    _logger = logger or logging.getLogger(__name__)
    combined = DiscoveryOutcome()

    def execute_task(task_tuple: Tuple[str, Callable[..., DiscoveryOutcome], tuple]) -> DiscoveryOutcome:
        name, collect_fn, args = task_tuple
        try:
            return collect_fn(*args) or DiscoveryOutcome()
        except Exception as e:
            _logger.debug(f"Failed to collect {name}: {e}")
            failed = DiscoveryOutcome()
            failed.record_error(provider, name, e)
            return failed

    if parallel_workers <= 1 or len(collection_tasks) <= 1:
        for task in collection_tasks:
            if tracker:
                tracker.update_task(f"Collecting {task[0]}...")
            combined.merge(execute_task(task))
    else:
        _logger.info(f"Using parallel collection with {parallel_workers} threads")
        if tracker:
            tracker.update_task(f"Collecting {len(collection_tasks)} tasks ({parallel_workers} threads)...")

        with ThreadPoolExecutor(max_workers=parallel_workers) as executor:
            futures = [executor.submit(execute_task, task) for task in collection_tasks]
            for future in futures:
                combined.merge(future.result())

    return combined


# =============================================================================
# Secret Handling
# =============================================================================

def mask_token(token: Optional[str]) -> str:
    """
    Mask a secret for display, keeping the first and last 3 characters.

    Example: abcdef1234567890 -> abc**********890
    """
    if not token or len(token) < 8:
        return '***'
    return f"{token[:3]}{'*' * max(len(token) - 6, 3)}{token[-3:]}"


_LOG_REDACT_PATTERNS = [
    (re.compile(r'(Bearer\s+)[A-Za-z0-9._~+/=-]+', re.IGNORECASE), r'\1***'),
    (re.compile(r'(X-Auth-Key["\']?\s*[:=]\s*["\']?)[^\s,"\'}]+', re.IGNORECASE), r'\1***'),
    (re.compile(r'((?:api_key|api_token|access_token|token)["\']?\s*[:=]\s*["\']?)[^\s,"\'}]+', re.IGNORECASE), r'\1***'),
    (re.compile(r'\b[A-Za-z0-9_-]{40,}\b'), '[token]'),
]


def redact_log_message(message: str) -> str:
    """Redact bearer tokens, API keys and long secrets from a log message."""
    if not message:
        return message

    for pattern, replacement in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacement, message)

    return message


class RedactingFilter(logging.Filter):
    """Logging filter that redacts secrets from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(
                    redact_log_message(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # Console handler (stderr)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"ipsweep_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    # Third-party HTTP clients log full request lines at DEBUG/INFO
    for noisy in ('httpx', 'httpcore'):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


# =============================================================================
# Output Files
# =============================================================================

def write_text(content: str, filepath: str) -> None:
    """Write text to a file readable only by the owner."""
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        f = os.fdopen(fd, 'w', newline='')
    except Exception:
        os.close(fd)
        raise
    with f:
        f.write(content)
    logger.info(f"Wrote {filepath}")
