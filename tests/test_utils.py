"""
Tests for ipsweep/utils.py utility functions.

Covers:
- generate_run_id format and uniqueness
- get_timestamp format
- validate_ip acceptance and rejection
- validate_output_path
- mask_token and log redaction
- retry_with_backoff decorator
- AuthError and is_auth_error detection
- parallel_collect utility
- write_text permissions
"""
import logging
import os
import stat
import sys
import tempfile
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ipsweep.models import DiscoveryOutcome, Droplet
from ipsweep.utils import (
    AuthError,
    InvalidIPError,
    ProgressTracker,
    RedactingFilter,
    generate_run_id,
    get_timestamp,
    is_auth_error,
    mask_token,
    parallel_collect,
    redact_log_message,
    retry_with_backoff,
    setup_logging,
    validate_ip,
    validate_output_path,
    write_text,
)

# =============================================================================
# generate_run_id / get_timestamp Tests
# =============================================================================

class TestGenerateRunId:
    """Tests for generate_run_id function."""

    def test_run_id_is_unique(self):
        ids = {generate_run_id() for _ in range(50)}
        assert len(ids) == 50

    def test_run_id_is_string(self):
        assert isinstance(generate_run_id(), str)
        assert generate_run_id()


class TestGetTimestamp:
    """Tests for get_timestamp function."""

    def test_timestamp_is_iso_utc(self):
        ts = get_timestamp()
        assert 'T' in ts
        assert ts.endswith('Z') or ts.endswith('+00:00')


# =============================================================================
# validate_ip Tests
# =============================================================================

class TestValidateIp:
    """Tests for validate_ip."""

    @pytest.mark.parametrize("value", [
        "203.0.113.9",
        "0.0.0.0",
        "255.255.255.255",
        "2001:db8::1",
        "::1",
    ])
    def test_valid_addresses(self, value):
        assert validate_ip(value) == value

    def test_strips_whitespace_without_normalizing(self):
        assert validate_ip("  2001:DB8::1 ") == "2001:DB8::1"

    @pytest.mark.parametrize("value", [
        "",
        "   ",
        "not-an-ip",
        "256.1.1.1",
        "192.168.1",
        "192.168.1.01",
        "10.0.0.0/8",
        "fe80::1%eth0",
        "api.example.com",
    ])
    def test_invalid_addresses(self, value):
        with pytest.raises(InvalidIPError):
            validate_ip(value)

    def test_invalid_ip_is_value_error(self):
        with pytest.raises(ValueError):
            validate_ip("nope")


class TestValidateOutputPath:
    """Tests for validate_output_path."""

    def test_rejects_traversal(self):
        with pytest.raises(ValueError, match="traversal"):
            validate_output_path("../../out.json")

    def test_rejects_system_directory(self):
        with pytest.raises(ValueError, match="system directory"):
            validate_output_path("/etc/ipsweep.json")

    def test_resolves_relative_path(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = validate_output_path(os.path.join(tmpdir, "out.csv"))
            assert os.path.isabs(path)
            assert path.endswith("out.csv")


# =============================================================================
# Secret Handling Tests
# =============================================================================

class TestMaskToken:
    """Tests for mask_token."""

    def test_masks_middle(self):
        assert mask_token("abcdef1234567890") == "abc**********890"

    def test_short_and_empty_tokens(self):
        assert mask_token("short") == "***"
        assert mask_token("") == "***"
        assert mask_token(None) == "***"

    def test_minimum_mask_width(self):
        assert mask_token("abcdefgh") == "abc***fgh"


class TestRedaction:
    """Tests for redact_log_message and RedactingFilter."""

    def test_bearer_token(self):
        assert redact_log_message("Authorization: Bearer abc.def-123") == "Authorization: Bearer ***"

    def test_key_value_token(self):
        assert "s3cr3t" not in redact_log_message("api_token=s3cr3t other=1")

    def test_long_secret(self):
        secret = "A" * 40
        assert secret not in redact_log_message(f"token {secret}")

    def test_plain_message_unchanged(self):
        message = "Found 3 matching DNS records in 12 zones"
        assert redact_log_message(message) == message

    def test_filter_redacts_record(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "Bearer %s", ("tok",), None)
        record.msg = "Authorization: Bearer supersecret"
        assert RedactingFilter().filter(record)
        assert "supersecret" not in record.msg


# =============================================================================
# retry_with_backoff Tests
# =============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff decorator."""

    def test_success_first_try(self):
        mock_func = Mock(return_value="ok")
        decorated = retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)(mock_func)
        assert decorated() == "ok"
        assert mock_func.call_count == 1

    def test_retries_then_succeeds(self):
        mock_func = Mock(side_effect=[ConnectionError("x"), "ok"])
        decorated = retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0,
                                       exceptions=(ConnectionError,))(mock_func)
        assert decorated() == "ok"
        assert mock_func.call_count == 2

    def test_reraises_after_max_attempts(self):
        mock_func = Mock(side_effect=ConnectionError("down"))
        decorated = retry_with_backoff(max_attempts=2, min_wait=0, max_wait=0,
                                       exceptions=(ConnectionError,))(mock_func)
        with pytest.raises(ConnectionError):
            decorated()
        assert mock_func.call_count == 2

    def test_does_not_retry_other_exceptions(self):
        mock_func = Mock(side_effect=ValueError("bad"))
        decorated = retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0,
                                       exceptions=(ConnectionError,))(mock_func)
        with pytest.raises(ValueError):
            decorated()
        assert mock_func.call_count == 1


# =============================================================================
# Auth Error Tests
# =============================================================================

class TestIsAuthError:
    """Tests for is_auth_error."""

    def test_auth_error(self):
        assert is_auth_error(AuthError("denied", provider="cloudflare"))

    def test_gcp_style_exception_names(self):
        class PermissionDenied(Exception):
            pass

        class DefaultCredentialsError(Exception):
            pass

        assert is_auth_error(PermissionDenied("no"))
        assert is_auth_error(DefaultCredentialsError("no creds"))

    def test_http_status_error(self):
        class HTTPStatusError(Exception):
            def __init__(self, status_code):
                super().__init__("http")
                self.response = Mock(status_code=status_code)

        assert is_auth_error(HTTPStatusError(401))
        assert is_auth_error(HTTPStatusError(403))
        assert not is_auth_error(HTTPStatusError(500))

    def test_other_errors(self):
        assert not is_auth_error(ValueError("x"))
        assert not is_auth_error(TimeoutError("slow"))


# =============================================================================
# parallel_collect Tests
# =============================================================================

def _collect_one(name):
    return DiscoveryOutcome(resources=[Droplet(name=name)])


def _collect_fail(name):
    raise RuntimeError(f"{name} unavailable")


class TestParallelCollect:
    """Tests for parallel_collect."""

    def _tasks(self):
        return [
            ("project p1", _collect_one, ("p1",)),
            ("project p2", _collect_fail, ("p2",)),
            ("project p3", _collect_one, ("p3",)),
        ]

    def test_serial_records_failures_and_continues(self):
        outcome = parallel_collect(self._tasks(), provider="gcp", parallel_workers=1)
        assert [r.name for r in outcome.resources] == ["p1", "p3"]
        assert len(outcome.errors) == 1
        assert outcome.errors[0].provider == "gcp"
        assert outcome.errors[0].context == "project p2"
        assert "p2 unavailable" in outcome.errors[0].message

    def test_parallel_matches_serial(self):
        serial = parallel_collect(self._tasks(), provider="gcp", parallel_workers=1)
        parallel = parallel_collect(self._tasks(), provider="gcp", parallel_workers=4)
        assert parallel.resources == serial.resources
        assert parallel.errors == serial.errors

    def test_tracker_updates_in_serial_mode(self):
        tracker = Mock()
        parallel_collect(self._tasks(), provider="gcp", tracker=tracker)
        assert tracker.update_task.call_count == 3

    def test_none_result_is_empty_outcome(self):
        outcome = parallel_collect([("noop", lambda: None, ())], provider="gcp")
        assert outcome.resources == []
        assert outcome.errors == []


# =============================================================================
# ProgressTracker Tests
# =============================================================================

class TestProgressTracker:
    """Tests for ProgressTracker in non-TTY mode."""

    def test_counts_resources(self, capsys):
        with ProgressTracker("203.0.113.9", total_providers=2) as tracker:
            tracker.start_provider("cloudflare")
            tracker.add_resources(3, warnings=1)
            tracker.complete_provider()
        assert tracker.total_resources == 3
        assert tracker.total_warnings == 1
        assert tracker.completed_providers == 1

    def test_hidden_progress_prints_nothing(self, capsys):
        with ProgressTracker("203.0.113.9", total_providers=1, show_progress=False) as tracker:
            tracker.start_provider("gcp")
            tracker.complete_provider()
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""


# =============================================================================
# Logging & File Output Tests
# =============================================================================

class TestSetupLogging:
    """Tests for setup_logging."""

    def test_file_handler_created(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            setup_logging("DEBUG", tmpdir)
            root = logging.getLogger()
            try:
                assert root.level == logging.DEBUG
                assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
                assert any(f.startswith("ipsweep_log_") for f in os.listdir(tmpdir))
            finally:
                for handler in list(root.handlers):
                    handler.close()
                root.handlers.clear()

    def test_quiets_http_loggers(self):
        setup_logging("DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
        logging.getLogger().handlers.clear()


class TestWriteFiles:
    """Tests for write_text."""

    def test_write_text_is_owner_only(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "out.csv")
            write_text("a,b\n", path)
            mode = stat.S_IMODE(os.stat(path).st_mode)
            assert mode & (stat.S_IRWXG | stat.S_IRWXO) == 0
            with open(path) as f:
                assert f.read() == "a,b\n"
