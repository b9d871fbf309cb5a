"""
Tests for ipsweep/http.py using respx.

Covers:
- default headers on created clients
- HTTP status mapping (401/403 -> AuthError, other 4xx -> ApiError)
- transient statuses raising TransientApiError
- error message extraction
- unwrap_list envelopes
- iter_pages page walking
"""
import os
import sys

import httpx
import pytest
import respx
from tenacity import stop_after_attempt

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ipsweep import __version__
from ipsweep.http import (
    ApiError,
    TransientApiError,
    _get,
    create_client,
    error_message,
    get_json,
    iter_pages,
    unwrap_list,
)
from ipsweep.utils import AuthError

BASE = "https://api.example.test/v1"


@pytest.fixture
def client():
    c = create_client(BASE, {'Authorization': 'Bearer test-token'})
    yield c
    c.close()


# =============================================================================
# Client
# =============================================================================

class TestCreateClient:
    """Tests for create_client."""

    def test_default_and_custom_headers(self, client):
        assert client.headers['Accept'] == 'application/json'
        assert client.headers['User-Agent'] == f'ipsweep/{__version__}'
        assert client.headers['Authorization'] == 'Bearer test-token'

    def test_timeout_applied(self):
        c = create_client(BASE, timeout=12)
        try:
            assert c.timeout.read == 12
        finally:
            c.close()


# =============================================================================
# get_json
# =============================================================================

class TestGetJson:
    """Tests for get_json status handling."""

    @respx.mock
    def test_success(self, client):
        route = respx.get(f"{BASE}/items").mock(return_value=httpx.Response(200, json={"ok": True}))
        assert get_json(client, "/items", params={"page": 2}, provider="test") == {"ok": True}
        assert route.called
        assert route.calls.last.request.url.params["page"] == "2"
        assert route.calls.last.request.headers["Authorization"] == "Bearer test-token"

    @respx.mock
    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_statuses_raise_auth_error(self, client, status):
        respx.get(f"{BASE}/items").mock(
            return_value=httpx.Response(status, json={"message": "bad token"})
        )
        with pytest.raises(AuthError) as exc_info:
            get_json(client, "/items", provider="digitalocean")
        assert exc_info.value.provider == "digitalocean"
        assert "bad token" in str(exc_info.value)

    @respx.mock
    def test_not_found_raises_api_error(self, client):
        respx.get(f"{BASE}/items").mock(return_value=httpx.Response(404, json={"error": "missing"}))
        with pytest.raises(ApiError) as exc_info:
            get_json(client, "/items", provider="coolify")
        assert exc_info.value.status_code == 404
        assert not isinstance(exc_info.value, TransientApiError)
        assert "missing" in str(exc_info.value)

    @respx.mock
    def test_invalid_json_raises_api_error(self, client):
        respx.get(f"{BASE}/items").mock(return_value=httpx.Response(200, text="<html>"))
        with pytest.raises(ApiError, match="not valid JSON"):
            get_json(client, "/items")

    @respx.mock
    def test_rate_limit_is_transient(self, client):
        respx.get(f"{BASE}/items").mock(return_value=httpx.Response(429, json={"message": "slow down"}))
        single_attempt = _get.retry_with(stop=stop_after_attempt(1))
        with pytest.raises(TransientApiError) as exc_info:
            single_attempt(client, "/items", None, "cloudflare")
        assert exc_info.value.status_code == 429


class TestErrorMessage:
    """Tests for error_message."""

    def test_errors_list(self):
        response = httpx.Response(400, json={"errors": [{"code": 1, "message": "a"}, {"message": "b"}]})
        assert error_message(response) == "a; b"

    def test_plain_text(self):
        assert error_message(httpx.Response(400, text="nope")) == "nope"

    def test_fallback(self):
        assert error_message(httpx.Response(400, json={"unexpected": 1})) == "HTTP 400: Bad Request"


# =============================================================================
# Helpers
# =============================================================================

class TestUnwrapList:
    """Tests for unwrap_list."""

    def test_bare_list(self):
        assert unwrap_list([1, 2]) == [1, 2]

    def test_data_envelope(self):
        assert unwrap_list({"data": [1]}) == [1]

    def test_other_payloads(self):
        assert unwrap_list({"data": "x"}) == []
        assert unwrap_list(None) == []


class TestIterPages:
    """Tests for iter_pages."""

    @respx.mock
    def test_walks_until_total_pages(self, client):
        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json={"page": page, "pages": 3})

        route = respx.get(f"{BASE}/items").mock(side_effect=handler)
        pages = list(iter_pages(client, "/items", lambda payload, per_page: payload["pages"], per_page=10))
        assert [p["page"] for p in pages] == [1, 2, 3]
        assert route.call_count == 3
        assert route.calls.last.request.url.params["per_page"] == "10"

    @respx.mock
    def test_single_page(self, client):
        route = respx.get(f"{BASE}/items").mock(return_value=httpx.Response(200, json={}))
        assert len(list(iter_pages(client, "/items", lambda payload, per_page: 1))) == 1
        assert route.call_count == 1
