"""
Shared HTTP plumbing for the REST-based providers (Cloudflare, Coolify,
DigitalOcean).

Each adapter owns one httpx.Client created by create_client(); every request
goes through get_json(), which applies the fixed timeout, retries transient
failures and maps HTTP errors onto the collector exception types.
"""
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from . import __version__
from .constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_TIMEOUT_SECONDS
from .utils import HTTP_AUTH_STATUS_CODES, AuthError, retry_with_backoff

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A provider API call failed with a non-auth error."""

    def __init__(self, message: str, status_code: Optional[int] = None, provider: str = ""):
        self.status_code = status_code
        self.provider = provider
        super().__init__(message)


class TransientApiError(ApiError):
    """Rate limiting or a server-side failure; safe to retry."""


def create_client(
    base_url: str,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.Client:
    """Create a client with the per-call timeout and JSON headers preset."""
    default_headers = {
        'Accept': 'application/json',
        'Content-Type': 'application/json',
        'User-Agent': f'ipsweep/{__version__}',
    }
    default_headers.update(headers or {})
    return httpx.Client(
        base_url=base_url.rstrip('/'),
        headers=default_headers,
        timeout=httpx.Timeout(timeout),
    )


def error_message(response: httpx.Response) -> str:
    """Pull the most useful error text out of a failed response."""
    fallback = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or fallback

    if isinstance(body, dict):
        for key in ('message', 'error'):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        errors = body.get('errors')
        if isinstance(errors, list) and errors:
            messages = [
                str(e.get('message', e)) if isinstance(e, dict) else str(e)
                for e in errors
            ]
            return '; '.join(messages)
    return fallback


@retry_with_backoff(
    max_attempts=DEFAULT_RETRY_ATTEMPTS,
    exceptions=(TransientApiError, httpx.TransportError),
)
def _get(client: httpx.Client, path: str, params: Optional[Dict[str, Any]], provider: str) -> httpx.Response:
    response = client.get(path, params=params)
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientApiError(
            f"{path}: {error_message(response)}",
            status_code=response.status_code,
            provider=provider,
        )
    return response


def get_json(
    client: httpx.Client,
    path: str,
    params: Optional[Dict[str, Any]] = None,
    provider: str = "",
) -> Any:
    """
    GET a path and return the decoded JSON body.

    Raises:
        AuthError: on HTTP 401/403
        ApiError: on any other non-2xx status, transport failure or bad JSON
    """
    try:
        response = _get(client, path, params, provider)
    except httpx.TransportError as e:
        raise ApiError(f"Request to {path} failed: {e}", provider=provider) from e

    if response.status_code in HTTP_AUTH_STATUS_CODES:
        raise AuthError(
            f"{provider or 'API'} rejected the configured credentials "
            f"(HTTP {response.status_code}): {error_message(response)}",
            provider=provider,
        )
    if response.is_error:
        raise ApiError(
            f"{path}: {error_message(response)}",
            status_code=response.status_code,
            provider=provider,
        )

    try:
        return response.json()
    except ValueError as e:
        raise ApiError(f"{path}: response is not valid JSON", response.status_code, provider) from e


def unwrap_list(payload: Any, key: str = 'data') -> List[Any]:
    """Accept either a bare JSON list or an envelope like {"data": [...]}."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get(key), list):
        return payload[key]
    return []


def iter_pages(
    client: httpx.Client,
    path: str,
    total_pages: Callable[[Any, int], int],
    params: Optional[Dict[str, Any]] = None,
    per_page: int = 100,
    provider: str = "",
) -> Iterator[Any]:
    """
    Yield each page payload of a page-numbered collection.

    total_pages(payload, per_page) reads the page count from a response; the
    walk stops once the current page reaches it.
    """
    page = 1
    while True:
        query = dict(params or {})
        query.update({'page': page, 'per_page': per_page})
        payload = get_json(client, path, params=query, provider=provider)
        yield payload
        if page >= total_pages(payload, per_page):
            break
        page += 1
