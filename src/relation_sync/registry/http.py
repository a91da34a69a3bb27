"""Shared HTTP plumbing for the remote collaborator adapters."""

from __future__ import annotations

import base64

import httpx

from relation_sync.config import RemoteEndpointConfig
from relation_sync.sync.errors import RemoteRejected, RemoteUnavailable

# HTTP status codes that indicate transient errors worth retrying
# 429: Too Many Requests, 5xx: Server errors
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def encode_id(identifier: str) -> str:
    """Base64URL encode an identifier for API paths."""
    return base64.urlsafe_b64encode(identifier.encode()).decode().rstrip("=")


def build_client(config: RemoteEndpointConfig) -> httpx.Client:
    """Create an httpx client bounded by the endpoint timeout."""
    headers: dict[str, str] = {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if config.auth_token:
        headers["Authorization"] = f"Bearer {config.auth_token.get_secret_value()}"

    return httpx.Client(
        base_url=config.base_url,
        headers=headers,
        timeout=config.timeout_seconds,
    )


def raise_for_status(response: httpx.Response, action: str) -> None:
    """Translate a non-2xx response into the sync error taxonomy."""
    if response.is_success:
        return
    message = f"{action} failed with status {response.status_code}: {response.text[:200]}"
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise RemoteUnavailable(message, status_code=response.status_code)
    raise RemoteRejected(message, status_code=response.status_code)


def transport_error(error: httpx.HTTPError, action: str) -> RemoteUnavailable:
    """Wrap network errors and timeouts."""
    if isinstance(error, httpx.TimeoutException):
        return RemoteUnavailable(f"{action} timed out: {error}")
    return RemoteUnavailable(f"{action} failed: {error}")
