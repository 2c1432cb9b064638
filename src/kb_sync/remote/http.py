"""HTTP plumbing shared by the knowledge-base sub-clients.

Builds the ``httpx.AsyncClient`` from application settings and turns
HTTP outcomes into the typed errors of :mod:`kb_sync.errors`, so callers
can tell "retry next pass" from "already satisfied" from "fix your
configuration" without parsing status codes themselves.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from kb_sync.config import settings
from kb_sync.errors import (
    CollectionExistsError,
    ConfigurationError,
    DuplicateContentError,
    RemoteNotFoundError,
    RemoteRequestError,
    TransientRemoteError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 3
MAX_RETRY_AFTER = 60.0

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")


def build_http_client(
    *,
    url: str | None = None,
    api_token: str | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build a configured ``httpx.AsyncClient`` for the knowledge API.

    Parameters default to the values in ``settings`` so callers can
    simply call ``build_http_client()`` during normal operation.
    Explicit overrides are accepted for testing.

    Args:
        url: Service base URL. Falls back to ``settings.url``.
        api_token: Bearer token. Falls back to ``settings.api_token``.
        timeout: Per-request timeout in seconds.
        transport: Optional transport (``httpx.MockTransport`` in tests).

    Raises:
        ConfigurationError: If the URL or token are empty after resolving
            defaults.
    """
    resolved_url = (url or settings.url).rstrip("/")
    resolved_token = api_token or settings.api_token

    if not resolved_url:
        raise ConfigurationError(
            "Knowledge service URL is required. Set KB_SYNC_URL or pass url explicitly."
        )
    if not resolved_token:
        raise ConfigurationError(
            "API token is required. Set KB_SYNC_API_TOKEN or pass api_token explicitly."
        )

    parsed = urlparse(resolved_url)
    if parsed.scheme == "http" and (parsed.hostname or "") not in _LOCAL_HOSTS:
        logger.warning(
            "Knowledge service %s is not using HTTPS; the API token is sent in cleartext",
            resolved_url,
        )

    return httpx.AsyncClient(
        base_url=resolved_url,
        headers={
            "Authorization": f"Bearer {resolved_token}",
            "Accept": "application/json",
        },
        timeout=timeout,
        transport=transport,
    )


async def send(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    operation: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    **kwargs: Any,
) -> httpx.Response:
    """Send one request, mapping failures onto the error taxonomy.

    Rate-limit responses (429) are retried up to *max_retries* times,
    honouring ``Retry-After``.  Every other failure is raised at once;
    transient ones are picked up again by the next sync pass.
    """
    attempt = 0
    while True:
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientRemoteError(f"Timed out during '{operation}': {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientRemoteError(
                f"Could not reach knowledge service during '{operation}': {exc}"
            ) from exc

        if response.status_code == 429 and attempt < max_retries:
            attempt += 1
            retry_after = _retry_after(response)
            logger.info(
                "Rate limited during '%s', retrying in %.1fs (attempt %d/%d)",
                operation, retry_after, attempt, max_retries,
            )
            await asyncio.sleep(retry_after)
            continue

        check_response(response, operation)
        return response


def check_response(response: httpx.Response, operation: str) -> None:
    """Raise the matching ``RemoteError`` subclass for a failed response."""
    status = response.status_code
    if status < 400:
        return

    body = response.text
    lowered = body.lower()
    message = (
        f"Knowledge API error during '{operation}': "
        f"status={status}, body={body[:200]}"
    )

    if status in (401, 403):
        raise ConfigurationError(message)
    if "duplicate content" in lowered:
        raise DuplicateContentError(message, status, remote_id=_existing_id(response))
    if status == 404 or (
        status == 400 and ("not found" in lowered or "could not find" in lowered)
    ):
        raise RemoteNotFoundError(message, status)
    if "already exist" in lowered:
        raise CollectionExistsError(message, status)
    if status == 429 or status >= 500:
        raise TransientRemoteError(message, status)
    raise RemoteRequestError(message, status)


def json_body(response: httpx.Response, operation: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RemoteRequestError(
            f"Knowledge API returned invalid JSON during '{operation}'",
            response.status_code,
        ) from exc


def _retry_after(response: httpx.Response) -> float:
    try:
        return min(float(response.headers.get("Retry-After", "5")), MAX_RETRY_AFTER)
    except ValueError:
        return 5.0


def _existing_id(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return ""
    if isinstance(data, dict):
        return str(data.get("id") or data.get("file_id") or "")
    return ""
