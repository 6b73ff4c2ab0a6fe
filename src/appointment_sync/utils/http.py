"""Shared HTTP plumbing for the appointment service."""

import logging
from typing import Any

import httpx

from .exceptions import AuthError, ConflictError, NetworkError, ValidationError

logger = logging.getLogger(__name__)


def create_client(base_url: str, token: str, timeout: float = 30.0) -> httpx.AsyncClient:
    """Create an authenticated async client for the appointment service."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout,
        headers={
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        },
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or response.reason_phrase)
    return response.reason_phrase


async def api_request(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    **kwargs: Any,
) -> Any:
    """
    Issue a request and return the decoded JSON body.

    Raises:
        AuthError: On 401/403
        ConflictError: On 409 (raw conflicting records in ``.conflicts``)
        ValidationError: On 400/422
        NetworkError: On transport failures and any other error status
    """
    try:
        response = await client.request(method, path, **kwargs)
    except httpx.TimeoutException as e:
        raise NetworkError(f"{method} {path} timed out") from e
    except httpx.HTTPError as e:
        raise NetworkError(f"{method} {path} failed: {e}") from e

    if response.status_code in (401, 403):
        raise AuthError(f"{method} {path} rejected ({response.status_code}): {_error_message(response)}")
    if response.status_code == 409:
        try:
            body = response.json()
        except ValueError:
            body = {}
        conflicts = body.get("conflicts", []) if isinstance(body, dict) else []
        raise ConflictError(_error_message(response), conflicts)
    if response.status_code in (400, 422):
        raise ValidationError(f"{method} {path} rejected: {_error_message(response)}")
    if response.is_error:
        raise NetworkError(f"{method} {path} failed ({response.status_code}): {_error_message(response)}")

    if response.status_code == 204 or not response.content:
        return {}

    try:
        data = response.json()
    except ValueError as e:
        raise NetworkError(f"{method} {path} returned invalid JSON") from e

    if isinstance(data, dict) and data.get("success") is False:
        raise NetworkError(f"{method} {path} failed: {data.get('message') or 'unknown error'}")

    logger.debug(f"{method} {path} -> {response.status_code}")
    return data


def unwrap(data: Any, key: str = "data") -> Any:
    """Return ``data[key]`` for enveloped responses, ``data`` otherwise."""
    if isinstance(data, dict) and key in data:
        return data[key]
    return data
