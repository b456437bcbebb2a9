"""Network calls to the auth server.

The session coordinators only need one capability: POST a JSON body to a URL,
optionally with a bearer token, and get the decoded JSON answer back or an
exception. :class:`AsyncTransport` and :class:`SyncTransport` describe that
capability; the httpx-backed classes below are the default implementations.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from authsession.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TransportError,
    UnexpectedResponseError,
    ValidationError,
)


class AsyncTransport(Protocol):
    async def post(self, url: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Any: ...


class SyncTransport(Protocol):
    def post(self, url: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Any: ...


# ---------------------------------------------------------------------------
# Shared response handling
# ---------------------------------------------------------------------------


def _extract_error_message(resp: httpx.Response, fallback: str) -> str:
    """Best-effort extraction of the server's error message."""
    try:
        body = resp.json()
    except Exception:
        return fallback
    if not isinstance(body, dict):
        return fallback
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if body.get("message"):
        return str(body["message"])
    return fallback


def _handle_response(resp: httpx.Response) -> Any:
    """Map HTTP status codes to exceptions and unwrap the API envelope."""
    if resp.status_code == 400:
        raise ValidationError(_extract_error_message(resp, "Bad request"))
    if resp.status_code == 401:
        raise AuthenticationError(_extract_error_message(resp, "Authentication failed"))
    if resp.status_code == 403:
        raise AuthorizationError(_extract_error_message(resp, "Insufficient permissions"))
    if resp.status_code == 404:
        raise NotFoundError(_extract_error_message(resp, "Resource not found"))
    if resp.status_code == 409:
        raise ConflictError(_extract_error_message(resp, "Conflict"))
    if resp.status_code == 429:
        raise RateLimitError(_extract_error_message(resp, "Rate limit exceeded"))
    if resp.status_code >= 500:
        raise ServerError(_extract_error_message(resp, f"Server error: {resp.status_code}"))
    if resp.status_code >= 400:
        raise TransportError(_extract_error_message(resp, f"Unexpected error: {resp.status_code}"))
    if not resp.content:
        return None
    try:
        body = resp.json()
    except ValueError as exc:
        raise UnexpectedResponseError(f"Response body is not JSON (status {resp.status_code})") from exc
    # Only a bare envelope is unwrapped; a payload may carry its own "data" field.
    if isinstance(body, dict) and set(body) == {"data"}:
        return body["data"]
    return body


def _auth_headers(token: str | None) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


# ---------------------------------------------------------------------------
# httpx implementations
# ---------------------------------------------------------------------------


class HttpxTransport:
    """Async transport over :class:`httpx.AsyncClient`.

    *timeout* bounds every call, so a hung refresh surfaces as a
    :class:`NetworkError` instead of blocking its waiters forever.
    """

    def __init__(self, *, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    async def post(self, url: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Any:
        try:
            resp = await self._client.post(url, json=body, headers=_auth_headers(token))
        except httpx.TransportError as exc:
            raise NetworkError(f"POST {url} failed: {exc!r}") from exc
        return _handle_response(resp)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()


class HttpxSyncTransport:
    """Synchronous transport over :class:`httpx.Client`."""

    def __init__(self, *, timeout: float = 30.0, client: httpx.Client | None = None) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def post(self, url: str, body: dict[str, Any] | None = None, *, token: str | None = None) -> Any:
        try:
            resp = self._client.post(url, json=body, headers=_auth_headers(token))
        except httpx.TransportError as exc:
            raise NetworkError(f"POST {url} failed: {exc!r}") from exc
        return _handle_response(resp)

    def close(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            self._client.close()
