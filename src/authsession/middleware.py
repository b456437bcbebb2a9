"""httpx authentication hooks backed by a session.

Lets application code make its own API calls without handling tokens::

    session = AuthSession("https://api.example.com")
    await session.init()
    async with httpx.AsyncClient(auth=SessionAuth(session)) as client:
        resp = await client.get("https://api.example.com/api/things")
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator

import httpx

from authsession.session import AuthSession, SyncAuthSession


class SessionAuth(httpx.Auth):
    """Adds ``Authorization: Bearer`` from an :class:`AuthSession` to each request."""

    def __init__(self, session: AuthSession) -> None:
        self.session = session

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("SessionAuth needs an httpx.AsyncClient; use SyncSessionAuth with httpx.Client")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        token = await self.session.get_valid_token()
        request.headers["Authorization"] = f"Bearer {token}"
        yield request


class SyncSessionAuth(httpx.Auth):
    """Adds ``Authorization: Bearer`` from a :class:`SyncAuthSession` to each request."""

    def __init__(self, session: SyncAuthSession) -> None:
        self.session = session

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.session.get_valid_token()}"
        yield request
