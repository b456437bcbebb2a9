"""Session coordinators: current credentials, transparent refresh, persistence.

Both coordinators keep the signed-in state as one immutable snapshot
(credential pair plus the identity decoded from its access token) and replace
it only through ``_apply_new_pair``, which runs under a lock:

1. an expired pair is exchanged once for a fresh one; any failure signs out,
2. the identity is decoded from the resulting access token; an undecodable
   token signs out,
3. the snapshot is swapped in and written through to the credential store.

Refreshing on demand is single-flight: while one refresh is running, every
other caller waits for it and observes the same outcome instead of spending
the (often single-use) refresh token a second time.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

import pydantic

from authsession.exceptions import MalformedTokenError, NoSessionError, UnexpectedResponseError
from authsession.storage import CredentialStore, KeyValueStore, MemoryKeyValueStore
from authsession.tokens import decode_token, get_expiration, is_token_expired
from authsession.transport import AsyncTransport, HttpxSyncTransport, HttpxTransport, SyncTransport
from authsession.types import (
    ChangePasswordRequest,
    CredentialPair,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _SessionState:
    pair: CredentialPair | None = None
    identity: dict[str, Any] | None = None


_ANONYMOUS = _SessionState()


# ---------------------------------------------------------------------------
# Shared helpers. Pure functions used by both the async and sync coordinator.
# ---------------------------------------------------------------------------


def _join_url(base_url: str, *parts: str) -> str:
    segments = [p.strip("/") for p in parts if p.strip("/")]
    return "/".join([base_url.rstrip("/"), *segments])


def _auth_url(base_url: str, name: str) -> str:
    return _join_url(base_url, "api/auth", name)


def _user_url(base_url: str, name: str) -> str:
    return _join_url(base_url, "api/user", name)


def _dump(payload: pydantic.BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(payload, pydantic.BaseModel):
        return payload.model_dump(by_alias=True, exclude_none=True)
    return dict(payload)


def _build_refresh_body(pair: CredentialPair) -> dict[str, Any]:
    return {"refreshToken": pair.refresh_token}


def _parse_pair(data: Any) -> CredentialPair:
    try:
        return CredentialPair.model_validate(data)
    except pydantic.ValidationError as exc:
        raise UnexpectedResponseError(f"Expected a credential pair, got: {exc}") from exc


def _parse_message(data: Any) -> MessageResponse:
    if data is None:
        return MessageResponse()
    if not isinstance(data, dict):
        return MessageResponse(message=str(data))
    try:
        return MessageResponse.model_validate(data)
    except pydantic.ValidationError as exc:
        raise UnexpectedResponseError(f"Expected a message response, got: {exc}") from exc


def _settle(pair: CredentialPair | None) -> _SessionState:
    """Build the snapshot for *pair*; an undecodable access token yields anonymous."""
    if pair is None:
        return _ANONYMOUS
    try:
        identity = decode_token(pair.access_token)
        get_expiration(pair.access_token)
    except MalformedTokenError as exc:
        logger.warning("discarding credentials with undecodable access token: %s", exc)
        return _ANONYMOUS
    return _SessionState(pair=pair, identity=identity)


def _is_expired(pair: CredentialPair, skew_seconds: float) -> bool:
    try:
        return is_token_expired(pair.access_token, skew_seconds)
    except MalformedTokenError:
        return True


def _expired_at_commit(pair: CredentialPair) -> bool:
    """Expiry check for a pair being committed.

    An undecodable token is not worth a refresh call: it is reported as not
    expired so that ``_settle`` drops it.
    """
    try:
        return is_token_expired(pair.access_token)
    except MalformedTokenError:
        return False


# ---------------------------------------------------------------------------
# Async coordinator
# ---------------------------------------------------------------------------


class AuthSession:
    """Async session manager for a token-based auth server.

    Usage::

        async with AuthSession("https://api.example.com",
                               store=FileKeyValueStore("~/.myapp/session.json")) as session:
            if not await session.is_authenticated():
                await session.login(LoginRequest(email="a@b.c", password="secret"))
            token = await session.get_valid_token()

    Entering the context runs :meth:`init`, which restores persisted
    credentials; call it yourself when not using ``async with``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        store: KeyValueStore | None = None,
        transport: AsyncTransport | None = None,
        timeout: float = 30.0,
        refresh_margin_seconds: float = 30.0,
        storage_prefix: str = "AUTHSESSION",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.refresh_margin_seconds = refresh_margin_seconds
        self._credentials = CredentialStore(
            store if store is not None else MemoryKeyValueStore(),
            prefix=storage_prefix,
        )
        self._owned_transport = HttpxTransport(timeout=timeout) if transport is None else None
        self._transport: AsyncTransport = transport if transport is not None else self._owned_transport
        self._state = _ANONYMOUS
        self._lock = asyncio.Lock()
        self._refresh_task: asyncio.Task[str] | None = None

    async def __aenter__(self) -> AuthSession:
        await self.init()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owned_transport is not None:
            await self._owned_transport.aclose()

    async def init(self, base_url: str | None = None) -> None:
        """Restore persisted credentials, refreshing them if they have expired."""
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        await self._apply_new_pair(self._credentials.load())

    # --- State reads ---

    async def is_authenticated(self) -> bool:
        """Whether a user is signed in, once any running refresh has settled."""
        await self._wait_for_refresh()
        async with self._lock:
            return self._state.identity is not None

    def get_user(self) -> dict[str, Any] | None:
        """Claims decoded from the current access token."""
        identity = self._state.identity
        return dict(identity) if identity is not None else None

    def get_auth_token(self) -> str | None:
        """The current access token as-is, without checking expiry."""
        pair = self._state.pair
        return pair.access_token if pair is not None else None

    # --- Tokens ---

    async def get_valid_token(self) -> str:
        """Return an access token that is not about to expire.

        Refreshes first when the current token expires within
        ``refresh_margin_seconds``. Raises :class:`NoSessionError` when no
        user is signed in once any refresh has settled. A failed refresh
        signs the user out and its error is raised to every waiting caller.
        """
        task = self._running_refresh()
        if task is None:
            pair = self._state.pair
            if pair is None:
                raise NoSessionError("No user is signed in")
            if not _is_expired(pair, self.refresh_margin_seconds):
                return pair.access_token
            task = self._start_refresh(force=False)
        return await asyncio.shield(task)

    async def refresh(self) -> str:
        """Exchange the refresh token now, even if the access token is still valid."""
        task = self._running_refresh() or self._start_refresh(force=True)
        return await asyncio.shield(task)

    # --- Authentication ---

    async def login(self, credentials: LoginRequest | Mapping[str, Any]) -> dict[str, Any] | None:
        """Sign in and return the identity of the new session."""
        return await self._sign_in("login", credentials)

    async def register(self, details: RegisterRequest | Mapping[str, Any]) -> dict[str, Any] | None:
        """Create an account, sign in as it and return its identity."""
        return await self._sign_in("register", details)

    async def logout(self) -> None:
        """Sign out locally, telling the server on a best-effort basis."""
        await self._wait_for_refresh()
        token = self.get_auth_token()
        if token is not None:
            try:
                await self._transport.post(_user_url(self.base_url, "logout"), None, token=token)
            except Exception as exc:
                logger.debug("logout notification failed (non-fatal): %s", exc)
        await self._apply_new_pair(None)

    # --- Account management ---

    async def forgot_password(self, payload: ForgotPasswordRequest | Mapping[str, Any]) -> MessageResponse:
        data = await self._transport.post(_auth_url(self.base_url, "forgot-password"), _dump(payload))
        return _parse_message(data)

    async def reset_password(self, payload: ResetPasswordRequest | Mapping[str, Any]) -> MessageResponse:
        data = await self._transport.post(_auth_url(self.base_url, "reset-password"), _dump(payload))
        return _parse_message(data)

    async def change_password(self, payload: ChangePasswordRequest | Mapping[str, Any]) -> MessageResponse:
        token = await self.get_valid_token()
        data = await self._transport.post(
            _user_url(self.base_url, "change-password"), _dump(payload), token=token
        )
        return _parse_message(data)

    async def save_user_data(self, data: Mapping[str, Any]) -> dict[str, Any] | None:
        """Store custom user data; the server re-issues tokens carrying it."""
        token = await self.get_valid_token()
        pair = await self._authenticate(_user_url(self.base_url, "data"), dict(data), token=token)
        state = await self._apply_new_pair(pair)
        return dict(state.identity) if state.identity is not None else None

    # --- Internals ---

    async def _authenticate(
        self, url: str, payload: dict[str, Any], *, token: str | None = None
    ) -> CredentialPair:
        return _parse_pair(await self._transport.post(url, payload, token=token))

    async def _sign_in(self, endpoint: str, payload: pydantic.BaseModel | Mapping[str, Any]) -> dict[str, Any] | None:
        try:
            pair = await self._authenticate(_auth_url(self.base_url, endpoint), _dump(payload))
        except Exception:
            await self._apply_new_pair(None)
            raise
        state = await self._apply_new_pair(pair)
        if state.identity is None:
            logger.warning("%s succeeded but the issued credentials were unusable", endpoint)
            return None
        return dict(state.identity)

    async def _apply_new_pair(self, pair: CredentialPair | None) -> _SessionState:
        async with self._lock:
            return await self._commit(pair)

    async def _commit(self, pair: CredentialPair | None) -> _SessionState:
        # Caller holds self._lock.
        if pair is not None and _expired_at_commit(pair):
            try:
                pair = await self._authenticate(_auth_url(self.base_url, "refresh-token"), _build_refresh_body(pair))
            except Exception as exc:
                logger.warning("refresh of expired credentials failed, signing out: %s", exc)
                pair = None
        state = _settle(pair)
        self._state = state
        self._credentials.save(state.pair)
        return state

    def _running_refresh(self) -> asyncio.Task[str] | None:
        task = self._refresh_task
        if task is None or task.done():
            return None
        return task

    def _start_refresh(self, *, force: bool) -> asyncio.Task[str]:
        task = asyncio.ensure_future(self._run_refresh(force=force))
        self._refresh_task = task
        task.add_done_callback(self._refresh_done)
        return task

    def _refresh_done(self, task: asyncio.Task[str]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the outcome retrieved; callers that were cancelled never read it.
        if not task.cancelled():
            task.exception()

    async def _run_refresh(self, *, force: bool) -> str:
        async with self._lock:
            # Double-check: a login or logout may have committed while we waited.
            pair = self._state.pair
            if pair is None:
                raise NoSessionError("No user is signed in")
            if not force and not _is_expired(pair, self.refresh_margin_seconds):
                return pair.access_token
            logger.debug("refreshing access token")
            try:
                new_pair = await self._authenticate(
                    _auth_url(self.base_url, "refresh-token"), _build_refresh_body(pair)
                )
            except Exception as exc:
                logger.warning("token refresh failed, signing out: %s", exc)
                await self._commit(None)
                raise
            state = await self._commit(new_pair)
        if state.pair is None:
            raise NoSessionError("Refreshed credentials were unusable; signed out")
        return state.pair.access_token

    async def _wait_for_refresh(self) -> None:
        task = self._running_refresh()
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except Exception as exc:
            logger.debug("pending refresh settled with failure: %s", exc)


# ---------------------------------------------------------------------------
# Sync coordinator. Same state machine, guarded for use from worker threads.
# ---------------------------------------------------------------------------


class SyncAuthSession:
    """Thread-safe synchronous session manager.

    Usage::

        with SyncAuthSession("https://api.example.com") as session:
            session.login({"email": "a@b.c", "password": "secret"})
            token = session.get_valid_token()
    """

    def __init__(
        self,
        base_url: str,
        *,
        store: KeyValueStore | None = None,
        transport: SyncTransport | None = None,
        timeout: float = 30.0,
        refresh_margin_seconds: float = 30.0,
        storage_prefix: str = "AUTHSESSION",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.refresh_margin_seconds = refresh_margin_seconds
        self._credentials = CredentialStore(
            store if store is not None else MemoryKeyValueStore(),
            prefix=storage_prefix,
        )
        self._owned_transport = HttpxSyncTransport(timeout=timeout) if transport is None else None
        self._transport: SyncTransport = transport if transport is not None else self._owned_transport
        self._state = _ANONYMOUS
        self._lock = threading.RLock()
        self._flight: Future[str] | None = None

    def __enter__(self) -> SyncAuthSession:
        self.init()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this session created it."""
        if self._owned_transport is not None:
            self._owned_transport.close()

    def init(self, base_url: str | None = None) -> None:
        """Restore persisted credentials, refreshing them if they have expired."""
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        self._apply_new_pair(self._credentials.load())

    def is_authenticated(self) -> bool:
        """Whether a user is signed in, once any running refresh has settled."""
        self._wait_for_refresh()
        with self._lock:
            return self._state.identity is not None

    def get_user(self) -> dict[str, Any] | None:
        identity = self._state.identity
        return dict(identity) if identity is not None else None

    def get_auth_token(self) -> str | None:
        pair = self._state.pair
        return pair.access_token if pair is not None else None

    def get_valid_token(self) -> str:
        """Synchronous version of :meth:`AuthSession.get_valid_token`."""
        return self._resolve(force=False)

    def refresh(self) -> str:
        """Exchange the refresh token now, even if the access token is still valid."""
        return self._resolve(force=True)

    def login(self, credentials: LoginRequest | Mapping[str, Any]) -> dict[str, Any] | None:
        return self._sign_in("login", credentials)

    def register(self, details: RegisterRequest | Mapping[str, Any]) -> dict[str, Any] | None:
        return self._sign_in("register", details)

    def logout(self) -> None:
        """Sign out locally, telling the server on a best-effort basis."""
        self._wait_for_refresh()
        token = self.get_auth_token()
        if token is not None:
            try:
                self._transport.post(_user_url(self.base_url, "logout"), None, token=token)
            except Exception as exc:
                logger.debug("logout notification failed (non-fatal): %s", exc)
        self._apply_new_pair(None)

    def forgot_password(self, payload: ForgotPasswordRequest | Mapping[str, Any]) -> MessageResponse:
        data = self._transport.post(_auth_url(self.base_url, "forgot-password"), _dump(payload))
        return _parse_message(data)

    def reset_password(self, payload: ResetPasswordRequest | Mapping[str, Any]) -> MessageResponse:
        data = self._transport.post(_auth_url(self.base_url, "reset-password"), _dump(payload))
        return _parse_message(data)

    def change_password(self, payload: ChangePasswordRequest | Mapping[str, Any]) -> MessageResponse:
        token = self.get_valid_token()
        data = self._transport.post(_user_url(self.base_url, "change-password"), _dump(payload), token=token)
        return _parse_message(data)

    def save_user_data(self, data: Mapping[str, Any]) -> dict[str, Any] | None:
        token = self.get_valid_token()
        pair = self._authenticate(_user_url(self.base_url, "data"), dict(data), token=token)
        state = self._apply_new_pair(pair)
        return dict(state.identity) if state.identity is not None else None

    # --- Internals ---

    def _authenticate(self, url: str, payload: dict[str, Any], *, token: str | None = None) -> CredentialPair:
        return _parse_pair(self._transport.post(url, payload, token=token))

    def _sign_in(self, endpoint: str, payload: pydantic.BaseModel | Mapping[str, Any]) -> dict[str, Any] | None:
        try:
            pair = self._authenticate(_auth_url(self.base_url, endpoint), _dump(payload))
        except Exception:
            self._apply_new_pair(None)
            raise
        state = self._apply_new_pair(pair)
        if state.identity is None:
            logger.warning("%s succeeded but the issued credentials were unusable", endpoint)
            return None
        return dict(state.identity)

    def _apply_new_pair(self, pair: CredentialPair | None) -> _SessionState:
        with self._lock:
            if pair is not None and _expired_at_commit(pair):
                try:
                    pair = self._authenticate(_auth_url(self.base_url, "refresh-token"), _build_refresh_body(pair))
                except Exception as exc:
                    logger.warning("refresh of expired credentials failed, signing out: %s", exc)
                    pair = None
            state = _settle(pair)
            self._state = state
            self._credentials.save(state.pair)
            return state

    def _resolve(self, *, force: bool) -> str:
        # Join a running refresh without queueing behind the lock it holds.
        pending = self._flight
        if pending is not None:
            return pending.result()
        with self._lock:
            flight = self._flight
            leader = flight is None
            if leader:
                pair = self._state.pair
                if pair is None:
                    raise NoSessionError("No user is signed in")
                if not force and not _is_expired(pair, self.refresh_margin_seconds):
                    return pair.access_token
                flight = self._flight = Future()
        if leader:
            try:
                token = self._run_refresh(force=force)
            except Exception as exc:
                self._land(flight)
                flight.set_exception(exc)
            else:
                self._land(flight)
                flight.set_result(token)
        return flight.result()

    def _land(self, flight: Future[str]) -> None:
        with self._lock:
            if self._flight is flight:
                self._flight = None

    def _run_refresh(self, *, force: bool) -> str:
        with self._lock:
            pair = self._state.pair
            if pair is None:
                raise NoSessionError("No user is signed in")
            if not force and not _is_expired(pair, self.refresh_margin_seconds):
                return pair.access_token
            logger.debug("refreshing access token")
            try:
                new_pair = self._authenticate(_auth_url(self.base_url, "refresh-token"), _build_refresh_body(pair))
            except Exception as exc:
                logger.warning("token refresh failed, signing out: %s", exc)
                self._apply_new_pair(None)
                raise
            state = self._apply_new_pair(new_pair)
        if state.pair is None:
            raise NoSessionError("Refreshed credentials were unusable; signed out")
        return state.pair.access_token

    def _wait_for_refresh(self) -> None:
        flight = self._flight
        if flight is None:
            return
        try:
            flight.result()
        except Exception as exc:
            logger.debug("pending refresh settled with failure: %s", exc)
