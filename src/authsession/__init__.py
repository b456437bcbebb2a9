"""authsession: client-side session manager for token-based auth servers."""

from authsession.exceptions import (
    AuthSessionError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    MalformedTokenError,
    NetworkError,
    NoSessionError,
    NotFoundError,
    RateLimitError,
    ServerError,
    StorageUnavailable,
    TransportError,
    UnexpectedResponseError,
    ValidationError,
)
from authsession.middleware import SessionAuth, SyncSessionAuth
from authsession.session import AuthSession, SyncAuthSession
from authsession.storage import CredentialStore, FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
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

__all__ = [
    # Sessions
    "AuthSession",
    "SyncAuthSession",
    # httpx auth hooks
    "SessionAuth",
    "SyncSessionAuth",
    # Storage
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "CredentialStore",
    # Transport
    "AsyncTransport",
    "SyncTransport",
    "HttpxTransport",
    "HttpxSyncTransport",
    # Tokens
    "decode_token",
    "get_expiration",
    "is_token_expired",
    # Types
    "CredentialPair",
    "LoginRequest",
    "RegisterRequest",
    "ForgotPasswordRequest",
    "ResetPasswordRequest",
    "ChangePasswordRequest",
    "MessageResponse",
    # Exceptions
    "AuthSessionError",
    "MalformedTokenError",
    "NoSessionError",
    "StorageUnavailable",
    "TransportError",
    "NetworkError",
    "UnexpectedResponseError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "RateLimitError",
    "ServerError",
]
