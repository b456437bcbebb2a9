"""Exception hierarchy for the authsession client library."""

from __future__ import annotations


class AuthSessionError(Exception):
    """Base exception for all authsession errors."""


class MalformedTokenError(AuthSessionError):
    """Raised when a token is not a three-segment base64url JSON token."""


class NoSessionError(AuthSessionError):
    """Raised when an operation needs credentials and none are available."""


class StorageUnavailable(AuthSessionError):
    """Raised by a key-value store when the durable medium cannot be used."""


class TransportError(AuthSessionError):
    """Raised when a call to the auth server fails."""


class NetworkError(TransportError):
    """Raised when the server could not be reached or the call timed out."""


class UnexpectedResponseError(TransportError):
    """Raised when the server answers with a body of the wrong shape."""


class ValidationError(TransportError):
    """Raised when the server rejects input as invalid (400)."""


class AuthenticationError(TransportError):
    """Raised when authentication fails (401)."""


class AuthorizationError(TransportError):
    """Raised when the user lacks permission (403)."""


class NotFoundError(TransportError):
    """Raised when a requested resource does not exist (404)."""


class ConflictError(TransportError):
    """Raised on duplicate or conflicting resources (409)."""


class RateLimitError(TransportError):
    """Raised when the server is throttling requests (429)."""


class ServerError(TransportError):
    """Raised on unexpected server-side errors (5xx)."""
