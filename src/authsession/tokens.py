"""Decoding and expiry checks for JWT-style access tokens.

Only the payload segment is read. Signatures are never verified here; the
server is the authority on whether a token is genuine, the client only needs
the identity claims and the ``exp`` instant to decide when to refresh.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from datetime import datetime, timezone
from typing import Any

from authsession.exceptions import MalformedTokenError


def _urlsafe_b64decode(segment: str) -> bytes:
    output = segment.replace("-", "+").replace("_", "/")
    remainder = len(output) % 4
    if remainder == 1:
        raise MalformedTokenError("Illegal base64url string")
    if remainder:
        output += "=" * (4 - remainder)
    try:
        return base64.b64decode(output, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedTokenError(f"Cannot decode the token: {exc}") from exc


def decode_token(token: str) -> dict[str, Any]:
    """Return the claims carried in the payload segment of *token*.

    Raises :class:`MalformedTokenError` unless the token has exactly three
    dot-separated segments and the middle one is base64url-encoded JSON object.
    """
    if not isinstance(token, str):
        raise MalformedTokenError("Invalid JWT token, expecting a string")
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedTokenError(f"Invalid JWT token, expecting 3 parts, got {len(parts)}")
    raw = _urlsafe_b64decode(parts[1])
    try:
        claims = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError(f"Cannot decode the token: {exc}") from exc
    if not isinstance(claims, dict):
        raise MalformedTokenError("Token payload is not a JSON object")
    return claims


def _exp_claim(claims: dict[str, Any]) -> float | None:
    if "exp" not in claims:
        return None
    exp = claims["exp"]
    if exp is None:
        # A null exp counts as the epoch, so the token is already expired.
        return 0.0
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise MalformedTokenError(f"Token exp claim is not numeric: {exp!r}")
    return float(exp)


def get_expiration(token: str) -> datetime | None:
    """Return the token's expiry as an aware UTC datetime, or None without ``exp``."""
    exp = _exp_claim(decode_token(token))
    if exp is None:
        return None
    try:
        return datetime.fromtimestamp(exp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise MalformedTokenError(f"Token exp claim is out of range: {exp!r}") from exc


def is_token_expired(token: str, skew_seconds: float = 0.0, *, now: float | None = None) -> bool:
    """Whether *token* is expired, or will be within *skew_seconds*.

    A token without an ``exp`` claim never expires; ``"exp": null`` is
    read as the epoch, so such a token is always expired.
    """
    exp = _exp_claim(decode_token(token))
    if exp is None:
        return False
    current = time.time() if now is None else now
    return exp <= current + skew_seconds
