"""Shared fixtures for the authsession tests."""

from __future__ import annotations

import base64
import json
import time
from typing import Any, Callable

import pytest


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _make_token(claims: dict[str, Any]) -> str:
    header = _b64(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    payload = _b64(json.dumps(claims).encode())
    return f"{header}.{payload}.c2lnbmF0dXJl"


@pytest.fixture
def make_token() -> Callable[[dict[str, Any]], str]:
    """Build an unsigned three-segment token carrying *claims*."""
    return _make_token


@pytest.fixture
def fresh_token() -> Callable[..., str]:
    """Token for user *sub* that expires *ttl* seconds from now."""

    def _fresh(sub: str = "user-1", ttl: int = 3600, **claims: Any) -> str:
        return _make_token({"sub": sub, "exp": int(time.time()) + ttl, **claims})

    return _fresh
