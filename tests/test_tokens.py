"""Tests for token decoding and expiry checks."""

from __future__ import annotations

import base64
import time
from datetime import datetime, timezone

import pytest

from authsession.exceptions import MalformedTokenError
from authsession.tokens import decode_token, get_expiration, is_token_expired


class TestDecode:
    def test_returns_payload_claims(self, make_token) -> None:
        claims = {"sub": "user-1", "email": "a@b.c", "roles": ["admin"], "exp": 1700000000}
        assert decode_token(make_token(claims)) == claims

    def test_handles_url_safe_alphabet(self, make_token) -> None:
        # "???" encodes to "Pz8_" once aligned on a 3-byte boundary.
        for pad in range(3):
            claims = {"p": "x" * pad, "note": "??????"}
            token = make_token(claims)
            if "_" in token.split(".")[1]:
                break
        else:
            pytest.fail("no payload exercised the url-safe alphabet")
        assert decode_token(token) == claims

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
    def test_rejects_wrong_segment_count(self, token: str) -> None:
        with pytest.raises(MalformedTokenError, match="3 parts"):
            decode_token(token)

    def test_rejects_impossible_padding(self) -> None:
        with pytest.raises(MalformedTokenError, match="Illegal base64url"):
            decode_token("h.abcde.s")

    def test_rejects_invalid_base64(self) -> None:
        with pytest.raises(MalformedTokenError):
            decode_token("h.@@@@.s")

    def test_rejects_non_json_payload(self) -> None:
        payload = base64.urlsafe_b64encode(b"not json").rstrip(b"=").decode()
        with pytest.raises(MalformedTokenError):
            decode_token(f"h.{payload}.s")

    def test_rejects_non_object_payload(self) -> None:
        payload = base64.urlsafe_b64encode(b"[1, 2]").rstrip(b"=").decode()
        with pytest.raises(MalformedTokenError, match="JSON object"):
            decode_token(f"h.{payload}.s")


class TestExpiry:
    @pytest.mark.parametrize("skew", [0, 60, 10**9])
    def test_no_exp_never_expires(self, make_token, skew: int) -> None:
        assert is_token_expired(make_token({"sub": "x"}), skew) is False

    def test_past_exp_is_expired(self, make_token) -> None:
        assert is_token_expired(make_token({"exp": int(time.time()) - 10})) is True

    def test_future_exp_is_not_expired(self, make_token) -> None:
        assert is_token_expired(make_token({"exp": int(time.time()) + 3600})) is False

    def test_skew_brings_expiry_forward(self, make_token) -> None:
        token = make_token({"exp": int(time.time()) + 20})
        assert is_token_expired(token, 0) is False
        assert is_token_expired(token, 30) is True

    def test_exp_equal_to_now_is_expired(self, make_token) -> None:
        assert is_token_expired(make_token({"exp": 1000}), now=1000.0) is True
        assert is_token_expired(make_token({"exp": 1001}), now=1000.0) is False

    @pytest.mark.parametrize("skew", [0, -10**9])
    def test_null_exp_counts_as_epoch(self, make_token, skew: int) -> None:
        assert is_token_expired(make_token({"exp": None}), skew) is True
        assert get_expiration(make_token({"exp": None})) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_non_numeric_exp_is_malformed(self, make_token) -> None:
        with pytest.raises(MalformedTokenError, match="not numeric"):
            is_token_expired(make_token({"exp": "tomorrow"}))

    def test_malformed_token_raises(self) -> None:
        with pytest.raises(MalformedTokenError):
            is_token_expired("garbage")


class TestGetExpiration:
    def test_returns_utc_datetime(self, make_token) -> None:
        assert get_expiration(make_token({"exp": 0})) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_none_without_exp(self, make_token) -> None:
        assert get_expiration(make_token({"sub": "x"})) is None
