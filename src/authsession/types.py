"""Pydantic models for the auth server's wire types."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CredentialPair(BaseModel):
    """An access token together with the refresh token issued alongside it.

    Both fields are required and non-empty; "no credentials" is ``None``,
    never a pair with blank fields. Pairs are frozen: a refresh replaces the
    whole pair.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    access_token: str = Field(alias="token", min_length=1)
    refresh_token: str = Field(alias="refreshToken", min_length=1)

    def __repr__(self) -> str:
        return "CredentialPair(access_token=..., refresh_token=...)"


class _Payload(BaseModel):
    """Request body; unknown fields are passed through to the server."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class LoginRequest(_Payload):
    email: str
    password: str


class RegisterRequest(_Payload):
    email: str
    password: str
    data: dict[str, Any] = Field(default_factory=dict)


class ForgotPasswordRequest(_Payload):
    email: str


class ResetPasswordRequest(_Payload):
    email: str
    code: str
    password: str


class ChangePasswordRequest(_Payload):
    password: str
    new_password: str = Field(alias="newPassword")


class MessageResponse(BaseModel):
    """Plain acknowledgement returned by the password endpoints."""

    model_config = ConfigDict(extra="allow")

    message: str = ""
