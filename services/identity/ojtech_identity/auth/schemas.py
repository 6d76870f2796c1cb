"""
Identity service: Pydantic V2 request/response schemas for the auth domain.

Separation of concerns:
  - *Request  models:  input from the client (strict extra="forbid")
  - *Response models:  output to the client (no password hash ever exposed)
"""
from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field


# ── Shared base ───────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        populate_by_name=True,
    )


# ── Local sign-up / sign-in ───────────────────────────────────────────────────

class SignupRequest(_Base):
    """Body for POST /api/auth/signup."""

    username: str = Field(min_length=3, max_length=20)
    email: EmailStr
    password: str = Field(min_length=6, max_length=40)
    # "student" | "employer" | "nlo"; defaults to student when omitted
    roles: list[str] | None = None


class SigninRequest(_Base):
    """Body for POST /api/auth/signin. Accepts either an email or a username."""

    username_or_email: str = Field(alias="usernameOrEmail", min_length=1)
    password: str = Field(min_length=1)


class GoogleTokenRequest(_Base):
    """Body for POST /api/auth/google: an ID token obtained by the frontend."""

    token_id: str = Field(alias="tokenId", min_length=1)


class JwtResponse(BaseModel):
    token: str
    type: str = "Bearer"
    id: uuid.UUID
    username: str
    email: str
    roles: list[str]


class MessageResponse(BaseModel):
    message: str


# ── Identity views ────────────────────────────────────────────────────────────

class PrincipalResponse(BaseModel):
    """The caller as seen by this request (decoded from the bearer token)."""

    id: uuid.UUID
    username: str
    email: str
    roles: list[str]


class UserResponse(BaseModel):
    """Stored identity. Used by admin lookups."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    email: str
    display_name: str | None
    image_url: str | None
    email_verified: bool
    provider: str | None
    is_active: bool
    roles: list[str] = Field(validation_alias="role_names")
    created_at: datetime
