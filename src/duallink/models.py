"""Canonical Pydantic models shared across all duallink modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration** -- serialised as JSON in the user's config directory:
    :class:`Settings`.

**Session state** -- produced by the handshake and persisted by the
session store:
    :class:`LoginTicket`, :class:`PendingHandshake`, :class:`Credential`.

**Wire models** -- response bodies of the authorization service:
    :class:`LoginResponse`, :class:`CheckResponse`, :class:`TokenResponse`.

All models use Pydantic v2. Secret-bearing fields are excluded from
``repr`` so that they never leak into logs or tracebacks.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# --- Configuration ---


class KeyDerivation(str, enum.Enum):
    """How the per-request decryption key is derived.

    ``SHA512`` matches what the authorization service computes on its side.
    ``PBKDF2`` stretches the same inputs with a locally persisted salt and
    only interoperates with a service that was given that salt.
    """

    SHA512 = "sha512"
    PBKDF2 = "pbkdf2"


class Settings(BaseModel):
    """User-wide settings persisted at ``~/.config/duallink/config.json``.

    Loaded by :func:`~duallink.config.load_settings` and overridden by
    project config, environment variables, and CLI flags. See
    :func:`~duallink.config.resolve_settings` for the precedence chain.
    """

    api_url: Optional[str] = Field(
        default=None, description="Base URL of the authorization service"
    )
    auth_path: str = Field(
        default="/auth", description="Path prefix of the auth endpoints"
    )
    server_name: str = Field(
        default="JauMemory",
        description="Name used to build the connection name shown on the approval page",
    )
    session_name: str = Field(
        default="default", description="Name of the stored session file"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(
        default=2, description="Retries for login/authenticate/logout on transport errors"
    )
    poll_interval: float = Field(
        default=5.0, description="Seconds between approval status checks"
    )
    max_poll_attempts: int = Field(
        default=60, description="Approval status checks before giving up"
    )
    refresh_skew_seconds: int = Field(
        default=300, description="Refresh the bearer token this long before it expires"
    )
    key_derivation: KeyDerivation = Field(default=KeyDerivation.SHA512)
    pbkdf2_iterations: int = Field(default=600_000)

    @property
    def connection_name(self) -> str:
        """Human-readable name of this client as shown on the approval page."""
        return f"{self.server_name} MCP Server"

    @property
    def refresh_skew(self) -> timedelta:
        return timedelta(seconds=self.refresh_skew_seconds)

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value:
            return value.rstrip("/")
        return value


# --- Session state ---


class LoginTicket(BaseModel):
    """What a caller gets back from starting a login."""

    request_id: str
    approval_url: str
    expires_at: Optional[str] = None


class PendingHandshake(BaseModel):
    """An in-flight login attempt. Lives in memory only, never persisted."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request_id: str
    request_key: bytes = Field(repr=False)
    approval_url: str
    expires_at: Optional[str] = None
    encrypted_code: Optional[str] = Field(default=None, repr=False)


class Credential(BaseModel):
    """An authenticated session.

    The ``request_id`` / ``one_time_code`` pair is the renewal material:
    exchanging it again mints a fresh bearer token without a new approval.
    Treat the whole record as secret.
    """

    request_id: str
    one_time_code: str = Field(repr=False)
    user_id: str
    bearer_token: str = Field(repr=False)
    bearer_expiry: datetime
    sync_id: str

    @field_validator("bearer_expiry")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def needs_refresh(self, skew: timedelta, now: Optional[datetime] = None) -> bool:
        """Return ``True`` once *now* is within *skew* of the bearer expiry."""
        current = now or datetime.now(timezone.utc)
        return current >= self.bearer_expiry - skew


# --- Wire models ---


class LoginResponse(BaseModel):
    """Body of a successful ``POST /login``."""

    request_id: str
    approval_url: str
    expires_at: Optional[str] = None


class CheckResponse(BaseModel):
    """Body of ``POST /check``."""

    approved: bool = False
    encrypted_auth_token: Optional[str] = None


class TokenResponse(BaseModel):
    """Body of a successful ``POST /authenticate``."""

    access_token: str
    expires_in: int
    user_id: str
    token_type: str = "bearer"

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: object) -> object:
        # Some deployments return numeric ids.
        if isinstance(value, int):
            return str(value)
        return value
