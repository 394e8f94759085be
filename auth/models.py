"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in todo/models.py -- dataclasses own domain shape; stores and routes do the work.

Layer rule: no imports from api/, todo/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AuthMethod(str, Enum):
    """How a request proved its identity. Drives the CSRF policy."""

    COOKIE_SESSION = "cookie_session"
    BEARER_ACCESS_TOKEN = "bearer_access_token"
    API_TOKEN = "api_token"


# Cookie and bearer-JWT principals act with the user's full authority.
FULL_SCOPES: frozenset[str] = frozenset({"read", "write"})


@dataclass
class User:
    """A registered account.

    password_hash is the only mutable field (change-password). Users are never
    deleted by the auth subsystem.
    """

    username: str
    password_hash: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class RefreshToken:
    """One active session (one device). token_hash is HMAC-SHA256 of the raw value.

    The raw value is handed to the client once, at login/register, and never
    persisted.
    """

    user_id: int
    token_hash: str
    expires_at: str  # ISO 8601 UTC
    id: int | None = None
    created_at: str | None = None


@dataclass
class ApiToken:
    """A long-lived, scoped credential for non-browser clients (scripts, MCP, CI).

    Security design:
    - token_hash is HMAC-SHA256(SECRET_KEY, raw_token). Deterministic hash gives
      O(1) lookup; 256-bit random tokens make bcrypt's slowness unnecessary.
    - token_prefix (first 12 chars of the raw token) is kept for display only.
    - expires_at None means the token never expires.
    """

    user_id: int
    name: str
    token_hash: str
    token_prefix: str
    scopes: list[str] = field(default_factory=lambda: ["read"])
    expires_at: str | None = None
    id: int | None = None
    created_at: str | None = None
    last_used_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """The resolved identity of one request. Never persisted."""

    user_id: int
    auth_method: AuthMethod
    scopes: frozenset[str] = FULL_SCOPES
    api_token_id: int | None = None

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


@dataclass(frozen=True)
class SessionTokens:
    """Credentials minted by a successful login or registration."""

    access_token: str
    refresh_token: str
