"""
auth/issuer.py -- CredentialIssuer: session, refresh and API token lifecycle.

Owns every policy decision about credentials; CredentialStore only persists.

Sessions:
  issue_session() mints a stateless access JWT (7 days) and an opaque refresh
  token (30 days) whose HMAC is persisted. One refresh row per session, so a
  user logged in on three devices has three rows.

Refresh:
  refresh() exchanges a live refresh token for a new access token. The refresh
  token itself is NOT rotated: it stays valid until logout or natural expiry.
  Expired rows are deleted when they are presented.

API tokens:
  issue_api_token() returns the raw value exactly once; only its HMAC and a
  12-char display prefix are stored.

Every store call is a single-row atomic statement; nothing here needs a
multi-row transaction.

Layer rule: no imports from api/, todo/, or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta

from auth.models import ApiToken, RefreshToken, SessionTokens
from auth.store import CredentialStore, parse_iso, to_iso, utcnow
from auth.tokens import (
    create_access_token,
    decode_access_token,
    generate_api_token,
    generate_refresh_token,
    hash_token,
)
from core.config import Settings, get_settings
from core.errors import InvalidOrExpired, TokenExpired

logger = logging.getLogger("tasktrack.auth.issuer")

KNOWN_SCOPES: frozenset[str] = frozenset({"read", "write"})


class ApiTokenLimitReached(Exception):
    """Raised when a user already holds the maximum number of API tokens."""


class CredentialIssuer:
    """Mint, verify, refresh and revoke credentials against a CredentialStore.

    clock is injectable so expiry behaviour can be tested without sleeping.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def issue_session(self, user_id: int) -> SessionTokens:
        """Return a fresh access token plus a persisted refresh token for user_id."""
        now = self._clock()
        access = create_access_token(user_id, self.settings.access_token_expire_seconds, now=now)
        raw_refresh = generate_refresh_token()
        self.store.add_refresh_token(
            RefreshToken(
                user_id=user_id,
                token_hash=hash_token(raw_refresh),
                expires_at=to_iso(now + timedelta(days=self.settings.refresh_token_expire_days)),
            )
        )
        logger.info("Session issued for user_id=%d", user_id)
        return SessionTokens(access_token=access, refresh_token=raw_refresh)

    def verify_access_token(self, token: str) -> int:
        """Return the user_id embedded in a valid access token.

        Stateless: signature and expiry only. Raises TokenInvalid or TokenExpired.
        """
        return decode_access_token(token)

    def refresh(self, refresh_token: str) -> str:
        """Exchange a live refresh token for a new access token.

        Raises InvalidOrExpired if the token is unknown, was revoked, or has
        expired. An expired row is removed on the way out.
        """
        if not refresh_token:
            raise InvalidOrExpired("Refresh token is invalid or expired.")
        token_hash = hash_token(refresh_token)
        record = self.store.get_refresh_token(token_hash)
        if record is None:
            raise InvalidOrExpired("Refresh token is invalid or expired.")
        now = self._clock()
        if parse_iso(record.expires_at) <= now:
            self.store.delete_refresh_token(token_hash)
            raise TokenExpired("Refresh token is invalid or expired.")
        return create_access_token(record.user_id, self.settings.access_token_expire_seconds, now=now)

    def revoke(self, refresh_token: str) -> None:
        """Delete the session row for refresh_token. Missing rows are not an error."""
        if not refresh_token:
            return
        if self.store.delete_refresh_token(hash_token(refresh_token)):
            logger.info("Refresh token revoked")

    # ------------------------------------------------------------------
    # API tokens
    # ------------------------------------------------------------------

    def issue_api_token(
        self,
        user_id: int,
        name: str,
        scopes: Iterable[str] = ("read",),
        expires_in_days: int | None = None,
    ) -> tuple[ApiToken, str]:
        """Create an API token. Returns (stored record, raw token value).

        The raw value is never persisted; the caller must hand it to the client
        now or lose it. "write" always implies "read". Raises ApiTokenLimitReached
        past the per-user cap and ValueError on unknown scopes.
        """
        scope_set = set(scopes)
        unknown = scope_set - KNOWN_SCOPES
        if unknown or not scope_set:
            raise ValueError(f"Unknown or empty scopes: {sorted(unknown)!r}")
        if "write" in scope_set:
            scope_set.add("read")
        scope_list = sorted(scope_set)
        if self.store.count_api_tokens(user_id) >= self.settings.api_token_limit_per_user:
            raise ApiTokenLimitReached(
                f"Maximum of {self.settings.api_token_limit_per_user} API tokens per user."
            )

        raw = generate_api_token()
        expires_at = None
        if expires_in_days is not None:
            expires_at = to_iso(self._clock() + timedelta(days=expires_in_days))
        record = ApiToken(
            user_id=user_id,
            name=name,
            token_hash=hash_token(raw),
            token_prefix=raw[:12],
            scopes=scope_list,
            expires_at=expires_at,
        )
        record.id = self.store.create_api_token(record)
        stored = self.store.get_api_token(record.id)
        logger.info("API token id=%d issued for user_id=%d scopes=%s", record.id, user_id, ",".join(scope_list))
        return (stored or record), raw

    def verify_api_token(self, raw_token: str) -> ApiToken:
        """Return the live ApiToken for raw_token and stamp its last-used time.

        Raises InvalidOrExpired for unknown tokens and TokenExpired for tokens
        whose expiry has passed.
        """
        record = self.store.get_api_token_by_hash(hash_token(raw_token))
        if record is None:
            raise InvalidOrExpired("API token is invalid or expired.")
        if record.expires_at is not None and parse_iso(record.expires_at) <= self._clock():
            raise TokenExpired("API token is invalid or expired.")
        self.store.touch_api_token(record.id)
        return record

    def revoke_api_token(self, token_id: int, user_id: int) -> bool:
        """Delete an API token owned by user_id. Returns False if not found or not owned."""
        revoked = self.store.delete_api_token(token_id, user_id)
        if revoked:
            logger.info("API token id=%d revoked by user_id=%d", token_id, user_id)
        return revoked

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def sweep_expired(self) -> tuple[int, int]:
        """Remove dead refresh/API token rows. Returns (refresh_removed, api_removed)."""
        removed = self.store.sweep_expired(to_iso(self._clock()))
        if any(removed):
            logger.info("Swept expired credentials: refresh=%d api=%d", *removed)
        return removed
