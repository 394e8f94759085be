"""
auth/tokens.py -- JWT, password hashing, opaque token and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY and
       carry user_id, a "typ" claim of "access", iat and exp. Verification is
       stateless (no store lookup) and raises TokenExpired or TokenInvalid so
       callers can tell the two apart in logs; both surface to clients as
       invalid_or_expired.

  Passwords: bcrypt directly (no passlib wrapper). Bcrypt is the right choice
       for low-entropy secrets because its cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       authenticate_user() so response time does not reveal whether a username
       exists [C1]. bcrypt is CPU-bound: only call these helpers from sync
       (def) route handlers, which FastAPI runs in its threadpool.

  Refresh and API tokens: secrets-module randomness (256 bits). We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is O(1) and a leaked
       database does not yield usable credentials.

Layer rule: no imports from api/, todo/, or cache/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import TokenExpired, TokenInvalid

if TYPE_CHECKING:
    from auth.models import SessionTokens, User
    from auth.store import CredentialStore

logger = logging.getLogger("tasktrack.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API layer caps passwords at
    128 characters, and we truncate explicitly so bcrypt 4.x does not raise.
    """
    pw_bytes = plain.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("tasktrack_timing_dummy")


def authenticate_user(store: CredentialStore, username: str, password: str) -> User | None:
    """Authenticate a username/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or not user.password_hash:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, expire_seconds: int = 0, now: datetime | None = None) -> str:
    """Encode a signed access JWT for user_id.

    Args:
        user_id:        Numeric user ID stored in the DB.
        expire_seconds: Validity window in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds (7 days).
        now:            Issue time; defaults to the current UTC time.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "typ": _ACCESS_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> int:
    """Verify an access JWT and return its user_id.

    Raises TokenExpired when the signature is valid but exp has passed, and
    TokenInvalid for every other failure (bad signature, wrong algorithm,
    missing claims, refresh/other token types).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Access token has expired.") from exc
    except JWTError as exc:
        raise TokenInvalid("Access token is invalid.") from exc
    if payload.get("typ") != _ACCESS_TYPE:
        raise TokenInvalid("Access token is invalid.")
    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise TokenInvalid("Access token is invalid.")
    return user_id


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a URL-safe refresh token with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


def generate_api_token() -> str:
    """Generate a new API token in the format: tt_<64 hex chars>.

    The tt_ prefix makes tokens easy to spot in logs and secret scanners.
    """
    return f"tt_{secrets.token_hex(32)}"


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string.

    Using SECRET_KEY as the HMAC key means an attacker who obtains the DB
    cannot verify guesses offline without also knowing SECRET_KEY. The hash is
    deterministic, enabling O(1) lookup by hash.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_access_cookie(response, token: str) -> None:
    """Write the access JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": sent on top-level navigations, not on cross-site POST.
        State-changing requests are additionally CSRF-checked (auth/csrf.py).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.access_token_expire_seconds,
        path="/",
    )


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token cookie, scoped to the auth endpoints only.

    The restricted path keeps the long-lived credential off every other
    request the browser makes.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        max_age=_settings.refresh_token_expire_days * 24 * 3600,
        path=_settings.refresh_cookie_path,
    )


def set_session_cookies(response, tokens: SessionTokens) -> None:
    set_access_cookie(response, tokens.access_token)
    set_refresh_cookie(response, tokens.refresh_token)


def clear_session_cookies(response) -> None:
    """Expire both session cookies. Paths must match the ones used to set them."""
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path=_settings.refresh_cookie_path)
