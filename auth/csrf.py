"""
auth/csrf.py -- CsrfGuard: double-submit CSRF defense for cookie sessions.

Flow:
  1. The browser calls GET /api/csrf-token. issue_token() signs a random nonce
     with SECRET_KEY (itsdangerous URLSafeTimedSerializer), sets it in the
     httpOnly, SameSite=Strict "csrf_token" cookie, and returns the same value
     in the JSON body.
  2. The client echoes that value in the X-CSRF-Token header on every
     state-changing request.
  3. verify() requires header == cookie (constant-time) and a valid, unexpired
     signature. A cross-site attacker can make the browser send the cookie but
     can neither read it nor set the header.

Policy (requires_check):
  Only requests that authenticated through the access_token cookie are
  checked, and only for unsafe methods. Any request carrying an
  "Authorization: Bearer" header is exempt -- browsers never attach that
  header on their own, so such a request cannot be a forged cross-site one.
  The exemption keys off the header, never off the endpoint.

Layer rule: no imports from api/, todo/, or cache/.
"""

from __future__ import annotations

import hmac
import logging
import secrets

from itsdangerous import BadSignature, URLSafeTimedSerializer
from starlette.requests import Request

from auth.models import AuthMethod, Principal
from core.config import Settings, get_settings
from core.errors import CsrfMismatch

logger = logging.getLogger("tasktrack.auth.csrf")

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

_SALT = "csrf-token"


def has_bearer_header(request: Request) -> bool:
    auth_header = request.headers.get("Authorization", "")
    return auth_header[:7].lower() == "bearer " and bool(auth_header[7:].strip())


class CsrfGuard:
    """Issue and validate double-submit CSRF tokens bound to SECRET_KEY."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._serializer = URLSafeTimedSerializer(self.settings.secret_key, salt=_SALT)

    def issue_token(self, response) -> str:
        """Mint a token, set the CSRF cookie on response, and return the plaintext value."""
        token = self._serializer.dumps(secrets.token_urlsafe(16))
        response.set_cookie(
            CSRF_COOKIE,
            value=token,
            httponly=True,
            samesite="strict",
            secure=self.settings.secure_cookies,
            max_age=self.settings.csrf_token_max_age_seconds,
            path="/",
        )
        return token

    def verify(self, request: Request) -> None:
        """Raise CsrfMismatch unless X-CSRF-Token matches a genuine CSRF cookie."""
        cookie = request.cookies.get(CSRF_COOKIE, "")
        header = request.headers.get(CSRF_HEADER, "")
        if not cookie or not header or not hmac.compare_digest(cookie.encode(), header.encode()):
            logger.warning("CSRF check failed on %s %s", request.method, request.url.path)
            raise CsrfMismatch()
        try:
            self._serializer.loads(cookie, max_age=self.settings.csrf_token_max_age_seconds)
        except BadSignature as exc:
            # SignatureExpired is a BadSignature subclass.
            logger.warning("CSRF token signature rejected on %s %s", request.method, request.url.path)
            raise CsrfMismatch() from exc

    def requires_check(self, request: Request, principal: Principal) -> bool:
        if request.method.upper() in SAFE_METHODS:
            return False
        if has_bearer_header(request):
            return False
        return principal.auth_method is AuthMethod.COOKIE_SESSION

    def enforce(self, request: Request, principal: Principal) -> None:
        if self.requires_check(request, principal):
            self.verify(request)
