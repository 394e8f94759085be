"""
auth/authenticator.py -- TokenAuthenticator: per-request identity resolution.

Three credential strategies are tried in priority order; the first success
wins:
  1. CookieAccessTokenStrategy  -- "access_token" cookie set by login/register.
  2. BearerAccessTokenStrategy  -- "Authorization: Bearer <jwt>" (mobile apps).
  3. ApiTokenStrategy           -- the same bearer value looked up as a
                                   persisted API token (scripts, automation).

Order matters: the two JWT strategies are stateless (no store round-trip), and
a browser holding a session cookie must never fall through to API-token
semantics.

Failure semantics:
  - no strategy found a credential of its kind  -> AuthenticationRequired
  - at least one credential was presented but every strategy rejected it
                                                -> InvalidOrExpired
  Nothing downgrades to a weaker trust level; nothing is retried.

Adding a credential type (mTLS, signed URLs) means appending a strategy.

Layer rule: no imports from api/, todo/, or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from starlette.requests import Request

from auth.issuer import CredentialIssuer
from auth.models import AuthMethod, Principal
from auth.tokens import ACCESS_COOKIE
from core.errors import AuthenticationRequired, InvalidOrExpired

logger = logging.getLogger("tasktrack.auth")


def extract_bearer(request: Request) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" header, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip() or None
    return None


class CredentialStrategy(Protocol):
    """One way of proving identity.

    extract() returns None when the request carries no credential of this
    kind. resolve() returns a Principal or raises InvalidOrExpired.
    """

    name: str

    def extract(self, request: Request) -> str | None: ...

    def resolve(self, credential: str) -> Principal: ...


class CookieAccessTokenStrategy:
    name = "cookie"

    def __init__(self, issuer: CredentialIssuer) -> None:
        self.issuer = issuer

    def extract(self, request: Request) -> str | None:
        return request.cookies.get(ACCESS_COOKIE) or None

    def resolve(self, credential: str) -> Principal:
        user_id = self.issuer.verify_access_token(credential)
        return Principal(user_id=user_id, auth_method=AuthMethod.COOKIE_SESSION)


class BearerAccessTokenStrategy:
    name = "bearer_jwt"

    def __init__(self, issuer: CredentialIssuer) -> None:
        self.issuer = issuer

    def extract(self, request: Request) -> str | None:
        return extract_bearer(request)

    def resolve(self, credential: str) -> Principal:
        user_id = self.issuer.verify_access_token(credential)
        return Principal(user_id=user_id, auth_method=AuthMethod.BEARER_ACCESS_TOKEN)


class ApiTokenStrategy:
    name = "api_token"

    def __init__(self, issuer: CredentialIssuer) -> None:
        self.issuer = issuer

    def extract(self, request: Request) -> str | None:
        return extract_bearer(request)

    def resolve(self, credential: str) -> Principal:
        record = self.issuer.verify_api_token(credential)
        return Principal(
            user_id=record.user_id,
            auth_method=AuthMethod.API_TOKEN,
            scopes=frozenset(record.scopes),
            api_token_id=record.id,
        )


class TokenAuthenticator:
    """Resolve a request to a Principal using an ordered list of strategies."""

    def __init__(self, strategies: Sequence[CredentialStrategy]) -> None:
        self.strategies = list(strategies)

    @classmethod
    def default(cls, issuer: CredentialIssuer) -> TokenAuthenticator:
        return cls(
            [
                CookieAccessTokenStrategy(issuer),
                BearerAccessTokenStrategy(issuer),
                ApiTokenStrategy(issuer),
            ]
        )

    def authenticate(self, request: Request) -> Principal:
        """Return the Principal for request or raise a typed failure."""
        presented = False
        last_error: InvalidOrExpired | None = None
        for strategy in self.strategies:
            credential = strategy.extract(request)
            if not credential:
                continue
            presented = True
            try:
                return strategy.resolve(credential)
            except InvalidOrExpired as exc:
                logger.debug("Credential rejected by %s strategy: %s", strategy.name, type(exc).__name__)
                last_error = exc

        if not presented:
            raise AuthenticationRequired()
        logger.info("Authentication failed on %s %s", request.method, request.url.path)
        raise last_error or InvalidOrExpired()
