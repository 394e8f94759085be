"""Unit tests for auth/authenticator.py -- TokenAuthenticator.

Covers:
- each strategy yields the right AuthMethod
- strategy priority: cookie JWT, then bearer JWT, then API token
- no credential -> AuthenticationRequired; rejected credential -> InvalidOrExpired
- the JWT strategies never touch the credential store
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from starlette.requests import Request

from auth.authenticator import TokenAuthenticator, extract_bearer
from auth.issuer import CredentialIssuer
from auth.models import AuthMethod, User
from auth.store import CredentialStore
from auth.tokens import ACCESS_COOKIE, create_access_token
from core.errors import AuthenticationRequired, InvalidOrExpired


def make_request(bearer: str | None = None, cookie: str | None = None) -> Request:
    headers = []
    if bearer is not None:
        headers.append((b"authorization", f"Bearer {bearer}".encode()))
    if cookie is not None:
        headers.append((b"cookie", f"{ACCESS_COOKIE}={cookie}".encode()))
    return Request({"type": "http", "method": "GET", "path": "/api/users/me", "headers": headers, "query_string": b""})


@pytest.fixture
def user_id(credential_store: CredentialStore) -> int:
    return credential_store.create_user(User(username="alice", password_hash="x"))


@pytest.fixture
def authenticator(issuer: CredentialIssuer) -> TokenAuthenticator:
    return TokenAuthenticator.default(issuer)


class TestExtractBearer:
    def test_parses_header(self) -> None:
        assert extract_bearer(make_request(bearer="abc")) == "abc"

    def test_case_insensitive_scheme(self) -> None:
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": [(b"authorization", b"bearer xyz")]})
        assert extract_bearer(request) == "xyz"

    def test_other_schemes_ignored(self) -> None:
        request = Request({"type": "http", "method": "GET", "path": "/", "headers": [(b"authorization", b"Basic Zm9v")]})
        assert extract_bearer(request) is None


class TestStrategies:
    def test_cookie_session(self, authenticator: TokenAuthenticator, user_id: int) -> None:
        principal = authenticator.authenticate(make_request(cookie=create_access_token(user_id)))
        assert principal.user_id == user_id
        assert principal.auth_method is AuthMethod.COOKIE_SESSION
        assert principal.has_scope("write")

    def test_bearer_access_token(self, authenticator: TokenAuthenticator, user_id: int) -> None:
        principal = authenticator.authenticate(make_request(bearer=create_access_token(user_id)))
        assert principal.auth_method is AuthMethod.BEARER_ACCESS_TOKEN

    def test_api_token(self, authenticator: TokenAuthenticator, issuer: CredentialIssuer, user_id: int) -> None:
        record, raw = issuer.issue_api_token(user_id, "ci", scopes=["read"])
        principal = authenticator.authenticate(make_request(bearer=raw))
        assert principal.auth_method is AuthMethod.API_TOKEN
        assert principal.api_token_id == record.id
        assert principal.has_scope("read")
        assert not principal.has_scope("write")

    def test_cookie_wins_over_bearer(self, authenticator: TokenAuthenticator, credential_store: CredentialStore) -> None:
        alice = credential_store.create_user(User(username="alice2", password_hash="x"))
        bob = credential_store.create_user(User(username="bob", password_hash="x"))
        request = make_request(bearer=create_access_token(bob), cookie=create_access_token(alice))
        principal = authenticator.authenticate(request)
        assert principal.user_id == alice
        assert principal.auth_method is AuthMethod.COOKIE_SESSION

    def test_bad_cookie_falls_through_to_bearer(self, authenticator: TokenAuthenticator, user_id: int) -> None:
        request = make_request(bearer=create_access_token(user_id), cookie="garbage")
        principal = authenticator.authenticate(request)
        assert principal.auth_method is AuthMethod.BEARER_ACCESS_TOKEN


class TestFailures:
    def test_no_credential(self, authenticator: TokenAuthenticator) -> None:
        with pytest.raises(AuthenticationRequired):
            authenticator.authenticate(make_request())

    def test_rejected_credential(self, authenticator: TokenAuthenticator) -> None:
        with pytest.raises(InvalidOrExpired):
            authenticator.authenticate(make_request(bearer="tt_" + "0" * 64))

    def test_rejected_cookie_only(self, authenticator: TokenAuthenticator) -> None:
        with pytest.raises(InvalidOrExpired):
            authenticator.authenticate(make_request(cookie="garbage"))

    def test_revoked_api_token(self, authenticator: TokenAuthenticator, issuer: CredentialIssuer, user_id: int) -> None:
        record, raw = issuer.issue_api_token(user_id, "ci")
        issuer.revoke_api_token(record.id, user_id)
        with pytest.raises(InvalidOrExpired):
            authenticator.authenticate(make_request(bearer=raw))


class TestStatelessJwt:
    def test_jwt_strategies_skip_the_store(self) -> None:
        store = MagicMock(spec=CredentialStore)
        authenticator = TokenAuthenticator.default(CredentialIssuer(store))
        authenticator.authenticate(make_request(cookie=create_access_token(7)))
        authenticator.authenticate(make_request(bearer=create_access_token(7)))
        assert store.method_calls == [], "JWT authentication must not query the store"
