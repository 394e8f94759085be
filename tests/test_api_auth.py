"""
tests/test_api_auth.py -- Integration tests for session, CSRF and API token routes.

These tests exercise the full stack: FastAPI routing -> get_current_principal
(authenticator, CSRF guard, scope check) -> CredentialIssuer/CredentialStore ->
response model serialization -> exception handlers.

Coverage:
  - register/login: tokens in body and cookies, 400 weak password, 409 taken, 401 bad credentials
  - refresh-token: cookie and body forms, 403 after logout
  - CSRF: cookie-session writes need X-CSRF-Token; a Bearer header exempts them
  - API tokens: issue, authenticate, last-used stamp, revoke, scopes, ownership
  - error envelope and WWW-Authenticate on 401

Fixtures used (from conftest.py):
  - api_client: TestClient on the real app with fresh in-memory stores
  - register_user: register(username, password="secret123", keep_cookies=False) -> JSON
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.models import ApiToken
from auth.tokens import hash_token


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def set_cookie_headers(resp) -> dict[str, str]:
    """Map cookie name -> its lower-cased Set-Cookie header value."""
    headers = {}
    for value in resp.headers.get_list("set-cookie"):
        name = value.split("=", 1)[0]
        headers[name] = value.lower()
    return headers


class TestRegisterAndLogin:
    def test_register_returns_tokens_and_cookies(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/register", json={"username": "alice", "password": "secret123"})
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"
        data = resp.json()
        assert data["user"]["username"] == "alice"
        assert data["accessToken"] and data["refreshToken"]
        assert "access_token" in resp.cookies, "access cookie must be set"
        assert "refresh_token" in resp.cookies, "refresh cookie must be set"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_session_cookie_attributes(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/register", json={"username": "alice", "password": "secret123"})
        cookies = set_cookie_headers(resp)
        access = cookies["access_token"]
        assert "httponly" in access
        assert f"max-age={7 * 24 * 3600}" in access
        assert "path=/;" in access + ";"
        refresh = cookies["refresh_token"]
        assert "httponly" in refresh
        assert f"max-age={30 * 24 * 3600}" in refresh
        assert "path=/api/users" in refresh
        assert "samesite=strict" in refresh

    def test_register_access_token_works(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.get("/api/users/me", headers=bearer(data["accessToken"]))
        assert resp.status_code == 200
        me = resp.json()
        assert me["id"] == data["user"]["id"]
        assert me["authMethod"] == "bearer_access_token"
        assert me["scopes"] == ["read", "write"]

    def test_weak_password_rejected(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/register", json={"username": "alice", "password": "abc"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"

    def test_duplicate_username_conflict(self, api_client: TestClient, register_user) -> None:
        register_user("alice")
        resp = api_client.post("/api/users/register", json={"username": "alice", "password": "another1"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    def test_missing_field_is_validation_error(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/register", json={"username": "alice"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_success(self, api_client: TestClient, register_user) -> None:
        register_user("alice")
        resp = api_client.post("/api/users/login", json={"username": "alice", "password": "secret123"})
        assert resp.status_code == 200
        assert resp.json()["accessToken"]
        assert "access_token" in resp.cookies

    def test_login_wrong_password(self, api_client: TestClient, register_user) -> None:
        register_user("alice")
        resp = api_client.post("/api/users/login", json={"username": "alice", "password": "wrong-one"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_unknown_user_same_error(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/login", json={"username": "ghost", "password": "secret123"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"


class TestAuthFailures:
    def test_no_credentials(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/users/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "authentication_required"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_garbage_bearer(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/users/me", headers=bearer("not-a-token"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_or_expired"


class TestRefreshAndLogout:
    def test_refresh_with_body(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post("/api/users/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert resp.status_code == 200, resp.text
        access = resp.json()["accessToken"]
        api_client.cookies.clear()
        assert api_client.get("/api/users/me", headers=bearer(access)).status_code == 200

    def test_refresh_with_cookie(self, api_client: TestClient, register_user) -> None:
        register_user("alice", keep_cookies=True)
        resp = api_client.post("/api/users/refresh-token")
        assert resp.status_code == 200, resp.text
        assert "access_token" in resp.cookies

    def test_refresh_without_token_is_403(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/users/refresh-token")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_or_expired"

    def test_refresh_after_logout_is_403(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post(
            "/api/users/logout",
            json={"refreshToken": data["refreshToken"]},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        resp = api_client.post("/api/users/refresh-token", json={"refreshToken": data["refreshToken"]})
        assert resp.status_code == 403

    def test_cookie_logout_clears_session(self, api_client: TestClient, register_user) -> None:
        register_user("alice", keep_cookies=True)
        csrf = api_client.get("/api/csrf-token").json()["csrfToken"]
        resp = api_client.post("/api/users/logout", headers={"X-CSRF-Token": csrf})
        assert resp.status_code == 200, resp.text
        assert "access_token" not in api_client.cookies
        assert api_client.post("/api/users/refresh-token").status_code == 403

    def test_logout_expires_cookies_on_their_paths(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post("/api/users/logout", headers=bearer(data["accessToken"]))
        assert resp.status_code == 200
        cookies = set_cookie_headers(resp)
        assert "max-age=0" in cookies["refresh_token"]
        assert "path=/api/users" in cookies["refresh_token"]
        assert "max-age=0" in cookies["access_token"]
        assert "path=/;" in cookies["access_token"] + ";"

    def test_logout_requires_auth(self, api_client: TestClient) -> None:
        assert api_client.post("/api/users/logout").status_code == 401


class TestChangePassword:
    def test_change_password(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post(
            "/api/users/change-password",
            json={"currentPassword": "secret123", "newPassword": "better456"},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 200, resp.text
        api_client.cookies.clear()
        assert api_client.post("/api/users/login", json={"username": "alice", "password": "secret123"}).status_code == 401
        assert api_client.post("/api/users/login", json={"username": "alice", "password": "better456"}).status_code == 200

    def test_wrong_current_password(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post(
            "/api/users/change-password",
            json={"currentPassword": "nope-nope", "newPassword": "better456"},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 401

    def test_weak_new_password(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post(
            "/api/users/change-password",
            json={"currentPassword": "secret123", "newPassword": "abc"},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "weak_password"


class TestCsrf:
    def test_cookie_write_without_csrf_header_rejected(self, api_client: TestClient, register_user) -> None:
        register_user("alice", keep_cookies=True)
        resp = api_client.post("/api/projects", json={"name": "Inbox"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_mismatch"

    def test_cookie_write_with_csrf_header_allowed(self, api_client: TestClient, register_user) -> None:
        register_user("alice", keep_cookies=True)
        token_resp = api_client.get("/api/csrf-token")
        assert token_resp.status_code == 200
        assert "csrf_token" in token_resp.cookies
        resp = api_client.post(
            "/api/projects", json={"name": "Inbox"}, headers={"X-CSRF-Token": token_resp.json()["csrfToken"]}
        )
        assert resp.status_code == 201, resp.text

    def test_bearer_header_exempts_cookie_session(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice", keep_cookies=True)
        resp = api_client.post("/api/projects", json={"name": "Inbox"}, headers=bearer(data["accessToken"]))
        assert resp.status_code == 201, resp.text

    def test_cookie_reads_need_no_csrf(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice", keep_cookies=True)
        resp = api_client.get(f"/api/users/{data['user']['id']}/projects")
        assert resp.status_code == 200
        me = api_client.get("/api/users/me").json()
        assert me["authMethod"] == "cookie_session"


class TestApiTokens:
    def _issue(self, client: TestClient, data: dict, scopes: list[str]) -> dict:
        resp = client.post(
            f"/api/users/{data['user']['id']}/tokens",
            json={"name": "ci", "scopes": scopes},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def test_issue_authenticate_list_revoke(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        issued = self._issue(api_client, data, ["read", "write"])
        raw = issued["token"]
        assert raw.startswith("tt_")
        assert issued["tokenPrefix"] == raw[:12]

        me = api_client.get("/api/users/me", headers=bearer(raw))
        assert me.status_code == 200
        assert me.json()["authMethod"] == "api_token"

        listed = api_client.get(f"/api/users/{data['user']['id']}/tokens", headers=bearer(data["accessToken"])).json()
        assert len(listed) == 1
        assert "token" not in listed[0], "raw value must never be listed"
        assert listed[0]["lastUsedAt"] is not None

        resp = api_client.delete(f"/api/tokens/{issued['id']}", headers=bearer(data["accessToken"]))
        assert resp.status_code == 200

        resp = api_client.get("/api/users/me", headers=bearer(raw))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_or_expired"

    def test_read_only_token_cannot_write(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        raw = self._issue(api_client, data, ["read"])["token"]
        resp = api_client.post("/api/projects", json={"name": "Inbox"}, headers=bearer(raw))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "insufficient_scope"
        assert api_client.get(f"/api/users/{data['user']['id']}/projects", headers=bearer(raw)).status_code == 200

    def test_write_scope_implies_read(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        issued = self._issue(api_client, data, ["write"])
        assert issued["scopes"] == ["read", "write"]
        resp = api_client.get(f"/api/users/{data['user']['id']}/projects", headers=bearer(issued["token"]))
        assert resp.status_code == 200

    def test_token_without_read_scope_cannot_read(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        store = api_client.app.state.credential_store
        raw = "tt_" + "w" * 40
        store.create_api_token(
            ApiToken(
                user_id=data["user"]["id"],
                name="legacy",
                token_hash=hash_token(raw),
                token_prefix=raw[:12],
                scopes=["write"],
            )
        )
        resp = api_client.get(f"/api/users/{data['user']['id']}/projects", headers=bearer(raw))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "insufficient_scope"
        resp = api_client.post("/api/projects", json={"name": "Inbox"}, headers=bearer(raw))
        assert resp.status_code == 201

    def test_write_token_can_write(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        raw = self._issue(api_client, data, ["read", "write"])["token"]
        resp = api_client.post("/api/projects", json={"name": "Inbox"}, headers=bearer(raw))
        assert resp.status_code == 201, resp.text

    def test_api_token_cannot_manage_tokens(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        raw = self._issue(api_client, data, ["read", "write"])["token"]
        resp = api_client.get(f"/api/users/{data['user']['id']}/tokens", headers=bearer(raw))
        assert resp.status_code == 403

    def test_cannot_issue_for_another_user(self, api_client: TestClient, register_user) -> None:
        alice = register_user("alice")
        bob = register_user("bob")
        resp = api_client.post(
            f"/api/users/{bob['user']['id']}/tokens",
            json={"name": "sneaky"},
            headers=bearer(alice["accessToken"]),
        )
        assert resp.status_code == 403

    def test_cannot_revoke_another_users_token(self, api_client: TestClient, register_user) -> None:
        alice = register_user("alice")
        bob = register_user("bob")
        issued = self._issue(api_client, alice, ["read"])
        resp = api_client.delete(f"/api/tokens/{issued['id']}", headers=bearer(bob["accessToken"]))
        assert resp.status_code == 404
        assert api_client.get("/api/users/me", headers=bearer(issued["token"])).status_code == 200

    def test_token_limit(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        for _ in range(10):
            self._issue(api_client, data, ["read"])
        resp = api_client.post(
            f"/api/users/{data['user']['id']}/tokens",
            json={"name": "eleventh"},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "token_limit_reached"

    def test_unknown_scope_is_validation_error(self, api_client: TestClient, register_user) -> None:
        data = register_user("alice")
        resp = api_client.post(
            f"/api/users/{data['user']['id']}/tokens",
            json={"name": "ci", "scopes": ["admin"]},
            headers=bearer(data["accessToken"]),
        )
        assert resp.status_code == 422
