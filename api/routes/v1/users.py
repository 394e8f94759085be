"""
api/routes/v1/users.py -- Registration, login, session and CSRF endpoints.

Routes:
  POST /api/users/register         -- create account; returns + sets session tokens
  POST /api/users/login            -- password login; returns + sets session tokens
  POST /api/users/refresh-token    -- exchange refresh token for a new access token
  POST /api/users/logout           -- revoke refresh token, clear session cookies
  POST /api/users/change-password  -- verify current password, store a new hash
  GET  /api/users/me               -- identity of the current principal
  GET  /api/csrf-token             -- mint a double-submit CSRF token

Security:
  [H2] register and login are rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every response that carries a credential.
  Password hashing is CPU-bound, so every handler that hashes or verifies a
  password is a plain def (FastAPI threadpool), never async def.

refresh-token is not behind get_current_principal: the access token it renews
is usually the one that just expired. An invalid or expired refresh token is
403, not 401, so clients can tell "re-login" apart from "refresh and retry".
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AccessTokenResponse,
    ChangePasswordRequest,
    CredentialsRequest,
    CsrfTokenResponse,
    ErrorDetail,
    ErrorResponse,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    SessionResponse,
    SuccessResponse,
    UserResponse,
)
from auth.csrf import CsrfGuard
from auth.dependencies import get_current_principal
from auth.issuer import CredentialIssuer
from auth.models import Principal, SessionTokens, User
from auth.store import CredentialStore
from auth.tokens import (
    REFRESH_COOKIE,
    authenticate_user,
    clear_session_cookies,
    hash_password,
    set_access_cookie,
    set_session_cookies,
    verify_password,
)
from core.config import get_settings
from core.errors import InvalidOrExpired

logger = logging.getLogger("tasktrack.api.users")

_settings = get_settings()

# Auth policy:
# - POST /api/users/register:        public, rate-limited
# - POST /api/users/login:           public, rate-limited
# - POST /api/users/refresh-token:   public -- the refresh token is the credential
# - POST /api/users/logout:          requires auth (get_current_principal)
# - POST /api/users/change-password: requires auth (get_current_principal)
# - GET  /api/users/me:              requires auth (get_current_principal)
# - GET  /api/csrf-token:            public
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, username=user.username, created_at=user.created_at or "")


def _session_response(user: User, tokens: SessionTokens) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=SessionResponse(
            user=_user_to_response(user),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        ).model_dump(by_alias=True),
    )
    set_session_cookies(resp, tokens)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _check_password_strength(password: str) -> None:
    if len(password) < _settings.password_min_length:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "weak_password",
                "message": f"Password must be at least {_settings.password_min_length} characters.",
            },
        )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/users/register", response_model=SessionResponse)
def register(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Create an account and start a session for it.

    The response body carries both tokens for mobile clients; browsers get
    the same tokens as httpOnly cookies.
    """
    store: CredentialStore = request.app.state.credential_store
    issuer: CredentialIssuer = request.app.state.issuer

    username = body.username.strip()
    if not username:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_username", "message": "Username must not be blank."},
        )
    _check_password_strength(body.password)

    try:
        user_id = store.create_user(User(username=username, password_hash=hash_password(body.password)))
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "username_taken", "message": "That username is already taken."},
        ) from exc

    user = store.get_by_id(user_id)
    logger.info("User registered: user_id=%d", user_id)
    return _session_response(user, issuer.issue_session(user_id))


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/users/login", response_model=SessionResponse)
def login(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Authenticate with username and password and start a new session.

    Uses authenticate_user() which includes timing equalization [C1]. The same
    generic error is returned for an unknown username and a wrong password.
    """
    store: CredentialStore = request.app.state.credential_store
    issuer: CredentialIssuer = request.app.state.issuer

    user = authenticate_user(store, body.username.strip(), body.password)
    if user is None:
        logger.info("Failed login attempt")
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="bad_credentials", message="Invalid username or password.")
            ).model_dump(exclude_none=True),
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    logger.info("User logged in: user_id=%d", user.id)
    return _session_response(user, issuer.issue_session(user.id))


@router.post("/users/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Issue a new access token for a live refresh token.

    The refresh_token cookie wins over the body field. The refresh token
    itself is returned unchanged to the client (no rotation).
    """
    issuer: CredentialIssuer = request.app.state.issuer
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None) or ""

    try:
        access = issuer.refresh(raw)
    except InvalidOrExpired as exc:
        raise InvalidOrExpired(exc.message, status_code=403) from exc

    resp = JSONResponse(content=AccessTokenResponse(access_token=access).model_dump(by_alias=True))
    set_access_cookie(resp, access)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/csrf-token", response_model=CsrfTokenResponse)
def csrf_token(request: Request, response: Response) -> CsrfTokenResponse:
    """Set the CSRF cookie and return the same value for the X-CSRF-Token header."""
    guard: CsrfGuard = request.app.state.csrf_guard
    token = guard.issue_token(response)
    response.headers["Cache-Control"] = "no-store"
    return CsrfTokenResponse(csrf_token=token)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/users/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    principal: Principal = Depends(get_current_principal),
) -> JSONResponse:
    """Revoke the presented refresh token and clear the session cookies.

    Access tokens are stateless and stay valid until they expire; clients
    drop theirs on logout.
    """
    issuer: CredentialIssuer = request.app.state.issuer
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if raw:
        issuer.revoke(raw)

    logger.info("User logged out: user_id=%d", principal.user_id)
    resp = JSONResponse(content=SuccessResponse().model_dump(by_alias=True, exclude_none=True))
    clear_session_cookies(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/users/change-password", response_model=SuccessResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    """Replace the caller's password after re-checking the current one."""
    store: CredentialStore = request.app.state.credential_store

    user = store.get_by_id(principal.user_id)
    if user is None or not verify_password(body.current_password, user.password_hash):
        raise HTTPException(
            status_code=401,
            detail={"code": "bad_credentials", "message": "Current password is incorrect."},
        )
    _check_password_strength(body.new_password)

    store.update_password_hash(user.id, hash_password(body.new_password))
    logger.info("Password changed: user_id=%d", user.id)
    return SuccessResponse(message="Password updated.")


@router.get("/users/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the identity behind the current credential and how it was proven."""
    store: CredentialStore = request.app.state.credential_store
    user = store.get_by_id(principal.user_id)
    if user is None:
        # Token outlived its account.
        raise InvalidOrExpired()
    return MeResponse(
        id=user.id,
        username=user.username,
        auth_method=principal.auth_method.value,
        scopes=sorted(principal.scopes),
    )
