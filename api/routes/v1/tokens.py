"""
api/routes/v1/tokens.py -- Personal API token management.

Routes:
  POST   /api/users/{user_id}/tokens  -- issue a token; raw value shown ONCE
  GET    /api/users/{user_id}/tokens  -- list the caller's tokens (no raw values)
  DELETE /api/tokens/{token_id}       -- revoke one of the caller's tokens

Tokens are managed from a login session only. A request authenticated by an
API token cannot mint, list or revoke tokens, so a leaked "write" token cannot
be used to create a longer-lived replacement.

IDOR guard: DELETE passes the caller's user_id to the store; the WHERE clause
requires both to match, and a mismatch is reported as 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import ApiTokenCreate, ApiTokenCreatedResponse, ApiTokenResponse, SuccessResponse
from auth.dependencies import get_current_principal, require_self
from auth.issuer import ApiTokenLimitReached, CredentialIssuer
from auth.models import AuthMethod, Principal
from auth.store import CredentialStore
from core.errors import AccessDenied, NotFound

router = APIRouter()


def _require_session(principal: Principal) -> None:
    if principal.auth_method is AuthMethod.API_TOKEN:
        raise AccessDenied("API tokens can only be managed from a login session.")


@router.post("/users/{user_id}/tokens", response_model=ApiTokenCreatedResponse, status_code=201)
def create_api_token(
    request: Request,
    user_id: int,
    body: ApiTokenCreate,
    principal: Principal = Depends(get_current_principal),
) -> ApiTokenCreatedResponse:
    """Issue a new API token. The raw token is in this response and nowhere else."""
    require_self(user_id, principal)
    _require_session(principal)
    issuer: CredentialIssuer = request.app.state.issuer

    try:
        record, raw = issuer.issue_api_token(
            user_id,
            body.name,
            scopes=[s.value for s in body.scopes],
            expires_in_days=body.expires_in_days,
        )
    except ApiTokenLimitReached as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "token_limit_reached", "message": f"{exc} Revoke an existing token first."},
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_scope", "message": str(exc)},
        ) from exc

    listed = ApiTokenResponse.from_domain(record)
    return ApiTokenCreatedResponse(**listed.model_dump(), token=raw)


@router.get("/users/{user_id}/tokens", response_model=list[ApiTokenResponse])
def list_api_tokens(
    request: Request,
    user_id: int,
    principal: Principal = Depends(get_current_principal),
) -> list[ApiTokenResponse]:
    require_self(user_id, principal)
    _require_session(principal)
    store: CredentialStore = request.app.state.credential_store
    return [ApiTokenResponse.from_domain(t) for t in store.list_api_tokens(user_id)]


@router.delete("/tokens/{token_id}", response_model=SuccessResponse)
def revoke_api_token(
    request: Request,
    token_id: int,
    principal: Principal = Depends(get_current_principal),
) -> SuccessResponse:
    """Revoke an API token. Takes effect on the token's very next request."""
    _require_session(principal)
    issuer: CredentialIssuer = request.app.state.issuer
    if not issuer.revoke_api_token(token_id, principal.user_id):
        raise NotFound("API token not found.")
    return SuccessResponse()
