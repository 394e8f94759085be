"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_principal() is the single entry point every protected route uses.
It runs the request through, in order:
  1. TokenAuthenticator  -- cookie JWT, then bearer JWT, then API token.
  2. CsrfGuard           -- only for cookie-authenticated unsafe requests
                            without an Authorization: Bearer header.
  3. Scope check         -- API tokens need "read" for safe methods and
                            "write" for everything else.

All three fail closed by raising a core.errors exception before any handler
logic runs; api/main.py renders them as structured error responses.

The authenticator and CSRF guard live on app.state (wired in the lifespan) so
tests can swap stores without touching this module.

Layer rule: no imports from api/, todo/, or cache/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.authenticator import TokenAuthenticator
from auth.csrf import SAFE_METHODS, CsrfGuard
from auth.models import AuthMethod, Principal
from core.errors import AccessDenied


def get_current_principal(request: Request) -> Principal:
    """Require an authenticated principal. Raises 401/403 via core.errors.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...
    """
    authenticator: TokenAuthenticator = request.app.state.authenticator
    csrf_guard: CsrfGuard = request.app.state.csrf_guard

    principal = authenticator.authenticate(request)
    csrf_guard.enforce(request, principal)
    if principal.auth_method is AuthMethod.API_TOKEN:
        needed = "read" if request.method.upper() in SAFE_METHODS else "write"
        if not principal.has_scope(needed):
            raise AccessDenied(f"This API token does not have the '{needed}' scope.", code="insufficient_scope")

    request.state.principal = principal
    return principal


def require_self(user_id: int, principal: Principal) -> None:
    """Raise 403 unless the path's user id is the caller's own.

    Used by /users/{id}/... routes. Access to another user's collection is
    never granted, so the mismatch is always AccessDenied rather than NotFound.
    """
    if principal.user_id != user_id:
        raise AccessDenied("You can only manage your own resources.")
