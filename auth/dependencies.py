"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. JWT cookie ("access_token") -- browser clients.

Both converge on the authorization gate (auth/gate.py), which only ever
accepts an ACCESS-kind token.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises HTTP 401 if unauthenticated.
require_roles(...) / requires_permission(...) build dependencies that also
raise HTTP 403 when the gate denies.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.gate import Permission, Principal, authenticate, require_permission, require_role
from auth.models import Identity, Role
from auth.result import Err


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token") or None


def try_get_principal(request: Request) -> Principal | None:
    """Return the Principal for the request's access token, or None. Never raises."""
    return authenticate(request.app.state.token_codec, _extract_token(request))


def get_current_principal(request: Request) -> Principal:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits only principals whose role is in roles."""
    allowed = frozenset(roles)

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        result = require_role(principal, allowed)
        if isinstance(result, Err):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": result.error.message},
            )
        return principal

    return dependency


def requires_permission(permission: Permission) -> Callable[[Request], Identity]:
    """Build a dependency that re-reads the caller's Identity and checks one capability flag.

    Resolves to the fresh Identity so the route does not need a second read.
    """

    def dependency(request: Request) -> Identity:
        principal = get_current_principal(request)
        result = require_permission(request.app.state.identity_store, principal, permission)
        if isinstance(result, Err):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": result.error.message},
            )
        return result.value

    return dependency


require_admin = require_roles(Role.ADMINISTRATOR)
