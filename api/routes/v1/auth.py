"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/login                        -- password login; returns access + refresh pair
  POST /api/v1/auth/register                     -- self-registration; 201 with access + refresh pair
  POST /api/v1/auth/refresh                      -- new access token from a refresh token
  POST /api/v1/auth/logout                       -- revoke one refresh token (requires auth)
  GET  /api/v1/auth/me                           -- current identity (requires auth)
  POST /api/v1/auth/sessions/revoke-all          -- revoke all of the caller's sessions (requires auth)
  GET  /api/v1/auth/sessions/report              -- active session count (view-reports flag)
  POST /api/v1/auth/users/{id}/revoke-sessions   -- revoke another identity's sessions (admin only)

Each handler is a thin translation: request body -> AuthEngine call -> Ok
mapped to a response model, Err raised into the AuthError exception handler
in api/main.py.

Security:
  [H2] POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Unknown email and wrong password both return 401 bad_credentials with
       the same message, so login responses do not reveal which accounts exist.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Ownership: POST /logout passes the caller's identity id to the engine; the
       engine refuses to revoke a token owned by anyone else.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    IdentityResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    RevokedSessionsResponse,
    SessionReportResponse,
    TokenResponse,
)
from auth.dependencies import get_current_principal, require_admin, requires_permission
from auth.engine import AuthEngine
from auth.errors import InvalidCredentials, NotFound
from auth.gate import Permission, Principal
from auth.models import Identity, to_snapshot
from auth.result import Err
from auth.store import IdentityStore

# Auth policy:
# - POST /auth/login, /auth/register, /auth/refresh:   public
# - POST /auth/logout, /auth/sessions/revoke-all:      requires auth (get_current_principal)
# - GET  /auth/me:                                     requires auth (get_current_principal)
# - GET  /auth/sessions/report:                        requires view-reports flag (fresh read)
# - POST /auth/users/{id}/revoke-sessions:             requires Administrator role
router = APIRouter()


def _token_response(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _set_auth_cookie(request: Request, response: JSONResponse, token: str, expires_in_ms: int) -> None:
    """Mirror the access token into an httpOnly cookie for browser clients."""
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=request.app.state.settings.secure_cookies,
        max_age=expires_in_ms // 1000,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access + refresh pair."""
    engine: AuthEngine = request.app.state.auth_engine
    result = engine.login(body.email, body.password)
    if isinstance(result, Err):
        if isinstance(result.error, (NotFound, InvalidCredentials)):
            # [C1] one message for both, so existence does not leak
            return _token_response(
                {"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
                status_code=401,
            )
        raise result.error

    session = result.value
    resp = _token_response(LoginResponse.from_session(session).model_dump(mode="json"))
    _set_auth_cookie(request, resp, session.access_token, session.expires_in_ms)
    return resp


@limiter.limit(login_rate_limit)  # [H2]
@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a standard user account and log it in.

    Disabled (403) when SELF_REGISTRATION_ENABLED=false; admins then create
    accounts with the CLI.
    """
    if not request.app.state.settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    engine: AuthEngine = request.app.state.auth_engine
    session = engine.register(body.first_name, body.last_name, body.email, body.password).unwrap()
    resp = _token_response(LoginResponse.from_session(session).model_dump(mode="json"), status_code=201)
    _set_auth_cookie(request, resp, session.access_token, session.expires_in_ms)
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a live refresh token for a new access token. The refresh token is not rotated."""
    engine: AuthEngine = request.app.state.auth_engine
    grant = engine.refresh(body.refresh_token).unwrap()
    resp = _token_response(TokenResponse.from_grant(grant).model_dump(mode="json"))
    _set_auth_cookie(request, resp, grant.access_token, grant.expires_in_ms)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: RefreshRequest,
    principal: Principal = Depends(get_current_principal),
) -> JSONResponse:
    """Revoke the given refresh token and clear the cookie. Idempotent."""
    engine: AuthEngine = request.app.state.auth_engine
    engine.logout(principal.identity_id, body.refresh_token).unwrap()
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=IdentityResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> IdentityResponse:
    """Return the caller's identity, read fresh from the store."""
    identity_store: IdentityStore = request.app.state.identity_store
    identity = identity_store.find_by_id(principal.identity_id)
    if identity is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return IdentityResponse.from_snapshot(to_snapshot(identity))


@router.post("/auth/sessions/revoke-all", response_model=RevokedSessionsResponse)
def revoke_my_sessions(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> RevokedSessionsResponse:
    """Log the caller out everywhere: revoke every live refresh token they own."""
    engine: AuthEngine = request.app.state.auth_engine
    return RevokedSessionsResponse(revoked=engine.revoke_all_sessions(principal.identity_id).unwrap())


@router.get("/auth/sessions/report", response_model=SessionReportResponse)
def session_report(
    request: Request,
    identity: Identity = Depends(requires_permission(Permission.VIEW_REPORTS)),
) -> SessionReportResponse:
    """Count live refresh sessions across all identities. Requires the view-reports flag."""
    engine: AuthEngine = request.app.state.auth_engine
    return SessionReportResponse(active_sessions=engine.count_active_sessions().unwrap())


# ---------------------------------------------------------------------------
# Administration (Administrator role only)
# ---------------------------------------------------------------------------


@router.post("/auth/users/{identity_id}/revoke-sessions", response_model=RevokedSessionsResponse)
def revoke_user_sessions(
    request: Request,
    identity_id: int,
    principal: Principal = Depends(require_admin),
) -> RevokedSessionsResponse:
    """Revoke every live refresh token of another identity. Administrator only."""
    engine: AuthEngine = request.app.state.auth_engine
    return RevokedSessionsResponse(revoked=engine.revoke_all_sessions(identity_id).unwrap())
