"""
api/routes/v1/auth.py -- Session login, logout, and identity endpoints.

Routes:
  POST /api/v1/auth/login   -- email/password login; returns an opaque session token
  POST /api/v1/auth/logout  -- deletes the caller's session row and cache entry
  GET  /api/v1/auth/me      -- the caller's resolved authorization snapshot

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  SessionService.login() runs authenticate_user(), which equalizes timing for
  unknown e-mails. Wrong e-mail and wrong password return the same error.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse, MessageResponse
from auth.dependencies import require_authenticated
from auth.models import RequestContext
from auth.sessions import SessionService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/login:   public
# - POST /api/v1/auth/logout:  requires a live session (require_authenticated)
# - GET  /api/v1/auth/me:      requires a live session (require_authenticated)
router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(lambda: get_settings().login_rate_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with e-mail and password and open a session.

    The returned session_token is presented on later requests as
    "Authorization: Bearer <token>".
    """
    sessions: SessionService = request.app.state.sessions
    result = sessions.login(body.email, body.password, body.login_type.value, body.employee_card_no)
    if result is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password.", "detail": None}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    context = RequestContext(
        snapshot=result.snapshot,
        session_id=result.token,
        login_type=result.login_type,
        employee_card_no=body.employee_card_no,
    )
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            session_token=result.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- token type, not a password
            expires_at=result.expires_at,
            user=MeResponse.from_context(context),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, context: RequestContext = Depends(require_authenticated)) -> MessageResponse:
    """End the caller's session. The token stops working immediately."""
    request.app.state.sessions.logout(context.session_id)
    return MessageResponse(message="Logged out.")


@router.get("/auth/me", response_model=MeResponse)
def me(context: RequestContext = Depends(require_authenticated)) -> MeResponse:
    """Return the caller's roles, policies, and accessible org units."""
    return MeResponse.from_context(context)
