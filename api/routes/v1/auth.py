"""
api/routes/v1/auth.py -- Session, account and role-gated endpoints.

Routes (every one guarded by its ACCESS_POLICY entry, see api/policy.py):
  GET  /api/v1/           home             -- public; shows the principal if any
  POST /api/v1/login      login            -- public; starts a session
  POST /api/v1/signup     signup           -- public; creates user, starts a session
  POST /api/v1/logout     logout           -- any signed-in user
  GET  /api/v1/settings   settings.read    -- any signed-in user
  POST /api/v1/settings   settings.update  -- any signed-in user
  GET  /api/v1/premium    premium          -- admin or premium user
  GET  /api/v1/admin      admin            -- admin

Errors raised by the flow controller (ValidationError, AuthError, StoreError,
ForbiddenError) are not caught here: the exception handlers in api/main.py
map them to the error envelope.

Security:
  [C1] login goes through AuthController.login(), which equalizes timing.
  [M5] Cache-Control: no-store on responses that issue a session cookie.
  The session handle rotates on login and signup (session fixation).

Flow routes are plain `def` so bcrypt runs in the thread pool, not on the
event loop.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    HomeResponse,
    LoginRequest,
    MessageResponse,
    PageResponse,
    PrincipalResponse,
    SettingsUpdate,
    SignupRequest,
)
from api.policy import guard
from auth.dependencies import apply_session_cookie, get_session
from auth.flows import AuthController
from auth.models import SessionPrincipal
from auth.session import SessionCell

router = APIRouter()


def _controller(request: Request) -> AuthController:
    return request.app.state.auth


def _session_response(content: dict, session: SessionCell) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=content)
    apply_session_cookie(resp, session)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/", response_model=HomeResponse, name="home")
async def home(principal: Optional[SessionPrincipal] = Depends(guard("home"))) -> HomeResponse:
    """Landing page data. Public; personalised when a session is present."""
    if principal is None:
        return HomeResponse(authenticated=False)
    return HomeResponse(authenticated=True, principal=PrincipalResponse.from_principal(principal))


@router.post("/login", response_model=PrincipalResponse, name="login", dependencies=[Depends(guard("login"))])
def login(
    request: Request,
    body: LoginRequest,
    session: SessionCell = Depends(get_session),
) -> JSONResponse:
    """Authenticate with username and password; start a new session.

    Unknown username and wrong password produce the same 401 bad_credentials.
    """
    principal = _controller(request).login(session, body.username, body.password)
    return _session_response(PrincipalResponse.from_principal(principal).model_dump(), session)


@router.post("/signup", response_model=PrincipalResponse, name="signup", dependencies=[Depends(guard("signup"))])
def signup(
    request: Request,
    body: SignupRequest,
    session: SessionCell = Depends(get_session),
) -> JSONResponse:
    """Create an account and sign it in. The client address is kept as last_ip."""
    client_ip = request.client.host if request.client else ""
    principal = _controller(request).signup(
        session,
        body.username,
        body.email,
        body.password,
        body.password_confirmation,
        client_ip=client_ip,
    )
    return _session_response(PrincipalResponse.from_principal(principal).model_dump(), session)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout", response_model=MessageResponse, name="logout", dependencies=[Depends(guard("logout"))])
def logout(request: Request, session: SessionCell = Depends(get_session)) -> JSONResponse:
    """End the session and clear the cookie."""
    _controller(request).logout(session)
    return _session_response(MessageResponse(message="Logged out.").model_dump(), session)


@router.get("/settings", response_model=PrincipalResponse, name="settings.read")
async def read_settings(principal: SessionPrincipal = Depends(guard("settings.read"))) -> PrincipalResponse:
    """Current values for the settings form."""
    return PrincipalResponse.from_principal(principal)


@router.post("/settings", response_model=PrincipalResponse, name="settings.update")
def update_settings(
    request: Request,
    body: SettingsUpdate,
    principal: SessionPrincipal = Depends(guard("settings.update")),
    session: SessionCell = Depends(get_session),
) -> PrincipalResponse:
    """Change the session's username and role flags."""
    updated = _controller(request).update_settings(session, principal, body.user_name, body.admin, body.premium)
    return PrincipalResponse.from_principal(updated)


# ---------------------------------------------------------------------------
# Role-gated pages
# ---------------------------------------------------------------------------


@router.get("/premium", response_model=PageResponse, name="premium")
async def premium(principal: SessionPrincipal = Depends(guard("premium"))) -> PageResponse:
    return PageResponse(page="premium", message="Premium content.", username=principal.username)


@router.get("/admin", response_model=PageResponse, name="admin")
async def admin(principal: SessionPrincipal = Depends(guard("admin"))) -> PageResponse:
    return PageResponse(page="admin", message="Administration area.", username=principal.username)
