"""
auth/dependencies.py -- FastAPI Depends() helpers for sessions and access checks.

get_session() turns the signed session cookie into a SessionCell bound to the
application's session store (app.state.sessions). A missing, tampered or
expired cookie gives a cell with no handle -- an anonymous request.

try_get_principal() is the principal-extraction hook: the attached
SessionPrincipal or None. Never raises.

access_dependency(requirement) builds the dispatcher check for one guarded
operation. It runs before the route body, calls check_access() exactly once
and lets ForbiddenError propagate to the exception handler, so the body never
executes for a refused request. On success it hands the principal (or None
for public operations) to the route.

apply_session_cookie() writes the cookie back after a flow rotated or ended
the session.

Layer rule: no imports from api/. auth/dependencies.py may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request, Response

from auth.authz import AccessRequirement, check_access
from auth.models import SessionPrincipal
from auth.session import SessionCell, sign_handle, unsign_handle
from core.config import get_settings

_settings = get_settings()


def get_session(request: Request) -> SessionCell:
    """Return the request's SessionCell. FastAPI caches it for the whole request."""
    handle = unsign_handle(request.cookies.get(_settings.session_cookie_name))
    return SessionCell(request.app.state.sessions, handle)


def try_get_principal(session: SessionCell = Depends(get_session)) -> SessionPrincipal | None:
    return session.get()


def access_dependency(requirement: AccessRequirement) -> Callable[..., SessionPrincipal | None]:
    """Return a dependency enforcing `requirement` before the route body runs.

    Use as a FastAPI dependency:
        @router.get("/admin")
        def route(principal: SessionPrincipal = Depends(access_dependency(requires(ADMIN)))): ...
    """

    def _check(principal: SessionPrincipal | None = Depends(try_get_principal)) -> SessionPrincipal | None:
        check_access(requirement, principal)
        return principal

    return _check


def apply_session_cookie(response: Response, session: SessionCell) -> None:
    """Issue or clear the session cookie if the flow changed the session handle.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the idle expiry of the server-side session.
    """
    if not session.handle_changed:
        return
    if session.handle is None:
        response.delete_cookie(_settings.session_cookie_name)
        return
    response.set_cookie(
        _settings.session_cookie_name,
        value=sign_handle(session.handle),
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )
