"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

The session token travels in the "session" cookie set by POST /login. Every
helper delegates to the SessionAuthority on app.state, which re-checks the
logout-all watermark and password revision on each call.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises Unauthorized (401) if unauthenticated, and queues
the activity refresh as a background task so the response is not delayed.
require_admin() wraps get_current_user() and raises HTTP 403 for non-admins.

Layer rule: no imports from catalog/.
  auth/dependencies.py may import from fastapi (for Request/BackgroundTasks/
  HTTPException) because this module is part of the FastAPI dependency
  injection system.
"""

from __future__ import annotations

from fastapi import BackgroundTasks, HTTPException, Request

from auth.models import SessionClaims
from auth.policy import can_administer
from auth.session import AuthError, SessionAuthority
from auth.tokens import SESSION_COOKIE


def get_authority(request: Request) -> SessionAuthority:
    return request.app.state.authority


def try_get_current_user(request: Request) -> SessionClaims | None:
    """Return the session claims if the cookie holds a live token, else None.

    Never raises and never refreshes activity -- anonymous-friendly routes
    such as GET /catalog use it only to scope what they return.
    """
    # A revoked or expired token reads as anonymous, which is unscoped.
    # Public reads are not gated, so the stale cookie grants nothing extra.
    try:
        return get_authority(request).validate(request.cookies.get(SESSION_COOKIE))
    except AuthError:
        return None


def get_current_user(request: Request, background_tasks: BackgroundTasks) -> SessionClaims:
    """Require a live session. Raises Unauthorized (rendered as 401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: SessionClaims = Depends(get_current_user)): ...
    """
    authority = get_authority(request)
    claims = authority.validate(request.cookies.get(SESSION_COOKIE))
    background_tasks.add_task(authority.refresh_activity, claims.id, claims.rev)
    return claims


def require_admin(request: Request, background_tasks: BackgroundTasks) -> SessionClaims:
    """Require an admin or superadmin session. 401 if unauthenticated, 403 otherwise."""
    claims = get_current_user(request, background_tasks)
    if not can_administer(claims.role):
        raise HTTPException(status_code=403, detail="forbidden")
    return claims
