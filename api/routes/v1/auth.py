"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/login   -- password login; sets the "session" cookie
  POST /api/logout  -- releases the device lock and clears the cookie; always 200
  GET  /api/me      -- decoded claims of the current session (requires auth)

Security:
  [C1] SessionAuthority.login() runs bcrypt even for unknown usernames --
       never look the user up here.
  [M5] Cache-Control: no-store on login responses.
  Refusals (invalid_credentials, user_expired, user_active_elsewhere,
  db_error) are raised by the authority as AuthError and rendered by the
  handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import LoginRequest, MeResponse, OkResponse, SessionUser
from auth.dependencies import get_authority, get_current_user
from auth.models import SessionClaims
from auth.tokens import SESSION_COOKIE, clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /login:   public -- login endpoint must be unauthenticated
# - POST /logout:  public -- an expired or revoked cookie must still be clearable
# - GET  /me:      requires auth (get_current_user)
router = APIRouter()


@router.post("/login", response_model=SessionUser)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie."""
    authority = get_authority(request)
    result = authority.login(body.username, body.password)

    resp = JSONResponse(status_code=200, content=SessionUser.from_claims(result.claims).model_dump())
    set_session_cookie(
        resp,
        result.token,
        max_age=authority.cookie_max_age,
        secure=request.app.state.config.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout", response_model=OkResponse)
def logout(request: Request) -> JSONResponse:
    """Release the single-device lock and clear the cookie.

    Succeeds whether or not the cookie is present or still valid.
    """
    get_authority(request).logout(request.cookies.get(SESSION_COOKIE))
    resp = JSONResponse(content=OkResponse().model_dump())
    clear_session_cookie(resp, secure=request.app.state.config.secure_cookies)
    return resp


@router.get("/me", response_model=MeResponse)
async def me(current_user: SessionClaims = Depends(get_current_user)) -> MeResponse:
    """Return the claims of the currently authenticated session."""
    return MeResponse.from_claims(current_user)
