"""
api/routes/v1/users.py -- User administration endpoints (admin and superadmin).

Routes:
  GET    /api/users        -- list the accounts the caller may see
  POST   /api/users        -- create an account; 409 on duplicate username
  PUT    /api/users/{id}   -- edit username/role/posisi/password
  DELETE /api/users/{id}   -- delete an account; never your own

Role rules come from auth/policy.py: an admin manages only "user" accounts
and sees only user/admin; a superadmin manages everyone.

Security:
  A password change goes through SessionAuthority.force_logout_on_password_change
  so every existing session of that user dies in the same UPDATE.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import OkResponse, UserCreate, UserResponse, UserUpdate
from auth.dependencies import get_authority, require_admin
from auth.models import SessionClaims, User
from auth.policy import can_manage, visible_roles
from auth.store import UserStore
from auth.tokens import hash_password

logger = logging.getLogger("partkatalog.users")

# Auth policy: every route requires admin or superadmin (require_admin).
router = APIRouter()


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: SessionClaims = Depends(require_admin)) -> list[UserResponse]:
    """List accounts, restricted to the roles the caller may see."""
    user_store: UserStore = request.app.state.user_store
    users = user_store.list_users(roles=visible_roles(current_user.role))
    return [UserResponse.from_user(u) for u in users]


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: SessionClaims = Depends(require_admin),
) -> UserResponse:
    """Create an account. The role defaults to "user"."""
    user_store: UserStore = request.app.state.user_store
    target_role = body.role or "user"
    _check_role_and_posisi(request, target_role, body.posisi)
    if not can_manage(current_user.role, target_role):
        raise HTTPException(status_code=403, detail="forbidden")
    if user_store.get_by_username(body.username) is not None:
        raise HTTPException(status_code=409, detail="conflict")

    new_user = User(
        username=body.username,
        role=target_role,
        posisi=body.posisi or None,
        password_hash=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="conflict") from exc

    logger.info("%s created user %r (role=%s)", current_user.username, body.username, target_role)
    return _user_to_response(user_store.get_by_id(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    current_user: SessionClaims = Depends(require_admin),
) -> UserResponse:
    """Edit an account. A new password revokes all of the target's sessions."""
    if body.is_empty():
        raise HTTPException(status_code=400, detail="bad_request")
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="not_found")
    if not can_manage(current_user.role, target.role):
        raise HTTPException(status_code=403, detail="forbidden")
    if body.role or body.posisi:
        _check_role_and_posisi(request, body.role or target.role, body.posisi)
    if body.role and not can_manage(current_user.role, body.role):
        raise HTTPException(status_code=403, detail="forbidden")

    profile = {"username": body.username or None, "role": body.role or None, "posisi": body.posisi}
    try:
        if body.password:
            updated = get_authority(request).force_logout_on_password_change(
                user_id, hash_password(body.password), **profile
            )
        else:
            updated = user_store.update_profile(user_id, **profile)
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="conflict") from exc
    if not updated:
        raise HTTPException(status_code=404, detail="not_found")

    logger.info("%s updated user id=%s", current_user.username, user_id)
    return _user_to_response(user_store.get_by_id(user_id))


@router.delete("/users/{user_id}", response_model=OkResponse)
def delete_user(
    request: Request,
    user_id: int,
    current_user: SessionClaims = Depends(require_admin),
) -> OkResponse:
    """Delete an account. Deleting yourself is refused before anything else."""
    if user_id == current_user.id:
        raise HTTPException(status_code=400, detail="cannot_delete_self")
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="not_found")
    if not can_manage(current_user.role, target.role):
        raise HTTPException(status_code=403, detail="forbidden")
    if not user_store.delete_user(user_id):
        raise HTTPException(status_code=404, detail="not_found")

    logger.info("%s deleted user %r", current_user.username, target.username)
    return OkResponse()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_role_and_posisi(request: Request, role: str, posisi: str | None) -> None:
    config = request.app.state.config
    if role not in config.roles:
        raise HTTPException(status_code=400, detail="bad_request")
    if posisi and posisi not in config.posisi_values:
        raise HTTPException(status_code=400, detail="invalid_posisi")


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(status_code=500, detail="internal_error")
    return UserResponse.from_user(user)
