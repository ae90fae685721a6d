"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in catalog/models.py -- dataclasses own domain shape; stores and the session
authority do the work.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A catalog operator account (one row of the credential store).

    posisi scopes the catalog subset a partshop account may see; other roles
    usually leave it None.

    last_activity_at, logout_all_at and password_rev drive session validity:
    the first feeds the single-device lock, the other two invalidate tokens
    issued before a password change.
    """

    username: str
    role: str  # "user", "admin", "superadmin", "partshop"
    id: int | None = None
    password_hash: str | None = None
    posisi: str | None = None
    created_at: datetime | None = None
    expired_at: datetime | None = None
    last_activity_at: datetime | None = None
    logout_all_at: datetime | None = None
    password_rev: int = 0


@dataclass(frozen=True)
class SessionState:
    """The two invalidation signals re-read from storage on every request."""

    logout_all_at: datetime | None
    password_rev: int


@dataclass(frozen=True)
class SessionClaims:
    """Identity decoded from a validated session token.

    role, posisi and rev are copied into the token at login so most requests
    need no user lookup; only logout_all_at and password_rev are re-checked.
    """

    id: int
    username: str
    role: str
    posisi: str | None
    rev: int
    iat: float
    exp: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role,
            "posisi": self.posisi,
            "rev": self.rev,
            "iat": self.iat,
            "exp": self.exp,
        }
