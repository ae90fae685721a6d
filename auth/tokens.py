"""
auth/tokens.py -- Session token, password hashing, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry id, username, role, posisi, the
       password revision (rev) and float iat/exp stamps taken from the session
       authority's clock. Sub-second iat keeps a login made right after a
       password change distinguishable from the tokens that change revoked.
       Decoding skips python-jose's own exp check; SessionAuthority compares
       exp against its clock so tests can move time deterministically.
       Decoding returns None on any failure -- the authority turns that into
       "unauthorized".

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in SessionAuthority.login() so response time does not
       reveal whether a username exists [C1].

  Cookie: "session", HttpOnly, SameSite=Lax, Path=/, Secure only in
       production. max_age matches the token TTL so both expire together.

Layer rule: no imports from api/ or catalog/. This module never reads
Settings itself -- the secret and TTL arrive from AppConfig.
"""

from __future__ import annotations

import logging

import bcrypt
from jose import JWTError, jwt

logger = logging.getLogger("partkatalog.auth")

_ALGORITHM = "HS256"

SESSION_COOKIE = "session"

_REQUIRED_CLAIMS = ("id", "username", "role", "rev", "iat", "exp")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; the API layer caps password
    length so inputs stay close to that limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("partkatalog_timing_dummy")


def burn_dummy_check(password: str) -> None:
    """Spend one bcrypt comparison for a username that does not exist [C1]."""
    verify_password(password, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def encode_session_token(claims: dict, secret_key: str) -> str:
    """Sign a session claim set (see SessionClaims.to_dict)."""
    return jwt.encode(claims, secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str, secret_key: str) -> dict | None:
    """Verify the signature and return the payload, or None on any failure.

    Expiry is deliberately not checked here; the caller owns the clock.
    """
    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None
    if any(name not in payload for name in _REQUIRED_CLAIMS):
        return None
    return payload


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS in production.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response, secure: bool) -> None:
    """Expire the session cookie with the same attributes it was set with."""
    response.delete_cookie(
        SESSION_COOKIE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
