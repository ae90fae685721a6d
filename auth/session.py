"""
auth/session.py -- SessionAuthority: login, per-request validation, logout and
forced logout on password change.

Invalidation model (hybrid):
  Tokens duplicate id/username/role/posisi/rev so most requests need no user
  lookup. Two signals are re-read from storage on every validation:
    logout_all_at  -- watermark; a token whose iat is at or before it is dead.
    password_rev   -- bumped by every administrative password change; the
                      token's rev claim must match it exactly.
  A password change moves both in the same UPDATE, so either check alone is
  enough to kill the old sessions.

Single-device lock:
  last_activity_at is stamped at login and on every validated request. A new
  login is refused while the last stamp is younger than the device-lock
  window, unless logout_all_at is at or after it (a password change released
  the account). Logout clears the stamp. Two concurrent logins for the same
  user can both pass the check; this race is accepted.

Clock:
  Every timestamp comes from the injected clock (default: UTC wall clock) so
  tests can move time without sleeping.

Errors are raised as AuthError subclasses carrying the wire code and HTTP
status. api/main.py renders them as {"error": code}.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from auth.models import SessionClaims
from auth.store import UserStore
from auth.tokens import burn_dummy_check, decode_session_token, encode_session_token, verify_password
from core.config import AppConfig

logger = logging.getLogger("partkatalog.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base for session failures. code is the wire error code."""

    code = "unauthorized"
    status_code = 401

    def __init__(self, clear_cookie: bool = False) -> None:
        super().__init__(self.code)
        self.clear_cookie = clear_cookie


class MissingCredentials(AuthError):
    code = "bad_request"
    status_code = 400


class InvalidCredentials(AuthError):
    code = "invalid_credentials"


class UserExpired(AuthError):
    code = "user_expired"


class ActiveElsewhere(AuthError):
    code = "user_active_elsewhere"
    status_code = 403


class Unauthorized(AuthError):
    pass


class StorageUnavailable(AuthError):
    code = "db_error"
    status_code = 500


@dataclass(frozen=True)
class LoginResult:
    claims: SessionClaims
    token: str


# ---------------------------------------------------------------------------
# Authority
# ---------------------------------------------------------------------------


class SessionAuthority:
    """Issues and validates session tokens against the credential store."""

    def __init__(
        self,
        store: UserStore,
        config: AppConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    @property
    def cookie_max_age(self) -> int:
        return int(self._config.session_ttl.total_seconds())

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, username: str | None, password: str | None) -> LoginResult:
        """Authenticate and issue a token.

        Check order: user exists, not expired, not active on another device,
        password matches. Only the last step can reveal a wrong password; an
        unknown username still costs one bcrypt comparison [C1].
        """
        if not username or not password:
            raise MissingCredentials()

        now = self.now()
        try:
            user = self._store.get_by_username(username)
        except SQLAlchemyError:
            logger.exception("Login lookup failed for %r", username)
            raise StorageUnavailable() from None

        if user is None or user.password_hash is None:
            burn_dummy_check(password)
            logger.info("Login refused for %r: unknown user", username)
            raise InvalidCredentials()

        if user.expired_at is not None and user.expired_at < now:
            logger.info("Login refused for %r: account expired at %s", username, user.expired_at.isoformat())
            raise UserExpired()

        last_active = user.last_activity_at
        if last_active is not None and user.logout_all_at is not None and user.logout_all_at >= last_active:
            last_active = None
        if last_active is not None:
            idle = now - last_active
            if idle.total_seconds() >= 0 and idle < self._config.device_lock_window:
                logger.info(
                    "Login refused for %r: active elsewhere (last activity %s, idle %ss)",
                    username,
                    last_active.isoformat(),
                    int(idle.total_seconds()),
                )
                raise ActiveElsewhere()

        if not verify_password(password, user.password_hash):
            logger.info("Login refused for %r: bad password", username)
            raise InvalidCredentials()

        try:
            self._store.touch_activity(user.id, now)
        except SQLAlchemyError:
            logger.exception("Could not stamp activity for user id=%s", user.id)
            raise StorageUnavailable() from None

        iat = now.timestamp()
        claims = SessionClaims(
            id=user.id,
            username=user.username,
            role=user.role,
            posisi=user.posisi,
            rev=user.password_rev,
            iat=iat,
            exp=iat + self._config.session_ttl.total_seconds(),
        )
        token = encode_session_token(claims.to_dict(), self._config.secret_key)
        logger.info("Login ok: %s (role=%s)", user.username, user.role)
        return LoginResult(claims=claims, token=token)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, token: str | None) -> SessionClaims:
        """Return the claims of a live token or raise Unauthorized.

        Watermark and revision failures set clear_cookie so the client drops
        the dead token. A storage failure while re-reading the user counts as
        unauthorized.
        """
        if not token:
            raise Unauthorized()
        payload = decode_session_token(token, self._config.secret_key)
        if payload is None:
            raise Unauthorized()

        try:
            claims = SessionClaims(
                id=int(payload["id"]),
                username=str(payload["username"]),
                role=str(payload["role"]),
                posisi=payload.get("posisi"),
                rev=int(payload["rev"]),
                iat=float(payload["iat"]),
                exp=float(payload["exp"]),
            )
        except (TypeError, ValueError):
            raise Unauthorized() from None

        if claims.exp <= self.now().timestamp():
            raise Unauthorized()

        try:
            state = self._store.get_session_state(claims.id)
        except SQLAlchemyError:
            logger.exception("Session re-check failed for user id=%s", claims.id)
            raise Unauthorized() from None

        if state is None:
            raise Unauthorized(clear_cookie=True)
        if state.logout_all_at is not None and claims.iat <= state.logout_all_at.timestamp():
            raise Unauthorized(clear_cookie=True)
        if claims.rev != state.password_rev:
            raise Unauthorized(clear_cookie=True)
        return claims

    def refresh_activity(self, user_id: int, rev: int) -> None:
        """Best-effort activity stamp after a validated request.

        Runs after the handler. Skipped when the handler revoked the session
        (password_rev no longer equals rev).
        """
        try:
            self._store.touch_activity(user_id, self.now(), rev=rev)
        except SQLAlchemyError:
            logger.warning("Activity refresh failed for user id=%s", user_id, exc_info=True)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, token: str | None) -> None:
        """Release the device lock for the token's user. Never raises.

        Only the signature is checked: an expired or revoked token still
        identifies whose lock to release.
        """
        if not token:
            return
        payload = decode_session_token(token, self._config.secret_key)
        if payload is None:
            return
        try:
            self._store.clear_activity(int(payload["id"]))
        except (SQLAlchemyError, TypeError, ValueError):
            logger.warning("Logout could not clear activity", exc_info=True)

    # ------------------------------------------------------------------
    # Password change
    # ------------------------------------------------------------------

    def force_logout_on_password_change(
        self,
        user_id: int,
        new_password_hash: str,
        username: str | None = None,
        role: str | None = None,
        posisi: str | None = None,
    ) -> bool:
        """Persist a new hash and revoke every session of user_id.

        Returns False if the user does not exist. Storage errors propagate.
        """
        changed = self._store.change_password(
            user_id,
            new_password_hash,
            self.now(),
            username=username,
            role=role,
            posisi=posisi,
        )
        if changed:
            logger.info("Password changed for user id=%s; all sessions revoked", user_id)
        return changed
