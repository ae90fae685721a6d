"""
tests/test_session_authority.py -- Unit tests for auth/session.SessionAuthority.

Drives the authority directly (no HTTP) against an in-memory UserStore with a
FakeClock, so every window and watermark comparison is deterministic.

Coverage:
  - Login check order and error codes
  - Single-device lock: inside the window, after it, after logout, after a
    password change (watermark neutralization)
  - Token validity: TTL, watermark, revision counter, deleted user, bad
    signature, storage failure
  - Logout never raises
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import User
from auth.session import (
    ActiveElsewhere,
    InvalidCredentials,
    MissingCredentials,
    SessionAuthority,
    StorageUnavailable,
    Unauthorized,
    UserExpired,
)
from auth.store import UserStore
from auth.tokens import encode_session_token, hash_password
from core.config import AppConfig, get_settings

PASSWORD = "correct-horse-1"


@pytest.fixture
def store():
    s = UserStore(db_url=f"sqlite:///file:test_authority_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield s
    s.close()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig.from_settings(get_settings())


@pytest.fixture
def authority(store, config, clock) -> SessionAuthority:
    return SessionAuthority(store, config, clock=clock)


class TestLogin:
    def test_login_issues_claims_matching_the_user(self, authority, store, user_factory) -> None:
        user = user_factory(store, role="partshop", posisi="Engine")
        result = authority.login(user.username, PASSWORD)
        assert result.claims.id == user.id
        assert result.claims.username == user.username
        assert result.claims.role == "partshop"
        assert result.claims.posisi == "Engine"
        assert result.claims.rev == 0
        assert authority.validate(result.token) == result.claims

    def test_login_stamps_activity(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        assert store.get_by_id(user.id).last_activity_at == clock.now

    def test_token_lifetime_is_seven_days(self, authority, store, user_factory) -> None:
        user = user_factory(store)
        claims = authority.login(user.username, PASSWORD).claims
        assert claims.exp - claims.iat == timedelta(days=7).total_seconds()

    @pytest.mark.parametrize("username,password", [("", PASSWORD), ("someone", ""), (None, None)])
    def test_missing_fields_are_bad_request(self, authority, username, password) -> None:
        with pytest.raises(MissingCredentials) as exc:
            authority.login(username, password)
        assert exc.value.status_code == 400
        assert exc.value.code == "bad_request"

    def test_unknown_user_is_invalid_credentials(self, authority) -> None:
        with pytest.raises(InvalidCredentials):
            authority.login("nobody-here", PASSWORD)

    def test_wrong_password_is_invalid_credentials(self, authority, store, user_factory) -> None:
        user = user_factory(store)
        with pytest.raises(InvalidCredentials) as exc:
            authority.login(user.username, "wrong-password")
        assert exc.value.status_code == 401
        assert store.get_by_id(user.id).last_activity_at is None

    def test_expired_account_fails_even_with_right_password(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        store.set_expiry(user.id, clock.now - timedelta(minutes=1))
        with pytest.raises(UserExpired) as exc:
            authority.login(user.username, PASSWORD)
        assert exc.value.status_code == 401
        assert exc.value.code == "user_expired"

    def test_future_expiry_allows_login(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        store.set_expiry(user.id, clock.now + timedelta(days=1))
        authority.login(user.username, PASSWORD)

    def test_expiry_is_checked_before_password(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        store.set_expiry(user.id, clock.now - timedelta(days=1))
        with pytest.raises(UserExpired):
            authority.login(user.username, "wrong-password")

    def test_storage_failure_is_db_error(self, config, clock) -> None:
        broken = MagicMock(spec=UserStore)
        broken.get_by_username.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        authority = SessionAuthority(broken, config, clock=clock)
        with pytest.raises(StorageUnavailable) as exc:
            authority.login("alice", PASSWORD)
        assert exc.value.status_code == 500
        assert exc.value.code == "db_error"


class TestDeviceLock:
    def test_second_login_inside_window_is_refused(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        clock.advance(minutes=5)
        with pytest.raises(ActiveElsewhere) as exc:
            authority.login(user.username, PASSWORD)
        assert exc.value.status_code == 403

    def test_lock_is_checked_before_password(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        with pytest.raises(ActiveElsewhere):
            authority.login(user.username, "wrong-password")

    def test_login_allowed_once_window_elapses(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        clock.advance(minutes=15)
        authority.login(user.username, PASSWORD)

    def test_activity_refresh_extends_the_lock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        clock.advance(minutes=10)
        authority.validate(token)
        authority.refresh_activity(user.id, 0)
        clock.advance(minutes=10)
        with pytest.raises(ActiveElsewhere):
            authority.login(user.username, PASSWORD)

    def test_logout_releases_the_lock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        clock.advance(seconds=30)
        authority.logout(token)
        assert store.get_by_id(user.id).last_activity_at is None
        authority.login(user.username, PASSWORD)

    def test_watermark_newer_than_activity_neutralizes_lock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        clock.advance(minutes=1)
        # Watermark moves past the activity stamp while the stamp itself survives.
        store.change_password(user.id, hash_password(PASSWORD), clock.now)
        store.touch_activity(user.id, clock.now - timedelta(seconds=30))
        clock.advance(minutes=1)
        authority.login(user.username, PASSWORD)

    def test_refresh_after_password_change_does_not_relock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        claims = authority.login(user.username, PASSWORD).claims
        clock.advance(seconds=10)
        authority.force_logout_on_password_change(user.id, hash_password("rotated-pass-1"))
        clock.advance(seconds=1)
        # A refresh queued by the revoked session lands after the change.
        authority.refresh_activity(user.id, claims.rev)
        assert store.get_by_id(user.id).last_activity_at is None
        authority.login(user.username, "rotated-pass-1")

    def test_activity_in_the_future_does_not_lock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        store.touch_activity(user.id, clock.now + timedelta(minutes=5))
        authority.login(user.username, PASSWORD)


class TestValidate:
    def test_token_expires_after_ttl(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        clock.advance(days=7, seconds=-1)
        authority.validate(token)
        clock.advance(seconds=1)
        with pytest.raises(Unauthorized):
            authority.validate(token)

    def test_password_change_revokes_existing_tokens(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        old = authority.login(user.username, PASSWORD).token
        clock.advance(minutes=2)
        assert authority.force_logout_on_password_change(user.id, hash_password("new-password-2"))
        clock.advance(seconds=1)
        with pytest.raises(Unauthorized) as exc:
            authority.validate(old)
        assert exc.value.clear_cookie is True

        fresh = authority.login(user.username, "new-password-2")
        assert fresh.claims.rev == 1
        assert authority.validate(fresh.token).id == user.id

    def test_password_change_clears_activity_and_bumps_revision(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        authority.login(user.username, PASSWORD)
        authority.force_logout_on_password_change(user.id, hash_password("x-other-pass"))
        stored = store.get_by_id(user.id)
        assert stored.last_activity_at is None
        assert stored.logout_all_at == clock.now
        assert stored.password_rev == 1

    def test_token_issued_at_watermark_is_rejected(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        store.change_password(user.id, user.password_hash, clock.now)
        with pytest.raises(Unauthorized):
            authority.validate(token)

    def test_revision_mismatch_alone_is_rejected(self, authority, store, clock, config, user_factory) -> None:
        user = user_factory(store)
        claims = authority.login(user.username, PASSWORD).claims.to_dict()
        claims["rev"] = 5
        forged_rev = encode_session_token(claims, config.secret_key)
        with pytest.raises(Unauthorized) as exc:
            authority.validate(forged_rev)
        assert exc.value.clear_cookie is True

    def test_deleted_user_is_rejected(self, authority, store, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        store.delete_user(user.id)
        with pytest.raises(Unauthorized):
            authority.validate(token)

    def test_wrong_signature_is_rejected(self, authority, store, user_factory) -> None:
        user = user_factory(store)
        claims = authority.login(user.username, PASSWORD).claims.to_dict()
        forged = encode_session_token(claims, "x" * 40)
        with pytest.raises(Unauthorized) as exc:
            authority.validate(forged)
        assert exc.value.clear_cookie is False

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
    def test_garbage_is_rejected(self, authority, token) -> None:
        with pytest.raises(Unauthorized):
            authority.validate(token)

    def test_storage_failure_during_recheck_is_unauthorized(self, store, config, clock, user_factory) -> None:
        user = user_factory(store)
        token = SessionAuthority(store, config, clock=clock).login(user.username, PASSWORD).token
        broken = MagicMock(spec=UserStore)
        broken.get_session_state.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        with pytest.raises(Unauthorized):
            SessionAuthority(broken, config, clock=clock).validate(token)

    def test_refresh_activity_swallows_storage_errors(self, config, clock) -> None:
        broken = MagicMock(spec=UserStore)
        broken.touch_activity.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
        SessionAuthority(broken, config, clock=clock).refresh_activity(1, 0)


class TestLogout:
    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_logout_without_valid_token_is_a_noop(self, authority, token) -> None:
        authority.logout(token)

    def test_logout_with_revoked_token_still_releases_lock(self, authority, store, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        store.touch_activity(user.id, clock.now)
        authority.logout(token)
        assert store.get_by_id(user.id).last_activity_at is None

    def test_logout_swallows_storage_errors(self, authority, store, config, clock, user_factory) -> None:
        user = user_factory(store)
        token = authority.login(user.username, PASSWORD).token
        broken = MagicMock(spec=UserStore)
        broken.clear_activity.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
        SessionAuthority(broken, config, clock=clock).logout(token)


class TestScenarios:
    def test_alice_password_change(self, authority, store, clock, user_factory) -> None:
        """alice logs in, an admin changes her password, the old token dies, a new login works."""
        alice = user_factory(store, prefix="alice")
        token = authority.login(alice.username, PASSWORD).token
        clock.advance(minutes=3)
        authority.force_logout_on_password_change(alice.id, hash_password("alice-new-pass"))
        clock.advance(seconds=2)
        with pytest.raises(Unauthorized):
            authority.validate(token)
        with pytest.raises(InvalidCredentials):
            authority.login(alice.username, PASSWORD)
        new = authority.login(alice.username, "alice-new-pass")
        assert authority.validate(new.token).rev == 1

    def test_bob_second_device(self, authority, store, clock, user_factory) -> None:
        """bob on device A; device B refused at +5 min, accepted at +16 min."""
        bob = user_factory(store, prefix="bob")
        device_a = authority.login(bob.username, PASSWORD).token
        clock.advance(minutes=5)
        with pytest.raises(ActiveElsewhere):
            authority.login(bob.username, PASSWORD)
        clock.advance(minutes=11)
        device_b = authority.login(bob.username, PASSWORD).token
        # Device A's token is still cryptographically valid; the lock only gates logins.
        assert authority.validate(device_a).id == bob.id
        assert authority.validate(device_b).id == bob.id


def test_user_store_round_trips_session_fields(store, clock) -> None:
    user_id = store.create_user(
        User(username="carol", role="user", password_hash=hash_password(PASSWORD), expired_at=clock.now)
    )
    store.touch_activity(user_id, clock.now)
    stored = store.get_by_id(user_id)
    assert stored.expired_at == clock.now
    assert stored.last_activity_at == clock.now
    assert stored.logout_all_at is None
    state = store.get_session_state(user_id)
    assert state.password_rev == 0
    assert state.logout_all_at is None


def test_touch_activity_with_stale_revision_is_skipped(store, clock) -> None:
    user_id = store.create_user(User(username="dave", role="user", password_hash=hash_password(PASSWORD)))
    store.change_password(user_id, hash_password("other-pass-9"), clock.now)
    assert not store.touch_activity(user_id, clock.now, rev=0)
    assert store.get_by_id(user_id).last_activity_at is None
    assert store.touch_activity(user_id, clock.now, rev=1)
    assert store.get_by_id(user_id).last_activity_at == clock.now
