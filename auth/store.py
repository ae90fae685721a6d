"""
auth/store.py -- SQLAlchemy Core persistence layer for the credential store.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper. Route, dependency
and session-authority code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL except the
  hardcoded column names in the startup migration.

Timestamps are stored as ISO 8601 UTC strings and parsed back into aware
datetimes by the mapper, so comparisons happen in Python regardless of the
database backend.

Schema migration notes:
  posisi, expired_at, last_activity_at, logout_all_at and password_rev were
  added to the users table over time. _ensure_session_columns() adds any that
  are missing so existing databases are upgraded on first startup without
  manual migration steps.

Layer rule: no imports from api/ or catalog/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import SessionState, User

_DEFAULT_DB_URL = "sqlite:///partkatalog.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(32), nullable=False, server_default="user"),
    Column("posisi", String(64)),
    Column("created_at", String(32), nullable=False),
    Column("expired_at", String(32)),
    Column("last_activity_at", String(32)),
    Column("logout_all_at", String(32)),
    Column("password_rev", Integer, nullable=False, server_default="0"),
)

# Columns added after the first release, with the DDL type used to add them.
_LATE_COLUMNS: tuple[tuple[str, str], ...] = (
    ("posisi", "VARCHAR(64)"),
    ("expired_at", "VARCHAR(32)"),
    ("last_activity_at", "VARCHAR(32)"),
    ("logout_all_at", "VARCHAR(32)"),
    ("password_rev", "INTEGER NOT NULL DEFAULT 0"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp. Naive values (legacy rows) are treated as UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        store.create_user(User(username="admin", role="admin", password_hash=hash_password("secret")))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)
        self._ensure_session_columns()

    def _ensure_session_columns(self) -> None:
        """Add late session columns to a users table created by an older release.

        metadata.create_all() only creates missing tables; it never adds
        columns. Column names come from _LATE_COLUMNS, never from user input.
        """
        with self.engine.connect() as conn:
            existing = {col["name"] for col in inspect(conn).get_columns("users")}
            for col, ddl in _LATE_COLUMNS:
                if col not in existing:
                    conn.execute(text(f"ALTER TABLE users ADD COLUMN {col} {ddl}"))  # nosemgrep
            conn.commit()

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        Callers (POST /users, the CLI) translate that into a conflict.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password_hash=user.password_hash,
                    role=user.role,
                    posisi=user.posisi,
                    created_at=_to_iso(user.created_at) or _now_iso(),
                    expired_at=_to_iso(user.expired_at),
                    password_rev=user.password_rev,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_session_state(self, user_id: int) -> SessionState | None:
        """Read only the watermark and revision counter for token validation.

        Called on every authenticated request, so it selects two columns
        instead of the full row. Returns None if the user no longer exists.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select()
                .with_only_columns(_users.c.logout_all_at, _users.c.password_rev)
                .where(_users.c.id == user_id)
            ).fetchone()
        if row is None:
            return None
        return SessionState(logout_all_at=_from_iso(row.logout_all_at), password_rev=row.password_rev or 0)

    def list_users(self, roles: frozenset[str] | None = None) -> list[User]:
        """Return users ordered by id, optionally restricted to the given roles."""
        stmt = _users.select().order_by(_users.c.id)
        if roles is not None:
            stmt = stmt.where(_users.c.role.in_(sorted(roles)))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_profile(
        self,
        user_id: int,
        username: str | None = None,
        role: str | None = None,
        posisi: str | None = None,
    ) -> bool:
        """Update the non-credential fields that were supplied.

        None means "leave unchanged", matching the COALESCE semantics of the
        admin edit form. Returns True if a row was updated.
        """
        fields = _profile_fields(username, role, posisi)
        if not fields:
            return self.get_by_id(user_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def change_password(
        self,
        user_id: int,
        password_hash: str,
        changed_at: datetime,
        username: str | None = None,
        role: str | None = None,
        posisi: str | None = None,
    ) -> bool:
        """Store a new password hash and revoke every session issued before changed_at.

        One UPDATE sets the hash, advances the logout-all watermark, clears the
        activity timestamp and bumps password_rev, so a concurrent validation
        never observes the new hash without the revocation.
        """
        fields = _profile_fields(username, role, posisi)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_hash=password_hash,
                    logout_all_at=_to_iso(changed_at),
                    last_activity_at=None,
                    password_rev=_users.c.password_rev + 1,
                    **fields,
                )
            )
            conn.commit()
        return result.rowcount > 0

    def touch_activity(self, user_id: int, at: datetime, rev: int | None = None) -> bool:
        """Stamp last_activity_at; called on login and on every validated request.

        With rev, the stamp is written only while password_rev still equals it,
        so a refresh that lands after a password change cannot re-arm the
        device lock. Returns True if a row was stamped.
        """
        stmt = _users.update().where(_users.c.id == user_id)
        if rev is not None:
            stmt = stmt.where(_users.c.password_rev == rev)
        with self.engine.connect() as conn:
            result = conn.execute(stmt.values(last_activity_at=_to_iso(at)))
            conn.commit()
        return result.rowcount > 0

    def clear_activity(self, user_id: int) -> None:
        """Null last_activity_at so the device lock releases immediately (logout)."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_activity_at=None))
            conn.commit()

    def set_expiry(self, user_id: int, expired_at: datetime | None) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(expired_at=_to_iso(expired_at))
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Role and self-deletion checks are the caller's responsibility.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _profile_fields(username: str | None, role: str | None, posisi: str | None) -> dict:
    fields: dict = {}
    if username is not None:
        fields["username"] = username
    if role is not None:
        fields["role"] = role
    if posisi is not None:
        fields["posisi"] = posisi
    return fields


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        role=row.role,
        posisi=row.posisi,
        created_at=_from_iso(row.created_at),
        expired_at=_from_iso(row.expired_at),
        last_activity_at=_from_iso(row.last_activity_at),
        logout_all_at=_from_iso(row.logout_all_at),
        password_rev=row.password_rev or 0,
    )
