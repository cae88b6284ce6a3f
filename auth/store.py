"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. AuthStore is the repository;
_row_to_user / _row_to_session are the mappers. Route and dependency code
never touches SQL directly.

The sessions table is the system of record for "is this login still valid".
It also remembers the nonce of the latest CSRF token per session. Recording a
new nonce is a single UPDATE, so concurrent issuances for the same session
resolve as last-write-wins and only one token is ever current.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session ids are secrets.token_urlsafe(32) -- 256 bits, never sequential.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from auth.models import Session, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255)),
    Column("hashed_password", Text),
    Column("role", String(50), nullable=False, server_default="Viewer"),
    Column("job_title", String(255)),
    Column("department", String(255)),
    Column("phone", String(50)),
    Column("timezone", String(64), nullable=False, server_default="UTC"),
    Column("locale", String(16), nullable=False, server_default="en"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("csrf_nonce", String(64)),
    Column("csrf_issued_at", Integer),
)

# Columns a user may change through the profile endpoint.
PROFILE_FIELDS = ("name", "job_title", "department", "phone", "timezone", "locale")


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


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User and Session entities.

    Usage:
        store = AuthStore()
        uid = store.create_user(User(email="a@example.com", role="Admin", hashed_password=hash_password("pw")))
        session = store.create_session(uid, ttl_seconds=3600)
        store.revoke_session(session.id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Emails are stored lowercased. Raises sqlalchemy.exc.IntegrityError if
        the email already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    job_title=user.job_title,
                    department=user.department,
                    phone=user.phone,
                    timezone=user.timezone,
                    locale=user.locale,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, is_active, hashed_password and PROFILE_FIELDS.
        Unknown keys raise ValueError -- column names never come from user input.

        Returns True if a row was updated, False if user_id was not found.
        """
        allowed = {"role", "is_active", "hashed_password", *PROFILE_FIELDS}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return False
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Session queries
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, ttl_seconds: int) -> Session:
        """Open a new session for user_id that expires ttl_seconds from now."""
        now = _now()
        session = Session(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    created_at=session.created_at.isoformat(),
                    expires_at=session.expires_at.isoformat(),
                    revoked=0,
                )
            )
            conn.commit()
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Return the session record, or None if unknown. Revoked and expired
        sessions are returned as-is; callers decide with Session.is_active()."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_active_session(self, session_id: str) -> Session | None:
        session = self.get_session(session_id)
        if session is None or not session.is_active(_now()):
            return None
        return session

    def revoke_session(self, session_id: str) -> bool:
        """Mark a session revoked and forget its CSRF nonce.

        Returns True if a live session was revoked. Revoking an unknown or
        already-revoked session is not an error.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(revoked=1, csrf_nonce=None, csrf_issued_at=None)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_user_sessions(self, user_id: int) -> int:
        """Revoke every live session of a user. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
                .values(revoked=1, csrf_nonce=None, csrf_issued_at=None)
            )
            conn.commit()
        return result.rowcount

    def purge_expired_sessions(self) -> int:
        """Delete expired and revoked sessions. Returns the number removed.

        ISO 8601 UTC strings sort lexically in time order, so the comparison
        happens in SQL.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.expires_at <= _now_iso()) | (_sessions.c.revoked == 1))
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # CSRF nonce (latest token per session)
    # ------------------------------------------------------------------

    def set_csrf_nonce(self, session_id: str, nonce: str, issued_at: int) -> bool:
        """Record nonce as the only current CSRF nonce of a live session.

        Overwrites whatever was there (last-write-wins). Returns False if the
        session is unknown or revoked.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(csrf_nonce=nonce, csrf_issued_at=issued_at)
            )
            conn.commit()
        return result.rowcount > 0

    def get_csrf_nonce(self, session_id: str) -> str | None:
        session = self.get_active_session(session_id)
        return session.csrf_nonce if session is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=row.role,
        job_title=row.job_title,
        department=row.department,
        phone=row.phone,
        timezone=row.timezone,
        locale=row.locale,
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        created_at=datetime.fromisoformat(row.created_at),
        expires_at=datetime.fromisoformat(row.expires_at),
        revoked=bool(row.revoked),
        csrf_nonce=row.csrf_nonce,
        csrf_issued_at=row.csrf_issued_at,
    )
