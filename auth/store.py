"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as todo/store.py).
CredentialStore is the repository; _row_to_user / _row_to_refresh_token /
_row_to_api_token are the mappers. Route, issuer and authenticator code never
touches SQL directly.

The store is pure storage: it never decides whether a token is expired or
whether a caller may act on a row. CredentialIssuer and TokenAuthenticator own
that policy. Every method is a single-row, independently atomic statement.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Token columns hold HMAC-SHA256 digests, never raw token values.

Timestamps:
  Stored as ISO 8601 UTC strings with fixed microsecond precision (to_iso) so
  lexicographic comparison in SQL matches chronological order. sweep_expired()
  relies on this.

DB path: auth/tasktrack_auth.db (sibling to todo/tasktrack_todo.db).

Layer rule: no imports from api/, todo/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import ApiToken, RefreshToken, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'tasktrack_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_api_tokens = Table(
    "api_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("name", String(100), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("token_prefix", String(12), nullable=False),  # first 12 chars, display only
    Column("scopes", String(255), nullable=False, server_default="read"),  # comma-separated
    Column("expires_at", String(32)),  # NULL = never expires
    Column("last_used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. foreign_keys is off by default in SQLite, so
    ON DELETE CASCADE would be silently ignored without it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Render a datetime in the store's sortable UTC format."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp. Naive values are treated as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _now_iso() -> str:
    return to_iso(utcnow())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, RefreshToken and ApiToken rows.

    Usage:
        store = CredentialStore()
        uid = store.create_user(User(username="alice", password_hash=hash_password("secret")))
        user = store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        Callers (POST /users/register) catch IntegrityError and answer 409, so
        two concurrent registrations of the same name cannot both succeed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    password_hash=user.password_hash,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        """Replace a user's password hash. Returns False if user_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def add_refresh_token(self, token: RefreshToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=token.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        """Look up a refresh token by its HMAC hash, expired or not."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_refresh_token(self, token_hash: str) -> bool:
        """Delete one session. Returns False when no row matched (already logged out)."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: int) -> int:
        """End every session of user_id. Returns the number of rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_refresh_tokens(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # API tokens
    # ------------------------------------------------------------------

    def create_api_token(self, token: ApiToken) -> int:
        """Insert a new API token record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_tokens.insert().values(
                    user_id=token.user_id,
                    name=token.name,
                    token_hash=token.token_hash,
                    token_prefix=token.token_prefix,
                    scopes=",".join(token.scopes),
                    expires_at=token.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_api_token(self, token_id: int) -> ApiToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_api_tokens.select().where(_api_tokens.c.id == token_id)).fetchone()
        return _row_to_api_token(row) if row is not None else None

    def get_api_token_by_hash(self, token_hash: str) -> ApiToken | None:
        """Look up an API token by its HMAC hash. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_tokens.select().where(_api_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_api_token(row) if row is not None else None

    def list_api_tokens(self, user_id: int) -> list[ApiToken]:
        """Return all API tokens for a user (newest first), including expired ones."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_tokens.select()
                .where(_api_tokens.c.user_id == user_id)
                .order_by(_api_tokens.c.created_at.desc(), _api_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_api_token(r) for r in rows]

    def count_api_tokens(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_api_tokens).where(_api_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    def touch_api_token(self, token_id: int) -> None:
        """Stamp last_used_at after each successful API-token authentication."""
        with self.engine.connect() as conn:
            conn.execute(_api_tokens.update().where(_api_tokens.c.id == token_id).values(last_used_at=_now_iso()))
            conn.commit()

    def delete_api_token(self, token_id: int, user_id: int) -> bool:
        """Delete a token. user_id is checked to prevent IDOR attacks.

        A user cannot revoke another user's token even if they know its ID.
        Both conditions must match for the delete to succeed.

        Returns True if a token was deleted, False if not found or wrong owner.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_tokens.delete().where((_api_tokens.c.id == token_id) & (_api_tokens.c.user_id == user_id))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def sweep_expired(self, now_iso: str) -> tuple[int, int]:
        """Delete refresh and API tokens whose expiry is before now_iso.

        Returns (refresh_tokens_removed, api_tokens_removed). API tokens with a
        NULL expiry never match. Purely an optimisation: expiry is also checked
        at use time, so a skipped sweep changes nothing observable.
        """
        with self.engine.connect() as conn:
            refresh = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < now_iso))
            api = conn.execute(
                _api_tokens.delete().where(_api_tokens.c.expires_at.is_not(None) & (_api_tokens.c.expires_at < now_iso))
            )
            conn.commit()
        return refresh.rowcount, api.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_api_token(row) -> ApiToken:
    return ApiToken(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        token_hash=row.token_hash,
        token_prefix=row.token_prefix,
        scopes=[s for s in (row.scopes or "").split(",") if s],
        expires_at=row.expires_at,
        last_used_at=row.last_used_at,
        created_at=row.created_at,
    )
