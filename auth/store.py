"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
IdentityStore is the credential store, RefreshTokenStore is the token store;
_row_to_identity / _row_to_issued_token are the mappers. Engine and route code
never touches SQL directly.

Both stores may share one Engine (and therefore one database):

    engine = create_store_engine(settings.database_url)
    identities = IdentityStore(engine=engine)
    tokens = RefreshTokenStore(engine=engine)

Security and integrity:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) and UNIQUE(handle) are enforced by the database. save()
  lets sqlalchemy.exc.IntegrityError propagate; the engine maps it to
  DuplicateResource. A check-then-insert alone would race under concurrent
  registrations with the same email.

  UNIQUE(token) on refresh_tokens makes find_by_token_string() an O(1) lookup.

  Every write commits before returning, so a revocation is visible to the
  next read on any connection (read-your-writes).

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import AccountStatus, Identity, IssuedToken, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("handle", String(64), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default=Role.STANDARD_USER.value),
    Column("status", String(20), nullable=False, server_default=AccountStatus.ACTIVE.value),
    Column("can_manage_identities", Integer, nullable=False, server_default="0"),
    Column("can_view_reports", Integer, nullable=False, server_default="0"),
    Column("can_manage_settings", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity_id", Integer, ForeignKey("identities.id"), nullable=False, index=True),
    Column("token", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # NULL = not revoked
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed without blocking during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure both auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _resolve_engine(db_url: str | None, engine: Engine | None) -> Engine:
    if engine is not None:
        return engine
    if db_url is None:
        raise ValueError("Either db_url or engine is required.")
    return create_store_engine(db_url)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        saved = store.save(Identity(email="a@x.com", handle="a", hashed_password=hash_password("secret123")))
        found = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str | None = None, *, engine: Engine | None = None) -> None:
        self.engine: Engine = _resolve_engine(db_url, engine)

    def save(self, identity: Identity) -> Identity:
        """Insert a new identity (id is None) or update an existing one.

        Returns a copy carrying the stored id and timestamps. Raises
        sqlalchemy.exc.IntegrityError if the email or handle is taken.
        """
        now = _now()
        values = {
            "email": identity.email,
            "handle": identity.handle,
            "hashed_password": identity.hashed_password,
            "first_name": identity.first_name,
            "last_name": identity.last_name,
            "role": identity.role.value,
            "status": identity.status.value,
            "can_manage_identities": 1 if identity.can_manage_identities else 0,
            "can_view_reports": 1 if identity.can_view_reports else 0,
            "can_manage_settings": 1 if identity.can_manage_settings else 0,
            "last_login_at": _to_iso(identity.last_login_at),
            "updated_at": _to_iso(now),
        }
        with self.engine.connect() as conn:
            if identity.id is None:
                created_at = identity.created_at or now
                result = conn.execute(_identities.insert().values(created_at=_to_iso(created_at), **values))
                conn.commit()
                return dataclasses.replace(
                    identity, id=result.inserted_primary_key[0], created_at=created_at, updated_at=now
                )
            conn.execute(_identities.update().where(_identities.c.id == identity.id).values(**values))
            conn.commit()
        return dataclasses.replace(identity, updated_at=now)

    def find_by_id(self, identity_id: int) -> Identity | None:
        return self._find_one(_identities.c.id == identity_id)

    def find_by_email(self, email: str) -> Identity | None:
        """Look up by exact email. Callers normalize (strip + lower) before calling."""
        return self._find_one(_identities.c.email == email)

    def find_by_handle(self, handle: str) -> Identity | None:
        return self._find_one(_identities.c.handle == handle)

    def exists_by_email(self, email: str) -> bool:
        return self._exists(_identities.c.email == email)

    def exists_by_handle(self, handle: str) -> bool:
        return self._exists(_identities.c.handle == handle)

    def update_last_login(self, identity_id: int, when: datetime | None = None) -> None:
        """Stamp last_login_at. Does not touch updated_at -- a login is not a profile edit."""
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(last_login_at=_to_iso(when or _now()))
            )
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()

    def _find_one(self, clause) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(clause)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def _exists(self, clause) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_identities.c.id).where(clause).limit(1)).fetchone()
        return row is not None


# ---------------------------------------------------------------------------
# Token store
# ---------------------------------------------------------------------------


class RefreshTokenStore:
    """Repository for IssuedToken (refresh session) records.

    Rows are never updated except to set revoked_at. Expired and revoked rows
    are removed only by delete_expired() / delete_revoked(), which the
    maintenance sweep calls.
    """

    def __init__(self, db_url: str | None = None, *, engine: Engine | None = None) -> None:
        self.engine: Engine = _resolve_engine(db_url, engine)

    def save(self, issued: IssuedToken) -> IssuedToken:
        """Insert a new row (id is None), or persist revoked_at on an existing row.

        Raises sqlalchemy.exc.IntegrityError if the token string already exists.
        """
        with self.engine.connect() as conn:
            if issued.id is None:
                created_at = issued.created_at or _now()
                result = conn.execute(
                    _refresh_tokens.insert().values(
                        identity_id=issued.identity_id,
                        token=issued.token,
                        expires_at=_to_iso(issued.expires_at),
                        created_at=_to_iso(created_at),
                        revoked_at=_to_iso(issued.revoked_at),
                    )
                )
                conn.commit()
                return dataclasses.replace(issued, id=result.inserted_primary_key[0], created_at=created_at)
            conn.execute(
                _refresh_tokens.update()
                .where(_refresh_tokens.c.id == issued.id)
                .values(revoked_at=_to_iso(issued.revoked_at))
            )
            conn.commit()
        return issued

    def find_by_token_string(self, token: str) -> IssuedToken | None:
        """Look up a row by its exact token string. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_issued_token(row) if row is not None else None

    def revoke_all_for_identity(self, identity_id: int, when: datetime | None = None) -> int:
        """Revoke every live (unrevoked, unexpired) row of an identity. Returns the count."""
        stamp = _to_iso(when or _now())
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.identity_id == identity_id)
                    & (_refresh_tokens.c.revoked_at.is_(None))
                    & (_refresh_tokens.c.expires_at > stamp)
                )
                .values(revoked_at=stamp)
            )
            conn.commit()
        return result.rowcount

    def delete_expired(self, now: datetime | None = None) -> int:
        """Delete rows whose expiry has passed. Returns the number deleted."""
        stamp = _to_iso(now or _now())
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= stamp))
            conn.commit()
        return result.rowcount

    def delete_revoked(self) -> int:
        """Delete rows that carry a revocation instant. Returns the number deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.revoked_at.is_not(None)))
            conn.commit()
        return result.rowcount

    def count_active(self, now: datetime | None = None, identity_id: int | None = None) -> int:
        """Count usable rows, optionally for one identity."""
        stamp = _to_iso(now or _now())
        clause = (_refresh_tokens.c.revoked_at.is_(None)) & (_refresh_tokens.c.expires_at > stamp)
        if identity_id is not None:
            clause = clause & (_refresh_tokens.c.identity_id == identity_id)
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_refresh_tokens).where(clause)).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        handle=row.handle,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        status=AccountStatus(row.status),
        can_manage_identities=bool(row.can_manage_identities),
        can_view_reports=bool(row.can_view_reports),
        can_manage_settings=bool(row.can_manage_settings),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
        last_login_at=_from_iso(row.last_login_at),
    )


def _row_to_issued_token(row) -> IssuedToken:
    return IssuedToken(
        id=row.id,
        identity_id=row.identity_id,
        token=row.token,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        revoked_at=_from_iso(row.revoked_at),
    )
