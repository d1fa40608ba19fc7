"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, minimal logic). Dataclasses own the
domain shape; stores, the engine and routes do the work. The only behaviour
kept here is the IssuedToken usability invariant, because every reader of a
refresh-token row must evaluate it the same way.

Role and AccountStatus are closed enumerations. Enum values are the strings
persisted in the database and sent over the wire ("ADMIN", "ACTIVE", ...).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMINISTRATOR = "ADMIN"
    MANAGER = "MANAGER"
    STANDARD_USER = "USER"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"  # may log in
    INACTIVE = "INACTIVE"  # disabled
    SUSPENDED = "SUSPENDED"  # temporarily blocked


class TokenKind(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"


@dataclass
class Identity:
    """An account known to the credential store.

    hashed_password is opaque to everything except auth/passwords.py.
    The three can_* flags are capability flags: independent of role and never
    copied into a token, so the authorization gate always re-reads them.
    """

    email: str
    handle: str
    hashed_password: str
    first_name: str = ""
    last_name: str = ""
    role: Role = Role.STANDARD_USER
    status: AccountStatus = AccountStatus.ACTIVE
    can_manage_identities: bool = False
    can_view_reports: bool = False
    can_manage_settings: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class IssuedToken:
    """A persisted refresh-token session.

    A row is usable iff revoked_at is None AND now < expires_at. The stored
    row, not the token signature, is authoritative for revocation.
    """

    identity_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_usable(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


@dataclass(frozen=True)
class TokenClaims:
    """The signed payload of an access or refresh token. Never persisted.

    issued_at / expires_at / token_id are stamped by TokenCodec.issue(); a
    caller building claims to sign leaves them as None.
    """

    subject: str  # identity handle
    identity_id: int
    role: Role
    kind: TokenKind
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    token_id: str | None = None


@dataclass(frozen=True)
class IdentitySnapshot:
    """Outward-facing view of an Identity. Deliberately has no password field."""

    id: int
    email: str
    handle: str
    first_name: str
    last_name: str
    role: Role
    status: AccountStatus
    can_manage_identities: bool
    can_view_reports: bool
    can_manage_settings: bool
    created_at: datetime | None
    last_login_at: datetime | None


def to_snapshot(identity: Identity) -> IdentitySnapshot:
    """Convert a persisted Identity to its password-free snapshot."""
    if identity.id is None:
        raise ValueError("Cannot snapshot an identity that has not been saved.")
    return IdentitySnapshot(
        id=identity.id,
        email=identity.email,
        handle=identity.handle,
        first_name=identity.first_name,
        last_name=identity.last_name,
        role=identity.role,
        status=identity.status,
        can_manage_identities=identity.can_manage_identities,
        can_view_reports=identity.can_view_reports,
        can_manage_settings=identity.can_manage_settings,
        created_at=identity.created_at,
        last_login_at=identity.last_login_at,
    )


@dataclass(frozen=True)
class AuthSession:
    """Result of a successful login or registration."""

    access_token: str
    refresh_token: str
    expires_in_ms: int
    identity: IdentitySnapshot


@dataclass(frozen=True)
class AccessGrant:
    """Result of a successful refresh: a new access token only."""

    access_token: str
    expires_in_ms: int


@dataclass(frozen=True)
class SweepReport:
    expired_deleted: int
    revoked_deleted: int
