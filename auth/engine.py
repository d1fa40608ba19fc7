"""
auth/engine.py -- Auth engine: login, registration, refresh, logout, session checks.

Session state machine (per client session, not per process):

    Unauthenticated --login/register--> Authenticated (access + refresh)
    Authenticated   --refresh-------->  Authenticated (new access token;
                                        the refresh token is NOT rotated)
    Authenticated   --logout--------->  Unauthenticated (refresh row revoked)

Every public operation returns Ok(value) or Err(AuthError) (auth/result.py).
Domain failures are never raised. Each operation fails fast on the first
failed check and performs its writes only after every check has passed, so a
failed login never leaves an IssuedToken row behind.

The engine holds no mutable state. All durable state lives in the two stores,
so one AuthEngine instance is shared by every request worker.

Security:
  [C1] login() runs bcrypt against a dummy hash when the email is unknown so
       the response time does not reveal which accounts exist.
  The store row, not the token signature, is authoritative for refresh-token
  expiry and revocation. refresh() never decodes the presented token.
  Log lines carry identity ids and emails, never passwords, secrets or raw
  token values.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountNotActive,
    AuthenticationError,
    DuplicateResource,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    TokenExpired,
    TokenRevoked,
    ValidationFailed,
)
from auth.models import (
    AccessGrant,
    AccountStatus,
    AuthSession,
    Identity,
    IssuedToken,
    Role,
    SweepReport,
    TokenKind,
    to_snapshot,
)
from auth.passwords import DUMMY_HASH, hash_password, verify_password
from auth.result import Err, Ok, Result
from auth.store import IdentityStore, RefreshTokenStore
from auth.tokens import Clock, TokenCodec, claims_for, utc_now

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("adminportal.auth")

MIN_PASSWORD_LENGTH = 8

_HANDLE_MAX_BASE = 40
_HANDLE_UNSAFE = re.compile(r"[^a-z0-9._-]")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class AuthEngine:
    """Orchestrates the credential store, token store and token codec.

    Usage:
        engine = AuthEngine(identities, tokens, codec)
        result = engine.login("a@x.com", "password123")
        if isinstance(result, Ok):
            session = result.value
    """

    def __init__(
        self,
        identities: IdentityStore,
        tokens: RefreshTokenStore,
        codec: TokenCodec,
        access_lifetime: timedelta = timedelta(hours=1),
        refresh_lifetime: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ) -> None:
        self._identities = identities
        self._tokens = tokens
        self._codec = codec
        self._access_lifetime = access_lifetime
        self._refresh_lifetime = refresh_lifetime
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identities: IdentityStore,
        tokens: RefreshTokenStore,
        clock: Clock = utc_now,
    ) -> AuthEngine:
        return cls(
            identities,
            tokens,
            TokenCodec.from_settings(settings, clock=clock),
            access_lifetime=settings.access_token_lifetime,
            refresh_lifetime=settings.refresh_token_lifetime,
            clock=clock,
        )

    @property
    def codec(self) -> TokenCodec:
        return self._codec

    @property
    def access_expires_in_ms(self) -> int:
        return int(self._access_lifetime.total_seconds() * 1000)

    # ------------------------------------------------------------------
    # Login / registration
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> Result[AuthSession]:
        """Authenticate by email and password and open a new refresh session.

        Failure kinds, in check order: ValidationFailed (blank email),
        NotFound (unknown email), AccountNotActive, InvalidCredentials.
        The HTTP layer collapses NotFound and InvalidCredentials into one
        message; the engine keeps them distinct for logging and tests.
        """
        email = normalize_email(email)
        if not email:
            logger.warning("Login attempt with blank email")
            return Err(ValidationFailed("Email and password are required."))

        identity = self._identities.find_by_email(email)
        if identity is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            verify_password(password or "", DUMMY_HASH)
            logger.warning("Login failed: no identity with email %s", email)
            return Err(NotFound("User not found."))

        if not identity.is_active:
            logger.warning("Login failed: identity %s is %s", identity.id, identity.status.value)
            return Err(AccountNotActive(_not_active_message(identity.status)))

        if not verify_password(password or "", identity.hashed_password):
            logger.warning("Login failed: bad password for identity %s", identity.id)
            return Err(InvalidCredentials("Invalid email or password."))

        session = self._open_session(identity)
        logger.info("Login successful for identity %s", identity.id)
        return Ok(session)

    def register(
        self,
        first_name: str | None,
        last_name: str | None,
        email: str | None,
        password: str | None,
    ) -> Result[AuthSession]:
        """Create a StandardUser identity and open its first refresh session.

        The exists_by_email() pre-check is only a fast path for a friendlier
        error. The UNIQUE constraint is what guarantees one identity per
        email; a concurrent duplicate surfaces as IntegrityError and is
        reported as DuplicateResource as well.
        """
        email = normalize_email(email)
        if not email:
            return Err(ValidationFailed("Email is required."))
        local_part, _, domain = email.partition("@")
        if not local_part or not domain:
            return Err(ValidationFailed("Email address is invalid."))
        if password is None or len(password) < MIN_PASSWORD_LENGTH:
            return Err(ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters."))
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if not first_name or not last_name:
            return Err(ValidationFailed("First name and last name are required."))

        if self._identities.exists_by_email(email):
            logger.warning("Registration failed: email already registered: %s", email)
            return Err(DuplicateResource("Email already registered."))

        identity = Identity(
            email=email,
            handle=self._derive_handle(local_part),
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=Role.STANDARD_USER,
            status=AccountStatus.ACTIVE,
        )
        try:
            saved = self._identities.save(identity)
        except IntegrityError:
            if self._identities.exists_by_email(email):
                logger.warning("Registration lost an email uniqueness race for %s", email)
                return Err(DuplicateResource("Email already registered."))
            logger.warning("Registration lost a handle uniqueness race (handle=%s)", identity.handle)
            return Err(DuplicateResource("Could not allocate a unique handle. Please try again."))

        logger.info("New identity %s registered (handle=%s)", saved.id, saved.handle)
        return Ok(self._open_session(saved))

    # ------------------------------------------------------------------
    # Refresh / session validation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None) -> Result[AccessGrant]:
        """Mint a new access token from a live refresh session.

        The refresh row is left untouched: no rotation, the same refresh token
        stays valid until it expires or is revoked.
        """
        result = self.validate_session(refresh_token)
        if isinstance(result, Err):
            return result
        identity = result.value
        access_token = self._codec.issue(claims_for(identity, TokenKind.ACCESS), self._access_lifetime)
        logger.debug("Access token refreshed for identity %s", identity.id)
        return Ok(AccessGrant(access_token=access_token, expires_in_ms=self.access_expires_in_ms))

    def validate_session(self, refresh_token: str | None) -> Result[Identity]:
        """Return the owning Identity of a usable refresh session.

        Failure kinds, in check order: ValidationFailed (blank), InvalidToken
        (unknown to the store), TokenExpired, TokenRevoked, AccountNotActive.
        """
        if not refresh_token or not refresh_token.strip():
            return Err(ValidationFailed("Refresh token is required."))

        issued = self._tokens.find_by_token_string(refresh_token)
        if issued is None:
            logger.warning("Refresh token not found in store")
            return Err(InvalidToken("Invalid refresh token."))

        if issued.is_expired(self._clock()):
            logger.warning("Refresh token %s expired", issued.id)
            return Err(TokenExpired("Refresh token has expired."))
        if issued.is_revoked:
            logger.warning("Refresh token %s revoked", issued.id)
            return Err(TokenRevoked("Refresh token has been revoked."))

        identity = self._identities.find_by_id(issued.identity_id)
        if identity is None or not identity.is_active:
            logger.warning("Refresh denied: identity %s missing or not active", issued.identity_id)
            return Err(AccountNotActive("User account is not active."))
        return Ok(identity)

    # ------------------------------------------------------------------
    # Logout / revocation
    # ------------------------------------------------------------------

    def logout(self, identity_id: int, refresh_token: str | None) -> Result[None]:
        """Revoke one refresh session. Idempotent.

        Blank or unknown tokens succeed silently -- the client may already
        have discarded its session. A token owned by someone else is a
        security boundary, not a no-op.
        """
        if not refresh_token or not refresh_token.strip():
            logger.debug("Logout called without refresh token")
            return Ok(None)

        issued = self._tokens.find_by_token_string(refresh_token)
        if issued is None:
            logger.debug("Logout: refresh token not found, already gone")
            return Ok(None)

        if issued.identity_id != identity_id:
            logger.warning("Identity %s attempted to revoke a token of identity %s", identity_id, issued.identity_id)
            return Err(AuthenticationError("Cannot revoke another user's token."))

        if issued.is_revoked:
            return Ok(None)

        self._tokens.save(dataclasses.replace(issued, revoked_at=self._clock()))
        logger.info("Refresh token %s revoked for identity %s", issued.id, identity_id)
        return Ok(None)

    def revoke_all_sessions(self, identity_id: int) -> Result[int]:
        """Revoke every live refresh session of an identity. Returns the count revoked."""
        if self._identities.find_by_id(identity_id) is None:
            return Err(NotFound("User not found."))
        count = self._tokens.revoke_all_for_identity(identity_id, self._clock())
        logger.info("Revoked %d refresh session(s) for identity %s", count, identity_id)
        return Ok(count)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def count_active_sessions(self, identity_id: int | None = None) -> Result[int]:
        return Ok(self._tokens.count_active(self._clock(), identity_id=identity_id))

    def sweep_tokens(self) -> Result[SweepReport]:
        """Delete expired and revoked refresh rows.

        Garbage collection only: validate_session() already rejects such rows,
        so correctness never depends on the sweep having run.
        """
        expired = self._tokens.delete_expired(self._clock())
        revoked = self._tokens.delete_revoked()
        if expired or revoked:
            logger.info("Token sweep removed %d expired and %d revoked row(s)", expired, revoked)
        return Ok(SweepReport(expired_deleted=expired, revoked_deleted=revoked))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _open_session(self, identity: Identity) -> AuthSession:
        """Mint an access + refresh pair, persist the refresh row, stamp last login."""
        access_token = self._codec.issue(claims_for(identity, TokenKind.ACCESS), self._access_lifetime)
        refresh_token = self._codec.issue(claims_for(identity, TokenKind.REFRESH), self._refresh_lifetime)

        now = self._clock()
        self._tokens.save(
            IssuedToken(
                identity_id=identity.id,
                token=refresh_token,
                expires_at=now + self._refresh_lifetime,
                created_at=now,
            )
        )
        self._identities.update_last_login(identity.id, now)

        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in_ms=self.access_expires_in_ms,
            identity=to_snapshot(dataclasses.replace(identity, last_login_at=now)),
        )

    def _derive_handle(self, local_part: str) -> str:
        """Handle = sanitized email local-part, suffixed with epoch millis on collision.

        If the millis suffix is taken too (same-millisecond registrations), a
        random hex tail is added. Uniqueness is still only best-effort: a
        concurrent insert of the same handle ends in IntegrityError, which
        register() reports as a handle conflict.
        """
        base = _HANDLE_UNSAFE.sub("_", local_part)[:_HANDLE_MAX_BASE] or "user"
        if not self._identities.exists_by_handle(base):
            return base
        stamped = f"{base}_{int(self._clock().timestamp() * 1000)}"
        if not self._identities.exists_by_handle(stamped):
            return stamped
        return f"{stamped}_{secrets.token_hex(3)}"


def _not_active_message(status: AccountStatus) -> str:
    return f"Account is {status.value.lower()}. Please contact administrator."
