"""
auth/gate.py -- Authorization gate: principal derivation and allow/deny checks.

Stateless per request:
  1. No token                 -> anonymous (None)
  2. Codec verify fails       -> anonymous (never raises)
  3. kind != ACCESS           -> anonymous; a refresh token never authorizes
                                 a request directly
  4. Otherwise                -> Principal(identity_id, handle, role)

What "anonymous" means is the caller's decision (auth/dependencies.py turns
it into 401 on protected routes).

Role checks are set membership against a closed allow-list the caller passes
in. Permission checks re-read the Identity on every call: capability flags can
change between token issuance and request time and are never carried in the
token.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum

from auth.errors import AuthenticationError, AuthorizationError
from auth.models import Identity, Role, TokenKind
from auth.result import Err, Ok, Result
from auth.store import IdentityStore
from auth.tokens import TokenCodec, expect_kind

logger = logging.getLogger("adminportal.gate")

ADMIN_ONLY: frozenset[Role] = frozenset({Role.ADMINISTRATOR})
STAFF: frozenset[Role] = frozenset({Role.ADMINISTRATOR, Role.MANAGER})


class Permission(str, Enum):
    MANAGE_IDENTITIES = "manage-identities"
    VIEW_REPORTS = "view-reports"
    MANAGE_SETTINGS = "manage-settings"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, derived from a verified access token."""

    identity_id: int
    handle: str
    role: Role


def authenticate(codec: TokenCodec, token: str | None) -> Principal | None:
    """Return the Principal for a presented access token, or None. Never raises."""
    if not token:
        return None
    try:
        claims = expect_kind(codec.verify(token), TokenKind.ACCESS)
    except AuthenticationError as exc:
        logger.debug("Bearer token rejected (%s)", exc.error_code)
        return None
    return Principal(identity_id=claims.identity_id, handle=claims.subject, role=claims.role)


def permission_granted(identity: Identity, permission: Permission) -> bool:
    """Map a Permission to its Identity flag. Every member must be handled here."""
    if permission is Permission.MANAGE_IDENTITIES:
        return identity.can_manage_identities
    if permission is Permission.VIEW_REPORTS:
        return identity.can_view_reports
    if permission is Permission.MANAGE_SETTINGS:
        return identity.can_manage_settings
    raise ValueError(f"Unhandled permission: {permission!r}")


def require_role(principal: Principal, allowed: Collection[Role]) -> Result[Principal]:
    if principal.role in allowed:
        return Ok(principal)
    logger.warning("Identity %s (role %s) denied: role not allowed", principal.identity_id, principal.role.value)
    return Err(AuthorizationError("Insufficient role for this operation."))


def require_permission(identities: IdentityStore, principal: Principal, permission: Permission) -> Result[Identity]:
    """Allow iff the identity still exists, is active, and has the flag set right now."""
    identity = identities.find_by_id(principal.identity_id)
    if identity is None or not identity.is_active or not permission_granted(identity, permission):
        logger.warning("Identity %s denied: missing permission %s", principal.identity_id, permission.value)
        return Err(AuthorizationError(f"Permission '{permission.value}' is required."))
    return Ok(identity)
