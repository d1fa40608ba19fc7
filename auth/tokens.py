"""
auth/tokens.py -- Token codec: signed, self-describing access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are compact JWS strings
       (header.payload.signature) signed with the single server-wide secret.
       Claims: sub (identity handle), uid (identity id), role, kind
       (ACCESS | REFRESH), iat, exp, jti.

  jti: a random per-token id. Two tokens minted in the same second for the
       same identity would otherwise be byte-identical, which would collapse
       two concurrent refresh sessions onto one store row.

  Verify before read: verify() checks the signature before any claim is
       interpreted. Expiry is checked by the codec itself against its injected
       clock (exp <= now is expired), so tests can move time without sleeping.

  Kind: access and refresh tokens share this codec. The kind claim is part of
       the signed payload, but the codec never assumes which kind a caller
       wants -- callers use expect_kind() explicitly.

  SECRET_KEY: injected once at construction (see from_settings()). The codec
       never mutates it and never includes it, or a raw token, in an error
       message or log line.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.errors import InvalidToken, TokenExpired, TokenMalformed, TokenSignatureInvalid
from auth.models import Identity, Role, TokenClaims, TokenKind

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("adminportal.tokens")

_ALGORITHM = "HS256"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def claims_for(identity: Identity, kind: TokenKind) -> TokenClaims:
    """Build the unsigned claim set for an identity. Timestamps are stamped at issue time."""
    if identity.id is None:
        raise ValueError("Cannot mint a token for an identity that has not been saved.")
    return TokenClaims(subject=identity.handle, identity_id=identity.id, role=identity.role, kind=kind)


def expect_kind(claims: TokenClaims, kind: TokenKind) -> TokenClaims:
    """Return claims unchanged if they are of the expected kind, else raise InvalidToken."""
    if claims.kind is not kind:
        raise InvalidToken(f"Expected a {kind.value.lower()} token.")
    return claims


class TokenCodec:
    """Issue and verify HS256-signed tokens.

    Usage:
        codec = TokenCodec(secret_key)
        token = codec.issue(claims_for(identity, TokenKind.ACCESS), timedelta(hours=1))
        claims = codec.verify(token)  # raises TokenMalformed / TokenSignatureInvalid / TokenExpired
    """

    def __init__(self, secret_key: str, clock: Clock = utc_now) -> None:
        if len(secret_key) < 32:
            raise ValueError("Signing secret must be at least 32 characters.")
        self._secret_key = secret_key
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> TokenCodec:
        return cls(settings.secret_key, clock=clock)

    def issue(self, claims: TokenClaims, lifetime: timedelta) -> str:
        """Sign claims with issued-at = now and expires-at = now + lifetime.

        JWT NumericDate has second resolution, so both instants are truncated
        to whole seconds. Any stamped fields already on claims are ignored.
        """
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + lifetime
        payload = {
            "sub": claims.subject,
            "uid": claims.identity_id,
            "role": claims.role.value,
            "kind": claims.kind.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Verify the signature, then parse claims, then check expiry.

        Raises:
            TokenMalformed:        not three segments, undecodable header, or
                                   an incomplete/ill-typed claim set.
            TokenSignatureInvalid: the signature does not match this secret.
            TokenExpired:          expires-at <= now.
        """
        if not token or token.count(".") != 2:
            raise TokenMalformed("Token is malformed.")
        try:
            jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenMalformed("Token is malformed.") from exc

        try:
            # exp is checked below against the injected clock.
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options={"verify_exp": False})
        except JWTError as exc:
            logger.debug("Token rejected: %s", type(exc).__name__)
            raise TokenSignatureInvalid("Token signature is invalid.") from exc

        claims = _payload_to_claims(payload)
        if claims.expires_at is not None and claims.expires_at <= self._clock():
            raise TokenExpired("Token has expired.")
        return claims


def _payload_to_claims(payload: dict) -> TokenClaims:
    try:
        return TokenClaims(
            subject=str(payload["sub"]),
            identity_id=int(payload["uid"]),
            role=Role(payload["role"]),
            kind=TokenKind(payload["kind"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            token_id=payload.get("jti"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenMalformed("Token claims are incomplete.") from exc
