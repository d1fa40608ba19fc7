"""
auth/errors.py -- Typed failure taxonomy for the auth core.

Every failure the engine, codec or gate can report is one of these classes.
Each class carries the HTTP status and a stable error code so the API layer
can translate any of them into the standard error envelope without a lookup
table:

  ValidationFailed      400  validation_error
  AuthenticationError   401  unauthorized (subclasses refine the code)
  AuthorizationError    403  forbidden
  NotFound              404  not_found
  DuplicateResource     409  conflict

The engine does not raise these for domain failures -- it returns them inside
an Err (see auth/result.py). They are still Exception subclasses so the API
layer can raise them into the FastAPI exception handler, and so the codec can
raise them from verify().

Messages are user-facing. They must never contain the signing secret, a
password, or a raw token value.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all typed auth failures."""

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationFailed(AuthError):
    """Malformed input (400)."""

    status_code = 400
    error_code = "validation_error"


class AuthenticationError(AuthError):
    """Bad credentials, unusable token, or inactive account (401)."""

    status_code = 401
    error_code = "unauthorized"


class InvalidCredentials(AuthenticationError):
    error_code = "bad_credentials"


class AccountNotActive(AuthenticationError):
    error_code = "account_not_active"


class InvalidToken(AuthenticationError):
    """Token unknown to the store, or not a token this server issued."""

    error_code = "invalid_token"


class TokenMalformed(InvalidToken):
    """Token string cannot be parsed, or its claim set is incomplete."""


class TokenSignatureInvalid(InvalidToken):
    """Signature does not match -- the token was tampered with or foreign."""


class TokenExpired(AuthenticationError):
    error_code = "token_expired"


class TokenRevoked(AuthenticationError):
    error_code = "token_revoked"


class AuthorizationError(AuthError):
    """Valid session lacking the required role or permission (403)."""

    status_code = 403
    error_code = "forbidden"


class NotFound(AuthError):
    """Referenced entity is absent (404)."""

    status_code = 404
    error_code = "not_found"


class DuplicateResource(AuthError):
    """Unique-constraint collision (409)."""

    status_code = 409
    error_code = "conflict"
