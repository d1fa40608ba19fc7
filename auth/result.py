"""
auth/result.py -- Discriminated success/failure result for engine operations.

Every AuthEngine operation returns Ok(value) or Err(error). Callers branch on
the type instead of catching exceptions, so a forgotten failure kind shows up
in review as an unhandled branch rather than as an uncaught exception at
runtime:

    result = engine.login(email, password)
    if isinstance(result, Err):
        ...  # result.error is an AuthError subclass
    session = result.value

unwrap() exists for the HTTP layer, which funnels every Err into the FastAPI
exception handler by raising the carried error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from auth.errors import AuthError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AuthError

    @property
    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error


Result = Union[Ok[T], Err]
