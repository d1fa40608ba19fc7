"""
auth/passwords.py -- Password hashing (bcrypt, direct usage).

The rest of the core treats the hash as opaque: hash_password() produces it,
verify_password() checks against it, and nothing else looks inside.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps the password field at 128 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A corrupt or non-bcrypt hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load. The engine runs verify_password() against it
# when an email is unknown, so the response time of a failed login does not
# reveal whether the account exists.
DUMMY_HASH: str = hash_password("adminportal_timing_dummy")
