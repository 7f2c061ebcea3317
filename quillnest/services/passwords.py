"""
Password hashing with bcrypt.

bcrypt only reads the first 72 bytes of its input. Longer passwords are
rejected at the schema boundary (MAX_PASSWORD_BYTES) instead of being
silently truncated.
"""

import bcrypt

MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 8


def hash_password(plain: str, rounds: int = 12) -> str:
    """Salted bcrypt hash of `plain` as an ASCII string."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def verify_password(plain: str, hashed: str) -> bool:
    """True if `plain` matches `hashed`. A malformed hash never matches."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("ascii"))
    except (ValueError, TypeError, UnicodeEncodeError):
        return False
