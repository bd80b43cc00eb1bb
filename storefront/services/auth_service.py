# Overview: Credential hashing and verification shared by both storage backends.

"""
Credential handling.

Both backends store only bcrypt hashes; plaintext credentials are never
persisted or compared. Usernames are matched case-insensitively everywhere.

SECURITY NOTES:
- bcrypt cost factor comes from BCRYPT_ROUNDS (default 12; tests use 4)
- verify_password is timing-safe via bcrypt.checkpw
"""

import bcrypt

from ..errors import ValidationError

DEFAULT_ROUNDS = 12
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def validate_credential(password) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationError("Password is required")
    return password


def normalize_username(username) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("Username is required")
    return username.strip()


def username_key(username: str) -> str:
    """Comparison key for case-insensitive username uniqueness."""
    return username.strip().lower()


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    validate_credential(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string


def is_password_hash(value) -> bool:
    return isinstance(value, str) and value.startswith(BCRYPT_PREFIXES)


def verify_password(password: str, password_hash: str | None) -> bool:
    """
    Verify password against bcrypt hash.

    Anything that is not a bcrypt hash (legacy plaintext, empty) never matches.
    """
    if not isinstance(password, str) or not is_password_hash(password_hash):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False
