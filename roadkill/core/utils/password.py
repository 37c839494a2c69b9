"""Utility methods relating to password hashing and verification."""

import secrets

from pwdlib import PasswordHash


def _get_password_hasher() -> PasswordHash:
    """Get or create the password hasher instance.

    Returns:
        PasswordHash instance with recommended settings
    """
    if not hasattr(_get_password_hasher, "cached_instance"):
        _get_password_hasher.cached_instance = PasswordHash.recommended()
    return _get_password_hasher.cached_instance


def generate_salt(nbytes: int = 16) -> str:
    """Return a random hex salt, stored alongside a user's password hash."""
    return secrets.token_hex(nbytes)


def hash_password(password: str, salt: str = "") -> str:
    """Hash a password (optionally prefixed with a per-user salt) using Argon2.

    Args:
        password: Plain text password to hash
        salt: Per-user salt kept on the User record; it is prepended to the password before hashing.

    Returns:
        Hashed password string that can be safely stored in a database

    Example:
        .. code-block:: python

            salt = generate_salt()
            user.salt = salt
            user.password = hash_password("my_secure_password", salt)
    """
    return _get_password_hasher().hash(salt + password)


def verify_password(plain_password: str, hashed_password: str, salt: str = "") -> bool:
    """Verify a password against its hash.

    Args:
        plain_password: Plain text password to verify
        hashed_password: Hashed password from database
        salt: The salt that was used when the hash was created

    Returns:
        True if password matches, False otherwise
    """
    return _get_password_hasher().verify(salt + plain_password, hashed_password)


__all__ = [
    "generate_salt",
    "hash_password",
    "verify_password",
]
