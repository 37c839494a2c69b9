"""
Utility functions for the Roadkill core package.
"""

from .checks import ifnone
from .password import generate_salt, hash_password, verify_password

__all__ = [
    "generate_salt",
    "hash_password",
    "ifnone",
    "verify_password",
]
