"""
Password Hashing

Stored form is "<salt hex>:<hash hex>", PBKDF2-HMAC-SHA256 with a
16-byte random salt.
"""

import hashlib
import hmac
import secrets


ITERATIONS = 10000
SALT_BYTES = 16


def hash_password(password: str) -> str:
    salt = secrets.token_hex(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), ITERATIONS)
    return f"{salt}:{digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    """Constant-time check of a password against its stored hash."""
    salt, sep, expected = stored.partition(":")
    if not sep or not salt or not expected:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), ITERATIONS)
    return hmac.compare_digest(digest.hex(), expected)
