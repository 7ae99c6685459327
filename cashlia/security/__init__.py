"""Password hashing and payload encryption."""

from cashlia.security.encryption import PayloadCipher
from cashlia.security.passwords import hash_password, verify_password

__all__ = ["PayloadCipher", "hash_password", "verify_password"]
