"""
Payload Encryption

DESIGN DECISION: Everything sent to a remote backend is encrypted with a
key that never leaves the device. Fernet gives authenticated encryption
(AES-CBC + HMAC-SHA256), so a tampered or foreign payload fails loudly
instead of decoding to garbage.

The key is generated on first use and kept in the preference store.
"""

import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from cashlia.errors import DecryptionError
from cashlia.store.preferences import PreferenceKey, PreferenceStore


class PayloadCipher:
    """Encrypts and decrypts sync payloads with the install's key."""

    def __init__(self, preferences: PreferenceStore):
        self._preferences = preferences
        self._fernet: Optional[Fernet] = None

    async def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            key = await self._preferences.get(PreferenceKey.ENCRYPTION_KEY)
            if not key:
                key = Fernet.generate_key().decode("ascii")
                await self._preferences.set(PreferenceKey.ENCRYPTION_KEY, key)
            self._fernet = Fernet(key.encode("ascii"))
        return self._fernet

    async def encrypt(self, plaintext: str) -> str:
        fernet = await self._get_fernet()
        return fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises:
            DecryptionError: If the token is malformed, tampered with,
                or was encrypted under another key
        """
        fernet = await self._get_fernet()
        try:
            return fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            raise DecryptionError("Payload could not be decrypted") from e

    async def encrypt_payload(self, payload: dict[str, Any]) -> str:
        return await self.encrypt(json.dumps(payload, sort_keys=True))

    async def decrypt_payload(self, ciphertext: str) -> dict[str, Any]:
        text = await self.decrypt(ciphertext)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecryptionError("Decrypted payload is not JSON") from e
        if not isinstance(payload, dict):
            raise DecryptionError("Decrypted payload is not an object")
        return payload
