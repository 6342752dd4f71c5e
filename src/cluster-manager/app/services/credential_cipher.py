"""Encryption of stored cluster credentials.

Credential blobs are encrypted with AES-256-GCM before they reach the store.
Stored layout is ``nonce (12 bytes) || ciphertext``.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from kubefleet.errors import InvalidConfigError
from kubefleet.observability import get_logger

logger = get_logger(__name__)

NONCE_SIZE = 12  # 96-bit nonce


class CredentialCipher:
    """AES-256-GCM cipher for credential blobs at rest."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ValueError("Credential encryption key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_base64(cls, encoded_key: str) -> CredentialCipher:
        """Build a cipher from a base64 encoded key."""
        try:
            key = base64.b64decode(encoded_key, validate=True)
        except binascii.Error as e:
            raise ValueError("Credential encryption key is not valid base64") from e
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        """Generate a new base64 encoded key."""
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt a credential blob."""
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, None)

    def decrypt(self, stored: bytes) -> bytes:
        """Decrypt a stored credential blob.

        Raises:
            InvalidConfigError: If the blob was not produced with this key
        """
        nonce, ciphertext = stored[:NONCE_SIZE], stored[NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise InvalidConfigError("Stored credentials cannot be decrypted with the configured key") from e


def build_cipher(encoded_key: str | None) -> CredentialCipher | None:
    """Build the configured cipher, or None when encryption is off."""
    if not encoded_key:
        logger.warning("No credential encryption key configured, cluster credentials are stored unencrypted")
        return None
    return CredentialCipher.from_base64(encoded_key)
