"""
Token encryption at rest.

AES-256-GCM over individual token strings. The key is the SHA-256 digest of
MICROSOFT_TOKEN_ENCRYPTION_SECRET, derived once when the cipher is built.

Blob layout (base64 encoded):
    nonce (12 bytes) || auth tag (16 bytes) || ciphertext
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from dotenv import load_dotenv

from auth.errors import ConfigurationError, IntegrityError

load_dotenv()

NONCE_LENGTH = 12
TAG_LENGTH = 16
ENCRYPTION_SECRET_ENV = "MICROSOFT_TOKEN_ENCRYPTION_SECRET"


class TokenCipher:
    """Encrypts and decrypts opaque OAuth tokens."""

    def __init__(self, secret: str | None) -> None:
        if not secret:
            raise ConfigurationError(f"{ENCRYPTION_SECRET_ENV} is not set")
        key = hashlib.sha256(secret.encode("utf-8")).digest()
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str | bytes) -> str:
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else bytes(plaintext)
        nonce = os.urandom(NONCE_LENGTH)
        # AESGCM appends the tag; the stored layout puts it before the ciphertext
        sealed = self._aead.encrypt(nonce, data, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt_bytes(self, blob: str | bytes) -> bytes:
        try:
            data = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise IntegrityError("Encrypted token is not valid base64") from exc

        # b64decode ignores the unused trailing bits of the last character
        raw_blob = blob.encode("ascii") if isinstance(blob, str) else bytes(blob)
        if base64.b64encode(data) != raw_blob:
            raise IntegrityError("Encrypted token is not canonical base64")

        if len(data) < NONCE_LENGTH + TAG_LENGTH:
            raise IntegrityError("Encrypted token is truncated")

        nonce = data[:NONCE_LENGTH]
        tag = data[NONCE_LENGTH:NONCE_LENGTH + TAG_LENGTH]
        ciphertext = data[NONCE_LENGTH + TAG_LENGTH:]
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError(
                "Encrypted token failed authentication (tampered data or wrong key)"
            ) from exc

    def decrypt(self, blob: str | bytes) -> str:
        plaintext = self.decrypt_bytes(blob)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise IntegrityError("Decrypted token is not valid UTF-8") from exc


@lru_cache(maxsize=1)
def get_token_cipher() -> TokenCipher:
    """Build the process-wide cipher from the environment."""
    return TokenCipher(os.getenv(ENCRYPTION_SECRET_ENV))


__all__ = [
    "TokenCipher",
    "get_token_cipher",
    "NONCE_LENGTH",
    "TAG_LENGTH",
]
