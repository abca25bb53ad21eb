"""Refresh-token encryption at rest.

Two modes, picked once at construction:

- **secure**: Fernet (AES-128-CBC + HMAC) with a key kept in a ``0600`` key
  file next to the token store.
- **fallback**: plain base64 of the UTF-8 token.  This only keeps tokens from
  being readable at a glance; it is NOT encryption.

Decryption never raises: corrupt data, a wrong key, or an encoding mismatch
all come back as ``None`` so callers can treat the account as unusable.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class TokenCipher:
    """Encrypt/decrypt refresh tokens for the credential vault."""

    def __init__(self, *, secure_storage_available: bool, key: bytes | None = None) -> None:
        if secure_storage_available and not key:
            raise ValueError("a Fernet key is required when secure storage is available")
        self._fernet = Fernet(key) if secure_storage_available else None

    @property
    def secure_storage_available(self) -> bool:
        return self._fernet is not None

    @classmethod
    def insecure(cls) -> TokenCipher:
        return cls(secure_storage_available=False)

    @classmethod
    def from_key_file(cls, path: Path) -> TokenCipher:
        """Build a secure cipher, creating the key file on first use."""
        return cls(secure_storage_available=True, key=load_or_create_key(path))

    def encrypt(self, token: str) -> str:
        if self._fernet is not None:
            return self._fernet.encrypt(token.encode("utf-8")).decode("ascii")
        return base64.b64encode(token.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str | None:
        try:
            if self._fernet is not None:
                return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
            return base64.b64decode(ciphertext.encode("ascii"), validate=True).decode("utf-8")
        except (InvalidToken, binascii.Error, UnicodeError, ValueError, TypeError, AttributeError):
            return None


def load_or_create_key(path: Path) -> bytes:
    """Read the Fernet key at *path*, generating and saving one when missing."""
    path = Path(path)
    try:
        key = path.read_bytes().strip()
    except FileNotFoundError:
        key = b""
    if key:
        return key

    path.parent.mkdir(parents=True, exist_ok=True)
    key = Fernet.generate_key()
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(key)
    logger.info("Generated new token encryption key at %s", path)
    return key
