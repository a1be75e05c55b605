"""Encryption at rest for stored cluster passwords (Fernet: AES-128-CBC + HMAC).

Encrypted values carry a versioned prefix so the format can evolve and so
plaintext values written before a key was configured are recognisable.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecretCipher:
    """Encrypts and decrypts secrets; a passthrough when no key is configured.

    Format: ``enc:fernet:v1:<token>``
    """

    VERSION_PREFIX = "enc:fernet:v1:"

    def __init__(self, key: str = "") -> None:
        key = key.strip()
        self._fernet: Fernet | None = None
        if not key:
            logger.warning("No secret encryption key configured - cluster passwords are stored in plaintext")
            return
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as exc:
            raise ValueError(f"SECRET_ENCRYPTION_KEY must be a valid Fernet key: {exc}") from exc

    @property
    def active(self) -> bool:
        return self._fernet is not None

    def __repr__(self) -> str:
        return f"<SecretCipher active={self.active}>"

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None:
            return plaintext
        token = self._fernet.encrypt(plaintext.encode()).decode()
        return f"{self.VERSION_PREFIX}{token}"

    def decrypt(self, stored: str) -> str:
        if not stored.startswith("enc:"):
            # Written before a key was configured.
            return stored
        if not stored.startswith(self.VERSION_PREFIX):
            raise ValueError(f"Unsupported secret format: {stored.split(':', 3)[:3]}")
        if self._fernet is None:
            raise ValueError("Encrypted secret found but SECRET_ENCRYPTION_KEY is not configured")
        try:
            return self._fernet.decrypt(stored[len(self.VERSION_PREFIX):].encode()).decode()
        except InvalidToken as exc:
            raise ValueError("Secret could not be decrypted - wrong SECRET_ENCRYPTION_KEY?") from exc
