"""AES-256-GCM encryption for organization-supplied provider credentials.

Wire format: ``base64(iv[12] + ciphertext + tag[16])``.  ``AESGCM.encrypt``
already returns ``ciphertext + tag``, so the IV is simply prepended.

The key is the first 32 bytes of the ``ENCRYPTION_KEY`` setting, which must
be at least 32 characters long.
"""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from kbrag.utils.errors import ConfigurationError

_IV_LENGTH = 12
_TAG_LENGTH = 16
_KEY_LENGTH = 32


class KeyEncryptor:
    """Encrypts and decrypts BYOK / self-hosted API keys."""

    def __init__(self, secret: str) -> None:
        if not secret or len(secret) < _KEY_LENGTH:
            raise ConfigurationError(
                message=f"ENCRYPTION_KEY must be at least {_KEY_LENGTH} characters",
            )
        self._aesgcm = AESGCM(secret.encode("utf-8")[:_KEY_LENGTH])

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(_IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(iv + sealed).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises
        ------
        ConfigurationError
            If the token is malformed or was sealed with a different key.
        """
        try:
            raw = base64.b64decode(token, validate=True)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(message="Encrypted key is not valid base64") from exc
        if len(raw) < _IV_LENGTH + _TAG_LENGTH:
            raise ConfigurationError(message="Encrypted key is truncated")
        iv, sealed = raw[:_IV_LENGTH], raw[_IV_LENGTH:]
        try:
            return self._aesgcm.decrypt(iv, sealed, None).decode("utf-8")
        except InvalidTag as exc:
            raise ConfigurationError(
                message="Encrypted key could not be decrypted with the configured ENCRYPTION_KEY"
            ) from exc
