"""
Authenticated symmetric encryption for credentials at rest.

Envelope format (all parts hex encoded):

    aes256gcm:<nonce>:<auth tag>:<ciphertext>

The key is SHA-256 of the configured secret, so any secret length works.
"""

import hashlib
import logging
import os
import secrets
import threading
from collections.abc import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

ALGORITHM_TAG = "aes256gcm"
NONCE_LENGTH = 16
AUTH_TAG_LENGTH = 16


class VaultError(Exception):
    """Base exception for credential vault errors."""

    pass


class VaultConfigurationError(VaultError):
    """The encryption secret is not configured."""

    pass


class DecryptionError(VaultError):
    """Envelope is malformed, truncated or fails authentication."""

    pass


def is_encrypted(value: str | None) -> bool:
    """Check whether a stored value carries the envelope tag."""
    return bool(value) and value.startswith(f"{ALGORITHM_TAG}:")


def generate_secret() -> str:
    """Generate a random secret suitable for ENCRYPTION_KEY."""
    return secrets.token_hex(32)


class EnvelopeCipher:
    """
    AES-256-GCM cipher producing self-describing envelopes.

    The key is derived lazily on first use and cached for the lifetime of the
    cipher. A missing secret is only an error once something needs the key.
    """

    def __init__(self, secret_provider: Callable[[], str | None]):
        """
        Initialize cipher.

        Args:
            secret_provider: Returns the configured secret (or None)
        """
        self._secret_provider = secret_provider
        self._key: bytes | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_secret(cls, secret: str | None) -> "EnvelopeCipher":
        """Create a cipher for a fixed secret value."""
        return cls(lambda: secret)

    def _get_key(self) -> bytes:
        if self._key is None:
            with self._lock:
                if self._key is None:
                    secret = self._secret_provider()
                    if not secret:
                        raise VaultConfigurationError(
                            "ENCRYPTION_KEY is not configured; cannot read or store credentials"
                        )
                    self._key = hashlib.sha256(secret.encode("utf-8")).digest()
                    logger.debug("Derived credential encryption key")
        return self._key

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string into an envelope.

        Empty strings are returned unchanged.
        """
        if not plaintext:
            return plaintext

        nonce = os.urandom(NONCE_LENGTH)
        sealed = AESGCM(self._get_key()).encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

        return f"{ALGORITHM_TAG}:{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, envelope: str) -> str:
        """
        Decrypt an envelope produced by encrypt().

        Raises:
            DecryptionError: If the envelope is malformed or was tampered with
        """
        parts = envelope.split(":") if envelope else []
        if len(parts) != 4 or parts[0] != ALGORITHM_TAG:
            raise DecryptionError("Invalid encrypted format")

        try:
            nonce = bytes.fromhex(parts[1])
            tag = bytes.fromhex(parts[2])
            ciphertext = bytes.fromhex(parts[3])
        except ValueError as e:
            raise DecryptionError(f"Invalid encrypted format: {e}") from e

        if len(nonce) != NONCE_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            raise DecryptionError("Invalid encrypted format: bad nonce or tag length")

        try:
            plaintext = AESGCM(self._get_key()).decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication failed") from e

        return plaintext.decode("utf-8")
