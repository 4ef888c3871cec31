"""
Credential Vault.

Stores per-user Harvest API credentials encrypted at rest (AES-256-GCM),
with a one-time migration for plaintext records.
"""

from .credential_store import Credentials, CredentialVault
from .crypto import (
    DecryptionError,
    EnvelopeCipher,
    VaultConfigurationError,
    VaultError,
    generate_secret,
    is_encrypted,
)

__all__ = [
    "CredentialVault",
    "Credentials",
    "EnvelopeCipher",
    "VaultError",
    "VaultConfigurationError",
    "DecryptionError",
    "generate_secret",
    "is_encrypted",
]
