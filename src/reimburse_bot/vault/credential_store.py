"""
Per-user Harvest credentials stored as one JSON document.

File layout (keys kept compatible with existing deployments):

    {
      "U012345": {
        "apiToken": "aes256gcm:...",
        "accountId": "aes256gcm:...",
        "updatedAt": "2024-05-01T09:30:00+00:00"
      }
    }
"""

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .crypto import DecryptionError, EnvelopeCipher, VaultError, is_encrypted

logger = logging.getLogger(__name__)

ENCRYPTED_FIELDS = ("apiToken", "accountId")


@dataclass(frozen=True)
class Credentials:
    """Decrypted Harvest credentials for one user."""

    api_token: str
    account_id: str
    updated_at: str | None = None


class CredentialVault:
    """
    Encrypted credential storage.

    Responsibilities:
    - Decrypt credentials for the workflow (absence is a normal outcome)
    - Encrypt and persist new credentials
    - Re-encrypt legacy plaintext entries in place
    """

    def __init__(self, path: Path | str, cipher: EnvelopeCipher):
        """
        Initialize vault.

        Args:
            path: JSON document holding all users' records
            cipher: Envelope cipher used for both fields
        """
        self.path = Path(path)
        self.cipher = cipher
        self._lock = threading.Lock()

    def _load(self, strict: bool = False) -> dict:
        """
        Read the credentials document.

        Reads treat an unreadable file as empty. Writers pass strict=True so
        other users' records are never overwritten with an empty document.

        Raises:
            VaultError: In strict mode, if the file exists but cannot be parsed
        """
        if not self.path.exists():
            return {}
        try:
            content = self.path.read_text(encoding="utf-8").strip()
            data = json.loads(content) if content else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error loading credentials file %s: %s", self.path, e)
            if strict:
                raise VaultError(f"Credentials file {self.path} is unreadable: {e}") from e
            return {}
        if not isinstance(data, dict):
            logger.error("Credentials file %s does not hold a JSON object", self.path)
            if strict:
                raise VaultError(f"Credentials file {self.path} does not hold a JSON object")
            return {}
        return data

    def _save(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def _reveal(self, value: str | None) -> str | None:
        if not value or not is_encrypted(value):
            # Legacy plaintext value not migrated yet
            return value
        return self.cipher.decrypt(value)

    def get(self, user_id: str) -> Credentials | None:
        """
        Get decrypted credentials for a user.

        Returns:
            Credentials, or None if the user has not configured any or
            the stored record cannot be decrypted.

        Raises:
            VaultConfigurationError: If no encryption secret is configured
        """
        record = self._load().get(user_id)
        if not record:
            return None

        try:
            api_token = self._reveal(record.get("apiToken"))
            account_id = self._reveal(record.get("accountId"))
        except DecryptionError as e:
            logger.error("Error decrypting credentials for user %s: %s", user_id, e)
            return None

        if not api_token or not account_id:
            return None

        return Credentials(
            api_token=api_token,
            account_id=account_id,
            updated_at=record.get("updatedAt"),
        )

    def put(self, user_id: str, api_token: str, account_id: str) -> None:
        """
        Encrypt and store credentials for a user.

        Raises:
            VaultError: If the existing credentials file cannot be parsed
        """
        record = {
            "apiToken": self.cipher.encrypt(api_token),
            "accountId": self.cipher.encrypt(account_id),
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            data = self._load(strict=True)
            data[user_id] = record
            self._save(data)
        logger.info("Credentials saved for user %s", user_id)

    def has_credentials(self, user_id: str) -> bool:
        """Check whether a usable credential record exists."""
        return self.get(user_id) is not None

    def migrate_legacy(self) -> int:
        """
        Encrypt any plaintext values left by older versions.

        Detection uses the envelope tag only; values are never trial-decrypted.
        Running it again after a successful pass changes nothing.

        Returns:
            Number of values that were encrypted
        """
        migrated = 0
        with self._lock:
            data = self._load(strict=True)
            for record in data.values():
                if not isinstance(record, dict):
                    continue
                for field_name in ENCRYPTED_FIELDS:
                    value = record.get(field_name)
                    if value and not is_encrypted(value):
                        record[field_name] = self.cipher.encrypt(value)
                        migrated += 1

            if migrated:
                self._save(data)
                logger.info("Migrated %d plaintext credential values to encrypted format", migrated)

        return migrated

