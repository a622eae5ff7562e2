"""
Field-level encryption for sensitive logbook columns.

Values are JSON-serialised and sealed with Fernet. Each stored row records the
encryption version it was written with so older rows stay readable.
"""

import base64
import json
import logging
from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken

from supplement_tracker.config.settings import settings
from supplement_tracker.core.exceptions import StorageFailure

logger = logging.getLogger(__name__)

CURRENT_ENCRYPTION_VERSION = "fernet_v1"
# Rows written before Fernet: base64(JSON), no key
LEGACY_ENCRYPTION_VERSION = "secure_logbook_encryption_v1"

SENSITIVE_FIELDS = ("notes", "verification_data")


class FieldCipher:
    def __init__(self, key: str | bytes):
        if isinstance(key, str):
            key = key.encode()
        self._fernet = Fernet(key)

    @property
    def version(self) -> str:
        return CURRENT_ENCRYPTION_VERSION

    def encrypt_value(self, value: Any) -> str:
        payload = json.dumps(value, separators=(",", ":"), sort_keys=True).encode()
        return self._fernet.encrypt(payload).decode()

    def decrypt_value(self, token: str, version: Optional[str] = None) -> Any:
        version = version or CURRENT_ENCRYPTION_VERSION
        try:
            if version == LEGACY_ENCRYPTION_VERSION:
                raw = base64.b64decode(token.encode(), validate=True)
            elif version == CURRENT_ENCRYPTION_VERSION:
                raw = self._fernet.decrypt(token.encode())
            else:
                raise StorageFailure(f"Unsupported encryption version: {version}")
            return json.loads(raw)
        except (InvalidToken, ValueError) as e:
            logger.error(f"Failed to decrypt logbook field ({version}): {e}")
            raise StorageFailure("Stored entry could not be decrypted")

    def encrypt_fields(self, row: Dict[str, Any], fields: Iterable[str] = SENSITIVE_FIELDS) -> Dict[str, Any]:
        """Return a copy of row with the given fields sealed. None stays None."""
        encrypted = dict(row)
        for field in fields:
            if encrypted.get(field) is not None:
                encrypted[field] = self.encrypt_value(encrypted[field])
        return encrypted

    def decrypt_fields(
        self,
        row: Dict[str, Any],
        version: Optional[str] = None,
        fields: Iterable[str] = SENSITIVE_FIELDS,
    ) -> Dict[str, Any]:
        decrypted = dict(row)
        for field in fields:
            value = decrypted.get(field)
            if isinstance(value, str):
                decrypted[field] = self.decrypt_value(value, version)
        return decrypted


def get_field_cipher() -> FieldCipher:
    if not settings.logbook_encryption_key:
        raise RuntimeError("LOGBOOK_ENCRYPTION_KEY is not configured")
    return FieldCipher(settings.logbook_encryption_key)
