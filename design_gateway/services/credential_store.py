"""
Credential store for user-supplied provider tokens.

Secrets are passed through a CredentialCodec before they reach storage and
are never logged. With the default ObfuscatingCodec this is NOT real
protection: it only stops tokens showing up as plain text in storage dumps.
Configure CREDENTIAL_ENCRYPTION_KEY (FernetCodec), an OS keychain, or
server-side-only storage wherever real secret protection is required.
"""

from typing import Optional

from design_gateway.errors import InvalidInputError
from design_gateway.utils.crypto import CredentialCodec, DecodeError, ObfuscatingCodec
from design_gateway.utils.logging import get_logger
from design_gateway.utils.storage import KeyValueStorage, StorageError

logger = get_logger(__name__)

CREDENTIAL_KEY_PREFIX = "credential:"


class CredentialStore:
    """
    Exclusive owner of persisted secrets.

    Usage:
        store = CredentialStore(MemoryStorage())
        store.store("figma-token", "figd_...")
        token = store.retrieve("figma-token")
    """

    def __init__(
        self, storage: KeyValueStorage, codec: Optional[CredentialCodec] = None
    ):
        self.storage = storage
        self.codec = codec or ObfuscatingCodec()

    @staticmethod
    def _storage_key(name: str) -> str:
        return f"{CREDENTIAL_KEY_PREFIX}{name}"

    @staticmethod
    def _require_name(name: str) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("Credential name is required")
        return name.strip()

    def store(self, name: str, secret: str) -> None:
        """
        Encode and persist a secret under a logical name.

        Raises:
            InvalidInputError: If the name or secret is empty
            StorageError: If the backing medium cannot be written
        """
        name = self._require_name(name)
        if not isinstance(secret, str) or not secret.strip():
            raise InvalidInputError("Cannot store an empty credential")

        self.storage.set(self._storage_key(name), self.codec.encode(secret.strip()))
        logger.info("Credential stored", key_name=name)

    def retrieve(self, name: str) -> Optional[str]:
        """
        Return the decoded secret, or None if it is missing or unreadable.

        Unreadable data is logged by name and error type only.
        """
        name = self._require_name(name)

        try:
            stored = self.storage.get(self._storage_key(name))
        except StorageError as e:
            logger.error(
                "Failed to read credential storage",
                key_name=name,
                error_type=type(e).__name__,
            )
            return None

        if not stored:
            return None

        try:
            return self.codec.decode(stored)
        except DecodeError as e:
            logger.warning(
                "Stored credential could not be decoded",
                key_name=name,
                error_type=type(e).__name__,
            )
            return None

    def remove(self, name: str) -> None:
        name = self._require_name(name)
        self.storage.remove(self._storage_key(name))
        logger.info("Credential removed", key_name=name)

    def has(self, name: str) -> bool:
        return self.retrieve(name) is not None
