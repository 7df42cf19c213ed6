"""
Credential codecs for the Design Gateway.

A codec reversibly transforms a secret before it reaches persistent storage.
Two implementations are provided:

- ObfuscatingCodec: salted base64. NOT cryptographic. It only keeps secrets
  from showing up as plain substrings in storage dumps or casual inspection.
- FernetCodec: Fernet authenticated encryption (AES-128-CBC + HMAC-SHA256)
  with MultiFernet key rotation. Use this, an OS keychain, or server-side-only
  storage wherever real secret protection is required.
"""

import base64
import binascii
from typing import List, Optional, Protocol, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet


class CodecError(Exception):
    """Base exception for codec operations."""

    pass


class DecodeError(CodecError):
    """Raised when stored data cannot be turned back into a secret."""

    pass


class CredentialCodec(Protocol):
    """Reversible secret transform applied before persistence."""

    def encode(self, secret: str) -> str:
        ...

    def decode(self, stored: str) -> str:
        ...


class ObfuscatingCodec:
    """
    Salted base64 obfuscation.

    Stored form is ``base64(secret + salt)``. Decoding verifies and strips the
    salt suffix, so data written by another codec or corrupted on disk is
    rejected instead of returning garbage.
    """

    DEFAULT_SALT = "design-gateway-key"

    def __init__(self, salt: str = DEFAULT_SALT):
        if not salt:
            raise CodecError("Obfuscation salt cannot be empty")
        self.salt = salt

    def encode(self, secret: str) -> str:
        if not secret:
            raise CodecError("Cannot encode empty secret")
        return base64.b64encode((secret + self.salt).encode("utf-8")).decode("ascii")

    def decode(self, stored: str) -> str:
        if not stored:
            raise DecodeError("Cannot decode empty value")

        try:
            decoded = base64.b64decode(stored.encode("ascii"), validate=True).decode(
                "utf-8"
            )
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise DecodeError(f"Stored value is not valid obfuscated data: {type(e).__name__}") from e

        if not decoded.endswith(self.salt) or len(decoded) == len(self.salt):
            raise DecodeError("Stored value does not carry the expected salt")

        return decoded[: -len(self.salt)]


class FernetCodec:
    """
    Fernet encryption with automatic key rotation support.

    The first key encrypts; every key is tried on decryption, so old keys can
    be appended during rotation and removed once data has been re-encoded.

    Usage:
        codec = FernetCodec([generate_key()])
        stored = codec.encode("figd_...")
        secret = codec.decode(stored)
    """

    def __init__(self, keys: Sequence[str]):
        if not keys:
            raise CodecError("At least one Fernet key is required")

        fernets: List[Fernet] = []
        for key_b64 in keys:
            key_b64 = key_b64.strip()
            if not key_b64:
                continue
            try:
                fernets.append(Fernet(key_b64.encode()))
            except (ValueError, TypeError, binascii.Error) as e:
                raise CodecError(f"Invalid Fernet key: {e}") from e

        if not fernets:
            raise CodecError("At least one Fernet key is required")

        self._multi_fernet = MultiFernet(fernets)
        self._key_count = len(fernets)

    @classmethod
    def from_key_string(cls, keys: str) -> "FernetCodec":
        """Build from a comma-separated key list (primary key first)."""
        return cls([k for k in keys.split(",") if k.strip()])

    def encode(self, secret: str) -> str:
        if not secret:
            raise CodecError("Cannot encode empty secret")
        return self._multi_fernet.encrypt(secret.encode("utf-8")).decode("ascii")

    def decode(self, stored: str) -> str:
        if not stored:
            raise DecodeError("Cannot decode empty value")

        try:
            return self._multi_fernet.decrypt(stored.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise DecodeError(
                f"Failed to decrypt with any of the {self._key_count} available keys"
            ) from e
        except UnicodeError as e:
            raise DecodeError(f"Decrypted value is not valid text: {e}") from e

    def rotate(self, stored: str) -> str:
        """Re-encrypt data with the current primary key."""
        return self._multi_fernet.rotate(stored.encode("ascii")).decode("ascii")

    def get_key_count(self) -> int:
        return self._key_count


def generate_key() -> str:
    """Generate a new base64 Fernet key suitable for CREDENTIAL_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


def build_codec(encryption_keys: Optional[str], salt: str) -> CredentialCodec:
    """Pick FernetCodec when keys are configured, ObfuscatingCodec otherwise."""
    if encryption_keys:
        return FernetCodec.from_key_string(encryption_keys)
    return ObfuscatingCodec(salt)
