"""
Small durable key-value storage for gateway state.

The credential store and cost governor persist through the KeyValueStorage
Protocol so the persistence medium can be swapped (memory for tests, a JSON
file for local use, an encrypted keystore elsewhere) without touching the
obfuscation or cost logic.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from design_gateway.utils.logging import get_logger

logger = get_logger(__name__)


class KeyValueStorage(Protocol):
    """String-keyed storage of string values."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    def remove(self, key: str) -> None:
        """Delete ``key``; removing an absent key is a no-op."""
        ...


class StorageError(Exception):
    """Raised when the backing medium cannot be read or written."""

    pass


class MemoryStorage:
    """In-process storage; state is lost when the process exits."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())


class JsonFileStorage:
    """
    Storage backed by a single JSON object on disk.

    Every write replaces the file atomically (write to a temp file in the same
    directory, then rename) so a crash mid-write never leaves a truncated file.
    The file is created with owner-only permissions.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StorageError(f"Storage file {self.path} is not valid JSON: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read storage file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Storage file {self.path} must contain a JSON object")

        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                "Failed to write storage file",
                path=str(self.path),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageError(f"Cannot write storage file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()
