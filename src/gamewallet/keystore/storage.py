"""Byte storage collaborators for encrypted keystores.

The vault never touches the file system itself; it hands opaque bytes to
one of these stores.
"""

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from gamewallet.errors import InputError

logger = logging.getLogger(__name__)

KEY_PREFIX = "gamewallet_"

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_RE.match(key) or key.startswith("."):
        raise InputError(f"Invalid storage key: {key!r}")
    return key


class KeyValueStore(ABC):
    """Abstract byte store keyed by string."""

    @abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Return stored bytes or None when the key is absent."""
        pass

    @abstractmethod
    def write(self, key: str, data: bytes) -> None:
        """Store bytes under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was deleted."""
        pass

    def exists(self, key: str) -> bool:
        return self.read(key) is not None


class MemoryStore(KeyValueStore):
    """In-process store, used by tests and short-lived tools."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    def read(self, key: str) -> Optional[bytes]:
        return self._data.get(_check_key(key))

    def write(self, key: str, data: bytes) -> None:
        self._data[_check_key(key)] = bytes(data)

    def delete(self, key: str) -> bool:
        return self._data.pop(_check_key(key), None) is not None

    def __len__(self) -> int:
        return len(self._data)


class FileStore(KeyValueStore):
    """One file per key under a directory.

    Writes go to a temp file in the same directory and are moved into place,
    so a crash never leaves a half-written keystore. Files are created 0600.
    """

    def __init__(self, directory: Union[str, Path], prefix: str = KEY_PREFIX):
        self.directory = Path(directory)
        self.prefix = prefix

    def _path(self, key: str) -> Path:
        return self.directory / f"{self.prefix}{_check_key(key)}.json"

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        self.directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug(f"Wrote keystore file {path.name}")

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted keystore file {path.name}")
        return True

    def keys(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(
            p.name[len(self.prefix):-len(".json")]
            for p in self.directory.glob(f"{self.prefix}*.json")
        )
