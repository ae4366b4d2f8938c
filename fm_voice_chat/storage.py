"""Local key-value storage for serialized records.

Each key holds one self-contained blob. ``JsonFileKeyValueStore`` keeps one
file per key under the app data directory and replaces it atomically.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


def _check_key(key: str) -> str:
    if not _KEY_PATTERN.fullmatch(key):
        raise ValueError(f"invalid storage key: {key!r}")
    return key


class JsonFileKeyValueStore:
    """Stores each key as ``<directory>/<key>.json``."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        return self.directory / f"{_check_key(key)}.json"

    def get(self, key: str) -> bytes | None:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"JsonFileKeyValueStore(directory={self.directory!r})"


class MemoryKeyValueStore:
    """Process-local store, used for ephemeral sessions and tests."""

    def __init__(self, initial: dict[str, bytes] | None = None):
        self._data: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._data.get(_check_key(key))

    def set(self, key: str, value: bytes) -> None:
        self._data[_check_key(key)] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(_check_key(key), None)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"MemoryKeyValueStore(keys={sorted(self._data)!r})"
