"""Durable record storage abstraction.

Responsibilities:
- Define the key/value contract used for run snapshots and voice assignments.
- Provide filesystem and in-memory record stores.
- Write JSON artifacts deterministically for CLI outputs.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote


class DurableStore(Protocol):
    """Key/value record store with read, write, and delete by key."""

    def get(self, key: str) -> bytes | None:
        """Return stored bytes for a key, or `None` when absent."""

    def put(self, key: str, data: bytes) -> None:
        """Store bytes under a key, replacing any previous value."""

    def delete(self, key: str) -> None:
        """Delete a key; deleting a missing key is a no-op."""


class FileRecordStore:
    """Filesystem-backed record store writing one file per key."""

    _SUFFIX = ".record"

    def __init__(self, root: Path) -> None:
        """Initialize the store with a root directory."""

        self.root = root

    def _path_for(self, key: str) -> Path:
        """Map a key to a file path with path-unsafe characters escaped."""

        if not key:
            raise ValueError("Record key must be a non-empty string.")
        return self.root / f"{quote(key, safe='')}{self._SUFFIX}"

    def get(self, key: str) -> bytes | None:
        """Read record bytes, returning `None` when the record does not exist."""

        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def put(self, key: str, data: bytes) -> None:
        """Write record bytes atomically via a temporary sibling file."""

        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        temporary = path.with_name(f"{path.name}.tmp")
        temporary.write_bytes(data)
        os.replace(temporary, path)

    def delete(self, key: str) -> None:
        """Remove a record file when present."""

        self._path_for(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        """Return stored keys in sorted order."""

        if not self.root.exists():
            return []
        return sorted(
            unquote(path.name[: -len(self._SUFFIX)])
            for path in self.root.glob(f"*{self._SUFFIX}")
        )


class MemoryRecordStore:
    """In-process record store used by tests and embedded callers."""

    def __init__(self) -> None:
        """Initialize empty record storage."""

        self.records: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        """Return stored bytes for a key, or `None`."""

        return self.records.get(key)

    def put(self, key: str, data: bytes) -> None:
        """Store bytes under a key."""

        self.records[key] = bytes(data)

    def delete(self, key: str) -> None:
        """Delete a key when present."""

        self.records.pop(key, None)


def save_json(path: Path, payload: dict[str, object]) -> Path:
    """Save a JSON-serializable payload with stable formatting and return the path."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
        encoding="utf-8",
    )
    return path
