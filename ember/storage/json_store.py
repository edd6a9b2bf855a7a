"""Simple JSON-file key/value store shared by Ember's local stores."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

from ember.core.errors import StorageError


class JsonStore:
    """
    One JSON object on disk, read and rewritten whole on every access.
    Writes go to a sibling ``.tmp`` file that then replaces the original.

    A missing or corrupt file reads as an empty mapping.

    Args:
        path: File that holds the JSON object.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._read_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)

    def clear(self) -> None:
        with self._lock:
            self._write_all({})

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            raise StorageError(f"Could not write {self._path}: {exc}") from exc
