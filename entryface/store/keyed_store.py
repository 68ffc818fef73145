from __future__ import annotations

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

"""Persistent keyed store.

The core only needs get/set of JSON-serializable values by string key, with
read-modify-write semantics and no cross-key atomicity. Two implementations:

- MemoryStore: in-process dict (tests, dry runs)
- JsonFileStore: one JSON document per key under a directory; each set() is
  a whole-document replace (temp file + os.replace)
"""

__all__ = [
    "StoreError",
    "KeyedStore",
    "MemoryStore",
    "JsonFileStore",
    "PageKeys",
    "KEY_PREFIX",
]

KEY_PREFIX = "lf"

# 255 バイトのファイル名上限に対して余裕を持たせる
MAX_FILENAME_STEM = 200


class StoreError(Exception):
    pass


class KeyedStore(Protocol):
    """Port for the keyed read/write store."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Dict-backed store. Values are JSON round-tripped on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StoreError(f"value for '{key}' is not JSON serializable: {e}") from e

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Directory-backed store, one ``<quoted key>.json`` file per key.

    Keys whose quoted form is too long for a file name are stored as
    ``<quoted prefix>-<sha256 of key>.json`` instead.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        stem = quote(key, safe='')
        if len(stem) > MAX_FILENAME_STEM:
            digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
            stem = f"{stem[:MAX_FILENAME_STEM - len(digest) - 1]}-{digest}"
        return self.directory / f"{stem}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path_for(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StoreError(f"corrupt store entry '{key}' ({path}): {e}") from e

    def set(self, key: str, value: Any) -> None:
        try:
            text = json.dumps(value, ensure_ascii=False, indent=1)
        except (TypeError, ValueError) as e:
            raise StoreError(f"value for '{key}' is not JSON serializable: {e}") from e
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StoreError(f"cannot write store entry '{key}' ({path}): {e}") from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class PageKeys:
    """Storage keys namespaced by page slug."""
    page: str

    @property
    def catalog(self) -> str:
        return f"{KEY_PREFIX}.{self.page}.catalog"

    @property
    def sequences(self) -> str:
        return f"{KEY_PREFIX}.{self.page}.sequences"

    def entry(self, seq_key: str) -> str:
        """Key of the per-sequence Block list."""
        return f"{KEY_PREFIX}.{self.page}.entry.{seq_key}"
