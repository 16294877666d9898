"""Durable mirror stores for the Query Cache.

Philosophy:
- Best effort: the mirror is a single key-value store, nothing more
- File-based store uses atomic rename and owner-only permissions
- Any read/write failure surfaces as CacheCorruptError; the Query Cache
  decides how to heal

Public API (the "studs"):
    DurableStore: Protocol for the durable key-value mirror
    PurgeableCache: Protocol for platform caches that can only be cleared
    JsonFileStore: JSON file mirror (default: ~/.pinnity/query_cache.json)
    MemoryStore: In-process store (ephemeral sessions, tests)

Stores are synchronous; the Query Cache runs them off the event loop.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from pinnity_freshness.config import DEFAULT_CACHE_FILE
from pinnity_freshness.errors import CacheCorruptError

logger = logging.getLogger(__name__)


class PurgeableCache(Protocol):
    """A platform cache the Query Cache purges on clear()."""

    def clear(self) -> None: ...


class DurableStore(Protocol):
    """Durable key-value mirror.

    Values are JSON-compatible dictionaries. Implementations raise
    CacheCorruptError when stored data cannot be read or written.
    """

    def get(self, key: str) -> dict[str, Any] | None: ...

    def set(self, key: str, value: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self) -> list[str]: ...

    def clear(self) -> None: ...


class MemoryStore:
    """Durable store kept in process memory."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        return self._data.get(key)

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore:
    """Durable store backed by a single JSON file.

    Every write rewrites the file through a temporary file and an atomic
    rename, so a crash leaves either the old or the new content.

    Example:
        >>> store = JsonFileStore(tmp_path / "cache.json")
        >>> store.set("deals/1", {"value": {"id": 1}})
        >>> store.get("deals/1")
        {'value': {'id': 1}}
    """

    def __init__(self, path: Path | None = None):
        """Initialize JSON file store.

        Args:
            path: Custom store path (default: ~/.pinnity/query_cache.json)
        """
        self.path = Path(path).expanduser() if path else DEFAULT_CACHE_FILE

    def _ensure_dir(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Secure permissions (owner only: rwx------)
            os.chmod(self.path.parent, 0o700)
        except OSError as e:
            raise CacheCorruptError(f"Failed to create cache directory: {e}") from e

    def _load(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheCorruptError(f"Failed to read cache mirror {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise CacheCorruptError(
                f"Cache mirror {self.path} holds {type(data).__name__}, expected object"
            )
        return data

    def _save(self, data: dict[str, dict[str, Any]]) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            self._ensure_dir()
            with open(temp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.chmod(temp_path, 0o600)
            temp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                temp_path.unlink()
            raise CacheCorruptError(f"Failed to write cache mirror {self.path}: {e}") from e

        logger.debug(f"Saved {len(data)} mirror entries to {self.path}")

    def get(self, key: str) -> dict[str, Any] | None:
        return self._load().get(key)

    def set(self, key: str, value: dict[str, Any]) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        self._save(data)
        return True

    def keys(self) -> list[str]:
        return list(self._load())

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise CacheCorruptError(f"Failed to remove cache mirror {self.path}: {e}") from e
        logger.debug(f"Cache mirror cleared: {self.path}")


__all__ = ["DurableStore", "JsonFileStore", "MemoryStore", "PurgeableCache"]
