"""Query Cache - keyed response cache with a durable mirror.

Philosophy:
- Memory is the source of truth for reads; the mirror is best effort
- Hierarchical keys ("deals/42/reviews") so whole families drop at once
- Corrupt mirror data is healed (purge + continue), never surfaced
- Full clear runs once per session; repeated calls are no-ops

Public API (the "studs"):
    QueryCache: Keyed cache with targeted invalidation and one-time clear
    CacheEntry: Read-only view of a cached value and its status
    make_cache_key: Join key segments with "/"
    key_in_namespace: Hierarchical prefix match
    Loaded: Loader result carrying its own cache status

Architecture:
- Reads (get, needs_refresh) are synchronous and memory-only
- Writes update memory first, then await the mirror in a worker thread
- Mirror operations are serialized by an asyncio.Lock (FIFO)
- restore() loads mirrored entries as served-from-cache (is_cached=True)
- fetch() reads through: load when online and stale, else serve what is cached
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from pinnity_freshness.cache.persistence import DurableStore, PurgeableCache
from pinnity_freshness.cache.staleness import StalenessThresholds
from pinnity_freshness.cache.status import CacheStatus, fresh_status
from pinnity_freshness.errors import CacheCorruptError, CacheMissError
from pinnity_freshness.observability import (
    LoggingSink,
    ObservabilitySink,
    report_error,
    safe_error_message,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_SEPARATOR = "/"


def make_cache_key(*parts: Any) -> str:
    """Create a hierarchical cache key.

    Example:
        >>> make_cache_key("deals", 42, "reviews")
        'deals/42/reviews'
    """
    segments = [str(part).strip(KEY_SEPARATOR) for part in parts]
    return KEY_SEPARATOR.join(segment for segment in segments if segment)


def key_in_namespace(key: str, prefix: str) -> bool:
    """Check whether ``key`` equals ``prefix`` or lives below it.

    Matching is by whole segments: "deals" covers "deals/1" but not
    "dealsfeed/1".
    """
    prefix = prefix.rstrip(KEY_SEPARATOR)
    return key == prefix or key.startswith(prefix + KEY_SEPARATOR)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached value with its provenance.

    Attributes:
        key: Cache key
        value: Cached value
        status: Provenance of the value
    """

    key: str
    value: T
    status: CacheStatus

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "status": self.status.to_dict()}

    @classmethod
    def from_dict(cls, key: str, data: Mapping[str, Any]) -> "CacheEntry[Any]":
        """Parse a mirrored record.

        Raises:
            CacheCorruptError: If the record is malformed
        """
        if not isinstance(data, Mapping) or "value" not in data or "status" not in data:
            raise CacheCorruptError(f"Malformed cache record for '{key}'")
        return cls(key=key, value=data["value"], status=CacheStatus.from_dict(data["status"]))


@dataclass(frozen=True)
class Loaded:
    """Loader result that carries its own cache status (e.g. from response headers)."""

    value: Any
    status: CacheStatus | None = None


Loader = Callable[[], Awaitable[Any]]


class QueryCache:
    """Keyed response cache shared by the application.

    Example:
        >>> cache = QueryCache(mirror=JsonFileStore())
        >>> await cache.set("deals/1", {"title": "2-for-1 coffee"})
        >>> entry = cache.get("deals/1")
        >>> if entry and not cache.needs_refresh("deals/1"):
        ...     render(entry.value)
        >>> await cache.invalidate_by_prefix("deals")
    """

    def __init__(
        self,
        mirror: DurableStore | None = None,
        platform_caches: Iterable[PurgeableCache] = (),
        thresholds: StalenessThresholds | None = None,
        sink: ObservabilitySink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize query cache.

        Args:
            mirror: Durable key-value mirror (None keeps the cache in memory only)
            platform_caches: Extra caches purged by clear()
            thresholds: Staleness thresholds used by needs_refresh() and restore()
            sink: Observability sink for self-healing reports
            clock: Time source returning epoch seconds
        """
        self.mirror = mirror
        self.platform_caches = list(platform_caches)
        self.thresholds = thresholds or StalenessThresholds()
        self.sink = sink or LoggingSink()
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._mirror_lock = asyncio.Lock()
        self._cleared = False
        self._hit_count = 0
        self._miss_count = 0
        self._heal_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return sorted(self._entries)

    @property
    def cleared(self) -> bool:
        """True once clear() has succeeded in this session."""
        return self._cleared

    def get(self, key: str) -> CacheEntry[Any] | None:
        """Get cache entry.

        Returns:
            CacheEntry if present, None otherwise
        """
        entry = self._entries.get(key)
        if entry is None:
            self._miss_count += 1
            logger.debug(f"Cache miss: '{key}'")
            return None

        self._hit_count += 1
        logger.debug(f"Cache hit: '{key}' (cached={entry.status.is_cached})")
        return entry

    def needs_refresh(self, key: str, now: float | None = None) -> bool:
        """True if ``key`` is absent or its status calls for a refresh."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self.thresholds.should_refresh(entry.status, self._clock() if now is None else now)

    async def set(self, key: str, value: Any, status: CacheStatus | None = None) -> CacheEntry[Any]:
        """Store ``value`` under ``key``; the last write wins.

        Args:
            key: Cache key
            value: Value to cache (JSON-compatible to be mirrored)
            status: Provenance (default: fresh from origin, now)

        Returns:
            The stored entry
        """
        if not key:
            raise ValueError("Cache key must not be empty")

        entry = CacheEntry(key=key, value=value, status=status or fresh_status(self._clock()))
        self._entries[key] = entry
        logger.debug(f"Cache set: '{key}' (cached={entry.status.is_cached})")

        if self.mirror is not None:
            record = entry.to_dict()
            try:
                json.dumps(record)
            except (TypeError, ValueError) as e:
                logger.warning(f"Value for '{key}' is not serializable, kept in memory only: {e}")
                return entry
            await self._with_mirror(self.mirror.set, key, record)

        return entry

    async def fetch(
        self,
        key: str,
        loader: Loader,
        online: bool = True,
        force: bool = False,
    ) -> CacheEntry[Any]:
        """Read-through fetch: serve from cache, or load and store.

        The loader runs only when online and the entry is missing or due for
        a refresh (or ``force`` is set). When offline, or when the loader
        fails, the cached entry is served whatever its age.

        Args:
            key: Cache key
            loader: Coroutine function returning the value, or a Loaded
                carrying the value with its cache status
            online: Current reachability
            force: Load even if the cached entry is still fresh

        Returns:
            The cached or freshly stored entry

        Raises:
            CacheMissError: If offline and nothing is cached
            Exception: Whatever the loader raised, if nothing is cached
        """
        entry = self.get(key)
        if entry is not None and not force and not self.needs_refresh(key):
            return entry

        if not online:
            if entry is None:
                raise CacheMissError(key)
            logger.info(f"Offline, serving cached '{key}'")
            return entry

        try:
            loaded = await loader()
        except Exception as e:
            if entry is None:
                raise
            message = safe_error_message(e)
            logger.warning(f"Fetch for '{key}' failed, serving cached value: {message}")
            report_error(self.sink, "cache fetch", e, key=key)
            return entry

        if isinstance(loaded, Loaded):
            return await self.set(key, loaded.value, loaded.status)
        return await self.set(key, loaded)

    async def invalidate(self, key: str) -> bool:
        """Drop the entry stored under exactly ``key``.

        Returns:
            True if an in-memory entry was removed
        """
        removed = self._entries.pop(key, None) is not None
        if self.mirror is not None:
            await self._with_mirror(self.mirror.delete, key)
        logger.debug(f"Cache invalidated: '{key}' (present={removed})")
        return removed

    async def invalidate_by_prefix(self, prefix: str) -> int:
        """Drop every entry in the ``prefix`` key family.

        Returns:
            Number of in-memory entries removed
        """
        removed = self.drop_prefix(prefix)
        await self.forget_mirrored(prefix)
        return removed

    def drop_prefix(self, prefix: str) -> int:
        """Drop the ``prefix`` key family from memory only.

        Takes effect before returning, so synchronous callers (event
        listeners) see the entries gone. Pair with forget_mirrored().

        Returns:
            Number of in-memory entries removed
        """
        if not prefix.strip(KEY_SEPARATOR):
            raise ValueError("Prefix must name a key family; use clear() to drop everything")

        doomed = [key for key in self._entries if key_in_namespace(key, prefix)]
        for key in doomed:
            del self._entries[key]

        logger.debug(f"Cache invalidated {len(doomed)} entries under '{prefix}'")
        return len(doomed)

    async def forget_mirrored(self, prefix: str) -> None:
        """Delete the ``prefix`` key family from the durable mirror."""
        if not prefix.strip(KEY_SEPARATOR):
            raise ValueError("Prefix must name a key family; use clear() to drop everything")
        if self.mirror is not None:
            await self._with_mirror(self._delete_namespace, prefix)

    async def clear(self) -> bool:
        """Purge memory, the durable mirror and every platform cache.

        Only the first successful call in a session does any work.

        Returns:
            True if this call performed the purge, False if it was a no-op
            or a store could not be purged
        """
        if self._cleared:
            logger.debug("Cache already cleared this session, skipping")
            return False

        self._entries.clear()
        succeeded = True

        if self.mirror is not None:
            async with self._mirror_lock:
                try:
                    await asyncio.to_thread(self.mirror.clear)
                except CacheCorruptError as e:
                    report_error(self.sink, "cache mirror clear", e)
                    succeeded = False

        for platform_cache in self.platform_caches:
            try:
                await asyncio.to_thread(platform_cache.clear)
            except Exception as e:
                name = type(platform_cache).__name__
                report_error(self.sink, f"platform cache clear ({name})", e)
                succeeded = False

        if succeeded:
            self._cleared = True
            logger.info("All caches cleared")
        return succeeded

    async def restore(self) -> int:
        """Load entries from the durable mirror.

        Restored entries are marked as served from cache. Entries that are no
        longer valid are dropped from the mirror; keys already held in memory
        are left alone.

        Returns:
            Number of entries restored
        """
        if self.mirror is None:
            return 0

        async with self._mirror_lock:
            try:
                records = await asyncio.to_thread(self._read_all)
                entries = [CacheEntry.from_dict(key, record) for key, record in records.items()]
            except CacheCorruptError as e:
                await self._heal(e)
                return 0

            now = self._clock()
            restored = 0
            expired: list[str] = []
            for entry in entries:
                status = CacheStatus(is_cached=True, cache_date=entry.status.cache_date)
                if not self.thresholds.is_valid(status, now):
                    expired.append(entry.key)
                    continue
                if entry.key in self._entries:
                    continue
                self._entries[entry.key] = replace(entry, status=status)
                restored += 1

            if expired:
                try:
                    await asyncio.to_thread(self._delete_keys, expired)
                except CacheCorruptError as e:
                    await self._heal(e)
                    return 0

        logger.info(f"Restored {restored} cache entries ({len(expired)} expired)")
        return restored

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics.

        Example:
            >>> stats = cache.get_stats()
            >>> print(f"{stats['hit_ratio']:.0%}")
        """
        total = self._hit_count + self._miss_count
        return {
            "entries": len(self._entries),
            "hit_count": self._hit_count,
            "miss_count": self._miss_count,
            "hit_ratio": self._hit_count / total if total > 0 else 0.0,
            "heal_count": self._heal_count,
            "cleared": self._cleared,
        }

    def _read_all(self) -> dict[str, dict[str, Any]]:
        assert self.mirror is not None
        records = {}
        for key in self.mirror.keys():
            record = self.mirror.get(key)
            if record is not None:
                records[key] = record
        return records

    def _delete_keys(self, keys: list[str]) -> None:
        assert self.mirror is not None
        for key in keys:
            self.mirror.delete(key)

    def _delete_namespace(self, prefix: str) -> None:
        assert self.mirror is not None
        self._delete_keys([key for key in self.mirror.keys() if key_in_namespace(key, prefix)])

    async def _with_mirror(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a mirror operation off the loop, healing on corruption."""
        async with self._mirror_lock:
            try:
                return await asyncio.to_thread(func, *args)
            except CacheCorruptError as e:
                await self._heal(e)
                return None

    async def _heal(self, error: BaseException) -> None:
        """Purge memory and mirror after a corrupt read or write.

        Caller must hold the mirror lock. Runs regardless of the one-time
        clear marker.
        """
        self._heal_count += 1
        logger.warning(f"Cache mirror corrupt, purging all cached data: {error}")
        report_error(self.sink, "cache mirror", error, action="purge")
        self._entries.clear()

        assert self.mirror is not None
        try:
            await asyncio.to_thread(self.mirror.clear)
        except CacheCorruptError as e:
            logger.error(f"Failed to purge corrupt cache mirror: {e}")


__all__ = ["CacheEntry", "Loaded", "Loader", "QueryCache", "key_in_namespace", "make_cache_key"]
