"""Cache Module - Freshness-aware caching for pinnity clients.

Philosophy:
- Provenance travels with every value (CacheStatus)
- Pure staleness policy, separate from storage
- In-memory cache with a best-effort durable mirror
- Self-healing on corrupt mirror data

Public API (the "studs"):
    From status:
        CacheStatus: Provenance of a fetched value
        fresh_status: Status for a value fetched from the origin
        cache_status_from_headers: Status from X-Is-Cached / X-Cache-Date

    From staleness:
        StalenessThresholds: Validity window and soft refresh boundary
        is_valid: Hard validity check
        should_refresh: Proactive refresh decision

    From persistence:
        DurableStore: Durable mirror protocol
        JsonFileStore: JSON file mirror
        MemoryStore: In-process mirror

    From query_cache:
        QueryCache: Keyed cache with prefix invalidation and one-time clear
        CacheEntry: Read-only cached value
        make_cache_key: Build hierarchical keys
"""

from pinnity_freshness.cache.persistence import (
    DurableStore,
    JsonFileStore,
    MemoryStore,
    PurgeableCache,
)
from pinnity_freshness.cache.query_cache import (
    CacheEntry,
    QueryCache,
    key_in_namespace,
    make_cache_key,
)
from pinnity_freshness.cache.staleness import StalenessThresholds, is_valid, should_refresh
from pinnity_freshness.cache.status import CacheStatus, cache_status_from_headers, fresh_status

__all__ = [
    "CacheEntry",
    "CacheStatus",
    "DurableStore",
    "JsonFileStore",
    "MemoryStore",
    "PurgeableCache",
    "QueryCache",
    "StalenessThresholds",
    "cache_status_from_headers",
    "fresh_status",
    "is_valid",
    "key_in_namespace",
    "make_cache_key",
    "should_refresh",
]
