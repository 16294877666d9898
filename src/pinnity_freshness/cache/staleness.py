"""Staleness Policy - decide whether data is usable or due for refresh.

Philosophy:
- Pure functions, no side effects
- Unknown freshness is always stale
- Values served from cache refresh at half their window
- Values fetched from the origin use the full window

Public API (the "studs"):
    StalenessThresholds: Validity window and soft refresh boundary
    is_valid: Hard validity check
    should_refresh: Proactive refresh decision
"""

import time
from dataclasses import dataclass

from pinnity_freshness.cache.status import CacheStatus
from pinnity_freshness.config import DEFAULT_MAX_AGE


@dataclass(frozen=True)
class StalenessThresholds:
    """Validity window for cached data.

    Attributes:
        max_age: Absolute validity window in seconds
    """

    max_age: float = DEFAULT_MAX_AGE

    @property
    def soft_refresh_age(self) -> float:
        """Age after which cached values are refreshed proactively."""
        return self.max_age / 2

    def is_valid(self, status: CacheStatus, now: float | None = None) -> bool:
        return is_valid(status, self.max_age, now)

    def should_refresh(self, status: CacheStatus, now: float | None = None) -> bool:
        return should_refresh(status, self.max_age, now)


def is_valid(status: CacheStatus, max_age: float, now: float | None = None) -> bool:
    """Check if a value is still inside its validity window.

    Returns:
        False when ``cache_date`` is unknown, otherwise ``age < max_age``
    """
    if status.cache_date is None:
        return False
    now = time.time() if now is None else now
    return now - status.cache_date < max_age


def should_refresh(status: CacheStatus, max_age: float, now: float | None = None) -> bool:
    """Decide whether a value should be re-fetched.

    Returns:
        True when freshness is unknown; for cached values, True once older
        than ``max_age / 2``; for origin values, True once no longer valid
    """
    if status.cache_date is None:
        return True

    now = time.time() if now is None else now
    if status.is_cached:
        return now - status.cache_date > max_age / 2

    return not is_valid(status, max_age, now)


__all__ = ["StalenessThresholds", "is_valid", "should_refresh"]
