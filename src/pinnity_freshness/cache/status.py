"""Cache Status Model - provenance of a single fetched value.

Public API (the "studs"):
    CacheStatus: Whether a value came from cache and when it was produced
    fresh_status: Status for a value obtained directly from the origin
    cache_status_from_headers: Status carried by X-Is-Cached / X-Cache-Date
"""

import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pinnity_freshness.errors import CacheCorruptError

logger = logging.getLogger(__name__)

IS_CACHED_HEADER = "X-Is-Cached"
CACHE_DATE_HEADER = "X-Cache-Date"  # epoch milliseconds, set by the service worker


@dataclass(frozen=True)
class CacheStatus:
    """Provenance of a fetched value.

    Attributes:
        is_cached: True if the value was served from a cache
        cache_date: Epoch seconds when the value was produced or cached;
            None means freshness is unknown and the value counts as stale
    """

    is_cached: bool = False
    cache_date: float | None = None

    def age(self, now: float | None = None) -> float | None:
        """Seconds since ``cache_date``, or None if unknown."""
        if self.cache_date is None:
            return None
        return (time.time() if now is None else now) - self.cache_date

    def to_dict(self) -> dict[str, Any]:
        return {"is_cached": self.is_cached, "cache_date": self.cache_date}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheStatus":
        """Parse a mirrored status record.

        Raises:
            CacheCorruptError: If the record is not a mapping or its date is not a number
        """
        if not isinstance(data, Mapping):
            raise CacheCorruptError(f"Cache status must be a mapping, got {type(data).__name__}")

        cache_date = data.get("cache_date")
        if cache_date is not None and (
            isinstance(cache_date, bool)
            or not isinstance(cache_date, int | float)
            or not math.isfinite(cache_date)
        ):
            raise CacheCorruptError(f"Invalid cache_date: {cache_date!r}")

        return cls(
            is_cached=bool(data.get("is_cached", False)),
            cache_date=float(cache_date) if cache_date is not None else None,
        )


def fresh_status(now: float | None = None) -> CacheStatus:
    """Status for a value just obtained from the origin.

    Example:
        >>> fresh_status(now=1700000000.0)
        CacheStatus(is_cached=False, cache_date=1700000000.0)
    """
    return CacheStatus(is_cached=False, cache_date=time.time() if now is None else now)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def cache_status_from_headers(headers: Mapping[str, str]) -> CacheStatus:
    """Extract cache status from response headers.

    Args:
        headers: Response headers (case-insensitive mappings work as-is)

    Returns:
        CacheStatus; ``cache_date`` is None when the header is missing or bad
    """
    is_cached = (_header(headers, IS_CACHED_HEADER) or "").strip().lower() == "true"
    raw_date = _header(headers, CACHE_DATE_HEADER)

    cache_date = None
    if raw_date:
        try:
            cache_date = int(raw_date.strip()) / 1000.0
        except ValueError:
            logger.warning(f"Ignoring malformed {CACHE_DATE_HEADER} header: {raw_date!r}")

    return CacheStatus(is_cached=is_cached, cache_date=cache_date)


__all__ = ["CacheStatus", "cache_status_from_headers", "fresh_status"]
