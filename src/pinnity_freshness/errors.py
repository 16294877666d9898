"""Error taxonomy for the freshness layer.

Philosophy:
- One base class so callers can catch everything from this package
- Error kinds are plain enum values; only failures that travel as
  exceptions get an exception class
- Retry sessions report offline and exhaustion as notices, never exceptions

Public API (the "studs"):
    ErrorKind: Error categories recorded on retry sessions
    FreshnessError: Base exception
    CacheCorruptError: Durable mirror read/write failure
    ActionFailedError: Wrapped retry action raised
    ConfigError: Invalid configuration
    CacheMissError: Nothing cached and the origin cannot be asked
    ProbeError: Health probe could not be performed
"""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Error categories surfaced by the freshness layer."""

    OFFLINE = "offline"  # not counted against the retry budget
    ACTION_FAILED = "action_failed"  # counted against the retry budget
    RETRY_EXHAUSTED = "retry_exhausted"  # terminal
    CACHE_CORRUPT = "cache_corrupt"  # self-healed, never shown to the user


class FreshnessError(Exception):
    """Base class for all pinnity-freshness errors."""

    pass


class CacheCorruptError(FreshnessError):
    """Raised when the durable cache mirror cannot be read or written."""

    kind = ErrorKind.CACHE_CORRUPT


class CacheMissError(FreshnessError):
    """Raised when a read-through fetch has no cached value to fall back on.

    Attributes:
        key: Cache key that was requested
    """

    kind = ErrorKind.OFFLINE

    def __init__(self, key: str):
        super().__init__(f"Cannot fetch '{key}' while offline and no cached data is available")
        self.key = key


class ActionFailedError(FreshnessError):
    """Raised (and recorded) when a wrapped retry action fails.

    Attributes:
        cause: The exception raised by the action
        attempt: Attempt number that failed (1-based)
    """

    kind = ErrorKind.ACTION_FAILED

    def __init__(self, cause: BaseException, attempt: int = 0):
        super().__init__(f"Action failed on attempt {attempt}: {cause}")
        self.cause = cause
        self.attempt = attempt


class ConfigError(FreshnessError):
    """Raised when configuration values are invalid."""

    pass


class ProbeError(FreshnessError):
    """Raised when a health probe is misconfigured."""

    pass


__all__ = [
    "ActionFailedError",
    "CacheCorruptError",
    "CacheMissError",
    "ConfigError",
    "ErrorKind",
    "FreshnessError",
    "ProbeError",
]
