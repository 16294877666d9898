"""Configuration for the freshness layer.

This module provides the tunable settings for staleness, retries, the durable
cache mirror and the connectivity probe.

Design Philosophy:
- Ruthless simplicity: Single configuration dataclass
- Sensible defaults: Works out of the box
- Layered: defaults < TOML file < environment variables

Environment variables (all optional):
    PINNITY_FRESHNESS_MAX_AGE: Validity window in seconds (default: 3600)
    PINNITY_FRESHNESS_MAX_RETRIES: Retry budget per session (default: 3)
    PINNITY_FRESHNESS_CACHE_PATH: Durable mirror file
    PINNITY_FRESHNESS_CLEAR_ON_BOOTSTRAP: Purge caches once at startup (default: true)
    PINNITY_FRESHNESS_RESTORE_INVALIDATES: Comma-separated key prefixes
    PINNITY_FRESHNESS_PROBE_URL: Health endpoint used to verify reachability
    PINNITY_FRESHNESS_PROBE_TIMEOUT: Probe timeout in seconds (default: 3.0)
    PINNITY_FRESHNESS_PROBE_INTERVAL: Offline re-probe interval (default: 30.0)
"""

import logging
import math
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for Python 3.11+ standard library
    import tomllib as tomli  # type: ignore[import,no-redef]

from pinnity_freshness.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PINNITY_FRESHNESS_"
DEFAULT_CONFIG_DIR = Path.home() / ".pinnity"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"
DEFAULT_CACHE_FILE = DEFAULT_CONFIG_DIR / "query_cache.json"

# Must stay in sync with the service worker's cache window for deal data
DEFAULT_MAX_AGE = 3600.0  # 1 hour
DEFAULT_MAX_RETRIES = 3


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _parse_count(value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ConfigError(f"Invalid count: {value!r}")
    return int(value)


def _parse_prefixes(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list | tuple):
        items = [str(item) for item in value]
    else:
        raise ConfigError(f"Invalid prefix list: {value!r}")
    return tuple(item.strip() for item in items if item.strip())


@dataclass(frozen=True)
class FreshnessConfig:
    """Freshness layer settings.

    Attributes:
        max_age: Absolute validity window for cached data, in seconds
        max_retries: Attempts a retry session permits before exhaustion
        cache_path: File backing the durable cache mirror
        clear_on_bootstrap: Purge all caches once when the context boots
        restore_invalidates: Key prefixes dropped when connectivity is restored
        probe_url: Health endpoint for reachability checks (None disables probing)
        probe_timeout: Health probe timeout in seconds
        probe_interval: Seconds between re-probes while offline
    """

    max_age: float = DEFAULT_MAX_AGE
    max_retries: int = DEFAULT_MAX_RETRIES
    cache_path: Path = DEFAULT_CACHE_FILE
    clear_on_bootstrap: bool = True
    restore_invalidates: tuple[str, ...] = ("deals",)
    probe_url: str | None = None
    probe_timeout: float = 3.0
    probe_interval: float = 30.0

    def __post_init__(self) -> None:
        for name in ("max_age", "probe_timeout", "probe_interval"):
            value = getattr(self, name)
            if not math.isfinite(value) or value <= 0:
                raise ConfigError(f"{name} must be a positive number of seconds, got {value}")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ConfigError(f"max_retries must be an integer, got {self.max_retries!r}")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be at least 1, got {self.max_retries}")

    @classmethod
    def from_mapping(
        cls, data: dict[str, Any], base: "FreshnessConfig | None" = None
    ) -> "FreshnessConfig":
        """Apply raw key/value settings on top of ``base`` (defaults if None).

        Unknown keys are ignored with a warning. Values may be strings (as read
        from the environment) or native TOML types.

        Raises:
            ConfigError: If a value cannot be converted
        """
        base = base or cls()
        known = {f.name for f in fields(cls)}
        updates: dict[str, Any] = {}

        for key, raw in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown freshness setting: {key}")
                continue
            try:
                if key in ("max_age", "probe_timeout", "probe_interval"):
                    updates[key] = float(raw)
                elif key == "max_retries":
                    updates[key] = _parse_count(raw)
                elif key == "cache_path":
                    updates[key] = Path(str(raw)).expanduser()
                elif key == "clear_on_bootstrap":
                    updates[key] = raw if isinstance(raw, bool) else _parse_bool(str(raw))
                elif key == "restore_invalidates":
                    updates[key] = _parse_prefixes(raw)
                elif key == "probe_url":
                    updates[key] = str(raw) or None
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {key}: {raw!r}") from e

        return replace(base, **updates)

    @classmethod
    def from_environment(cls, base: "FreshnessConfig | None" = None) -> "FreshnessConfig":
        """Load settings from PINNITY_FRESHNESS_* environment variables.

        Returns:
            FreshnessConfig with values from environment or ``base``
        """
        data = {
            name[len(ENV_PREFIX) :].lower(): value
            for name, value in os.environ.items()
            if name.startswith(ENV_PREFIX)
        }
        return cls.from_mapping(data, base)

    @classmethod
    def from_file(cls, path: Path, base: "FreshnessConfig | None" = None) -> "FreshnessConfig":
        """Load the ``[freshness]`` table of a TOML file.

        Raises:
            ConfigError: If the file cannot be parsed
        """
        try:
            with open(path, "rb") as f:
                document = tomli.load(f)
        except FileNotFoundError:
            logger.debug(f"Config file not found, using defaults: {path}")
            return base or cls()
        except (OSError, tomli.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e

        section = document.get("freshness", {})
        if not isinstance(section, dict):
            raise ConfigError(f"[freshness] in {path} must be a table")
        return cls.from_mapping(section, base)

    @classmethod
    def load(cls, path: Path | None = None) -> "FreshnessConfig":
        """Load configuration: defaults, then TOML file, then environment.

        Args:
            path: Config file (default: ~/.pinnity/config.toml)

        Example:
            >>> config = FreshnessConfig.load()
            >>> print(f"Max age: {config.max_age}s")
        """
        config = cls.from_file(Path(path).expanduser() if path else DEFAULT_CONFIG_FILE)
        return cls.from_environment(config)


__all__ = ["DEFAULT_MAX_AGE", "DEFAULT_MAX_RETRIES", "FreshnessConfig"]
