"""
Shared test fixtures and configuration for pinnity-freshness tests.

This module provides common fixtures used across all test types:
- Controllable clock and reachability runtime
- Recording observability sink
- In-memory and file-backed cache mirrors
- Click CLI runner
"""

import os
from typing import Any

import pytest
from click.testing import CliRunner

from pinnity_freshness.cache.persistence import JsonFileStore, MemoryStore
from pinnity_freshness.cache.query_cache import QueryCache
from pinnity_freshness.cache.staleness import StalenessThresholds
from pinnity_freshness.config import FreshnessConfig
from pinnity_freshness.connectivity import ConnectivityMonitor, ManualReachability
from pinnity_freshness.invalidation_bus import InvalidationBus

# ============================================================================
# TIME AND SIGNAL FIXTURES
# ============================================================================


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    """Observability sink that keeps everything it receives."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.errors: list[tuple[str, BaseException, dict[str, Any]]] = []

    def record_event(self, name: str, **fields: Any) -> None:
        self.events.append((name, fields))

    def record_error(self, source: str, error: BaseException, **fields: Any) -> None:
        self.errors.append((source, error, fields))

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def clock():
    """Controllable clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def sink():
    """Recording observability sink."""
    return RecordingSink()


@pytest.fixture
def runtime():
    """Reachability runtime that starts online."""
    return ManualReachability(online=True)


@pytest.fixture
def bus(sink):
    """Invalidation bus reporting to the recording sink."""
    return InvalidationBus(sink=sink)


@pytest.fixture
def monitor(runtime, bus, sink, clock):
    """Connectivity monitor wired to the manual runtime and bus."""
    monitor = ConnectivityMonitor(runtime, bus=bus, sink=sink, clock=clock)
    yield monitor
    monitor.close()


# ============================================================================
# CACHE FIXTURES
# ============================================================================


@pytest.fixture
def memory_store():
    """In-process durable mirror."""
    return MemoryStore()


@pytest.fixture
def cache_file(tmp_path):
    """Path for a file-backed cache mirror."""
    return tmp_path / ".pinnity" / "query_cache.json"


@pytest.fixture
def file_store(cache_file):
    """JSON file mirror in a temporary directory."""
    return JsonFileStore(cache_file)


@pytest.fixture
def query_cache(memory_store, sink, clock):
    """Query cache with a one-hour window over an in-memory mirror."""
    return QueryCache(
        mirror=memory_store,
        thresholds=StalenessThresholds(max_age=3600.0),
        sink=sink,
        clock=clock,
    )


@pytest.fixture
def config(cache_file):
    """Config pointing the cache mirror at a temporary file."""
    return FreshnessConfig(cache_path=cache_file)


# ============================================================================
# CLI FIXTURES
# ============================================================================


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.pinnity and PINNITY_FRESHNESS_* settings."""
    for name in list(os.environ):
        if name.startswith("PINNITY_FRESHNESS_"):
            monkeypatch.delenv(name)
    monkeypatch.setattr(
        "pinnity_freshness.config.DEFAULT_CONFIG_FILE", tmp_path / "no-such-config.toml"
    )
