"""Tests for the freshness application context."""

import asyncio
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest

from pinnity_freshness.cache.persistence import MemoryStore
from pinnity_freshness.cache.status import CacheStatus
from pinnity_freshness.config import FreshnessConfig
from pinnity_freshness.connectivity import ManualReachability
from pinnity_freshness.context import FreshnessContext
from pinnity_freshness.errors import CacheMissError
from pinnity_freshness.health_probe import ProbingReachability
from pinnity_freshness.retry_session import NoticeKind


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_context(runtime, store, sink, clock):
    """Factory for contexts over the shared runtime and in-memory mirror."""

    def factory(**overrides) -> FreshnessContext:
        config = FreshnessConfig(**overrides)
        return FreshnessContext(config=config, runtime=runtime, mirror=store, sink=sink, clock=clock)

    return factory


class TestBootstrap:
    """Tests for bootstrap()."""

    @pytest.mark.asyncio
    async def test_clears_once_on_bootstrap(self, make_context, store):
        """Should purge persisted data when clear_on_bootstrap is set."""
        store.set("deals/1", {"value": 1, "status": {"is_cached": True, "cache_date": None}})
        ctx = make_context()

        await ctx.bootstrap()

        assert store.keys() == []
        assert ctx.cache.cleared is True
        assert await ctx.clear_all() is False
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_restores_when_not_clearing(self, make_context, store, clock):
        """Should hydrate from the mirror otherwise."""
        store.set("deals/1", {"value": 1, "status": {"is_cached": False, "cache_date": clock.now}})
        ctx = make_context(clear_on_bootstrap=False)

        await ctx.bootstrap()

        entry = ctx.get_cache_entry("deals/1")
        assert entry.value == 1
        assert entry.status.is_cached is True
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_bootstrap_heals_malformed_mirror(self, runtime, sink, clock, cache_file):
        """Should purge a mirror file whose records cannot be parsed."""
        cache_file.parent.mkdir(parents=True)
        cache_file.write_text(json.dumps({"deals/1": {"value": 1, "status": ["x"]}}))
        config = FreshnessConfig(cache_path=cache_file, clear_on_bootstrap=False)
        ctx = FreshnessContext(config=config, runtime=runtime, sink=sink, clock=clock)

        await ctx.bootstrap()

        assert ctx.get_cache_entry("deals/1") is None
        assert not cache_file.exists()
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_context):
        """Should bootstrap on enter and close on exit."""
        async with make_context() as ctx:
            assert ctx.cache.cleared is True

        assert ctx.monitor.closed is True

    def test_default_mirror_uses_config_path(self, cache_file):
        """Should back the cache with a JSON file at cache_path."""
        ctx = FreshnessContext(config=FreshnessConfig(cache_path=cache_file))

        assert ctx.cache.mirror.path == cache_file

    def test_probe_url_wraps_runtime(self, runtime):
        """Should verify reachability when a probe URL is configured."""
        config = FreshnessConfig(probe_url="https://api.example.com/api/health")

        ctx = FreshnessContext(config=config, runtime=runtime, mirror=MemoryStore())

        assert isinstance(ctx.runtime, ProbingReachability)
        assert ctx.prober.host is runtime

    @pytest.mark.asyncio
    async def test_bootstrap_starts_probe(self, runtime):
        """Should run the initial probe during bootstrap."""
        config = FreshnessConfig(probe_url="https://api.example.com/api/health")
        ctx = FreshnessContext(config=config, runtime=runtime, mirror=MemoryStore())

        with patch.object(ctx.prober, "start", new=AsyncMock()) as start:
            await ctx.bootstrap()

        start.assert_awaited_once()
        await ctx.aclose()

    def test_from_config(self, tmp_path, cache_file):
        """Should load settings from a TOML file."""
        path = tmp_path / "config.toml"
        path.write_text(f'[freshness]\nmax_retries = 5\ncache_path = "{cache_file}"\n')

        ctx = FreshnessContext.from_config(path, runtime=ManualReachability())

        assert ctx.config.max_retries == 5
        assert ctx.cache.mirror.path == cache_file


class TestCacheAccess:
    """Tests for cache accessors."""

    @pytest.mark.asyncio
    async def test_set_get_invalidate(self, make_context):
        """Should read, write and drop key families."""
        ctx = make_context()
        for key in ("deals/1", "deals/2", "profile/1"):
            await ctx.set_cache_entry(key, key)

        assert await ctx.invalidate("deals") == 2
        assert ctx.get_cache_entry("deals/1") is None
        assert ctx.get_cache_entry("profile/1").value == "profile/1"

        assert await ctx.invalidate("profile/1") == 1
        assert ctx.get_cache_entry("profile/1") is None
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_needs_refresh(self, make_context, clock):
        """Should consult the configured window."""
        ctx = make_context(max_age=100)
        await ctx.set_cache_entry("deals/1", 1, CacheStatus(is_cached=True, cache_date=clock.now - 60))

        assert ctx.needs_refresh("deals/1") is True
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_fetch_follows_connectivity(self, make_context, runtime):
        """Should load while online and serve the cache while offline."""
        ctx = make_context()
        loader = AsyncMock(return_value="deal")

        assert (await ctx.fetch("deals/1", loader)).value == "deal"

        runtime.emit(False)
        assert (await ctx.fetch("deals/1", loader, force=True)).value == "deal"
        with pytest.raises(CacheMissError):
            await ctx.fetch("deals/2", loader)

        loader.assert_awaited_once()
        await ctx.aclose()


class TestConnectivity:
    """Tests for connectivity access and restore invalidation."""

    @pytest.mark.asyncio
    async def test_use_connectivity(self, make_context, runtime):
        """Should return the current state and an optional subscription."""
        ctx = make_context()
        online, sub = ctx.use_connectivity()
        assert online is True
        assert sub is None

        seen = []
        _, sub = ctx.use_connectivity(seen.append)
        runtime.emit(False)
        sub()
        runtime.emit(True)

        assert seen == [False]
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_restore_invalidates_configured_prefixes(self, make_context, runtime, store):
        """Should drop the deal family when connectivity returns."""
        ctx = make_context(restore_invalidates=("deals",))
        await ctx.set_cache_entry("deals/1", 1)
        await ctx.set_cache_entry("profile/1", 1)

        runtime.emit(False)
        runtime.emit(True)

        assert ctx.get_cache_entry("deals/1") is None
        assert ctx.get_cache_entry("profile/1") is not None

        await ctx.drain()
        assert store.keys() == ["profile/1"]
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_restore_listeners_see_invalidated_cache(self, make_context, runtime):
        """Should drop the entry before other restore listeners run."""
        ctx = make_context(restore_invalidates=("deals",))
        await ctx.set_cache_entry("deals/1", 1)
        seen = []
        ctx.on_connectivity_restored(
            lambda: seen.append((ctx.get_cache_entry("deals/1"), ctx.needs_refresh("deals/1")))
        )

        runtime.emit(False)
        runtime.emit(True)

        assert seen == [(None, True)]
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_no_restore_invalidation_when_disabled(self, make_context, runtime):
        """Should keep data when no prefixes are configured."""
        ctx = make_context(restore_invalidates=())
        await ctx.set_cache_entry("deals/1", 1)

        runtime.emit(False)
        runtime.emit(True)
        await ctx.drain()

        assert ctx.get_cache_entry("deals/1") is not None
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_on_connectivity_restored(self, make_context, runtime):
        """Should expose the restore event without the monitor."""
        ctx = make_context()
        listener = Mock()
        ctx.on_connectivity_restored(listener)

        runtime.emit(True)
        runtime.emit(False)
        runtime.emit(True)

        listener.assert_called_once()
        await ctx.aclose()

    def test_restore_outside_loop_drops_memory_only(self, make_context, runtime, store, caplog):
        """Should drop entries from memory and warn that the mirror is untouched."""
        ctx = make_context(restore_invalidates=("deals",))
        asyncio.run(ctx.set_cache_entry("deals/1", 1))

        runtime.emit(False)
        runtime.emit(True)

        assert ctx.get_cache_entry("deals/1") is None
        assert store.keys() == ["deals/1"]
        assert "cache mirror not updated" in caplog.text


class TestRetrySessions:
    """Tests for create_retry_session()."""

    @pytest.mark.asyncio
    async def test_uses_config_budget(self, make_context):
        """Should default max_retries from the config."""
        ctx = make_context(max_retries=2)
        on_exhausted = Mock()
        session = ctx.create_retry_session(AsyncMock(side_effect=OSError()), on_exhausted=on_exhausted)

        await session.trigger()
        notice = await session.trigger()

        assert notice.kind == NoticeKind.RETRY_EXHAUSTED
        on_exhausted.assert_called_once()
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_explicit_budget(self, make_context):
        """Should let callers override max_retries."""
        ctx = make_context(max_retries=2)
        session = ctx.create_retry_session(AsyncMock(), max_retries=9)

        assert session.max_retries == 9
        await ctx.aclose()

    @pytest.mark.asyncio
    async def test_aclose_closes_sessions(self, make_context):
        """Should tear down sessions and the monitor, once."""
        ctx = make_context()
        session = ctx.create_retry_session(AsyncMock())

        await ctx.aclose()
        await ctx.aclose()

        assert session.closed is True
        assert ctx.monitor.closed is True
