"""Freshness context - the one place the monitor, bus and cache are built.

Philosophy:
- No hidden globals; everything is constructed here and passed down
- One monitor and one query cache per application context
- Connectivity restore drops the configured key families

Public API (the "studs"):
    FreshnessContext: Application-level entry point

Lifecycle:
    async with FreshnessContext.from_config() as ctx:   # bootstrap()
        ...
                                                         # aclose()
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from pinnity_freshness.cache.persistence import DurableStore, JsonFileStore, PurgeableCache
from pinnity_freshness.cache.query_cache import CacheEntry, Loader, QueryCache
from pinnity_freshness.cache.staleness import StalenessThresholds
from pinnity_freshness.cache.status import CacheStatus
from pinnity_freshness.config import FreshnessConfig
from pinnity_freshness.connectivity import (
    ConnectivityListener,
    ConnectivityMonitor,
    ManualReachability,
    ReachabilityRuntime,
)
from pinnity_freshness.health_probe import HealthProbe, ProbingReachability
from pinnity_freshness.invalidation_bus import CONNECTIVITY_RESTORED, InvalidationBus
from pinnity_freshness.observability import LoggingSink, ObservabilitySink, report_error
from pinnity_freshness.retry_session import Notice, RetryAction, RetrySession
from pinnity_freshness.subscription import Subscription

logger = logging.getLogger(__name__)


class FreshnessContext:
    """Holds the connectivity monitor, invalidation bus and query cache.

    Example:
        >>> ctx = FreshnessContext.from_config()
        >>> await ctx.bootstrap()
        >>> online, sub = ctx.use_connectivity(lambda online: print(online))
        >>> session = ctx.create_retry_session(reload_deals)
        >>> await session.trigger()
        >>> await ctx.aclose()
    """

    def __init__(
        self,
        config: FreshnessConfig | None = None,
        runtime: ReachabilityRuntime | None = None,
        mirror: DurableStore | None = None,
        platform_caches: Iterable[PurgeableCache] = (),
        sink: ObservabilitySink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Build the freshness components.

        Args:
            config: Settings (default: FreshnessConfig())
            runtime: Host reachability signal (default: always-online manual runtime).
                Wrapped in a ProbingReachability when config.probe_url is set.
            mirror: Durable cache mirror (default: JsonFileStore at config.cache_path)
            platform_caches: Extra caches purged by clear_all()
            sink: Observability sink shared by all components
            clock: Time source returning epoch seconds
        """
        self.config = config or FreshnessConfig()
        self.sink = sink or LoggingSink()

        runtime = runtime if runtime is not None else ManualReachability(online=True)
        self.prober: ProbingReachability | None = None
        if self.config.probe_url:
            self.prober = ProbingReachability(
                HealthProbe(self.config.probe_url, self.config.probe_timeout),
                host=runtime,
                interval=self.config.probe_interval,
            )
            runtime = self.prober
        self.runtime = runtime

        self.bus = InvalidationBus(sink=self.sink)
        self.monitor = ConnectivityMonitor(runtime, bus=self.bus, sink=self.sink, clock=clock)
        self.thresholds = StalenessThresholds(self.config.max_age)
        self.cache = QueryCache(
            mirror=mirror if mirror is not None else JsonFileStore(self.config.cache_path),
            platform_caches=platform_caches,
            thresholds=self.thresholds,
            sink=self.sink,
            clock=clock,
        )

        self._sessions: list[RetrySession] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._closed = False
        self._restore_sub: Subscription | None = None
        if self.config.restore_invalidates:
            self._restore_sub = self.bus.subscribe(
                CONNECTIVITY_RESTORED, self._invalidate_on_restore
            )

    @classmethod
    def from_config(cls, path: Path | None = None, **kwargs: Any) -> "FreshnessContext":
        """Build a context from FreshnessConfig.load(path)."""
        return cls(config=FreshnessConfig.load(path), **kwargs)

    async def __aenter__(self) -> "FreshnessContext":
        await self.bootstrap()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def bootstrap(self) -> None:
        """Start probing and either purge caches once or restore the mirror."""
        if self.prober is not None:
            await self.prober.start()

        if self.config.clear_on_bootstrap:
            await self.cache.clear()
        else:
            await self.cache.restore()

    def use_connectivity(
        self, listener: ConnectivityListener | None = None
    ) -> tuple[bool, Subscription | None]:
        """Current reachability, plus a subscription if ``listener`` is given."""
        subscription = self.monitor.subscribe(listener) if listener is not None else None
        return self.monitor.is_online(), subscription

    def get_cache_entry(self, key: str) -> CacheEntry[Any] | None:
        return self.cache.get(key)

    def needs_refresh(self, key: str) -> bool:
        return self.cache.needs_refresh(key)

    async def set_cache_entry(
        self, key: str, value: Any, status: CacheStatus | None = None
    ) -> CacheEntry[Any]:
        return await self.cache.set(key, value, status)

    async def fetch(self, key: str, loader: Loader, force: bool = False) -> CacheEntry[Any]:
        """Read ``key`` through the query cache, loading only while online.

        Raises:
            CacheMissError: If offline and nothing is cached
        """
        return await self.cache.fetch(key, loader, online=self.monitor.is_online(), force=force)

    async def invalidate(self, key_or_prefix: str) -> int:
        """Drop ``key_or_prefix`` and every key below it.

        Returns:
            Number of in-memory entries removed
        """
        return await self.cache.invalidate_by_prefix(key_or_prefix)

    async def clear_all(self) -> bool:
        return await self.cache.clear()

    def create_retry_session(
        self,
        action: RetryAction,
        max_retries: int | None = None,
        on_exhausted: Callable[[], None] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        name: str | None = None,
    ) -> RetrySession:
        """Wrap ``action`` in a retry session bound to this context's monitor."""
        session = RetrySession(
            action,
            self.monitor,
            max_retries=max_retries if max_retries is not None else self.config.max_retries,
            on_exhausted=on_exhausted,
            on_notice=on_notice,
            sink=self.sink,
            name=name,
        )
        self._sessions = [s for s in self._sessions if not s.closed]
        self._sessions.append(session)
        return session

    def on_connectivity_restored(self, listener: Callable[[], None]) -> Subscription:
        return self.bus.subscribe(CONNECTIVITY_RESTORED, listener)

    async def drain(self) -> None:
        """Wait for restore-driven invalidations still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Close retry sessions, stop probing and release the monitor. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for session in self._sessions:
            session.close()
        self._sessions.clear()

        if self._restore_sub is not None:
            self._restore_sub()
        await self.drain()

        if self.prober is not None:
            await self.prober.aclose()
        self.monitor.close()
        logger.debug("Freshness context closed")

    def _invalidate_on_restore(self) -> None:
        """Drop restore families from memory now, then delete them from the mirror.

        Registered before any other bus listener, so later listeners already
        see the entries gone.
        """
        for prefix in self.config.restore_invalidates:
            logger.info(f"Connectivity restored, invalidating '{prefix}'")
            self.cache.drop_prefix(prefix)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Connectivity restored outside an event loop, cache mirror not updated")
            return

        for prefix in self.config.restore_invalidates:
            task = loop.create_task(self.cache.forget_mirrored(prefix))
            self._pending.add(task)
            task.add_done_callback(self._on_invalidation_done)

    def _on_invalidation_done(self, task: "asyncio.Task[None]") -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            report_error(self.sink, "restore invalidation", error)


__all__ = ["FreshnessContext"]
