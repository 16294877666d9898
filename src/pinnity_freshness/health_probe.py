"""Health Probe - verify reachability with a real HTTP request.

Host runtimes report "online" as soon as a network interface comes up, which
says nothing about whether the API answers. This module checks.

Philosophy:
- Trust "offline" immediately, verify "online" with a HEAD request
- Cache-busted URL so no intermediate cache answers for the server
- Keep re-probing while offline

Public API (the "studs"):
    HealthProbe: Blocking HEAD probe against a health endpoint
    ProbeResult: Outcome of a single probe
    ProbingReachability: ReachabilityRuntime backed by a HealthProbe
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urlparse

import requests

from pinnity_freshness.connectivity import ReachabilityRuntime, SignalCallback
from pinnity_freshness.errors import ProbeError
from pinnity_freshness.observability import safe_error_message

logger = logging.getLogger(__name__)

CACHE_BUST_PARAM = "_"
DEFAULT_PROBE_TIMEOUT = 3.0
DEFAULT_PROBE_INTERVAL = 30.0


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one health probe.

    Attributes:
        reachable: True if the endpoint answered with a 2xx/3xx status
        status_code: HTTP status, None if no response arrived
        elapsed: Seconds spent on the request
        error: Scrubbed error text when no response arrived
    """

    reachable: bool
    status_code: int | None = None
    elapsed: float = 0.0
    error: str | None = None


class HealthProbe:
    """HEAD request against a health endpoint.

    Example:
        >>> probe = HealthProbe("https://api.example.com/api/health")
        >>> probe.check().reachable
        True
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        session: requests.Session | None = None,
    ):
        """Initialize health probe.

        Args:
            url: Absolute http(s) URL of the health endpoint
            timeout: Request timeout in seconds
            session: requests session to reuse (default: module-level requests)

        Raises:
            ProbeError: If the URL or timeout is invalid
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ProbeError(f"Health probe URL must be an absolute http(s) URL: {url!r}")
        if timeout <= 0:
            raise ProbeError(f"Health probe timeout must be positive, got {timeout}")

        self.url = url
        self.timeout = timeout
        self.session = session
        self.attempts = 0

    def check(self) -> ProbeResult:
        """Probe the endpoint once. Blocking; never raises for network errors."""
        self.attempts += 1
        params = {CACHE_BUST_PARAM: str(int(time.time() * 1000))}
        http = self.session or requests
        start = time.monotonic()

        try:
            response = http.head(
                self.url, params=params, timeout=self.timeout, allow_redirects=True
            )
        except requests.Timeout:
            elapsed = time.monotonic() - start
            logger.debug(f"Health probe timed out after {elapsed:.1f}s: {self.url}")
            return ProbeResult(reachable=False, elapsed=elapsed, error="Request timeout")
        except requests.RequestException as e:
            elapsed = time.monotonic() - start
            logger.debug(f"Health probe failed: {self.url}: {e}")
            return ProbeResult(reachable=False, elapsed=elapsed, error=safe_error_message(e))

        elapsed = time.monotonic() - start
        logger.debug(f"Health probe {self.url} -> {response.status_code} in {elapsed:.2f}s")
        return ProbeResult(reachable=response.ok, status_code=response.status_code, elapsed=elapsed)

    def is_reachable(self) -> bool:
        return self.check().reachable


class ProbingReachability:
    """ReachabilityRuntime that verifies "online" with a health probe.

    Wraps an optional host runtime. Host "offline" signals are applied at
    once; host "online" signals only count after a successful probe. While
    offline, the endpoint is re-probed every ``interval`` seconds once
    start() has been awaited.

    Example:
        >>> runtime = ProbingReachability(HealthProbe(url), host=ManualReachability())
        >>> monitor = ConnectivityMonitor(runtime)
        >>> await runtime.start()
        ...
        >>> await runtime.aclose()
    """

    def __init__(
        self,
        probe: HealthProbe,
        host: ReachabilityRuntime | None = None,
        interval: float = DEFAULT_PROBE_INTERVAL,
    ):
        if interval <= 0:
            raise ProbeError(f"Probe interval must be positive, got {interval}")

        self.probe = probe
        self.host = host
        self.interval = interval
        self._online = host.is_online() if host is not None else True
        self._callbacks: list[SignalCallback] = []
        self._tasks: set[asyncio.Task[bool]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._detach_host: Callable[[], None] | None = (
            host.add_listener(self._on_host_signal) if host is not None else None
        )

    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: SignalCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    async def verify(self) -> bool:
        """Probe now and apply the result (manual reconnection attempt)."""
        result = await asyncio.to_thread(self.probe.check)
        if not result.reachable and self._online:
            detail = result.error or result.status_code
            logger.info(f"Health probe failed, treating connection as offline ({detail})")
        self._apply(result.reachable)
        return result.reachable

    async def start(self) -> None:
        """Run the initial probe and start re-probing while offline."""
        await self.verify()
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._probe_loop())

    async def aclose(self) -> None:
        """Stop probing and detach from the host runtime."""
        detach, self._detach_host = self._detach_host, None
        if detach is not None:
            detach()

        tasks = list(self._tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._callbacks.clear()

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self._online:
                logger.debug("Offline, re-probing health endpoint")
                await self._verify_in_background()

    async def _verify_in_background(self) -> bool:
        """verify() for background tasks, where nobody awaits the result."""
        try:
            return await self.verify()
        except Exception as e:
            message = safe_error_message(e)
            logger.error(f"Health probe crashed, connection state unchanged: {message}")
            return False

    def _on_host_signal(self, online: bool) -> None:
        if not online:
            logger.debug("Host reports offline")
            self._apply(False)
            return

        logger.debug("Host reports online, verifying with health probe")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to probe from; take the host's word for it
            self._apply(True)
            return

        task = loop.create_task(self._verify_in_background())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _apply(self, online: bool) -> None:
        self._online = online
        for callback in list(self._callbacks):
            callback(online)


__all__ = ["HealthProbe", "ProbeResult", "ProbingReachability"]
