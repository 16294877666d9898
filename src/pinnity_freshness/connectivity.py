"""Connectivity Monitor - Network reachability state and transitions.

Philosophy:
- Reachability is an injected capability, never read from ambient globals
- Only genuine transitions are reported; duplicate runtime signals coalesce
- The monitor is the producer of "connectivity restored", the bus republishes

Public API (the "studs"):
    ReachabilityRuntime: Protocol for the host's online/offline signal
    ManualReachability: Push-driven runtime (hosts that own the signal, tests)
    ConnectivityState: Immutable snapshot of online state
    ConnectivityMonitor: Boolean reachability state plus subscriptions

Ordering:
1. Runtime signal arrives (handle_signal)
2. Duplicate signals are dropped
3. Monitor listeners run in subscription order
4. On offline -> online, CONNECTIVITY_RESTORED is published on the bus
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol

from pinnity_freshness.invalidation_bus import CONNECTIVITY_RESTORED, InvalidationBus
from pinnity_freshness.observability import (
    LoggingSink,
    ObservabilitySink,
    report_error,
    report_event,
)
from pinnity_freshness.subscription import Subscription

logger = logging.getLogger(__name__)

SignalCallback = Callable[[bool], None]
ConnectivityListener = Callable[[bool], None]


class ReachabilityRuntime(Protocol):
    """Host runtime reachability signal."""

    def is_online(self) -> bool: ...

    def add_listener(self, callback: SignalCallback) -> Callable[[], None]: ...


class ManualReachability:
    """Reachability runtime driven by explicit ``emit`` calls.

    Signals are forwarded as-is, including duplicates; coalescing is the
    monitor's job.

    Example:
        >>> runtime = ManualReachability(online=True)
        >>> monitor = ConnectivityMonitor(runtime)
        >>> runtime.emit(False)
        >>> monitor.is_online()
        False
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._callbacks: list[SignalCallback] = []

    def is_online(self) -> bool:
        return self._online

    def add_listener(self, callback: SignalCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def emit(self, online: bool) -> None:
        """Report a reachability signal to every attached callback."""
        self._online = online
        for callback in list(self._callbacks):
            callback(online)

    def teardown(self) -> None:
        """Drop all callbacks, as when the host context is destroyed."""
        self._callbacks.clear()


@dataclass(frozen=True)
class ConnectivityState:
    """Snapshot of process-wide reachability.

    Attributes:
        online: Current reachability
        generation: Number of genuine transitions observed so far
        last_online_at: Last moment the process was known to be online
            (None if it has never been online)
    """

    online: bool
    generation: int = 0
    last_online_at: float | None = None


class ConnectivityMonitor:
    """Tracks reachability and notifies listeners on genuine transitions.

    Example:
        >>> monitor = ConnectivityMonitor(runtime, bus=bus)
        >>> sub = monitor.subscribe(lambda online: print("online" if online else "offline"))
        >>> monitor.is_online()
        True
        >>> sub()
    """

    def __init__(
        self,
        runtime: ReachabilityRuntime,
        bus: InvalidationBus | None = None,
        sink: ObservabilitySink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Sample the runtime's current reachability and attach to its signal.

        Args:
            runtime: Host reachability signal
            bus: Bus receiving CONNECTIVITY_RESTORED (optional)
            sink: Observability sink for listener failures (default: LoggingSink)
            clock: Time source returning epoch seconds
        """
        self.runtime = runtime
        self.bus = bus
        self.sink = sink or LoggingSink()
        self._clock = clock
        self._listeners: list[ConnectivityListener] = []
        self._closed = False

        online = bool(runtime.is_online())
        self._state = ConnectivityState(
            online=online, last_online_at=clock() if online else None
        )
        self._detach_runtime: Callable[[], None] | None = runtime.add_listener(self.handle_signal)
        logger.debug(f"Connectivity monitor started ({'online' if online else 'offline'})")

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def closed(self) -> bool:
        return self._closed

    def is_online(self) -> bool:
        return self._state.online

    def offline_duration(self) -> float | None:
        """Seconds since the process was last online, None if online or never online."""
        if self._state.online or self._state.last_online_at is None:
            return None
        return max(0.0, self._clock() - self._state.last_online_at)

    def subscribe(self, listener: ConnectivityListener) -> Subscription:
        """Call ``listener(online)`` on every genuine transition."""
        entry: ConnectivityListener = lambda online: listener(online)  # noqa: E731
        self._listeners.append(entry)

        def detach() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return Subscription(detach)

    def handle_signal(self, online: bool) -> None:
        """Apply a reachability signal from the runtime.

        Signals that do not change the boolean are dropped.
        """
        if self._closed:
            return

        online = bool(online)
        previous = self._state
        if online == previous.online:
            logger.debug(f"Coalesced duplicate {'online' if online else 'offline'} signal")
            return

        now = self._clock()
        # Going offline: the transition instant is the last moment we were online
        self._state = replace(
            previous, online=online, generation=previous.generation + 1, last_online_at=now
        )
        logger.info(
            f"Connectivity {'restored' if online else 'lost'} (generation {self._state.generation})"
        )
        report_event(
            self.sink, "connectivity.transition", online=online, generation=self._state.generation
        )

        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as e:
                report_error(self.sink, "connectivity listener", e, online=online)

        if online and self.bus is not None and not self._closed:
            self.bus.publish(CONNECTIVITY_RESTORED)

    def close(self) -> None:
        """Detach from the runtime and drop all listeners. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        detach, self._detach_runtime = self._detach_runtime, None
        if detach is not None:
            detach()
        self._listeners.clear()
        logger.debug("Connectivity monitor closed")


__all__ = [
    "ConnectivityMonitor",
    "ConnectivityState",
    "ManualReachability",
    "ReachabilityRuntime",
]
