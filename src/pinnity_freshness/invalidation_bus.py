"""Invalidation Bus - in-process publish/subscribe for refresh events.

Philosophy:
- Consumers react to "connectivity restored" without knowing the monitor
- Synchronous fan-out, FIFO per event name
- One failing listener never blocks the others or the publisher

Public API (the "studs"):
    InvalidationBus: Named-event publish/subscribe channel
    CONNECTIVITY_RESTORED: Reserved event published on offline -> online

Ordering:
- Listeners of the same event run in subscription order
- No ordering is defined across different event names
- Each publish delivers to a snapshot of the listeners taken when it starts
"""

import logging
from collections import defaultdict
from collections.abc import Callable

from pinnity_freshness.observability import LoggingSink, ObservabilitySink, report_error
from pinnity_freshness.subscription import Subscription

logger = logging.getLogger(__name__)

CONNECTIVITY_RESTORED = "connectivity-restored"

Listener = Callable[[], None]


class InvalidationBus:
    """Process-wide publish/subscribe channel for invalidation events.

    Example:
        >>> bus = InvalidationBus()
        >>> sub = bus.subscribe(CONNECTIVITY_RESTORED, refetch_deals)
        >>> bus.publish(CONNECTIVITY_RESTORED)
        1
        >>> sub()
    """

    def __init__(self, sink: ObservabilitySink | None = None):
        self.sink = sink or LoggingSink()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Subscription:
        """Register ``listener`` for ``event``.

        The same callable may be registered more than once; each registration
        is delivered and removed independently.
        """
        # Wrap so identical callables registered twice stay distinguishable
        entry: Listener = lambda: listener()  # noqa: E731
        self._listeners[event].append(entry)
        logger.debug(f"Subscribed to '{event}' ({len(self._listeners[event])} listeners)")

        def detach() -> None:
            listeners = self._listeners.get(event)
            if listeners and entry in listeners:
                listeners.remove(entry)
                if not listeners:
                    del self._listeners[event]

        return Subscription(detach)

    def publish(self, event: str) -> int:
        """Deliver ``event`` to every current listener.

        Returns:
            Number of listeners that completed without raising
        """
        listeners = list(self._listeners.get(event, ()))
        delivered = 0

        for listener in listeners:
            try:
                listener()
                delivered += 1
            except Exception as e:
                report_error(self.sink, f"listener for '{event}'", e, event=event)

        logger.debug(f"Published '{event}' to {delivered}/{len(listeners)} listeners")
        return delivered

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))


__all__ = ["CONNECTIVITY_RESTORED", "InvalidationBus"]
