"""Unsubscribe handle shared by the monitor, the bus and retry sessions."""

from collections.abc import Callable


class Subscription:
    """Idempotent unsubscribe handle.

    Calling the handle (or ``unsubscribe()``) runs the detach callback at most
    once. Later calls are no-ops, including calls made after the owning
    component was closed.

    Example:
        >>> sub = monitor.subscribe(on_change)
        >>> sub()
        >>> sub()  # safe
    """

    __slots__ = ("_detach",)

    def __init__(self, detach: Callable[[], None]):
        self._detach: Callable[[], None] | None = detach

    @property
    def active(self) -> bool:
        return self._detach is not None

    def unsubscribe(self) -> None:
        detach, self._detach = self._detach, None
        if detach is not None:
            detach()

    def __call__(self) -> None:
        self.unsubscribe()


__all__ = ["Subscription"]
