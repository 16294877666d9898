"""Retry Controller - bounded retry state machine for user-triggered actions.

Philosophy:
- The user drives retries; nothing retries on its own
- Offline attempts are rejected without spending budget
- Exhaustion is terminal until connectivity comes back
- Every outcome is a notice the UI can show; nothing escalates

Public API (the "studs"):
    RetrySession: Per-action retry state machine
    RetryPhase: Session phases
    RetryState: Immutable state snapshot
    Notice / NoticeKind: User-facing outcome of a trigger
    RetrySessionError: Raised when triggering a closed session

State machine:
    IDLE -> ATTEMPTING -> SUCCEEDED -> IDLE
    IDLE -> ATTEMPTING -> FAILED -> IDLE          (attempt < max_retries)
    IDLE -> ATTEMPTING -> FAILED -> EXHAUSTED     (attempt >= max_retries)
    EXHAUSTED -> IDLE on an offline -> online transition (attempt kept)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pinnity_freshness.config import DEFAULT_MAX_RETRIES
from pinnity_freshness.connectivity import ConnectivityMonitor
from pinnity_freshness.errors import ActionFailedError, ErrorKind, FreshnessError
from pinnity_freshness.observability import (
    LoggingSink,
    ObservabilitySink,
    report_error,
    report_event,
)
from pinnity_freshness.subscription import Subscription

logger = logging.getLogger(__name__)

RetryAction = Callable[[], Awaitable[Any]]


class RetrySessionError(FreshnessError):
    """Raised when a closed retry session is triggered."""

    pass


class RetryPhase(StrEnum):
    """Retry session phases."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"  # transient, settles to IDLE
    FAILED = "failed"  # transient, settles to IDLE or EXHAUSTED
    EXHAUSTED = "exhausted"


class NoticeKind(StrEnum):
    """Outcome categories shown to the user."""

    SUCCESS = "success"
    ATTEMPT_FAILED = "attempt_failed"
    RETRY_EXHAUSTED = "retry_exhausted"
    OFFLINE = "offline"
    BUSY = "busy"


@dataclass(frozen=True)
class Notice:
    """User-facing outcome of a trigger.

    Attributes:
        kind: Outcome category
        title: Short headline
        description: One-sentence explanation
        attempt: Attempt counter after the trigger
        error_kind: Error category, None for success or busy
    """

    kind: NoticeKind
    title: str
    description: str
    attempt: int = 0
    error_kind: ErrorKind | None = None

    @property
    def destructive(self) -> bool:
        return self.error_kind is not None


@dataclass(frozen=True)
class RetryState:
    """Snapshot of a retry session.

    Attributes:
        attempt: Attempts spent since the last success
        exhausted: True once the budget is spent (until connectivity returns)
        is_online: Connectivity at snapshot time
        phase: Current phase
        last_error: Category of the most recent failure
    """

    attempt: int
    exhausted: bool
    is_online: bool
    phase: RetryPhase
    last_error: ErrorKind | None = None

    @property
    def is_attempting(self) -> bool:
        return self.phase == RetryPhase.ATTEMPTING


def _offline_notice(attempt: int) -> Notice:
    return Notice(
        NoticeKind.OFFLINE,
        "You're offline",
        "Please check your internet connection and try again",
        attempt,
        ErrorKind.OFFLINE,
    )


def _exhausted_notice(attempt: int) -> Notice:
    return Notice(
        NoticeKind.RETRY_EXHAUSTED,
        "Retry limit reached",
        "Please try again later or refresh the page",
        attempt,
        ErrorKind.RETRY_EXHAUSTED,
    )


class RetrySession:
    """Wraps an async action with offline gating and a retry budget.

    Example:
        >>> session = RetrySession(reload_deals, monitor, max_retries=3)
        >>> notice = await session.trigger()
        >>> toast(notice.title, notice.description)
        >>> session.close()
    """

    def __init__(
        self,
        action: RetryAction,
        monitor: ConnectivityMonitor,
        max_retries: int = DEFAULT_MAX_RETRIES,
        on_exhausted: Callable[[], None] | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        sink: ObservabilitySink | None = None,
        name: str | None = None,
    ):
        """Arm a retry session.

        Args:
            action: Zero-argument coroutine function to run on each attempt
            monitor: Connectivity monitor gating attempts
            max_retries: Attempts permitted before exhaustion (default: 3)
            on_exhausted: Called once each time the session becomes exhausted
            on_notice: Receives every notice (toast collaborator)
            sink: Observability sink for retry outcomes
            name: Label used in logs (default: the action's name)
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.action = action
        self.monitor = monitor
        self.max_retries = max_retries
        self.on_exhausted = on_exhausted
        self.on_notice = on_notice
        self.sink = sink or LoggingSink()
        self.name = name or getattr(action, "__name__", "action")
        self.last_failure: ActionFailedError | None = None

        self._attempt = 0
        self._exhausted = False
        self._last_error: ErrorKind | None = None
        self._phase = RetryPhase.IDLE
        self._closed = False
        self._listeners: list[Callable[[RetryState], None]] = []
        self._monitor_sub = monitor.subscribe(self._on_connectivity)

    @property
    def state(self) -> RetryState:
        return RetryState(
            attempt=self._attempt,
            exhausted=self._exhausted,
            is_online=self.monitor.is_online(),
            phase=self._phase,
            last_error=self._last_error,
        )

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Callable[[RetryState], None]) -> Subscription:
        """Call ``listener(state)`` after every state change."""
        entry: Callable[[RetryState], None] = lambda state: listener(state)  # noqa: E731
        self._listeners.append(entry)

        def detach() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return Subscription(detach)

    async def trigger(self) -> Notice | None:
        """Run one attempt of the wrapped action.

        Returns:
            The notice describing the outcome, or None if the session was
            closed while the action was in flight

        Raises:
            RetrySessionError: If the session is already closed
        """
        if self._closed:
            raise RetrySessionError(f"Retry session '{self.name}' is closed")

        if self._phase == RetryPhase.ATTEMPTING:
            return self._emit(
                Notice(
                    NoticeKind.BUSY,
                    "Retry in progress",
                    "Please wait for the current attempt to finish",
                    self._attempt,
                )
            )

        if not self.monitor.is_online():
            logger.info(f"Retry of '{self.name}' rejected: offline")
            return self._emit(_offline_notice(self._attempt))

        if self._exhausted:
            logger.info(f"Retry of '{self.name}' rejected: limit reached")
            return self._emit(_exhausted_notice(self._attempt))

        self._attempt += 1
        attempt = self._attempt
        self._transition(RetryPhase.ATTEMPTING)
        logger.debug(f"Running '{self.name}' (attempt {attempt}/{self.max_retries})")

        try:
            await self.action()
        except asyncio.CancelledError:
            if not self._closed:
                self._transition(RetryPhase.IDLE)
            raise
        except Exception as e:
            if self._closed:
                logger.debug(f"Discarding failure of '{self.name}' from closed session")
                return None
            return self._handle_failure(e, attempt)

        if self._closed:
            logger.debug(f"Discarding result of '{self.name}' from closed session")
            return None
        return self._handle_success(attempt)

    def close(self) -> None:
        """Tear the session down; in-flight results are discarded. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._monitor_sub()
        self._listeners.clear()
        logger.debug(f"Retry session '{self.name}' closed")

    def _handle_success(self, attempt: int) -> Notice:
        self._attempt = 0
        self._exhausted = False
        self._last_error = None
        self.last_failure = None
        self._transition(RetryPhase.SUCCEEDED)
        self._transition(RetryPhase.IDLE)

        logger.info(f"'{self.name}' succeeded on attempt {attempt}/{self.max_retries}")
        report_event(self.sink, "retry.succeeded", action=self.name, attempt=attempt)
        return self._emit(
            Notice(NoticeKind.SUCCESS, "Success", "Operation completed successfully", 0)
        )

    def _handle_failure(self, error: Exception, attempt: int) -> Notice:
        self.last_failure = ActionFailedError(error, attempt)
        self._last_error = ErrorKind.ACTION_FAILED
        self._transition(RetryPhase.FAILED)
        report_error(
            self.sink,
            f"retry action '{self.name}'",
            error,
            attempt=attempt,
            max_retries=self.max_retries,
        )

        if self._attempt < self.max_retries:
            self._transition(RetryPhase.IDLE)
            logger.warning(f"'{self.name}' failed on attempt {attempt}/{self.max_retries}")
            return self._emit(
                Notice(
                    NoticeKind.ATTEMPT_FAILED,
                    "Retry failed",
                    f"Attempt {attempt} of {self.max_retries} failed. Please try again.",
                    attempt,
                    ErrorKind.ACTION_FAILED,
                )
            )

        self._exhausted = True
        self._transition(RetryPhase.EXHAUSTED)
        logger.error(f"'{self.name}' failed after {attempt} attempts, retry limit reached")
        report_event(self.sink, "retry.exhausted", action=self.name, attempt=attempt)

        notice = self._emit(_exhausted_notice(attempt))
        if self.on_exhausted is not None:
            try:
                self.on_exhausted()
            except Exception as e:
                report_error(self.sink, f"on_exhausted callback for '{self.name}'", e)
        return notice

    def _on_connectivity(self, online: bool) -> None:
        if online and self._exhausted:
            # Fresh chance once connectivity returns; spent attempts are kept
            self._exhausted = False
            logger.info(f"Connectivity restored, '{self.name}' may retry again")
            self._transition(RetryPhase.IDLE)
        else:
            self._notify()

    def _transition(self, phase: RetryPhase) -> None:
        self._phase = phase
        self._notify()

    def _notify(self) -> None:
        state = self.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                report_error(self.sink, f"retry state listener for '{self.name}'", e)

    def _emit(self, notice: Notice) -> Notice:
        if self.on_notice is not None:
            try:
                self.on_notice(notice)
            except Exception as e:
                report_error(self.sink, f"notice handler for '{self.name}'", e)
        return notice


__all__ = [
    "Notice",
    "NoticeKind",
    "RetryPhase",
    "RetrySession",
    "RetrySessionError",
    "RetryState",
]
