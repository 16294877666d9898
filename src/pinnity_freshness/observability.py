"""Observability sink for listener failures and retry outcomes.

Design Philosophy:
- The core reports, the sink decides what to do with it
- A sink never blocks and never raises back into the core
- No credential leakage in logs

Public API (the "studs"):
    ObservabilitySink: Protocol implemented by sinks
    LoggingSink: Default sink backed by the standard logging module
    safe_error_message: Truncated, scrubbed error text for logs
    report_event / report_error: Call a sink without letting it raise
"""

import logging
import re
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 200

_SENSITIVE_PATTERN = re.compile(
    r"((?:secret|password|token|key|authorization)\s*[=:]\s*)(\S+)", re.IGNORECASE
)


class ObservabilitySink(Protocol):
    """Destination for freshness-layer diagnostics."""

    def record_event(self, name: str, **fields: Any) -> None: ...

    def record_error(self, source: str, error: BaseException, **fields: Any) -> None: ...


def safe_error_message(error: BaseException) -> str:
    """Create safe error message without leaking credentials.

    Args:
        error: Exception to describe

    Returns:
        Error text truncated to MAX_ERROR_LENGTH with credential values masked
    """
    text = str(error) or type(error).__name__
    text = _SENSITIVE_PATTERN.sub(r"\1***", text)
    if len(text) > MAX_ERROR_LENGTH:
        text = text[:MAX_ERROR_LENGTH] + "..."
    return text


def _format_fields(fields: dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(fields.items()))


class LoggingSink:
    """Sink that writes events and errors to a logger.

    Example:
        >>> sink = LoggingSink()
        >>> sink.record_event("retry.succeeded", attempt=2)
    """

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def record_event(self, name: str, **fields: Any) -> None:
        suffix = f" {_format_fields(fields)}" if fields else ""
        self.log.info(f"{name}{suffix}")

    def record_error(self, source: str, error: BaseException, **fields: Any) -> None:
        suffix = f" {_format_fields(fields)}" if fields else ""
        self.log.warning(
            f"{source} failed: {type(error).__name__}: {safe_error_message(error)}{suffix}"
        )


def report_event(sink: ObservabilitySink, name: str, **fields: Any) -> None:
    """Forward an event to ``sink``; sink failures are logged and dropped."""
    try:
        sink.record_event(name, **fields)
    except Exception as e:
        logger.debug(f"Observability sink rejected event {name}: {e}")


def report_error(
    sink: ObservabilitySink, source: str, error: BaseException, **fields: Any
) -> None:
    """Forward an error to ``sink``; sink failures are logged and dropped."""
    try:
        sink.record_error(source, error, **fields)
    except Exception as e:
        logger.debug(f"Observability sink rejected error from {source}: {e}")


__all__ = [
    "LoggingSink",
    "ObservabilitySink",
    "report_error",
    "report_event",
    "safe_error_message",
]
