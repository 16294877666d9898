"""Retry control presentation derived from retry session state.

Pure functions only; nothing here touches the state machine.

Public API (the "studs"):
    RetryControlView: What a retry button shows
    RetryLabels: Overridable label texts
    derive_retry_view: View for {is_online, is_attempting, is_exhausted}
    view_for_state: Same, from a RetryState snapshot
    attempt_badge: "N/M" counter shown next to the control
"""

from dataclasses import dataclass
from enum import StrEnum

from pinnity_freshness.retry_session import RetryState


class RetryIcon(StrEnum):
    SPINNER = "spinner"
    OFFLINE = "wifi-off"
    RETRY = "refresh"


class ButtonVariant(StrEnum):
    DEFAULT = "default"
    OUTLINE = "outline"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class RetryLabels:
    loading: str = "Retrying..."
    offline: str = "You're Offline"
    retry: str = "Retry"


DEFAULT_LABELS = RetryLabels()


@dataclass(frozen=True)
class RetryControlView:
    """Rendered state of a retry control.

    Attributes:
        label: Button text
        icon: Icon name
        variant: Visual variant
        disabled: True while attempting or exhausted
    """

    label: str
    icon: RetryIcon
    variant: ButtonVariant
    disabled: bool


def derive_retry_view(
    is_online: bool,
    is_attempting: bool,
    is_exhausted: bool,
    labels: RetryLabels = DEFAULT_LABELS,
    variant: ButtonVariant = ButtonVariant.DEFAULT,
    disabled: bool = False,
) -> RetryControlView:
    """Derive the retry control's presentation.

    Attempting wins over offline, offline wins over idle. An offline control
    stays enabled so a click can explain why nothing happens.

    Args:
        is_online: Current connectivity
        is_attempting: Action in flight
        is_exhausted: Retry budget spent
        labels: Label texts
        variant: Variant used when neither offline nor exhausted
        disabled: Caller-forced disable

    Example:
        >>> derive_retry_view(is_online=False, is_attempting=False, is_exhausted=False).label
        "You're Offline"
    """
    if is_attempting:
        label, icon = labels.loading, RetryIcon.SPINNER
    elif not is_online:
        label, icon = labels.offline, RetryIcon.OFFLINE
    else:
        label, icon = labels.retry, RetryIcon.RETRY

    if not is_online:
        resolved_variant = ButtonVariant.OUTLINE
    elif is_exhausted:
        resolved_variant = ButtonVariant.DESTRUCTIVE
    else:
        resolved_variant = variant

    return RetryControlView(
        label=label,
        icon=icon,
        variant=resolved_variant,
        disabled=disabled or is_attempting or is_exhausted,
    )


def view_for_state(state: RetryState, labels: RetryLabels = DEFAULT_LABELS) -> RetryControlView:
    return derive_retry_view(state.is_online, state.is_attempting, state.exhausted, labels)


def attempt_badge(
    attempt: int, max_retries: int, is_attempting: bool, is_exhausted: bool
) -> str | None:
    """Attempt counter text, e.g. "2/3".

    Returns:
        None when no attempt was spent, or while attempting or exhausted
    """
    if attempt <= 0 or is_attempting or is_exhausted:
        return None
    return f"{attempt}/{max_retries}"


__all__ = [
    "ButtonVariant",
    "RetryControlView",
    "RetryIcon",
    "RetryLabels",
    "attempt_badge",
    "derive_retry_view",
    "view_for_state",
]
