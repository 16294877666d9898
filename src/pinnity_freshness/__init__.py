"""pinnity-freshness - client-side data freshness and resilience layer

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Explicit wiring: no hidden process-wide singletons
- Self-heal quietly, surface only what the user can act on

The package decides whether cached marketplace data is still usable, turns
network reachability changes into refresh events, and wraps user-triggered
network operations in a bounded retry state machine.

Public API (the "studs"):
    FreshnessContext: Builds and holds the monitor, bus and query cache
    FreshnessConfig: Settings (TOML file + PINNITY_FRESHNESS_* env vars)
    RetrySession: Bounded retry state machine
    derive_retry_view: Label, icon and variant for a retry control
    attempt_badge: "N/M" attempt counter for a retry control
    CONNECTIVITY_RESTORED: Event published on offline -> online
"""

__version__ = "0.1.0"

from pinnity_freshness.config import FreshnessConfig
from pinnity_freshness.context import FreshnessContext
from pinnity_freshness.invalidation_bus import CONNECTIVITY_RESTORED
from pinnity_freshness.retry_session import RetrySession
from pinnity_freshness.retry_view import attempt_badge, derive_retry_view

__all__ = [
    "CONNECTIVITY_RESTORED",
    "FreshnessConfig",
    "FreshnessContext",
    "RetrySession",
    "__version__",
    "attempt_badge",
    "derive_retry_view",
]
