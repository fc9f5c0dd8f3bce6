"""
Record sync: failure taxonomy, local sync state, push-retry, and the
orchestrator that sequences a full sync.

The orchestrator is imported from ``ibex.core.sync.orchestrator`` directly.
"""

from .errors import FAILURE_PATTERNS, FailureKind, classify_failure, is_retryable
from .state import ExternalLinkState, RemoteSyncState, SyncState, SyncStateStore
from .summary import (
    NOTHING_CHANGED,
    SyncSummary,
    SyncTallies,
    attic_hint,
    format_summary,
    format_tallies,
    next_step,
)

__all__ = [
    "FAILURE_PATTERNS",
    "NOTHING_CHANGED",
    "ExternalLinkState",
    "FailureKind",
    "RemoteSyncState",
    "SyncState",
    "SyncStateStore",
    "SyncSummary",
    "SyncTallies",
    "attic_hint",
    "classify_failure",
    "format_summary",
    "format_tallies",
    "is_retryable",
    "next_step",
]
