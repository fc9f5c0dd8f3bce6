"""
Named record snapshots for explicit save and import.
"""

from .store import (
    OUTBOX,
    ImportResult,
    SaveResult,
    WorkspaceError,
    WorkspaceInfo,
    WorkspaceNameError,
    WorkspaceNotFoundError,
    WorkspaceStore,
    validate_name,
)

__all__ = [
    "OUTBOX",
    "ImportResult",
    "SaveResult",
    "WorkspaceError",
    "WorkspaceInfo",
    "WorkspaceNameError",
    "WorkspaceNotFoundError",
    "WorkspaceStore",
    "validate_name",
]
