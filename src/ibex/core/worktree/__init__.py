"""
Record-branch worktree, transaction branches, and the worktree lock.
"""

from .lock import WorktreeBusyError, WorktreeLock
from .manager import (
    DEFAULT_BRANCH,
    DEFAULT_REMOTE,
    DataWorktree,
    WorktreeError,
    WorktreeHealth,
    WorktreeHealthError,
    WorktreeStatus,
)
from .transactions import (
    NoActiveTransactionError,
    TransactionActiveError,
    TransactionError,
    TransactionManager,
    TransactionState,
)

__all__ = [
    "DEFAULT_BRANCH",
    "DEFAULT_REMOTE",
    "DataWorktree",
    "NoActiveTransactionError",
    "TransactionActiveError",
    "TransactionError",
    "TransactionManager",
    "TransactionState",
    "WorktreeBusyError",
    "WorktreeError",
    "WorktreeHealth",
    "WorktreeHealthError",
    "WorktreeLock",
    "WorktreeStatus",
]
