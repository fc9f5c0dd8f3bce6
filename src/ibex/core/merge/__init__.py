"""
Field-level three-way merge of records.
"""

from .engine import (
    EXTERNAL,
    LOCAL,
    REMOTE,
    WORKTREE,
    Conflict,
    MergeConflictError,
    MergeError,
    MergeResult,
    MergeSourceError,
    Sided,
    merge_records,
    merge_sides,
    synthetic_base,
    workspace_source,
)
from .strategies import (
    FIELD_STRATEGIES,
    FieldStrategy,
    merge_manual_order,
    order_by_hints,
    union_merge,
)

__all__ = [
    "EXTERNAL",
    "FIELD_STRATEGIES",
    "LOCAL",
    "REMOTE",
    "WORKTREE",
    "Conflict",
    "FieldStrategy",
    "MergeConflictError",
    "MergeError",
    "MergeResult",
    "MergeSourceError",
    "Sided",
    "merge_manual_order",
    "merge_records",
    "merge_sides",
    "order_by_hints",
    "synthetic_base",
    "union_merge",
    "workspace_source",
]
