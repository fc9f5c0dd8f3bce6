"""
Git access for the record branch.
"""

from .backend import GitBackend, GitError, PushOutcome, WorktreeInfo
from .index import IsolatedIndex

__all__ = ["GitBackend", "GitError", "IsolatedIndex", "PushOutcome", "WorktreeInfo"]
