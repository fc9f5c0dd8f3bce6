"""
Append-only archive of conflict-losing record snapshots.
"""

from .store import AtticContext, AtticEntry, AtticError, AtticStore

__all__ = ["AtticContext", "AtticEntry", "AtticError", "AtticStore"]
