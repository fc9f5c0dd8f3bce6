"""
Last-known remote record set, without network access.

Incremental staging compares local records against what the remote last
looked like. That comes from the cached remote-tracking ref (updated by every
fetch and push), falling back to the last synced revision in the local sync
state. Nothing here fetches, so it works while the remote is unreachable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ibex.core.git.backend import GitError
from ibex.core.records.models import Record
from ibex.core.worktree.manager import DataWorktree

from .state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class RemoteBaseline:
    """Records as of the last-known remote revision."""

    revision: str | None
    records: dict[str, Record]

    @property
    def known(self) -> bool:
        return self.revision is not None


def last_known_remote(worktree: DataWorktree, state: SyncState | None = None) -> RemoteBaseline:
    """
    Load the record set at the last-known remote revision.

    Returns:
        RemoteBaseline; ``revision`` is None only when this clone has never
        seen the remote branch, in which case every record is new to it.
    """
    backend = worktree.backend
    candidates = [backend.remote_branch_sha(worktree.remote, worktree.branch)]
    if state is not None:
        candidates.append(state.last_synced_sha(worktree.remote))

    for revision in candidates:
        if not revision:
            continue
        try:
            loaded = worktree.records_at(revision)
        except GitError as e:
            logger.warning("Cannot read remote baseline at %s: %s", revision[:8], e)
            continue
        return RemoteBaseline(revision=revision, records=loaded.records)
    return RemoteBaseline(revision=None, records={})
