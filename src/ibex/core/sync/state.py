"""
Local, non-synchronized sync state.

Stored in ``.ibex/state.json``. Tracks the last remote revision this clone
synced with (per remote) and, per external-tracker link, the label set and
state recorded at the last successful external sync. The latter is the base
for the three-way label union.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from ibex.core.paths import STATE_FILE, ibex_dir
from ibex.core.records.storage import atomic_write

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RemoteSyncState(BaseModel):
    """What this clone last agreed on with one remote."""

    last_synced_sha: str | None = Field(default=None, description="Remote tip after the last successful push")
    last_sync_at: datetime | None = Field(default=None)
    last_failure: str | None = Field(default=None)
    last_failure_kind: str | None = Field(default=None)


class ExternalLinkState(BaseModel):
    """External-tracker issue state at the last successful sync of a link."""

    labels: list[str] = Field(default_factory=list)
    state: str | None = None
    reason: str | None = None
    synced_at: datetime | None = None


class SyncState(BaseModel):
    """
    Persistent local sync state.

    Example:
        >>> state = SyncStateStore(project_dir).load()
        >>> state.mark_synced("origin", "abc123")
        >>> SyncStateStore(project_dir).save(state)
    """

    remotes: dict[str, RemoteSyncState] = Field(default_factory=dict)
    external: dict[str, ExternalLinkState] = Field(default_factory=dict)

    def remote(self, name: str) -> RemoteSyncState:
        return self.remotes.setdefault(name, RemoteSyncState())

    def last_synced_sha(self, remote: str) -> str | None:
        entry = self.remotes.get(remote)
        return entry.last_synced_sha if entry else None

    def mark_synced(self, remote: str, sha: str | None) -> None:
        entry = self.remote(remote)
        entry.last_synced_sha = sha
        entry.last_sync_at = _now()
        entry.last_failure = None
        entry.last_failure_kind = None

    def mark_failed(self, remote: str, message: str, kind: str) -> None:
        entry = self.remote(remote)
        entry.last_failure = message
        entry.last_failure_kind = kind

    def link(self, url: str) -> ExternalLinkState | None:
        return self.external.get(url)

    def mark_link_synced(self, url: str, labels: list[str], state: str | None, reason: str | None) -> None:
        self.external[url] = ExternalLinkState(
            labels=sorted(set(labels)), state=state, reason=reason, synced_at=_now()
        )


class SyncStateStore:
    """Loads and saves SyncState atomically."""

    def __init__(self, project_dir: Path):
        self.path = ibex_dir(project_dir) / STATE_FILE

    def load(self) -> SyncState:
        if not self.path.exists():
            return SyncState()
        try:
            return SyncState.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as e:
            logger.warning("Ignoring unreadable sync state %s: %s", self.path, e)
            return SyncState()

    def save(self, state: SyncState) -> None:
        atomic_write(self.path, state.model_dump_json(indent=2) + "\n")
