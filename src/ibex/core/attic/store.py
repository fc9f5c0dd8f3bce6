"""
Append-only conflict archive ("attic").

Every time a last-write-wins decision discards one side of a record, the
losing record's full snapshot is written here. Entries are never deleted
automatically; there is no delete operation at all.

Layout::

    <data_dir>/attic/<record-id>/<timestamp>_<field>.yml
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from ibex.core.records.storage import ATTIC_DIR

logger = logging.getLogger(__name__)

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


class AtticError(Exception):
    """Raised when an attic entry cannot be read or written."""

    pass


class AtticContext(BaseModel):
    """Versions and timestamps of both sides at the time of the conflict."""

    local_version: int | None = None
    remote_version: int | None = None
    local_updated_at: datetime | None = None
    remote_updated_at: datetime | None = None


class AtticEntry(BaseModel):
    """
    One archived conflict loser.

    Keyed by (record_id, timestamp). ``field`` is ``record`` for a
    whole-record snapshot; ``fields`` lists the individual fields that were
    decided by last-write-wins.
    """

    record_id: str = Field(..., description="Stable id of the record")
    timestamp: datetime = Field(..., description="When the conflict was archived")
    field: str = Field(default="record", description="Archived field or 'record'")
    fields: list[str] = Field(default_factory=list, description="LWW-decided fields")
    winner_source: str = Field(..., description="Side whose values were kept")
    loser_source: str = Field(..., description="Side whose values were discarded")
    lost_value: Any = Field(default=None, description="Losing snapshot or value")
    context: AtticContext = Field(default_factory=AtticContext)

    def file_stem(self) -> str:
        stamp = self.timestamp.strftime("%Y%m%dT%H%M%S.%fZ")
        return f"{stamp}_{_SAFE_NAME_RE.sub('-', self.field)}"


class AtticStore:
    """
    Reads and appends attic entries under a data directory.

    Example:
        >>> attic = AtticStore(data_dir)
        >>> path = attic.archive(entry)
        >>> [e.fields for e in attic.list(record_id)]
    """

    def __init__(self, data_dir: Path):
        self.attic_dir = data_dir / ATTIC_DIR

    def archive(self, entry: AtticEntry) -> Path:
        """
        Append an entry; an existing file is never overwritten.

        Returns:
            Path of the written entry
        """
        record_dir = self.attic_dir / entry.record_id
        record_dir.mkdir(parents=True, exist_ok=True)
        stem = entry.file_stem()
        path = record_dir / f"{stem}.yml"
        suffix = 1
        while path.exists():
            path = record_dir / f"{stem}-{suffix}.yml"
            suffix += 1

        text = yaml.safe_dump(entry.model_dump(mode="json"), sort_keys=True)
        try:
            # "x" mode refuses to clobber an entry created concurrently
            with path.open("x", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            raise AtticError(f"Failed to write attic entry {path}: {e}") from e
        logger.info("Archived conflict loser for %s at %s", entry.record_id, path.name)
        return path

    def list(self, record_id: str | None = None) -> list[AtticEntry]:
        """List entries, oldest first, optionally for a single record."""
        if not self.attic_dir.exists():
            return []
        if record_id is not None:
            dirs = [self.attic_dir / record_id]
        else:
            dirs = sorted(p for p in self.attic_dir.iterdir() if p.is_dir())

        entries: list[AtticEntry] = []
        for d in dirs:
            if not d.is_dir():
                continue
            for path in sorted(d.glob("*.yml")):
                try:
                    entries.append(self._load(path))
                except AtticError as e:
                    logger.warning("Skipping unreadable attic entry %s: %s", path, e)
        entries.sort(key=lambda e: (e.timestamp, e.record_id))
        return entries

    def get(self, record_id: str, timestamp: datetime) -> AtticEntry | None:
        for entry in self.list(record_id):
            if entry.timestamp == timestamp:
                return entry
        return None

    def _load(self, path: Path) -> AtticEntry:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            return AtticEntry.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise AtticError(str(e)) from e
