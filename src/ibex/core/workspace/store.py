"""
Named workspaces: staged record snapshots outside the sync path.

A workspace lives in ``.ibex/workspaces/<name>/`` and mirrors the record
data directory exactly (``records/``, ``mappings/``, ``attic/``,
``meta.yml``). Workspaces serve recovery when the remote refuses pushes,
bulk editing (save, edit files, import), backups, and moving records
between repositories.

``outbox`` is only a conventional name; the engine treats it like any
other workspace.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ibex.core.attic.store import AtticStore
from ibex.core.merge.engine import (
    WORKTREE,
    Conflict,
    MergeResult,
    Sided,
    merge_sides,
    workspace_source,
)
from ibex.core.paths import workspaces_dir
from ibex.core.records.ids import IdMapping
from ibex.core.records.models import Record, substantively_equal
from ibex.core.records.storage import (
    META_FILE,
    LoadResult,
    RecordParseError,
    RecordStore,
    atomic_write,
    ensure_layout,
)

logger = logging.getLogger(__name__)

OUTBOX = "outbox"
# meta.yml key: record id -> revision the staged copy was saved from
BASE_REVISIONS_KEY = "base_revisions"
_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]{0,63}$")


class WorkspaceError(Exception):
    """Base exception for workspace operations."""

    pass


class WorkspaceNameError(WorkspaceError):
    """Raised for an invalid workspace name."""

    pass


class WorkspaceNotFoundError(WorkspaceError):
    """Raised when a workspace does not exist."""

    pass


def validate_name(name: str) -> str:
    """
    Check a workspace name.

    Names are lowercase letters, digits, ``.``, ``_`` and ``-``, starting
    with a letter or digit, so they are always safe directory names.
    """
    if not _NAME_RE.match(name) or name in (".", ".."):
        raise WorkspaceNameError(
            f"Invalid workspace name {name!r}: use lowercase letters, digits, '.', '_' or '-'"
        )
    return name


@dataclass
class WorkspaceInfo:
    name: str
    path: Path
    record_count: int


@dataclass
class SaveResult:
    """Outcome of saving into a workspace."""

    workspace: str
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_unmodified: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def saved(self) -> int:
        return self.new + self.updated


@dataclass
class ImportResult:
    """Outcome of importing a workspace into the main store."""

    workspace: str
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    commit_sha: str | None = None
    cleared: bool = False

    @property
    def changed(self) -> int:
        return self.new + self.updated


def _load_meta(data_dir: Path) -> dict:
    path = data_dir / META_FILE
    if not path.exists():
        return {}
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def _save_meta(data_dir: Path, meta: dict) -> None:
    atomic_write(data_dir / META_FILE, yaml.safe_dump(meta, sort_keys=True))


def _merge_into(
    target: RecordStore,
    attic: AtticStore,
    incoming: Record,
    incoming_bytes: bytes | None,
    incoming_source: str,
    target_source: str,
    base: Record | None,
) -> tuple[str, MergeResult | None]:
    """
    Merge one record into a store.

    Returns:
        ("new" | "updated" | "unchanged", merge result or None)
    """
    existing = target.read(incoming.id)
    if existing is None:
        if incoming_bytes is not None:
            target.write_bytes(incoming.id, incoming_bytes)
        else:
            target.write(incoming)
        return "new", None

    result = merge_sides(Sided(existing, target_source), Sided(incoming, incoming_source), base)
    for entry in result.attic_entries:
        attic.archive(entry)
    if result.merged is existing:
        return "unchanged", result
    if result.merged is incoming and incoming_bytes is not None:
        target.write_bytes(incoming.id, incoming_bytes)
        return "updated", result
    changed = target.write(result.merged)
    return ("updated" if changed else "unchanged"), result


class WorkspaceStore:
    """
    Save, import, list and delete named workspaces.

    Example:
        >>> workspaces = WorkspaceStore(project_dir)
        >>> workspaces.save("outbox", worktree.data_dir, updates_only=True,
        ...                 baseline=baseline.records, source_revision=worktree.head())
        >>> workspaces.import_into("outbox", worktree.data_dir, commit=worktree.commit_changes,
        ...                        clear_on_success=True, records_at=worktree.known_records_at)
    """

    def __init__(self, project_dir: Path):
        self.root = workspaces_dir(project_dir)

    def path(self, name: str) -> Path:
        return self.root / validate_name(name)

    def exists(self, name: str) -> bool:
        return self.path(name).is_dir()

    def list(self) -> list[WorkspaceInfo]:
        if not self.root.exists():
            return []
        infos = []
        for d in sorted(p for p in self.root.iterdir() if p.is_dir()):
            if not _NAME_RE.match(d.name):
                continue
            infos.append(WorkspaceInfo(name=d.name, path=d, record_count=len(RecordStore(d).ids())))
        return infos

    def delete(self, name: str) -> None:
        path = self.path(name)
        if not path.is_dir():
            raise WorkspaceNotFoundError(f"Workspace '{name}' does not exist")
        shutil.rmtree(path)
        logger.info("Deleted workspace %s", name)

    def records(self, name: str) -> LoadResult:
        path = self.path(name)
        if not path.is_dir():
            raise WorkspaceNotFoundError(f"Workspace '{name}' does not exist")
        return RecordStore(path).load_all()

    def base_revisions(self, name: str) -> dict[str, str]:
        """Revision each staged record was saved from, by record id."""
        meta = _load_meta(self.path(name))
        return {str(k): str(v) for k, v in (meta.get(BASE_REVISIONS_KEY) or {}).items()}

    def save(
        self,
        name: str,
        source_dir: Path,
        *,
        updates_only: bool = False,
        baseline: dict[str, Record] | None = None,
        source_revision: str | None = None,
    ) -> SaveResult:
        """
        Save records from ``source_dir`` into workspace ``name``.

        Args:
            name: Workspace name
            source_dir: Data directory to save from (the record worktree's)
            updates_only: Save only records that differ substantively from
                ``baseline``
            baseline: Last-known remote records by id; also used as the merge
                base when the workspace already holds a record
            source_revision: Commit whose records ``source_dir`` holds. Kept
                per saved record so an import can merge against the copy's
                real ancestor; None marks the ancestor unknown.

        Returns:
            SaveResult. Conflicts with existing workspace content are
            archived in the workspace's own attic.
        """
        target_dir = self.path(name)
        result = SaveResult(workspace=name)
        baseline = baseline or {}

        source_store = RecordStore(source_dir)
        loaded = source_store.load_all()
        result.errors.extend(f"{e.path}: {e}" for e in loaded.errors)

        ensure_layout(target_dir)
        target = RecordStore(target_dir)
        attic = AtticStore(target_dir)
        meta = _load_meta(target_dir)
        bases = dict(meta.get(BASE_REVISIONS_KEY) or {})
        for record_id in sorted(loaded.records):
            record = loaded.records[record_id]
            known = baseline.get(record_id)
            if updates_only and known is not None and substantively_equal(record, known):
                result.skipped_unmodified += 1
                continue
            try:
                outcome, merge = _merge_into(
                    target,
                    attic,
                    record,
                    source_store.read_bytes(record_id),
                    WORKTREE,
                    workspace_source(name),
                    known,
                )
            except RecordParseError as e:
                logger.warning("Workspace %s has an unreadable copy of %s: %s", name, record_id, e)
                result.errors.append(f"{e.path}: {e}")
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)
            if merge is not None:
                result.conflicts.extend(merge.conflicts)
            if outcome != "unchanged":
                if source_revision:
                    bases[record_id] = source_revision
                else:
                    bases.pop(record_id, None)

        meta[BASE_REVISIONS_KEY] = bases
        _save_meta(target_dir, meta)

        mapping = IdMapping.load(target_dir)
        mapping.merge(IdMapping.load(source_dir))
        mapping.save(target_dir)

        logger.info(
            "Saved %d record(s) to workspace %s (%d unmodified skipped)",
            result.saved,
            name,
            result.skipped_unmodified,
        )
        return result

    def import_into(
        self,
        name: str,
        target_dir: Path,
        commit: Callable[[str], str | None],
        *,
        clear_on_success: bool = False,
        records_at: Callable[[str], dict[str, Record]] | None = None,
    ) -> ImportResult:
        """
        Merge workspace ``name`` into the data directory ``target_dir``.

        Each staged record is merged against the record at the revision it
        was saved from, looked up through ``records_at``. Without a known
        revision the merge has no base, so differing fields are decided
        by last-write-wins and the losing copy is archived.

        ``commit`` is called once the merge is written. The workspace is
        deleted only when ``clear_on_success`` is set and ``commit``
        returned without raising. A commit with nothing to record counts
        as success.

        Raises:
            WorkspaceNotFoundError: If the workspace does not exist
        """
        source_dir = self.path(name)
        if not source_dir.is_dir():
            raise WorkspaceNotFoundError(f"Workspace '{name}' does not exist")
        result = ImportResult(workspace=name)

        source_store = RecordStore(source_dir)
        loaded = source_store.load_all()
        result.errors.extend(f"{e.path}: {e}" for e in loaded.errors)

        revisions = self.base_revisions(name)
        snapshots: dict[str, dict[str, Record]] = {}

        def base_for(record_id: str) -> Record | None:
            revision = revisions.get(record_id)
            if not revision or records_at is None:
                return None
            if revision not in snapshots:
                snapshots[revision] = records_at(revision)
            return snapshots[revision].get(record_id)

        ensure_layout(target_dir)
        target = RecordStore(target_dir)
        attic = AtticStore(target_dir)
        for record_id in sorted(loaded.records):
            try:
                outcome, merge = _merge_into(
                    target,
                    attic,
                    loaded.records[record_id],
                    source_store.read_bytes(record_id),
                    workspace_source(name),
                    WORKTREE,
                    base_for(record_id),
                )
            except RecordParseError as e:
                logger.warning("Main store has an unreadable copy of %s: %s", record_id, e)
                result.errors.append(f"{e.path}: {e}")
                continue
            setattr(result, outcome, getattr(result, outcome) + 1)
            if merge is not None:
                result.conflicts.extend(merge.conflicts)

        for entry in AtticStore(source_dir).list():
            if attic.get(entry.record_id, entry.timestamp) is None:
                attic.archive(entry)

        mapping = IdMapping.load(target_dir)
        mapping.merge(IdMapping.load(source_dir))
        mapping.save(target_dir)

        result.commit_sha = commit(f"Import workspace {name}")

        if clear_on_success:
            if result.errors:
                logger.warning("Keeping workspace %s: %d record(s) could not be imported", name, len(result.errors))
            else:
                self.delete(name)
                result.cleared = True
        logger.info("Imported workspace %s: %d new, %d updated", name, result.new, result.updated)
        return result
