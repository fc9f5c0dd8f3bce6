"""
Three-way record merge engine.

Merges the local and remote variants of one record against their common
base into a single record plus an informational conflict list.

Rules:
    - A field changed on only one side takes that side's value.
    - A field changed identically on both sides takes that value.
    - A field changed differently on both sides is resolved by its strategy
      from ``FIELD_STRATEGIES``.
    - Last-write-wins compares ``updated_at``. Equal timestamps fall back to
      comparing the canonical encoding of each side's substantive content,
      so the outcome does not depend on argument order.
    - The version only moves past both inputs when the merged content differs
      from both of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ibex.core.attic.store import AtticContext, AtticEntry
from ibex.core.records.models import (
    Record,
    canonical_json,
    substantive_view,
    substantively_equal,
    utc_now,
)

from .strategies import (
    FIELD_STRATEGIES,
    MISSING,
    FieldStrategy,
    merge_dependencies,
    merge_manual_order,
    merge_structural,
    union_merge,
)

logger = logging.getLogger(__name__)

# Source labels
LOCAL = "local"
REMOTE = "remote"
WORKTREE = "worktree"
EXTERNAL = "external"


def workspace_source(name: str) -> str:
    return f"workspace:{name}"


class MergeError(Exception):
    """Raised when two records cannot be merged at all."""

    pass


class MergeSourceError(MergeError):
    """Raised when both sides of a merge claim the same source."""

    pass


class MergeConflictError(MergeError):
    """Raised in strict mode when a merge needed a last-write-wins decision."""

    def __init__(self, message: str, conflicts: list[Conflict]):
        super().__init__(message)
        self.conflicts = conflicts


@dataclass
class Conflict:
    """One field decided by last-write-wins."""

    record_id: str
    field: str
    winner: str
    loser: str
    winner_value: Any
    loser_value: Any
    timestamp: datetime


@dataclass
class MergeResult:
    """Outcome of merging one record."""

    merged: Record
    conflicts: list[Conflict] = field(default_factory=list)
    attic_entries: list[AtticEntry] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass(frozen=True)
class Sided:
    """A record tagged with the store it came from."""

    record: Record
    source: str


def _higher(local: Record, remote: Record) -> tuple[Record, Record]:
    """Return (higher, lower) by version, then updated_at, then content."""

    def rank(r: Record) -> tuple[int, datetime, str]:
        return (r.version, r.updated_at, canonical_json(substantive_view(r)))

    if rank(remote) > rank(local):
        return remote, local
    return local, remote


def _local_wins_lww(local: Record, remote: Record) -> bool:
    if local.updated_at != remote.updated_at:
        return local.updated_at > remote.updated_at
    return canonical_json(substantive_view(local)) >= canonical_json(substantive_view(remote))


def synthetic_base(local: Record, remote: Record) -> dict[str, Any]:
    """
    Neutral base for two variants with no known common ancestor.

    Holds only the fields on which both sides agree. Every disagreeing field
    has no base value, so both sides count as changed and the field's
    strategy decides; neither input is presumed unchanged.
    """
    lv = local.model_dump(mode="json")
    rv = remote.model_dump(mode="json")
    return {k: lv[k] for k in lv if k in rv and lv[k] == rv[k]}


def merge_records(
    local: Record,
    remote: Record,
    base: Record | None = None,
    *,
    now: datetime | None = None,
    strict: bool = False,
    local_source: str = LOCAL,
    remote_source: str = REMOTE,
) -> MergeResult:
    """
    Merge two variants of a record.

    Args:
        local: Local variant
        remote: Remote variant
        base: Common ancestor, or None to use the synthetic base
        now: Timestamp for a version bump and for conflict entries
        strict: Raise MergeConflictError instead of returning conflicts
        local_source: Label for the local side in conflicts and attic entries
        remote_source: Label for the remote side in conflicts and attic entries

    Returns:
        MergeResult with the merged record, conflicts and attic entries

    Raises:
        MergeError: If the two variants are different records
        MergeConflictError: In strict mode, if any LWW decision was made
    """
    if local.id != remote.id:
        raise MergeError(f"Cannot merge different records: {local.id} vs {remote.id}")

    if substantively_equal(local, remote):
        higher, _ = _higher(local, remote)
        return MergeResult(merged=higher)

    now = now or utc_now()
    lv = local.model_dump(mode="json")
    rv = remote.model_dump(mode="json")
    bv = base.model_dump(mode="json") if base is not None else synthetic_base(local, remote)

    local_wins = _local_wins_lww(local, remote)
    winner_src, loser_src = (local_source, remote_source) if local_wins else (remote_source, local_source)
    conflicts: list[Conflict] = []

    def pick(path: str, l_value: Any, r_value: Any) -> Any:
        win, lose = (l_value, r_value) if local_wins else (r_value, l_value)
        conflicts.append(
            Conflict(
                record_id=local.id,
                field=path,
                winner=winner_src,
                loser=loser_src,
                winner_value=win,
                loser_value=lose,
                timestamp=now,
            )
        )
        return win

    merged: dict[str, Any] = {}
    for name, strategy in FIELD_STRATEGIES.items():
        if strategy is FieldStrategy.METADATA:
            continue
        l_value, r_value = lv[name], rv[name]
        b_value = bv.get(name, MISSING)

        if l_value == r_value:
            merged[name] = l_value
        elif b_value is not MISSING and l_value == b_value:
            merged[name] = r_value
        elif b_value is not MISSING and r_value == b_value:
            merged[name] = l_value
        elif strategy is FieldStrategy.IMMUTABLE:
            # only created_at can reach here; the earliest creation is the true one
            merged[name] = min(getattr(local, name), getattr(remote, name))
        elif strategy is FieldStrategy.UNION:
            merged[name] = union_merge(l_value, r_value, None if b_value is MISSING else b_value)
        elif strategy is FieldStrategy.MANUAL_ORDER:
            winner_list = l_value if local_wins else r_value
            merged[name] = merge_manual_order(
                l_value, r_value, None if b_value is MISSING else b_value, winner_list
            )
        elif name == "dependencies":
            merged[name] = merge_dependencies(l_value, r_value, None if b_value is MISSING else b_value)
        elif strategy is FieldStrategy.STRUCTURAL:
            merged[name] = merge_structural(l_value, r_value, b_value, pick, name)
        else:
            merged[name] = pick(name, l_value, r_value)

    higher, lower = _higher(local, remote)
    merged["version"] = higher.version
    merged["updated_at"] = higher.updated_at
    candidate = Record.model_validate(merged)

    if substantively_equal(candidate, higher):
        result = higher
    elif substantively_equal(candidate, lower):
        result = lower.model_copy(update={"version": higher.version})
    else:
        result = candidate.model_copy(
            update={"version": max(local.version, remote.version) + 1, "updated_at": now}
        )

    attic_entries: list[AtticEntry] = []
    if conflicts:
        loser = remote if local_wins else local
        attic_entries.append(
            AtticEntry(
                record_id=local.id,
                timestamp=now,
                field="record",
                fields=sorted({c.field for c in conflicts}),
                winner_source=winner_src,
                loser_source=loser_src,
                lost_value=loser.model_dump(mode="json"),
                context=AtticContext(
                    local_version=local.version,
                    remote_version=remote.version,
                    local_updated_at=local.updated_at,
                    remote_updated_at=remote.updated_at,
                ),
            )
        )
        logger.warning(
            "Record %s: %d field(s) resolved by last-write-wins (%s kept)",
            local.id,
            len(conflicts),
            winner_src,
        )
        if strict:
            raise MergeConflictError(
                f"Record {local.id} has conflicting edits to {', '.join(c.field for c in conflicts)}",
                conflicts,
            )

    return MergeResult(merged=result, conflicts=conflicts, attic_entries=attic_entries)


def merge_sides(
    local: Sided,
    remote: Sided,
    base: Record | None = None,
    *,
    now: datetime | None = None,
    strict: bool = False,
) -> MergeResult:
    """
    Merge two source-tagged variants.

    Raises:
        MergeSourceError: If both variants come from the same source
    """
    if local.source == remote.source:
        raise MergeSourceError(
            f"Both sides of the merge for {local.record.id} come from {local.source!r}"
        )
    return merge_records(
        local.record,
        remote.record,
        base,
        now=now,
        strict=strict,
        local_source=local.source,
        remote_source=remote.source,
    )
