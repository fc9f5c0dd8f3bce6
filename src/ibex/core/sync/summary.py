"""
User-visible sync summaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import FailureKind

NOTHING_CHANGED = "Already in sync"


@dataclass
class SyncTallies:
    """New/updated/deleted record counts in one direction."""

    new: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def is_empty(self) -> bool:
        return self.new == 0 and self.updated == 0 and self.deleted == 0

    def add(self, other: SyncTallies) -> None:
        self.new += other.new
        self.updated += other.updated
        self.deleted += other.deleted

    @classmethod
    def from_name_status(cls, pairs: list[tuple[str, str]]) -> SyncTallies:
        """Build tallies from ``git diff --name-status`` pairs of record files."""
        tallies = cls()
        for status, path in pairs:
            if not path.endswith(".md"):
                continue
            if status == "A":
                tallies.new += 1
            elif status == "D":
                tallies.deleted += 1
            else:
                tallies.updated += 1
        return tallies


@dataclass
class SyncSummary:
    """Tallies for both directions plus the resolved conflicts."""

    sent: SyncTallies = field(default_factory=SyncTallies)
    received: SyncTallies = field(default_factory=SyncTallies)
    conflicts: int = 0
    conflicted_records: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.sent.is_empty and self.received.is_empty and self.conflicts == 0

    def add_conflicts(self, record_ids: list[str]) -> None:
        """Count field conflicts, given the record id of each one."""
        self.conflicts += len(record_ids)
        self.conflicted_records = sorted(set(self.conflicted_records) | set(record_ids))


def format_tallies(tallies: SyncTallies) -> str:
    """
    Format tallies, omitting zero categories.

    Example:
        >>> format_tallies(SyncTallies(new=2, updated=0, deleted=1))
        '2 new, 1 deleted'
    """
    parts = [
        f"{count} {label}"
        for count, label in ((tallies.new, "new"), (tallies.updated, "updated"), (tallies.deleted, "deleted"))
        if count
    ]
    return ", ".join(parts)


def format_summary(summary: SyncSummary) -> str:
    """
    One-line summary; empty string when nothing changed.

    Callers print ``NOTHING_CHANGED`` for the empty case.
    """
    parts = []
    if not summary.sent.is_empty:
        parts.append(f"sent {format_tallies(summary.sent)}")
    if not summary.received.is_empty:
        parts.append(f"received {format_tallies(summary.received)}")
    text = "; ".join(parts)
    if summary.conflicts:
        noun = "conflict" if summary.conflicts == 1 else "conflicts"
        where = f" in {', '.join(summary.conflicted_records)}" if summary.conflicted_records else ""
        text = f"{text} ({summary.conflicts} {noun} resolved{where})".strip()
    return text


def attic_hint(summary: SyncSummary) -> str | None:
    """Where to find the values that lost a conflict; None when nothing was archived."""
    if not summary.conflicted_records:
        return None
    first = summary.conflicted_records[0]
    return f"Losing values are in the attic: run 'ibex attic list', or 'ibex attic show {first}' for one record."


def next_step(kind: FailureKind | None, staged: bool = False, refused: list[str] | None = None) -> str:
    """
    Concrete next step for a failed sync.

    Args:
        kind: Failure classification
        staged: Local changes were staged in the outbox
        refused: Records whose conflicting edits a strict merge refused
    """
    if refused:
        return (
            f"Strict merge stopped on conflicting edits to {', '.join(refused)}. "
            "Edit those records to agree with the remote, or set merge.strict to false, then run 'ibex sync'."
        )
    if kind is FailureKind.PERMANENT:
        if staged:
            return (
                "The remote refused the push. Local changes were staged in the outbox; "
                "fix access, then run 'ibex sync' to push and import the outbox."
            )
        return (
            "The remote refused the push. Run 'ibex save --outbox --updates-only' to stage "
            "local changes, fix access, then run 'ibex sync'."
        )
    if kind is FailureKind.FATAL:
        return "A local error stopped the sync. Fix the reported problem (disk, repository), then run 'ibex doctor'."
    if kind is FailureKind.STALE:
        return "The remote kept moving during sync. Run 'ibex sync' again."
    return "This looks temporary. Run 'ibex sync' again; if it keeps failing, run 'ibex save --outbox' to stage changes."
