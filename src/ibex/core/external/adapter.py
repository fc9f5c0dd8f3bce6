"""
Batch sync of record status and labels with linked external issues.

Runs only as part of an explicit sync, never as a side effect of a single
record mutation. Labels are merged three-way against the label set recorded
at the last successful sync of each link, so additions and removals on either
side propagate. External status changes are pulled only when the external
issue changed since the last sync; otherwise the local status stands and is
pushed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ibex.core.merge.strategies import union_merge
from ibex.core.records.models import Record, RecordStatus, utc_now
from ibex.core.sync.state import SyncState

from .client import ExternalTracker, ExternalTrackerError
from .mapping import external_matches, external_to_local, local_to_external
from .models import IssueRef

logger = logging.getLogger(__name__)


@dataclass
class ExternalSyncResult:
    """Outcome of a pull or push pass."""

    changed: list[Record] = field(default_factory=list)
    links: int = 0
    pushed: int = 0
    errors: list[str] = field(default_factory=list)
    error_kinds: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ExternalSync:
    """
    Mirror status and labels between records and external issues.

    Example:
        >>> sync = ExternalSync(tracker, state)
        >>> pulled = sync.pull(records)
        >>> for record in pulled.changed:
        ...     store.write(record)
        >>> pushed = sync.push(records_after_record_sync)
    """

    def __init__(self, tracker: ExternalTracker, state: SyncState):
        self.tracker = tracker
        self.state = state

    def _linked(self, records: dict[str, Record], result: ExternalSyncResult) -> list[tuple[Record, IssueRef]]:
        linked = []
        for record_id in sorted(records):
            record = records[record_id]
            if not record.external_issue_url:
                continue
            ref = IssueRef.from_url(record.external_issue_url)
            if ref is None:
                result.errors.append(f"{record_id}: unrecognized issue link {record.external_issue_url}")
                result.error_kinds.append("data")
                continue
            linked.append((record, ref))
        result.links = len(linked)
        return linked

    def _fail(self, result: ExternalSyncResult, record: Record, e: ExternalTrackerError) -> None:
        logger.warning("External sync failed for %s: %s", record.id, e)
        result.errors.append(f"{record.id}: {e}")
        result.error_kinds.append(e.kind.value)

    def pull(self, records: dict[str, Record]) -> ExternalSyncResult:
        """
        Pull external status and labels into records.

        Returns:
            Result whose ``changed`` holds updated records for the caller to write
        """
        result = ExternalSyncResult()
        for record, ref in self._linked(records, result):
            try:
                external = self.tracker.get_state(ref)
            except ExternalTrackerError as e:
                self._fail(result, record, e)
                continue

            link = self.state.link(record.external_issue_url or "")
            changes: dict[str, object] = {}

            labels = union_merge(record.labels, external.labels, link.labels if link else None)
            if labels != record.labels:
                changes["labels"] = labels

            external_moved = link is not None and (link.state, link.reason) != (external.state, external.reason)
            if external_moved:
                status = external_to_local(external.state, external.reason, record.status)
                if status is not None:
                    changes["status"] = status
                    if status in (RecordStatus.CLOSED, RecordStatus.DEFERRED):
                        changes["closed_at"] = record.closed_at or utc_now()
                    else:
                        changes["closed_at"] = None
                        changes["close_reason"] = None

            if changes:
                result.changed.append(record.touch(**changes))
                logger.info("Pulled external changes into %s: %s", record.id, ", ".join(changes))
        return result

    def push(self, records: dict[str, Record]) -> ExternalSyncResult:
        """Push local status and labels to linked external issues."""
        result = ExternalSyncResult()
        for record, ref in self._linked(records, result):
            url = record.external_issue_url or ""
            link = self.state.link(url)
            try:
                external = self.tracker.get_state(ref)
                touched = False
                state, reason = external.state, external.reason

                mapped = local_to_external(record.status)
                if mapped is not None and not external_matches(record.status, state, reason):
                    state, reason = mapped
                    self.tracker.set_state(ref, state, reason)
                    touched = True

                local_labels = set(record.labels)
                external_labels = set(external.labels)
                base = set(link.labels) if link else set()
                for label in sorted(local_labels - external_labels):
                    self.tracker.add_label(ref, label)
                    touched = True
                for label in sorted((external_labels - local_labels) & base):
                    self.tracker.remove_label(ref, label)
                    touched = True
                kept_external = (external_labels - local_labels) - base
            except ExternalTrackerError as e:
                self._fail(result, record, e)
                continue

            self.state.mark_link_synced(url, sorted(local_labels | kept_external), state, reason)
            if touched:
                result.pushed += 1
        return result
