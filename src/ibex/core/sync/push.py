"""
Push-retry protocol.

Loop, bounded by ``RetryPolicy.max_attempts``:

    1. commit pending worktree changes (isolated index)
    2. fetch the remote record branch
    3. if the remote advanced, merge it per record:
       - the record set is the union of local and remote ids
       - the remote side is read at the fetched revision, never from disk
       - the base is the record at the merge base (synthetic if absent)
    4. commit the merge with the remote tip as second parent
    5. push

A stale rejection (the remote moved again) retries with backoff. A
permanent rejection stops at once. Transient failures retry until the bound.
Last-write-wins conflicts never fail the push, except in strict mode, where
the merge is refused before anything is written or committed. Unreadable
records keep their bytes and are logged and reported.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ibex.core.attic.store import AtticStore
from ibex.core.git.backend import GitError
from ibex.core.merge.engine import (
    REMOTE,
    WORKTREE,
    Conflict,
    MergeConflictError,
    MergeResult,
    Sided,
    merge_sides,
)
from ibex.core.paths import DATA_DIR
from ibex.core.records.ids import IdMapping
from ibex.core.records.models import Record, substantively_equal
from ibex.core.records.storage import ATTIC_DIR, RECORDS_DIR, LoadResult, RecordParseError, RecordStore
from ibex.core.worktree.manager import DataWorktree

from .errors import FailureKind, classify_failure
from .summary import SyncTallies

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Bounded retry with exponential backoff.

    Attributes:
        max_attempts: Total push attempts (at least 1)
        base_delay: Delay in seconds before the second attempt
        multiplier: Exponential backoff multiplier
        jitter_ratio: Random variance ratio applied to each delay
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        multiplier: float = 2.0,
        jitter_ratio: float = 0.2,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.jitter_ratio = jitter_ratio

    def delay(self, attempt: int) -> float:
        """Delay after the given (0-indexed) failed attempt."""
        delay = self.base_delay * (self.multiplier**attempt)
        variance = delay * self.jitter_ratio
        return max(0.0, delay + random.uniform(-variance, variance))


@dataclass
class PushResult:
    """Outcome of push_with_retry."""

    success: bool = False
    attempts: int = 0
    failure_kind: FailureKind | None = None
    error: str | None = None
    merged: bool = False
    pushed_sha: str | None = None
    conflicts: list[Conflict] = field(default_factory=list)
    refused_conflicts: list[Conflict] = field(default_factory=list)
    data_errors: list[str] = field(default_factory=list)
    sent: SyncTallies = field(default_factory=SyncTallies)
    received: SyncTallies = field(default_factory=SyncTallies)

    @property
    def ok(self) -> bool:
        """Pushed, and no record had to be skipped as unreadable."""
        return self.success and not self.data_errors


@dataclass
class RemoteMergeResult:
    """What merging a fetched remote tip into the worktree did."""

    written: int = 0
    conflicts: list[Conflict] = field(default_factory=list)
    data_errors: list[str] = field(default_factory=list)


class PushRetry:
    """
    Reconciles the local record branch with its remote and pushes.

    Example:
        >>> pusher = PushRetry(worktree, RetryPolicy(max_attempts=3))
        >>> result = pusher.push_with_retry()
        >>> result.success, result.failure_kind
    """

    def __init__(
        self,
        worktree: DataWorktree,
        policy: RetryPolicy | None = None,
        strict: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.worktree = worktree
        self.backend = worktree.backend
        self.policy = policy or RetryPolicy()
        self.strict = strict
        self.sleep = sleep

    def push_with_retry(self) -> PushResult:
        """
        Fetch, merge, commit and push until accepted or out of attempts.

        Returns:
            PushResult; ``failure_kind`` is set whenever ``success`` is False
        """
        remote, branch = self.worktree.remote, self.worktree.branch
        result = PushResult()
        local_start: str | None = None
        remote_sha: str | None = None

        for attempt in range(self.policy.max_attempts):
            result.attempts = attempt + 1
            last = attempt == self.policy.max_attempts - 1
            try:
                self.worktree.commit_changes("Record local changes")
                if local_start is None:
                    local_start = self.worktree.head()
                remote_sha = self.backend.fetch(remote, branch)
                local_sha = self.worktree.head()
                if remote_sha and local_sha and remote_sha == local_sha:
                    result.success = True
                    result.pushed_sha = local_sha
                    break
                if remote_sha and local_sha and not self.backend.is_ancestor(remote_sha, local_sha):
                    self._integrate(remote_sha, local_sha, result)
                outcome = self.backend.push(remote, branch)
            except MergeConflictError as e:
                result.refused_conflicts = list(e.conflicts)
                result.failure_kind = FailureKind.PERMANENT
                result.error = str(e)
                logger.warning("Push stopped: %s", e)
                break
            except GitError as e:
                kind = classify_failure(str(e))
                if self._stop(result, kind, str(e), last):
                    break
                self.sleep(self.policy.delay(attempt))
                continue

            if outcome.accepted:
                result.success = True
                result.pushed_sha = self.worktree.head()
                result.failure_kind = None
                result.error = None
                break

            kind = classify_failure(outcome.reason)
            if self._stop(result, kind, outcome.reason, last):
                break
            logger.info("Push attempt %d rejected (%s); retrying", attempt + 1, kind.value)
            self.sleep(self.policy.delay(attempt))

        if result.success:
            self._tally(result, local_start, remote_sha)
        return result

    def _stop(self, result: PushResult, kind: FailureKind, message: str, last: bool) -> bool:
        result.failure_kind = kind
        result.error = message.strip()
        if kind in (FailureKind.PERMANENT, FailureKind.FATAL):
            logger.warning("Push failed permanently: %s", result.error)
            return True
        if last:
            logger.warning("Push failed after %d attempts: %s", result.attempts, result.error)
            return True
        return False

    def _integrate(self, remote_sha: str, local_sha: str, result: PushResult) -> None:
        if self.backend.is_ancestor(local_sha, remote_sha):
            # nothing local to merge: fast-forward the record branch
            self.backend.run("merge", "-q", "--ff-only", remote_sha, cwd=self.worktree.path, phase="merge")
            logger.info("Fast-forwarded %s to %s", self.worktree.branch, remote_sha[:8])
            return

        merge = self.merge_remote(remote_sha, local_sha)
        result.merged = True
        result.conflicts.extend(merge.conflicts)
        for error in merge.data_errors:
            if error not in result.data_errors:
                result.data_errors.append(error)
        self.worktree.commit_changes(
            f"Merge {self.worktree.remote}/{self.worktree.branch}", extra_parents=(remote_sha,)
        )

    def merge_remote(self, remote_sha: str, local_sha: str) -> RemoteMergeResult:
        """
        Merge the records at ``remote_sha`` into the worktree files.

        Every record is merged before anything is written, so a strict-mode
        refusal leaves the worktree exactly as committed. Does not commit.

        Raises:
            MergeConflictError: In strict mode, if any record needed a
                last-write-wins decision
        """
        out = RemoteMergeResult()
        store = self.worktree.store
        attic = AtticStore(self.worktree.data_dir)

        base_sha = self.backend.merge_base(local_sha, remote_sha)
        local = store.load_all()
        remote = self.worktree.records_at(remote_sha)
        base = self.worktree.records_at(base_sha) if base_sha else LoadResult()

        local_bad = {str(e.path) for e in local.errors}
        out.data_errors.extend(f"local {p}: unreadable, left untouched" for p in sorted(local_bad))
        out.data_errors.extend(f"remote {e.path}: {e}" for e in remote.errors)
        local_bad_ids = {rid for rid in store.ids() if rid not in local.records}

        writes: list[Record] = []
        merges: list[MergeResult] = []
        refused: list[Conflict] = []
        for record_id in sorted(set(store.ids()) | set(remote.records)):
            if record_id in local_bad_ids:
                continue
            local_rec = local.records.get(record_id)
            remote_rec = remote.records.get(record_id)
            if remote_rec is None:
                continue
            if local_rec is None:
                writes.append(remote_rec)
                continue
            try:
                merged = merge_sides(
                    Sided(local_rec, WORKTREE),
                    Sided(remote_rec, REMOTE),
                    base.records.get(record_id),
                    strict=self.strict,
                )
            except MergeConflictError as e:
                refused.extend(e.conflicts)
                continue
            merges.append(merged)

        if refused:
            records = sorted({c.record_id for c in refused})
            raise MergeConflictError(
                f"Strict merge refused conflicting edits to {', '.join(records)}", refused
            )

        for record in writes:
            store.write(record)
            out.written += 1
        for merged in merges:
            for entry in merged.attic_entries:
                attic.archive(entry)
            out.conflicts.extend(merged.conflicts)
            if store.write(merged.merged):
                out.written += 1

        out.written += self._keep_unreadable_remote(remote_sha, remote, base, store)
        self._adopt_remote_attic(remote_sha)

        mapping = IdMapping.load(self.worktree.data_dir)
        mapping.merge(self.worktree.mapping_at(remote_sha))
        self._reconcile_short_ids(mapping)
        mapping.save(self.worktree.data_dir)

        logger.info(
            "Merged %s: %d record(s) written, %d conflict(s)",
            remote_sha[:8],
            out.written,
            len(out.conflicts),
        )
        return out

    def _keep_unreadable_remote(
        self, remote_sha: str, remote: LoadResult, base: LoadResult, store: RecordStore
    ) -> int:
        """
        Carry remote record files this client cannot parse into the merge.

        A remote-only file is copied byte for byte. A file that also exists
        locally is taken from the remote when the local copy still matches
        the merge base; otherwise the local copy stays and the error report
        stands.
        """
        kept = 0
        for name in self.backend.list_at_revision(f"{DATA_DIR}/{RECORDS_DIR}", remote_sha):
            if not name.endswith(".md"):
                continue
            record_id = name[: -len(".md")]
            if record_id in remote.records:
                continue
            data = self.worktree.read_at_revision(f"{RECORDS_DIR}/{name}", remote_sha)
            if data is None or store.read_bytes(record_id) == data:
                continue
            if store.exists(record_id):
                try:
                    local_rec = store.read(record_id)
                except RecordParseError:
                    continue
                base_rec = base.records.get(record_id)
                if local_rec is None or base_rec is None or not substantively_equal(local_rec, base_rec):
                    logger.warning("Keeping local %s over an unreadable remote copy", record_id)
                    continue
            store.write_bytes(record_id, data)
            logger.warning("Kept unreadable remote record %s as is", record_id)
            kept += 1
        return kept

    def _adopt_remote_attic(self, remote_sha: str) -> None:
        """Copy attic entries that exist only at the remote tip; the attic is append-only."""
        for path in self.backend.walk_at_revision(f"{DATA_DIR}/{ATTIC_DIR}", remote_sha):
            local_path = self.worktree.path / path
            if local_path.exists():
                continue
            data = self.backend.read_at_revision(path, remote_sha)
            if data is not None:
                local_path.parent.mkdir(parents=True, exist_ok=True)
                local_path.write_bytes(data)

    def _reconcile_short_ids(self, mapping: IdMapping) -> None:
        store = self.worktree.store
        loaded = store.load_all()
        for record in loaded.records.values():
            short = mapping.assign(record.id)
            if record.short_id != short:
                store.write(record.touch(short_id=short))

    def _tally(self, result: PushResult, local_start: str | None, remote_before: str | None) -> None:
        """Sent = remote tip before the push vs pushed head; received = local start vs head."""
        head = result.pushed_sha
        if head is None:
            return
        records_path = f"{DATA_DIR}/{RECORDS_DIR}"
        try:
            if remote_before != head:
                result.sent = SyncTallies.from_name_status(
                    self.backend.diff_name_status(remote_before, head, records_path)
                )
            if local_start and local_start != head:
                result.received = SyncTallies.from_name_status(
                    self.backend.diff_name_status(local_start, head, records_path)
                )
        except GitError as e:
            logger.debug("Could not compute sync tallies: %s", e)
