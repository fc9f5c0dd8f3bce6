"""
Sync orchestrator.

Phases, in order:

    1. external_pull  pull external status/labels into local records
    2. docs           sync the doc cache (independent of records)
    3. records        commit local changes and run the push-retry protocol
    4. external_push  push local status/labels out to the external tracker

Pulling external changes before the record commit means the committed
snapshot includes them. Pushing to the tracker only after the record branch
is settled keeps the record branch authoritative; a failed phase 4 is simply
repeated by the next sync. A failing phase is recorded and later phases still
run; the report is then not ok.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from ibex.core.config.models import IbexConfig
from ibex.core.docs.cache import DocCache
from ibex.core.external.adapter import ExternalSync, ExternalSyncResult
from ibex.core.external.client import ExternalTracker, GitHubTracker
from ibex.core.git.backend import GitError
from ibex.core.workspace.store import OUTBOX, ImportResult, SaveResult, WorkspaceStore
from ibex.core.worktree.lock import WorktreeLock
from ibex.core.worktree.manager import DataWorktree
from ibex.core.worktree.transactions import TransactionActiveError, TransactionManager

from .baseline import last_known_remote
from .errors import FailureKind, classify_failure
from .push import PushResult, PushRetry, RetryPolicy
from .state import SyncState, SyncStateStore
from .summary import NOTHING_CHANGED, SyncSummary, attic_hint, format_summary, next_step

logger = logging.getLogger(__name__)


@dataclass
class Capabilities:
    """Optional features available for this invocation, resolved once."""

    tracker: ExternalTracker | None = None

    @property
    def external(self) -> bool:
        return self.tracker is not None


def resolve_capabilities(config: IbexConfig) -> Capabilities:
    """Decide once, at startup, which optional collaborators are usable."""
    if not config.external.enabled:
        return Capabilities()
    if config.external.tracker == "github" and GitHubTracker.is_available():
        return Capabilities(tracker=GitHubTracker(timeout=config.external.timeout_seconds))
    logger.info("External tracker '%s' unavailable; external sync disabled", config.external.tracker)
    return Capabilities()


class Phase(str, Enum):
    EXTERNAL_PULL = "external_pull"
    DOCS = "docs"
    RECORDS = "records"
    EXTERNAL_PUSH = "external_push"


@dataclass
class PhaseResult:
    phase: Phase
    ok: bool = True
    skipped: bool = False
    message: str = ""
    failure_kind: FailureKind | None = None


@dataclass
class SyncReport:
    """Everything a caller needs to report a sync."""

    phases: list[PhaseResult] = field(default_factory=list)
    summary: SyncSummary = field(default_factory=SyncSummary)
    push: PushResult | None = None
    staged: SaveResult | None = None
    outbox_import: ImportResult | None = None

    @property
    def ok(self) -> bool:
        return all(p.ok for p in self.phases)

    def phase(self, phase: Phase) -> PhaseResult | None:
        return next((p for p in self.phases if p.phase is phase), None)

    @property
    def failure_kind(self) -> FailureKind | None:
        records = self.phase(Phase.RECORDS)
        if records is not None and not records.ok:
            return records.failure_kind
        return next((p.failure_kind for p in self.phases if not p.ok), None)

    def message(self) -> str:
        return format_summary(self.summary) or NOTHING_CHANGED

    def attic_hint(self) -> str | None:
        return attic_hint(self.summary)

    def next_step(self) -> str | None:
        if self.ok:
            return None
        refused = sorted({c.record_id for c in self.push.refused_conflicts}) if self.push else []
        return next_step(self.failure_kind, staged=self.staged is not None, refused=refused)


def _kind_from(values: list[str]) -> FailureKind | None:
    for value in values:
        try:
            return FailureKind(value)
        except ValueError:
            continue
    return None


class SyncOrchestrator:
    """
    Runs a full sync of the record branch and optional collaborators.

    Example:
        >>> config = load_config(project_dir)
        >>> orchestrator = SyncOrchestrator(
        ...     worktree, config, resolve_capabilities(config), SyncStateStore(project_dir)
        ... )
        >>> report = orchestrator.run()
        >>> print(report.message())
    """

    def __init__(
        self,
        worktree: DataWorktree,
        config: IbexConfig,
        capabilities: Capabilities,
        state_store: SyncStateStore,
        doc_cache: DocCache | None = None,
        workspaces: WorkspaceStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
        auto_stage: bool | None = None,
        import_outbox: bool | None = None,
    ):
        self.worktree = worktree
        self.config = config
        self.capabilities = capabilities
        self.state_store = state_store
        self.doc_cache = doc_cache
        self.workspaces = workspaces or WorkspaceStore(worktree.project_dir)
        self.sleep = sleep
        self.auto_stage = config.sync.auto_stage_on_permanent_failure if auto_stage is None else auto_stage
        self.import_outbox = config.sync.import_outbox_on_success if import_outbox is None else import_outbox

    def _pusher(self) -> PushRetry:
        sync = self.config.sync
        policy = RetryPolicy(
            max_attempts=sync.max_push_attempts,
            base_delay=sync.backoff_base_seconds,
            multiplier=sync.backoff_multiplier,
        )
        return PushRetry(self.worktree, policy, strict=self.config.merge.strict, sleep=self.sleep)

    def run(self) -> SyncReport:
        """
        Run all phases.

        Raises:
            TransactionActiveError: If a transaction is in progress
            WorktreeBusyError: If another operation holds the worktree
            WorktreeHealthError: If the worktree needs repair
        """
        active = TransactionManager(self.worktree).active()
        if active is not None:
            raise TransactionActiveError(active.name)

        report = SyncReport()
        with WorktreeLock(self.worktree.project_dir, "sync"):
            self.worktree.init_worktree()
            state = self.state_store.load()

            report.phases.append(self._guarded(Phase.EXTERNAL_PULL, lambda: self._external_pull(state)))
            report.phases.append(self._guarded(Phase.DOCS, self._docs))
            report.phases.append(self._guarded(Phase.RECORDS, lambda: self._records(state, report)))
            report.phases.append(self._guarded(Phase.EXTERNAL_PUSH, lambda: self._external_push(state)))

            self.state_store.save(state)

        if report.ok:
            logger.info("Sync complete: %s", report.message())
        else:
            failed = ", ".join(p.phase.value for p in report.phases if not p.ok)
            logger.warning("Sync finished with failures in: %s", failed)
        return report

    def _guarded(self, phase: Phase, run: Callable[[], PhaseResult]) -> PhaseResult:
        """Run one phase; an unexpected error fails that phase only."""
        try:
            return run()
        except Exception as e:
            logger.exception("Sync phase %s failed", phase.value)
            kind = classify_failure(str(e)) if isinstance(e, GitError) else FailureKind.FATAL
            return PhaseResult(phase, ok=False, message=f"{type(e).__name__}: {e}", failure_kind=kind)

    def _external_result(self, phase: Phase, result: ExternalSyncResult) -> PhaseResult:
        if result.ok:
            return PhaseResult(phase, message=f"{result.links} linked record(s)")
        return PhaseResult(
            phase,
            ok=False,
            message="; ".join(result.errors),
            failure_kind=_kind_from(result.error_kinds),
        )

    def _external_pull(self, state: SyncState) -> PhaseResult:
        if self.capabilities.tracker is None:
            return PhaseResult(Phase.EXTERNAL_PULL, skipped=True, message="no external tracker")
        store = self.worktree.store
        loaded = store.load_all()
        result = ExternalSync(self.capabilities.tracker, state).pull(loaded.records)
        for record in result.changed:
            store.write(record)
        return self._external_result(Phase.EXTERNAL_PULL, result)

    def _docs(self) -> PhaseResult:
        if self.doc_cache is None or not self.doc_cache.files:
            return PhaseResult(Phase.DOCS, skipped=True, message="no docs configured")
        result = self.doc_cache.sync()
        if not result.ok:
            return PhaseResult(Phase.DOCS, ok=False, message="; ".join(result.errors))
        changed = len(result.added) + len(result.updated) + len(result.removed)
        return PhaseResult(Phase.DOCS, message=f"{changed} doc(s) changed")

    def _records(self, state: SyncState, report: SyncReport) -> PhaseResult:
        remote = self.worktree.remote
        push = self._pusher().push_with_retry()
        report.push = push

        if not push.success:
            kind = push.failure_kind or FailureKind.TRANSIENT
            state.mark_failed(remote, push.error or "", kind.value)
            if kind is FailureKind.PERMANENT and self.auto_stage and not push.refused_conflicts:
                baseline = last_known_remote(self.worktree, state)
                report.staged = self.workspaces.save(
                    OUTBOX,
                    self.worktree.data_dir,
                    updates_only=True,
                    baseline=baseline.records,
                    source_revision=self.worktree.head(),
                )
                logger.warning("Staged %d changed record(s) in the outbox", report.staged.saved)
            return PhaseResult(Phase.RECORDS, ok=False, message=push.error or "push failed", failure_kind=kind)

        state.mark_synced(remote, push.pushed_sha)
        report.summary.sent.add(push.sent)
        report.summary.received.add(push.received)
        report.summary.add_conflicts([c.record_id for c in push.conflicts])

        if self.import_outbox and self.workspaces.exists(OUTBOX):
            outbox_phase = self._import_outbox(state, report)
            if outbox_phase is not None:
                return outbox_phase

        if push.data_errors:
            return PhaseResult(
                Phase.RECORDS,
                ok=False,
                message="unreadable records: " + "; ".join(push.data_errors),
                failure_kind=FailureKind.FATAL,
            )
        return PhaseResult(Phase.RECORDS, message="pushed")

    def _import_outbox(self, state: SyncState, report: SyncReport) -> PhaseResult | None:
        """Import a pending outbox, push it, and only then delete it."""
        report.outbox_import = self.workspaces.import_into(
            OUTBOX,
            self.worktree.data_dir,
            commit=self.worktree.commit_changes,
            records_at=self.worktree.known_records_at,
        )
        report.summary.add_conflicts([c.record_id for c in report.outbox_import.conflicts])
        push = self._pusher().push_with_retry()
        if not push.success:
            kind = push.failure_kind or FailureKind.TRANSIENT
            state.mark_failed(self.worktree.remote, push.error or "", kind.value)
            return PhaseResult(
                Phase.RECORDS,
                ok=False,
                message=f"outbox imported but not pushed: {push.error}",
                failure_kind=kind,
            )
        state.mark_synced(self.worktree.remote, push.pushed_sha)
        report.summary.sent.add(push.sent)
        report.summary.add_conflicts([c.record_id for c in push.conflicts])
        if not report.outbox_import.errors:
            self.workspaces.delete(OUTBOX)
            report.outbox_import.cleared = True
        return None

    def _external_push(self, state: SyncState) -> PhaseResult:
        if self.capabilities.tracker is None:
            return PhaseResult(Phase.EXTERNAL_PUSH, skipped=True, message="no external tracker")
        loaded = self.worktree.store.load_all()
        result = ExternalSync(self.capabilities.tracker, state).push(loaded.records)
        return self._external_result(Phase.EXTERNAL_PUSH, result)
