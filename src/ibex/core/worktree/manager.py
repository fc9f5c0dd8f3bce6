"""
Record-branch worktree manager.

Record data lives on a dedicated branch, checked out into a hidden worktree
under ``.ibex/data-sync-worktree``, so the user's working branch never shows
record-file changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from ibex.core.git.backend import GitBackend, GitError
from ibex.core.git.index import IsolatedIndex
from ibex.core.paths import DATA_DIR, data_dir, ensure_gitignore, worktree_path
from ibex.core.records.ids import MAPPING_FILE, IdMapping
from ibex.core.records.models import Record
from ibex.core.records.storage import (
    MAPPINGS_DIR,
    RECORDS_DIR,
    LoadResult,
    RecordParseError,
    RecordStore,
    ensure_layout,
    parse_record,
)

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "ibex-sync"
DEFAULT_REMOTE = "origin"


class WorktreeError(Exception):
    """Base exception for worktree operations."""

    pass


class WorktreeHealthError(WorktreeError):
    """Raised when the worktree is in a state that needs repair."""

    def __init__(self, health: WorktreeHealth):
        super().__init__(f"Record worktree is {health.status.value}: {health.message}")
        self.health = health


class WorktreeStatus(str, Enum):
    """Diagnosed state of the record worktree."""

    HEALTHY = "healthy"
    MISSING = "missing"
    PRUNABLE = "prunable"
    CORRUPTED = "corrupted"
    DETACHED = "detached"
    WRONG_BRANCH = "wrong_branch"


@dataclass
class WorktreeHealth:
    """
    Result of a worktree health check.

    Attributes:
        status: Diagnosed state
        path: Worktree directory
        branch: Branch actually checked out (None if detached or missing)
        commit: Commit checked out, if known
        message: Human-readable diagnostic
    """

    status: WorktreeStatus
    path: Path
    branch: str | None = None
    commit: str | None = None
    message: str = ""

    @property
    def healthy(self) -> bool:
        return self.status is WorktreeStatus.HEALTHY


class DataWorktree:
    """
    The hidden worktree holding the record branch.

    Example:
        >>> worktree = DataWorktree(project_dir, GitBackend(project_dir))
        >>> worktree.init_worktree()
        >>> store = RecordStore(worktree.data_dir)
        >>> worktree.commit_changes("Update records")
    """

    def __init__(
        self,
        project_dir: Path,
        backend: GitBackend,
        branch: str = DEFAULT_BRANCH,
        remote: str = DEFAULT_REMOTE,
    ):
        self.project_dir = project_dir
        self.backend = backend
        self.branch = branch
        self.remote = remote
        self.path = worktree_path(project_dir)
        self.data_dir = data_dir(project_dir)

    @property
    def store(self) -> RecordStore:
        return RecordStore(self.data_dir)

    def check_health(self, expected_branch: str | None = None) -> WorktreeHealth:
        """
        Diagnose the worktree without changing anything.

        Args:
            expected_branch: Branch that should be checked out (defaults to
                the record branch; a transaction passes its own branch)
        """
        expected = expected_branch or self.branch
        resolved = self.path.resolve()
        entry = next(
            (w for w in self.backend.worktree_list() if w.path.resolve() == resolved),
            None,
        )

        if entry is None:
            if self.path.exists():
                return WorktreeHealth(
                    WorktreeStatus.CORRUPTED,
                    self.path,
                    message="directory exists but is not a registered worktree",
                )
            return WorktreeHealth(WorktreeStatus.MISSING, self.path, message="worktree not created")

        if entry.prunable or not self.path.exists():
            return WorktreeHealth(
                WorktreeStatus.PRUNABLE,
                self.path,
                commit=entry.commit,
                message="worktree is registered but its directory is gone",
            )
        if not (self.path / ".git").is_file():
            return WorktreeHealth(
                WorktreeStatus.CORRUPTED,
                self.path,
                commit=entry.commit,
                message="worktree .git link is missing",
            )
        if entry.detached or entry.branch is None:
            return WorktreeHealth(
                WorktreeStatus.DETACHED,
                self.path,
                commit=entry.commit,
                message=f"HEAD is detached; expected branch {expected}",
            )
        if entry.branch != expected:
            return WorktreeHealth(
                WorktreeStatus.WRONG_BRANCH,
                self.path,
                branch=entry.branch,
                commit=entry.commit,
                message=f"on branch {entry.branch}; expected {expected}",
            )
        return WorktreeHealth(
            WorktreeStatus.HEALTHY, self.path, branch=entry.branch, commit=entry.commit, message="ok"
        )

    def init_worktree(self) -> WorktreeHealth:
        """
        Make sure the worktree exists and is on the record branch.

        Uses the local branch if present, otherwise the remote branch (tracked),
        otherwise creates an orphan branch with an initial layout commit.

        Raises:
            WorktreeHealthError: If the worktree exists but needs repair
        """
        health = self.check_health()
        if health.healthy:
            return health
        if health.status in (WorktreeStatus.CORRUPTED, WorktreeStatus.DETACHED, WorktreeStatus.WRONG_BRANCH):
            raise WorktreeHealthError(health)
        if health.status is WorktreeStatus.PRUNABLE:
            self.backend.worktree_prune()

        ensure_gitignore(self.project_dir)
        if self.backend.branch_sha(self.branch) is None:
            remote_sha = self._remote_tip()
            if remote_sha:
                self.backend.create_branch(self.branch, remote_sha)
                try:
                    self.backend.run(
                        "branch", f"--set-upstream-to={self.remote}/{self.branch}", self.branch
                    )
                except GitError as e:
                    logger.debug("Could not set upstream for %s: %s", self.branch, e)
                logger.info("Created %s tracking %s/%s", self.branch, self.remote, self.branch)
            else:
                self.backend.create_orphan_branch(self.branch, "Initialize ibex record branch")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.backend.worktree_add(self.path, self.branch)
        ensure_layout(self.data_dir)
        self.commit_changes("Initialize record store")
        return self.check_health()

    def _remote_tip(self) -> str | None:
        if not self.backend.has_remote(self.remote):
            return None
        try:
            return self.backend.fetch(self.remote, self.branch)
        except GitError as e:
            logger.warning("Could not fetch %s/%s: %s", self.remote, self.branch, e)
            return self.backend.remote_branch_sha(self.remote, self.branch)

    def repair(self) -> WorktreeHealth:
        """
        Repair an unhealthy worktree.

        A corrupted directory is moved aside to a timestamped backup rather
        than deleted.
        """
        health = self.check_health()
        if health.healthy:
            return health

        logger.warning("Repairing record worktree (%s): %s", health.status.value, health.message)
        if health.status in (WorktreeStatus.DETACHED, WorktreeStatus.WRONG_BRANCH):
            self.backend.checkout_branch(self.branch, cwd=self.path)
            return self.check_health()

        if health.status is WorktreeStatus.CORRUPTED and self.path.exists():
            stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
            backup = self.path.with_name(f"{self.path.name}.corrupted-{stamp}")
            self.path.rename(backup)
            logger.warning("Moved corrupted worktree to %s", backup)
        self.backend.worktree_prune()
        return self.init_worktree()

    def require_healthy(self, expected_branch: str | None = None) -> None:
        health = self.check_health(expected_branch)
        if not health.healthy:
            raise WorktreeHealthError(health)

    def head(self) -> str | None:
        return self.backend.branch_sha(self.branch)

    def checked_out_sha(self) -> str | None:
        """Tip of whichever branch the worktree has checked out (a transaction's, during one)."""
        branch = self.backend.current_branch(self.path)
        return self.backend.branch_sha(branch) if branch else None

    def commit_changes(
        self,
        message: str,
        index: IsolatedIndex | None = None,
        extra_parents: tuple[str, ...] = (),
    ) -> str | None:
        """
        Commit the data directory on the checked-out branch using an isolated index.

        Returns:
            New commit sha, or None if nothing changed
        """
        branch = self.backend.current_branch(self.path)
        if branch is None:
            raise WorktreeError("Record worktree HEAD is detached; run 'ibex doctor --fix'")
        if index is not None:
            return self.backend.commit(self.path, [DATA_DIR], message, index, branch, extra_parents)
        with IsolatedIndex(self.backend.common_dir) as own_index:
            return self.backend.commit(self.path, [DATA_DIR], message, own_index, branch, extra_parents)

    # Reads at a revision

    def read_at_revision(self, relative_path: str, revision: str) -> bytes | None:
        """Read a data-dir relative path at a revision of the repository."""
        return self.backend.read_at_revision(f"{DATA_DIR}/{relative_path}", revision)

    def records_at(self, revision: str) -> LoadResult:
        """Parse every record file present at ``revision``."""
        result = LoadResult()
        for name in self.backend.list_at_revision(f"{DATA_DIR}/{RECORDS_DIR}", revision):
            if not name.endswith(".md"):
                continue
            rel = f"{RECORDS_DIR}/{name}"
            data = self.read_at_revision(rel, revision)
            if data is None:
                continue
            try:
                record = parse_record(data, f"{revision[:8]}:{rel}")
            except RecordParseError as e:
                logger.warning("Unreadable record %s at %s: %s", name, revision[:8], e)
                result.errors.append(e)
                continue
            result.records[record.id] = record
        return result

    def known_records_at(self, revision: str) -> dict[str, Record]:
        """Readable records at ``revision``; empty if the revision cannot be read."""
        try:
            return self.records_at(revision).records
        except GitError as e:
            logger.warning("Cannot read records at %s: %s", revision[:8], e)
            return {}

    def mapping_at(self, revision: str) -> IdMapping:
        return IdMapping.from_text(self.read_at_revision(f"{MAPPINGS_DIR}/{MAPPING_FILE}", revision))
