"""
Transaction branches for atomic batches of record mutations.

A transaction switches the single record worktree onto an ephemeral branch
``ibex-tx/<name>`` cut from the record-branch tip. Commit merges it back and
deletes it; abort switches back and force-deletes it, discarding every
commit made inside the transaction.

While a transaction is active the worktree files show the transaction's
view. What the record branch itself looks like must be read at its revision
(``read_record_branch``).
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

from pydantic import BaseModel, Field, ValidationError

from ibex.core.git.backend import GitError
from ibex.core.paths import DATA_DIR, TRANSACTION_FILE, ibex_dir
from ibex.core.records.storage import LoadResult, atomic_write

from .lock import WorktreeLock
from .manager import DataWorktree

logger = logging.getLogger(__name__)

TX_BRANCH_PREFIX = "ibex-tx/"
_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")


class TransactionError(Exception):
    """Base exception for transaction operations."""

    pass


class TransactionActiveError(TransactionError):
    """Raised when a transaction is begun while another is active."""

    def __init__(self, name: str):
        super().__init__(f"Transaction '{name}' is already active; commit or abort it first")
        self.name = name


class NoActiveTransactionError(TransactionError):
    """Raised when commit/abort is called with no active transaction."""

    pass


class TransactionState(BaseModel):
    """Persisted state of the active transaction."""

    name: str
    branch: str
    base_sha: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TransactionManager:
    """
    Begin, commit, and abort transaction branches.

    Example:
        >>> tx = TransactionManager(worktree)
        >>> tx.begin("bulk-relabel")
        >>> ...  # write records into worktree.data_dir
        >>> tx.commit("Relabel backlog")
    """

    def __init__(self, worktree: DataWorktree):
        self.worktree = worktree
        self.backend = worktree.backend
        self.state_path = ibex_dir(worktree.project_dir) / TRANSACTION_FILE

    def active(self) -> TransactionState | None:
        """The active transaction, if any."""
        if not self.state_path.exists():
            return None
        try:
            return TransactionState.model_validate_json(self.state_path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise TransactionError(f"Unreadable transaction state {self.state_path}: {e}") from e

    def _require_active(self) -> TransactionState:
        state = self.active()
        if state is None:
            raise NoActiveTransactionError("No transaction is active")
        return state

    def begin(self, name: str) -> TransactionState:
        """
        Start a transaction.

        Raises:
            TransactionActiveError: If a transaction is already active
            TransactionError: If the name is invalid
        """
        active = self.active()
        if active is not None:
            raise TransactionActiveError(active.name)
        if not _NAME_RE.match(name):
            raise TransactionError(f"Invalid transaction name: {name!r}")

        with WorktreeLock(self.worktree.project_dir, f"transaction {name}"):
            self.worktree.require_healthy()
            # pending edits belong to the record branch, not to the transaction
            self.worktree.commit_changes("Save pending changes")
            base = self.worktree.head()
            if base is None:
                raise TransactionError(f"Record branch {self.worktree.branch} has no commits")
            branch = f"{TX_BRANCH_PREFIX}{name}"
            self.backend.create_branch(branch, base)
            self.backend.checkout_branch(branch, cwd=self.worktree.path)
            state = TransactionState(name=name, branch=branch, base_sha=base)
            atomic_write(self.state_path, state.model_dump_json(indent=2))

        logger.info("Began transaction %s at %s", name, base[:8])
        return state

    def commit(self, message: str) -> str | None:
        """
        Commit the transaction into the record branch and delete its branch.

        Returns:
            Record-branch tip after the merge
        """
        state = self._require_active()
        with WorktreeLock(self.worktree.project_dir, f"transaction {state.name}"):
            self.worktree.require_healthy(expected_branch=state.branch)
            self.worktree.commit_changes(message)
            self.backend.checkout_branch(self.worktree.branch, cwd=self.worktree.path)
            try:
                self.backend.merge_into_current(
                    state.branch, cwd=self.worktree.path, message=f"Merge transaction {state.name}"
                )
            except GitError as e:
                self.backend.checkout_branch(state.branch, cwd=self.worktree.path)
                raise TransactionError(f"Could not merge transaction {state.name}: {e}") from e
            self.backend.delete_branch(state.branch, force=True)
            self.state_path.unlink(missing_ok=True)

        tip = self.worktree.head()
        logger.info("Committed transaction %s", state.name)
        return tip

    def abort(self) -> None:
        """Discard the transaction and everything committed inside it."""
        state = self._require_active()
        with WorktreeLock(self.worktree.project_dir, f"transaction {state.name}"):
            self.backend.checkout_branch(self.worktree.branch, cwd=self.worktree.path, force=True)
            self.backend.run("clean", "-fdq", "--", DATA_DIR, cwd=self.worktree.path)
            self.backend.delete_branch(state.branch, force=True)
            self.state_path.unlink(missing_ok=True)
        logger.info("Aborted transaction %s", state.name)

    def read_record_branch(self, relative_path: str) -> bytes | None:
        """Read a data-dir file as it is on the record branch, not the worktree."""
        tip = self.worktree.head()
        if tip is None:
            return None
        return self.worktree.read_at_revision(relative_path, tip)

    def record_branch_records(self) -> LoadResult:
        tip = self.worktree.head()
        if tip is None:
            return LoadResult()
        return self.worktree.records_at(tip)
