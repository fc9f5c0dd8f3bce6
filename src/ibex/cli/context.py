"""
Shared project setup for CLI commands.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

import typer

from ibex.cli.errors import ExitCode, print_error, print_not_initialized_error
from ibex.core.config import IbexConfig, load_config
from ibex.core.git import GitBackend, GitError
from ibex.core.paths import find_project_root
from ibex.core.records import RecordStore
from ibex.core.worktree import (
    DataWorktree,
    TransactionManager,
    WorktreeBusyError,
    WorktreeHealthError,
    WorktreeLock,
    WorktreeStatus,
)


@dataclass
class Project:
    root: Path
    config: IbexConfig
    backend: GitBackend
    worktree: DataWorktree


def open_project(require_initialized: bool = True) -> Project:
    """
    Locate the repository and build the worktree manager.

    Exits with USER_ERROR when outside a git repository, or when
    ``require_initialized`` is set and the worktree is missing.
    """
    root = find_project_root()
    if root is None:
        print_error("Not inside a git repository", solution="cd into your project, then run: ibex init")
        raise typer.Exit(ExitCode.USER_ERROR)

    config = load_config(root)
    try:
        backend = GitBackend(root, timeout=config.sync.network_timeout_seconds)
    except GitError as e:
        print_error("Cannot open the git repository", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)

    worktree = DataWorktree(root, backend, branch=config.sync.branch, remote=config.sync.remote)
    if require_initialized and worktree.check_health().status is WorktreeStatus.MISSING:
        print_not_initialized_error()
        raise typer.Exit(ExitCode.USER_ERROR)
    return Project(root=root, config=config, backend=backend, worktree=worktree)


@contextmanager
def writable_store(project: Project, operation: str) -> Iterator[RecordStore]:
    """
    Hold the worktree lock and yield the store, or exit with a clear error.

    Writes land on whichever branch is checked out, so inside a transaction
    they stay on the transaction branch.
    """
    active = TransactionManager(project.worktree).active()
    expected = active.branch if active else None
    try:
        with WorktreeLock(project.root, operation):
            project.worktree.require_healthy(expected_branch=expected)
            yield project.worktree.store
    except WorktreeBusyError as e:
        print_error(str(e), solution="Wait for the other ibex command to finish")
        raise typer.Exit(ExitCode.BUSY)
    except WorktreeHealthError as e:
        print_error("Record worktree needs repair", reason=e.health.message, solution="ibex doctor --fix")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
