"""
Mutual exclusion for the record-branch worktree.

Only one logical operation (a sync, a transaction boundary, a workspace
import) may touch the worktree at a time. The lock is an advisory
``flock`` on ``.ibex/worktree.lock`` and fails fast instead of waiting.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from types import TracebackType

from ibex.core.paths import LOCK_FILE, ibex_dir

logger = logging.getLogger(__name__)


class WorktreeBusyError(Exception):
    """Raised when another operation holds the worktree lock."""

    def __init__(self, holder: str | None):
        message = "The record worktree is in use by another operation"
        if holder:
            message += f" ({holder})"
        super().__init__(message)
        self.holder = holder


class WorktreeLock:
    """
    Exclusive, non-blocking lock on the worktree.

    Example:
        >>> with WorktreeLock(project_dir, "sync"):
        ...     orchestrator.run()
    """

    def __init__(self, project_dir: Path, operation: str):
        self.path = ibex_dir(project_dir) / LOCK_FILE
        self.operation = operation
        self._fd: int | None = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = os.pread(fd, 256, 0).decode("utf-8", errors="replace").strip() or None
            os.close(fd)
            raise WorktreeBusyError(holder) from None
        os.ftruncate(fd, 0)
        os.pwrite(fd, f"{self.operation} pid={os.getpid()}".encode(), 0)
        self._fd = fd
        logger.debug("Acquired worktree lock for %s", self.operation)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released worktree lock for %s", self.operation)

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> WorktreeLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
