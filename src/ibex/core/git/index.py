"""
Isolated index handle.

Commits to the record branch stage through a private index file instead of
the repository's primary index, so they never disturb the user's staged
work. The handle is passed explicitly to every git call that touches an
index; nothing here mutates the process environment.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from types import TracebackType


class IsolatedIndex:
    """
    A private index file inside the git directory.

    Example:
        >>> with IsolatedIndex(backend.common_dir) as index:
        ...     backend.commit(worktree, ["."], "sync", index=index, branch="ibex-sync")
    """

    def __init__(self, git_dir: Path, name: str | None = None):
        self.path = (git_dir / f"ibex-index-{name or uuid.uuid4().hex}").resolve()

    def env(self) -> dict[str, str]:
        """Environment overrides for a single git invocation."""
        return {"GIT_INDEX_FILE": str(self.path)}

    def cleanup(self) -> None:
        self.path.unlink(missing_ok=True)
        Path(f"{self.path}.lock").unlink(missing_ok=True)

    def __enter__(self) -> IsolatedIndex:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def __repr__(self) -> str:
        return f"IsolatedIndex({self.path.name})"
