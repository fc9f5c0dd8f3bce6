"""
Version-control boundary.

GitBackend is the only code that invokes git. It wraps GitPython and exposes
the capability surface the sync engine needs: fetch, push, read-at-revision,
branch management, worktree management, and isolated-index commits.

Network operations carry a bounded timeout. Failures are wrapped in GitError
with the remote, branch and phase so they can be classified upstream.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from git import Git, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName

from .index import IsolatedIndex

logger = logging.getLogger(__name__)

ZERO_SHA = "0" * 40


class GitError(Exception):
    """Raised when a git operation fails."""

    def __init__(
        self,
        message: str,
        command: str = "",
        stderr: str = "",
        stdout: str = "",
        remote: str | None = None,
        branch: str | None = None,
        phase: str | None = None,
    ):
        super().__init__(message)
        self.command = command
        self.stderr = stderr
        self.stdout = stdout
        self.remote = remote
        self.branch = branch
        self.phase = phase

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr and self.stderr not in base:
            return f"{base}: {self.stderr}"
        return base


@dataclass
class PushOutcome:
    """Result of a push attempt."""

    accepted: bool
    reason: str = ""


@dataclass
class WorktreeInfo:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    commit: str | None
    branch: str | None
    detached: bool = False
    prunable: bool = False


def _captured(raw: str | bytes | None, stream: str) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    text = (raw or "").strip()
    # GitPython prefixes captured output with "stderr: '...'"
    prefix = f"{stream}: '"
    if text.startswith(prefix) and text.endswith("'"):
        text = text[len(prefix) : -1].strip()
    return text


class GitBackend:
    """
    GitPython-backed access to the repository.

    Example:
        >>> backend = GitBackend(Path("."), timeout=60)
        >>> sha = backend.fetch("origin", "ibex-sync")
        >>> data = backend.read_at_revision(".ibex/data-sync/meta.yml", sha)
    """

    def __init__(self, repo_path: Path, timeout: float = 60):
        """
        Open the repository containing ``repo_path``.

        Raises:
            GitError: If the path is not inside a git repository
        """
        try:
            self.repo = Repo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitError(f"Not a git repository: {repo_path}") from e
        if self.repo.working_tree_dir is None:
            raise GitError(f"Bare repositories are not supported: {repo_path}")
        self.root = Path(self.repo.working_tree_dir)
        self.timeout = timeout

    @property
    def common_dir(self) -> Path:
        """The shared git directory (``.git`` of the main checkout)."""
        return Path(self.repo.common_dir)

    def run(
        self,
        *args: str,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        network: bool = False,
        remote: str | None = None,
        branch: str | None = None,
        phase: str | None = None,
    ) -> str:
        """
        Run a git command and return its stripped stdout.

        Raises:
            GitError: If git exits non-zero or times out
        """
        command = ["git", *args]
        logger.debug("git %s (cwd=%s)", " ".join(args), cwd or self.root)
        kwargs: dict[str, object] = {}
        if env:
            kwargs["env"] = env
        if network:
            kwargs["kill_after_timeout"] = self.timeout
        try:
            return str(Git(str(cwd or self.root)).execute(command, **kwargs)).strip()
        except GitCommandError as e:
            raise GitError(
                f"git {args[0]} failed",
                command=" ".join(command),
                stderr=_captured(e.stderr, "stderr"),
                stdout=_captured(e.stdout, "stdout"),
                remote=remote,
                branch=branch,
                phase=phase or args[0],
            ) from e

    # Refs and branches

    def rev_parse(self, rev: str) -> str | None:
        try:
            return self.run("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}")
        except GitError:
            return None

    def branch_sha(self, branch: str) -> str | None:
        return self.rev_parse(f"refs/heads/{branch}")

    def remote_branch_sha(self, remote: str, branch: str) -> str | None:
        """Last fetched tip of a remote branch, without network access."""
        return self.rev_parse(f"refs/remotes/{remote}/{branch}")

    def list_branches(self) -> list[str]:
        out = self.run("for-each-ref", "--format=%(refname:short)", "refs/heads/")
        return sorted(line for line in out.splitlines() if line)

    def create_branch(self, name: str, start_point: str) -> None:
        self.run("branch", name, start_point, branch=name, phase="create-branch")

    def delete_branch(self, name: str, force: bool = False) -> None:
        self.run("branch", "-D" if force else "-d", name, branch=name, phase="delete-branch")

    def checkout_branch(self, name: str, cwd: Path, force: bool = False) -> None:
        args = ["checkout", "-q"]
        if force:
            args.append("-f")
        self.run(*args, name, cwd=cwd, branch=name, phase="checkout")

    def current_branch(self, cwd: Path) -> str | None:
        """Branch checked out in ``cwd``, or None when HEAD is detached."""
        try:
            return self.run("symbolic-ref", "--quiet", "--short", "HEAD", cwd=cwd)
        except GitError:
            return None

    def merge_base(self, a: str, b: str) -> str | None:
        try:
            return self.run("merge-base", a, b) or None
        except GitError:
            return None

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        try:
            self.run("merge-base", "--is-ancestor", ancestor, descendant)
            return True
        except GitError:
            return False

    def merge_into_current(self, source: str, cwd: Path, message: str) -> None:
        """Merge ``source`` into the branch checked out in ``cwd``."""
        try:
            self.run("merge", "-q", "--no-edit", "-m", message, source, cwd=cwd, phase="merge")
        except GitError:
            try:
                self.run("merge", "--abort", cwd=cwd)
            except GitError:
                logger.debug("No merge to abort in %s", cwd)
            raise

    def create_orphan_branch(self, name: str, message: str) -> str:
        """Create a branch whose root commit has an empty tree."""
        empty_tree = self.run("hash-object", "-t", "tree", "-w", os.devnull)
        sha = self.run("commit-tree", empty_tree, "-m", message)
        self.run("update-ref", f"refs/heads/{name}", sha, ZERO_SHA, branch=name, phase="orphan")
        logger.info("Created orphan branch %s at %s", name, sha[:8])
        return sha

    # Reading at a revision

    def read_at_revision(self, path: str, revision: str) -> bytes | None:
        """
        Content of ``path`` at ``revision``.

        Returns:
            File bytes, or None if the path does not exist at that revision

        Raises:
            GitError: If the revision cannot be resolved
        """
        try:
            tree = self.repo.commit(revision).tree
        except (BadName, ValueError) as e:
            raise GitError(f"Unknown revision {revision}", phase="read") from e
        try:
            blob = tree / path
        except KeyError:
            return None
        if blob.type != "blob":
            return None
        return blob.data_stream.read()

    def list_at_revision(self, directory: str, revision: str) -> list[str]:
        """Names of the files directly inside ``directory`` at ``revision``."""
        try:
            tree = self.repo.commit(revision).tree
        except (BadName, ValueError) as e:
            raise GitError(f"Unknown revision {revision}", phase="read") from e
        try:
            sub = tree / directory
        except KeyError:
            return []
        return sorted(b.name for b in sub.blobs)

    def walk_at_revision(self, directory: str, revision: str) -> list[str]:
        """Repository paths of every file under ``directory`` at ``revision``, recursively."""
        try:
            tree = self.repo.commit(revision).tree
        except (BadName, ValueError) as e:
            raise GitError(f"Unknown revision {revision}", phase="read") from e
        try:
            sub = tree / directory
        except KeyError:
            return []
        return sorted(item.path for item in sub.traverse() if item.type == "blob")

    def diff_name_status(self, old: str | None, new: str, path: str) -> list[tuple[str, str]]:
        """(status letter, path) pairs changed between two revisions under ``path``."""
        if old is None:
            out = self.run("ls-tree", "-r", "--name-only", new, "--", path)
            return [("A", line) for line in out.splitlines() if line]
        out = self.run("diff", "--name-status", "--no-renames", old, new, "--", path)
        pairs = []
        for line in out.splitlines():
            status, _, name = line.partition("\t")
            if name:
                pairs.append((status[:1], name))
        return pairs

    # Network

    def fetch(self, remote: str, branch: str) -> str | None:
        """
        Fetch one branch into ``refs/remotes/<remote>/<branch>``.

        Returns:
            The fetched tip, or None if the branch does not exist remotely

        Raises:
            GitError: On any other fetch failure (including timeout)
        """
        refspec = f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}"
        try:
            self.run("fetch", "--quiet", remote, refspec, network=True, remote=remote, branch=branch, phase="fetch")
        except GitError as e:
            if "couldn't find remote ref" in e.stderr.lower():
                return None
            raise
        return self.remote_branch_sha(remote, branch)

    def push(self, remote: str, branch: str) -> PushOutcome:
        """Push the local branch; a rejection is reported, not raised."""
        try:
            self.run(
                "push",
                "--porcelain",
                remote,
                f"refs/heads/{branch}:refs/heads/{branch}",
                network=True,
                remote=remote,
                branch=branch,
                phase="push",
            )
        except GitError as e:
            # --porcelain reports per-ref status on stdout
            reason = "\n".join(part for part in (e.stdout, e.stderr) if part) or str(e)
            logger.info("Push of %s to %s rejected: %s", branch, remote, reason)
            return PushOutcome(accepted=False, reason=reason)
        # keep the remote-tracking ref in step with what we just pushed
        sha = self.branch_sha(branch)
        if sha:
            self.run("update-ref", f"refs/remotes/{remote}/{branch}", sha)
        return PushOutcome(accepted=True)

    def has_remote(self, remote: str) -> bool:
        return remote in {r.name for r in self.repo.remotes}

    # Worktrees

    def worktree_list(self) -> list[WorktreeInfo]:
        out = self.run("worktree", "list", "--porcelain")
        entries: list[WorktreeInfo] = []
        current: WorktreeInfo | None = None
        for line in out.splitlines():
            if line.startswith("worktree "):
                current = WorktreeInfo(path=Path(line[len("worktree ") :]), commit=None, branch=None)
                entries.append(current)
            elif current is None:
                continue
            elif line.startswith("HEAD "):
                current.commit = line[len("HEAD ") :]
            elif line.startswith("branch "):
                current.branch = line[len("branch ") :].removeprefix("refs/heads/")
            elif line == "detached":
                current.detached = True
            elif line.startswith("prunable"):
                current.prunable = True
        return entries

    def worktree_add(self, path: Path, branch: str) -> None:
        self.run("worktree", "add", "-q", str(path), branch, branch=branch, phase="worktree-add")

    def worktree_remove(self, path: Path, force: bool = False) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        self.run(*args, str(path), phase="worktree-remove")

    def worktree_prune(self) -> None:
        self.run("worktree", "prune", phase="worktree-prune")

    # Commits

    def commit(
        self,
        worktree: Path,
        paths: list[str],
        message: str,
        index: IsolatedIndex,
        branch: str,
        extra_parents: tuple[str, ...] = (),
    ) -> str | None:
        """
        Commit the current content of ``paths`` in ``worktree`` to ``branch``.

        Staging happens in ``index`` only. The branch ref is moved with a
        compare-and-swap so a concurrent writer is detected rather than lost.

        Returns:
            New commit sha, or None if nothing changed and no extra parents
            were given

        Raises:
            GitError: If any step fails
        """
        env = index.env()
        parent = self.branch_sha(branch)
        if parent:
            self.run("read-tree", parent, env=env, branch=branch, phase="commit")
        else:
            self.run("read-tree", "--empty", env=env, branch=branch, phase="commit")
        self.run("add", "-A", "--", *paths, cwd=worktree, env=env, branch=branch, phase="commit")
        tree = self.run("write-tree", env=env, branch=branch, phase="commit")

        if parent and not extra_parents and tree == self.run("rev-parse", f"{parent}^{{tree}}"):
            logger.debug("Nothing to commit on %s", branch)
            return None

        args = ["commit-tree", tree]
        for p in ([parent] if parent else []) + list(extra_parents):
            args += ["-p", p]
        args += ["-m", message]
        sha = self.run(*args, branch=branch, phase="commit")
        self.run("update-ref", f"refs/heads/{branch}", sha, parent or ZERO_SHA, branch=branch, phase="commit")

        if self.current_branch(worktree) == branch:
            # refresh the worktree's own index to the new HEAD
            self.run("reset", "-q", cwd=worktree)
        logger.info("Committed %s on %s", sha[:8], branch)
        return sha
