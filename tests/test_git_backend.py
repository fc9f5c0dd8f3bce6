"""
Tests for the git boundary: isolated indexes, commits, and reads at a revision.
"""

from pathlib import Path

import pytest
from helpers import git

from ibex.core.git import GitBackend, GitError
from ibex.core.git.index import IsolatedIndex


@pytest.fixture
def backend(git_repo: Path) -> GitBackend:
    return GitBackend(git_repo, timeout=30)


class TestIsolatedIndex:
    """Tests for IsolatedIndex."""

    def test_env_points_at_private_file(self, tmp_path: Path) -> None:
        index = IsolatedIndex(tmp_path, name="scratch")
        assert index.env() == {"GIT_INDEX_FILE": str((tmp_path / "ibex-index-scratch").resolve())}

    def test_cleanup_removes_index_and_lock(self, tmp_path: Path) -> None:
        with IsolatedIndex(tmp_path, name="scratch") as index:
            index.path.write_text("x")
            Path(f"{index.path}.lock").write_text("x")
        assert not index.path.exists()
        assert not Path(f"{index.path}.lock").exists()

    def test_names_are_unique(self, tmp_path: Path) -> None:
        assert IsolatedIndex(tmp_path).path != IsolatedIndex(tmp_path).path


class TestGitBackend:
    """Tests for GitBackend against a real repository."""

    def test_not_a_repository(self, tmp_path: Path) -> None:
        with pytest.raises(GitError, match="Not a git repository"):
            GitBackend(tmp_path / "nowhere")

    def test_orphan_branch_has_empty_root(self, backend: GitBackend) -> None:
        sha = backend.create_orphan_branch("records", "Start")
        assert backend.branch_sha("records") == sha
        assert git("ls-tree", "-r", "records", cwd=backend.root) == ""
        assert git("rev-list", "--count", "records", cwd=backend.root) == "1"

    def test_read_at_revision(self, backend: GitBackend) -> None:
        head = backend.rev_parse("HEAD")
        assert backend.read_at_revision("README.md", head) == b"# Test Repo\n"
        assert backend.read_at_revision("missing.txt", head) is None

    def test_read_unknown_revision(self, backend: GitBackend) -> None:
        with pytest.raises(GitError):
            backend.read_at_revision("README.md", "no-such-branch")

    def test_run_failure_carries_context(self, backend: GitBackend) -> None:
        with pytest.raises(GitError) as exc_info:
            backend.run("rev-parse", "--verify", "no-such-ref", phase="lookup")
        assert exc_info.value.phase == "lookup"
        assert exc_info.value.command.startswith("git rev-parse")

    def test_current_branch_and_list(self, backend: GitBackend) -> None:
        branch = backend.current_branch(backend.root)
        assert branch in backend.list_branches()

    def test_has_remote(self, backend: GitBackend) -> None:
        assert backend.has_remote("origin") is False


class TestIsolatedCommit:
    """Tests for commits staged through a private index."""

    @pytest.fixture
    def checkout(self, backend: GitBackend, git_repo: Path) -> Path:
        backend.create_orphan_branch("records", "Start")
        path = git_repo.parent / "records-checkout"
        backend.worktree_add(path, "records")
        return path

    def test_commit_and_noop(self, backend: GitBackend, checkout: Path) -> None:
        (checkout / "data").mkdir()
        (checkout / "data" / "a.txt").write_text("one\n")

        with IsolatedIndex(backend.common_dir) as index:
            sha = backend.commit(checkout, ["data"], "Add a", index, "records")
        assert sha is not None
        assert backend.branch_sha("records") == sha
        assert backend.read_at_revision("data/a.txt", sha) == b"one\n"

        with IsolatedIndex(backend.common_dir) as index:
            assert backend.commit(checkout, ["data"], "Nothing", index, "records") is None

    def test_commit_leaves_primary_index_alone(self, backend: GitBackend, git_repo: Path, checkout: Path) -> None:
        (git_repo / "staged.txt").write_text("user work\n")
        git("add", "staged.txt", cwd=git_repo)
        (checkout / "data").mkdir()
        (checkout / "data" / "a.txt").write_text("one\n")

        with IsolatedIndex(backend.common_dir) as index:
            backend.commit(checkout, ["data"], "Add a", index, "records")

        assert git("diff", "--cached", "--name-only", cwd=git_repo) == "staged.txt"
        assert git("status", "--porcelain", cwd=checkout) == ""

    def test_diff_name_status(self, backend: GitBackend, checkout: Path) -> None:
        (checkout / "data").mkdir()
        (checkout / "data" / "a.txt").write_text("one\n")
        with IsolatedIndex(backend.common_dir) as index:
            first = backend.commit(checkout, ["data"], "Add a", index, "records")
        (checkout / "data" / "a.txt").write_text("two\n")
        (checkout / "data" / "b.txt").write_text("new\n")
        with IsolatedIndex(backend.common_dir) as index:
            second = backend.commit(checkout, ["data"], "Change", index, "records")

        assert backend.diff_name_status(first, second, "data") == [("M", "data/a.txt"), ("A", "data/b.txt")]
        assert backend.diff_name_status(None, first, "data") == [("A", "data/a.txt")]

    def test_walk_at_revision(self, backend: GitBackend, checkout: Path) -> None:
        nested = checkout / "data" / "attic" / "rec-a"
        nested.mkdir(parents=True)
        (nested / "entry.yml").write_text("x: 1\n")
        with IsolatedIndex(backend.common_dir) as index:
            sha = backend.commit(checkout, ["data"], "Attic", index, "records")
        assert backend.walk_at_revision("data/attic", sha) == ["data/attic/rec-a/entry.yml"]
        assert backend.walk_at_revision("data/none", sha) == []

    def test_worktree_list(self, backend: GitBackend, checkout: Path) -> None:
        entries = {w.path.resolve(): w for w in backend.worktree_list()}
        assert entries[checkout.resolve()].branch == "records"
