"""
Integration tests for the push-retry protocol across two clones of a bare remote.
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from helpers import later, open_worktree

from ibex.core.attic import AtticStore
from ibex.core.git import PushOutcome
from ibex.core.paths import DATA_DIR
from ibex.core.records import IdMapping, Record, generate_record_id
from ibex.core.sync import FailureKind
from ibex.core.sync.push import PushRetry, RetryPolicy
from ibex.core.worktree import DataWorktree


def add_record(worktree: DataWorktree, record: Record) -> Record:
    """Write a record the way the CLI does, with a display id assigned."""
    mapping = IdMapping.load(worktree.data_dir)
    record = record.model_copy(update={"short_id": mapping.assign(record.id)})
    mapping.save(worktree.data_dir)
    worktree.store.write(record)
    return record


def pusher(worktree: DataWorktree, sleeps: list[float] | None = None, attempts: int = 3) -> PushRetry:
    sleep = sleeps.append if sleeps is not None else (lambda _: None)
    return PushRetry(worktree, RetryPolicy(max_attempts=attempts, base_delay=0.01), sleep=sleep)


@pytest.fixture
def clone_a(make_clone: Callable[[str], Path]) -> DataWorktree:
    worktree = open_worktree(make_clone("a"))
    worktree.init_worktree()
    assert pusher(worktree).push_with_retry().success
    return worktree


@pytest.fixture
def clone_b(clone_a: DataWorktree, make_clone: Callable[[str], Path]) -> DataWorktree:
    worktree = open_worktree(make_clone("b"))
    worktree.init_worktree()
    return worktree


class TestFirstPush:
    """Tests for publishing and adopting the record branch."""

    def test_first_push_creates_remote_branch(self, clone_a: DataWorktree) -> None:
        assert clone_a.backend.remote_branch_sha("origin", "ibex-sync") == clone_a.head()

    def test_second_clone_tracks_remote(self, clone_a: DataWorktree, clone_b: DataWorktree) -> None:
        assert clone_b.head() == clone_a.head()
        assert clone_b.check_health().healthy

    def test_nothing_to_push(self, clone_a: DataWorktree) -> None:
        result = pusher(clone_a).push_with_retry()
        assert result.success
        assert result.attempts == 1
        assert result.merged is False


class TestConvergence:
    """Tests for concurrent edits on two clones."""

    def test_concurrent_creation_converges(self, clone_a: DataWorktree, clone_b: DataWorktree, make_record) -> None:
        first = add_record(clone_a, make_record(title="From A"))
        second = add_record(clone_b, make_record(title="From B"))

        sent = pusher(clone_a).push_with_retry()
        assert sent.success
        assert sent.sent.new == 1

        merged = pusher(clone_b).push_with_retry()
        assert merged.success
        assert merged.merged
        assert merged.received.new == 1

        assert pusher(clone_a).push_with_retry().success
        assert clone_a.store.ids() == clone_b.store.ids() == sorted([first.id, second.id])
        assert clone_a.head() == clone_b.head()

    def test_label_union_across_clones(self, clone_a: DataWorktree, clone_b: DataWorktree, make_record) -> None:
        record = add_record(clone_a, make_record(labels=["bug"]))
        pusher(clone_a).push_with_retry()
        pusher(clone_b).push_with_retry()

        clone_a.store.write(record.touch(now=later(1), labels=["bug", "ui"]))
        clone_b.store.write(record.touch(now=later(2), labels=["backend", "bug"]))
        assert pusher(clone_a).push_with_retry().success
        result = pusher(clone_b).push_with_retry()

        assert result.success
        assert result.conflicts == []
        assert clone_b.store.read(record.id).labels == ["backend", "bug", "ui"]

    def test_lww_conflict_is_archived_and_shared(
        self, clone_a: DataWorktree, clone_b: DataWorktree, make_record
    ) -> None:
        record = add_record(clone_a, make_record(title="Original"))
        pusher(clone_a).push_with_retry()
        pusher(clone_b).push_with_retry()

        clone_a.store.write(record.touch(now=later(5), title="From A"))
        clone_b.store.write(record.touch(now=later(9), title="From B"))
        pusher(clone_a).push_with_retry()
        result = pusher(clone_b).push_with_retry()

        assert result.success
        assert [c.field for c in result.conflicts] == ["title"]
        assert clone_b.store.read(record.id).title == "From B"
        entries = AtticStore(clone_b.data_dir).list(record.id)
        assert len(entries) == 1
        assert entries[0].lost_value["title"] == "From A"

        # A diverges again before seeing the merge; the archived entry survives its merge
        add_record(clone_a, make_record(title="Unrelated"))
        assert pusher(clone_a).push_with_retry().success
        tip = clone_a.backend.remote_branch_sha("origin", "ibex-sync")
        attic_files = clone_a.backend.walk_at_revision(f"{DATA_DIR}/attic", tip)
        assert len(attic_files) == 1
        assert clone_a.store.read(record.id).title == "From B"


class TestFailureHandling:
    """Tests for rejection classification and retry bounds."""

    def test_permanent_rejection_stops_at_once(
        self, clone_a: DataWorktree, make_record, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        add_record(clone_a, make_record())
        monkeypatch.setattr(
            clone_a.backend, "push", lambda remote, branch: PushOutcome(False, "remote: Permission to acme/x.git denied")
        )
        sleeps: list[float] = []

        result = pusher(clone_a, sleeps).push_with_retry()

        assert result.success is False
        assert result.failure_kind is FailureKind.PERMANENT
        assert result.attempts == 1
        assert sleeps == []

    def test_transient_failure_exhausts_attempts(
        self, clone_a: DataWorktree, make_record, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        add_record(clone_a, make_record())
        monkeypatch.setattr(
            clone_a.backend, "push", lambda remote, branch: PushOutcome(False, "fatal: the remote end hung up unexpectedly")
        )
        sleeps: list[float] = []

        result = pusher(clone_a, sleeps, attempts=4).push_with_retry()

        assert result.success is False
        assert result.failure_kind is FailureKind.TRANSIENT
        assert result.attempts == 4
        assert len(sleeps) == 3

    def test_stale_rejection_refetches_and_succeeds(
        self, clone_a: DataWorktree, clone_b: DataWorktree, make_record, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Another clone pushes between our fetch and our push."""
        add_record(clone_a, make_record(title="From A"))
        other = add_record(clone_b, make_record(title="From B"))
        real_push = clone_a.backend.push
        raced = []

        def racing_push(remote: str, branch: str) -> PushOutcome:
            if not raced:
                raced.append(True)
                assert pusher(clone_b).push_with_retry().success
            return real_push(remote, branch)

        monkeypatch.setattr(clone_a.backend, "push", racing_push)
        sleeps: list[float] = []

        result = pusher(clone_a, sleeps).push_with_retry()

        assert result.success
        assert result.attempts == 2
        assert len(sleeps) == 1
        assert other.id in clone_a.store.ids()

    def test_retry_policy_validation(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
        assert 0.4 <= RetryPolicy(base_delay=0.5, jitter_ratio=0.2).delay(0) <= 0.6


class TestRemoteDataProblems:
    """Tests for unreadable remote records and strict merges."""

    def test_unreadable_remote_record_survives_merge(
        self, clone_a: DataWorktree, clone_b: DataWorktree, make_record
    ) -> None:
        """A record this client cannot parse is carried into the merge commit unchanged."""
        record_id = generate_record_id()
        raw = f"---\nid: {record_id}\ntitle: From a newer client\nstatus: review\n---\n".encode()
        clone_a.store.records_dir.joinpath(f"{record_id}.md").write_bytes(raw)
        assert pusher(clone_a).push_with_retry().success
        add_record(clone_b, make_record(title="From B"))

        result = pusher(clone_b).push_with_retry()

        assert result.success
        assert result.merged
        assert any(record_id in error for error in result.data_errors)
        tip = clone_b.backend.remote_branch_sha("origin", "ibex-sync")
        assert clone_b.read_at_revision(f"records/{record_id}.md", tip) == raw
        assert clone_b.store.read_bytes(record_id) == raw

    def test_strict_merge_refuses_before_committing(
        self, clone_a: DataWorktree, clone_b: DataWorktree, make_record
    ) -> None:
        record = add_record(clone_a, make_record(title="Original"))
        pusher(clone_a).push_with_retry()
        pusher(clone_b).push_with_retry()

        clone_a.store.write(record.touch(now=later(5), title="A title"))
        assert pusher(clone_a).push_with_retry().success
        clone_b.store.write(record.touch(now=later(9), title="B title"))
        strict = PushRetry(clone_b, RetryPolicy(max_attempts=3, base_delay=0.01), strict=True, sleep=lambda _: None)

        result = strict.push_with_retry()

        assert result.success is False
        assert result.failure_kind is FailureKind.PERMANENT
        assert result.attempts == 1
        assert [c.field for c in result.refused_conflicts] == ["title"]
        tip = clone_b.backend.remote_branch_sha("origin", "ibex-sync")
        assert clone_b.records_at(tip).records[record.id].title == "A title"
        assert not clone_b.backend.is_ancestor(tip, clone_b.head())
        assert clone_b.store.read(record.id).title == "B title"
        assert AtticStore(clone_b.data_dir).list() == []
