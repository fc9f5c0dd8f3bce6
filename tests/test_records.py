"""
Tests for the record model, on-disk format, and identifiers.
"""

from pathlib import Path

import pytest
from helpers import T0, later

from ibex.core.records import (
    Dependency,
    IdMapping,
    Record,
    RecordParseError,
    RecordStatus,
    RecordStore,
    derive_short_id,
    generate_record_id,
    generate_short_id,
    is_record_id,
    parse_record,
    serialize_record,
    substantively_equal,
)
from ibex.core.records.storage import ensure_layout


class TestRecordModel:
    """Tests for Record normalization."""

    def test_defaults(self, make_record) -> None:
        """A new record is open, priority 2, version 1."""
        record = make_record()
        assert record.status is RecordStatus.OPEN
        assert record.priority == 2
        assert record.version == 1

    def test_labels_sorted_and_deduplicated(self, make_record) -> None:
        record = make_record(labels=["ui", "bug", "ui", " "])
        assert record.labels == ["bug", "ui"]

    def test_blank_strings_become_none(self, make_record) -> None:
        """Null and empty are the same value."""
        record = make_record(description="", assignee="   ")
        assert record.description is None
        assert record.assignee is None

    def test_dependencies_deduplicated(self, make_record) -> None:
        record = make_record(
            dependencies=[{"target": "rec-b"}, {"target": "rec-a"}, {"type": "blocks", "target": "rec-b"}]
        )
        assert [d.target for d in record.dependencies] == ["rec-a", "rec-b"]
        assert all(isinstance(d, Dependency) for d in record.dependencies)

    def test_naive_timestamps_are_utc(self, make_record) -> None:
        record = make_record(updated_at=T0.replace(tzinfo=None))
        assert record.updated_at == T0

    def test_touch_bumps_version(self, make_record) -> None:
        record = make_record()
        touched = record.touch(now=later(5), title="New title")
        assert touched.version == 2
        assert touched.updated_at == later(5)
        assert touched.title == "New title"
        assert record.title == "Fix login redirect"

    def test_substantive_equality_ignores_metadata(self, make_record) -> None:
        record = make_record()
        bumped = record.model_copy(update={"version": 9, "updated_at": later(60)})
        assert substantively_equal(record, bumped)
        assert not substantively_equal(record, record.touch(title="Other"))

    def test_priority_bounds(self) -> None:
        with pytest.raises(ValueError):
            Record(id="rec-x", title="t", priority=7)


class TestRecordFormat:
    """Tests for serialize_record and parse_record."""

    def test_roundtrip_preserves_fields(self, make_record) -> None:
        record = make_record(
            labels=["bug"],
            description="Users land on /404.",
            notes="Seen on staging only.",
            extensions={"estimate": {"points": 3}},
            dependencies=[{"target": "rec-other"}],
        )
        parsed = parse_record(serialize_record(record))
        assert parsed == record

    def test_serialization_is_deterministic(self, make_record) -> None:
        record = make_record(labels=["b", "a"], extensions={"z": 1, "a": 2})
        assert serialize_record(record) == serialize_record(Record.model_validate(record.model_dump()))

    def test_body_carries_description_and_notes(self, make_record) -> None:
        text = serialize_record(make_record(description="Body text", notes="A note"))
        assert text.startswith("---\n")
        assert "Body text" in text
        assert "## Notes\n\nA note" in text

    def test_notes_without_description(self, make_record) -> None:
        record = make_record(notes="Only notes")
        parsed = parse_record(serialize_record(record))
        assert parsed.description is None
        assert parsed.notes == "Only notes"

    def test_heading_inside_description_roundtrips(self, make_record) -> None:
        """A description line reading '## Notes' stays in the description."""
        record = make_record(description="Checklist\n\n## Notes\n\nfrom the meeting")
        parsed = parse_record(serialize_record(record))
        assert parsed.description == record.description
        assert parsed.notes is None

    def test_heading_inside_description_with_notes(self, make_record) -> None:
        record = make_record(description="## Notes\nfirst line\n\\## Notes", notes="Real notes")
        parsed = parse_record(serialize_record(record))
        assert parsed == record

    def test_missing_front_matter(self) -> None:
        with pytest.raises(RecordParseError, match="front matter"):
            parse_record("just some text\n", "records/x.md")

    def test_invalid_yaml(self) -> None:
        with pytest.raises(RecordParseError) as exc_info:
            parse_record("---\ntitle: [unclosed\n---\n", "records/x.md")
        assert exc_info.value.path == "records/x.md"

    def test_invalid_field_values(self) -> None:
        with pytest.raises(RecordParseError, match="Invalid record fields"):
            parse_record("---\nid: rec-x\ntitle: t\npriority: 99\n---\n")

    def test_invalid_utf8(self) -> None:
        with pytest.raises(RecordParseError, match="UTF-8"):
            parse_record(b"---\ntitle: \xff\n---\n")


class TestRecordStore:
    """Tests for RecordStore."""

    @pytest.fixture
    def store(self, tmp_path: Path) -> RecordStore:
        ensure_layout(tmp_path)
        return RecordStore(tmp_path)

    def test_write_and_read(self, store: RecordStore, make_record) -> None:
        record = make_record()
        assert store.write(record) is True
        assert store.read(record.id) == record
        assert store.ids() == [record.id]

    def test_identical_write_is_skipped(self, store: RecordStore, make_record) -> None:
        record = make_record()
        store.write(record)
        mtime = store.path_for(record.id).stat().st_mtime_ns
        assert store.write(record) is False
        assert store.path_for(record.id).stat().st_mtime_ns == mtime

    def test_read_missing(self, store: RecordStore) -> None:
        assert store.read("rec-missing") is None

    def test_corrupt_file_is_isolated(self, store: RecordStore, make_record) -> None:
        """One unreadable record never stops the others from loading."""
        good = make_record()
        store.write(good)
        store.records_dir.joinpath("rec-broken.md").write_text("---\ntitle: [\n---\n")

        result = store.load_all()

        assert list(result.records) == [good.id]
        assert len(result.errors) == 1
        assert str(result.errors[0].path).endswith("rec-broken.md")

    def test_layout(self, tmp_path: Path) -> None:
        ensure_layout(tmp_path / "data")
        for sub in ("records", "mappings", "attic"):
            assert (tmp_path / "data" / sub).is_dir()
        assert (tmp_path / "data" / "meta.yml").read_text().startswith("schema_version: 1")


class TestIds:
    """Tests for stable and display ids."""

    def test_record_id_format(self) -> None:
        record_id = generate_record_id()
        assert is_record_id(record_id)
        assert not is_record_id("rec-short")

    def test_record_ids_sort_by_time(self) -> None:
        assert generate_record_id(now_ms=1_000) < generate_record_id(now_ms=2_000_000)

    def test_short_id_avoids_taken(self) -> None:
        short = generate_short_id({"aaaa"})
        assert len(short) == 4
        assert short != "aaaa"

    def test_derived_short_id_is_deterministic(self) -> None:
        first = derive_short_id("rec-a", set())
        assert derive_short_id("rec-a", set()) == first
        assert len(first) == 4
        assert derive_short_id("rec-b", set()) != first

    def test_derived_short_id_widens_on_collision(self) -> None:
        first = derive_short_id("rec-a", set())
        wider = derive_short_id("rec-a", {first})
        assert len(wider) == 5
        assert wider.startswith(first)


class TestIdMapping:
    """Tests for the display-id mapping."""

    def test_assign_is_stable(self) -> None:
        mapping = IdMapping()
        short = mapping.assign("rec-a")
        assert mapping.assign("rec-a") == short
        assert mapping.resolve(short) == "rec-a"
        assert mapping.resolve("rec-a") == "rec-a"
        assert mapping.resolve("nope") is None

    def test_remap_retires_old_id(self) -> None:
        mapping = IdMapping({"ab12": "rec-a"})
        new = mapping.remap("rec-a")
        assert new != "ab12"
        assert "ab12" in mapping.retired
        assert mapping.resolve("ab12") is None

    def test_save_and_load(self, tmp_path: Path) -> None:
        mapping = IdMapping({"ab12": "rec-a"}, {"zz99"})
        assert mapping.save(tmp_path) is True
        assert mapping.save(tmp_path) is False
        loaded = IdMapping.load(tmp_path)
        assert loaded.ids == {"ab12": "rec-a"}
        assert loaded.retired == {"zz99"}

    def test_merge_disjoint(self) -> None:
        mine = IdMapping({"aaaa": "rec-a"})
        changed = mine.merge(IdMapping({"bbbb": "rec-b"}))
        assert mine.ids == {"aaaa": "rec-a", "bbbb": "rec-b"}
        assert changed == []

    def test_merge_contested_short_goes_to_smaller_id(self) -> None:
        """Both clones resolve a collision the same way."""
        mine = IdMapping({"aaaa": "rec-b"})
        theirs = IdMapping({"aaaa": "rec-a"})

        changed = mine.merge(theirs)

        assert mine.ids["aaaa"] == "rec-a"
        assert mine.short_for("rec-b") not in (None, "aaaa")
        assert changed == ["rec-b"]

    def test_merge_record_with_two_shorts_keeps_smaller(self) -> None:
        mine = IdMapping({"bbbb": "rec-a"})
        mine.merge(IdMapping({"aaaa": "rec-a"}))
        assert mine.short_for("rec-a") == "aaaa"
        assert "bbbb" in mine.retired

    def test_merge_honors_retired(self) -> None:
        mine = IdMapping({"aaaa": "rec-a"})
        mine.merge(IdMapping({"cccc": "rec-a"}, {"aaaa"}))
        assert mine.short_for("rec-a") == "cccc"
        assert mine.resolve("aaaa") is None

    def test_merge_fallback_ids_converge(self) -> None:
        """A record that loses its display id gets the same new one on every clone."""
        mine = IdMapping({"aaaa": "rec-b"})
        theirs = IdMapping({"aaaa": "rec-a"})
        mine_copy, theirs_copy = IdMapping(dict(mine.ids)), IdMapping(dict(theirs.ids))

        mine.merge(theirs)
        theirs_copy.merge(mine_copy)

        assert mine.ids == theirs_copy.ids
        assert mine.short_for("rec-b") == derive_short_id("rec-b", {"aaaa"})
