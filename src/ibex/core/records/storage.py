"""
On-disk record storage.

Each record lives in ``records/<id>.md``: a YAML front-matter block holding
the structured fields, followed by a markdown body carrying the description
and an optional notes section.

The data directory layout (shared by the record-branch worktree and by every
named workspace):

    <data_dir>/
        records/<id>.md
        mappings/ids.yml
        attic/<record-id>/<timestamp>_<field>.yml
        meta.yml
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import frontmatter  # type: ignore[import-untyped]
import yaml
from pydantic import ValidationError

from .models import Record

logger = logging.getLogger(__name__)

RECORDS_DIR = "records"
MAPPINGS_DIR = "mappings"
ATTIC_DIR = "attic"
META_FILE = "meta.yml"
SCHEMA_VERSION = 1

NOTES_HEADING = "## Notes"

_NOTES_LINE_RE = re.compile(rf"^{re.escape(NOTES_HEADING)}$", re.MULTILINE)
# A description line that reads like the heading is stored with one extra leading backslash
_HEADING_LIKE_RE = re.compile(rf"^\\*{re.escape(NOTES_HEADING)}$", re.MULTILINE)
_ESCAPED_HEADING_RE = re.compile(rf"^\\(\\*{re.escape(NOTES_HEADING)})$", re.MULTILINE)

# Fields carried in the body rather than the front matter
_BODY_FIELDS = ("description", "notes")


class RecordParseError(Exception):
    """Raised when a record file cannot be parsed."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = path


@dataclass
class LoadResult:
    """Records loaded from a directory plus any per-file data errors."""

    records: dict[str, Record] = field(default_factory=dict)
    errors: list[RecordParseError] = field(default_factory=list)


def serialize_record(record: Record) -> str:
    """
    Serialize a record to its canonical file text.

    Front-matter keys are sorted so identical records always produce
    identical bytes.
    """
    data = record.model_dump(mode="json", exclude=set(_BODY_FIELDS))
    body = _HEADING_LIKE_RE.sub(lambda m: "\\" + m.group(0), (record.description or "").strip())
    if record.notes:
        notes = f"{NOTES_HEADING}\n\n{record.notes.strip()}"
        body = f"{body}\n\n{notes}" if body else notes
    post = frontmatter.Post(body, **data)
    return frontmatter.dumps(post, sort_keys=True) + "\n"


def parse_record(text: str | bytes, path: Path | str | None = None) -> Record:
    """
    Parse record file text.

    Args:
        text: File contents
        path: Optional path, used only for error context

    Returns:
        Parsed Record

    Raises:
        RecordParseError: If the front matter or field values are invalid
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RecordParseError(f"Record is not valid UTF-8: {e}", path) from e

    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise RecordParseError(f"Invalid front matter: {e}", path) from e

    if not post.metadata:
        raise RecordParseError("Missing front matter", path)

    data = dict(post.metadata)
    body = post.content.strip()
    description, notes = body, None
    heading = _NOTES_LINE_RE.search(body)
    if heading is not None:
        description, notes = body[: heading.start()], body[heading.end() :]
    description = _ESCAPED_HEADING_RE.sub(lambda m: m.group(1), description)
    data["description"] = description.strip() or None
    data["notes"] = notes.strip() if notes else None

    try:
        return Record.model_validate(data)
    except ValidationError as e:
        raise RecordParseError(f"Invalid record fields: {e}", path) from e


def atomic_write(path: Path, content: str) -> None:
    """Write a file through a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def ensure_layout(data_dir: Path) -> None:
    """Create the data directory layout and meta file if missing."""
    for sub in (RECORDS_DIR, MAPPINGS_DIR, ATTIC_DIR):
        (data_dir / sub).mkdir(parents=True, exist_ok=True)
    meta = data_dir / META_FILE
    if not meta.exists():
        atomic_write(meta, yaml.safe_dump({"schema_version": SCHEMA_VERSION}))


class RecordStore:
    """
    Reads and writes record files under a data directory.

    Example:
        >>> store = RecordStore(Path(".ibex/data-sync-worktree/.ibex/data-sync"))
        >>> result = store.load_all()
        >>> for error in result.errors:
        ...     print(error.path, error)
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.records_dir = data_dir / RECORDS_DIR

    def path_for(self, record_id: str) -> Path:
        return self.records_dir / f"{record_id}.md"

    def exists(self, record_id: str) -> bool:
        return self.path_for(record_id).exists()

    def ids(self) -> list[str]:
        """Stable ids of every record file present, sorted."""
        if not self.records_dir.exists():
            return []
        return sorted(p.stem for p in self.records_dir.glob("*.md"))

    def read(self, record_id: str) -> Record | None:
        """
        Read one record.

        Returns:
            The record, or None if no file exists

        Raises:
            RecordParseError: If the file exists but cannot be parsed
        """
        path = self.path_for(record_id)
        if not path.exists():
            return None
        return parse_record(path.read_bytes(), path)

    def read_bytes(self, record_id: str) -> bytes | None:
        path = self.path_for(record_id)
        return path.read_bytes() if path.exists() else None

    def write(self, record: Record) -> bool:
        """
        Write a record file.

        Returns:
            True if the file changed, False if identical bytes were already present
        """
        path = self.path_for(record.id)
        content = serialize_record(record)
        if path.exists() and path.read_text(encoding="utf-8") == content:
            return False
        atomic_write(path, content)
        logger.debug("Wrote record %s", record.id)
        return True

    def write_bytes(self, record_id: str, data: bytes) -> None:
        """Write raw record bytes verbatim (used when copying snapshots)."""
        path = self.path_for(record_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def load_all(self) -> LoadResult:
        """
        Load every record file.

        A corrupt file is logged and reported in ``errors``; it never stops
        the remaining files from loading.
        """
        result = LoadResult()
        for record_id in self.ids():
            path = self.path_for(record_id)
            try:
                record = parse_record(path.read_bytes(), path)
            except RecordParseError as e:
                logger.warning("Skipping unreadable record %s: %s", path, e)
                result.errors.append(e)
                continue
            result.records[record.id] = record
        return result
