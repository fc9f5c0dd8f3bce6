"""
Record data models.

Defines the Pydantic model for a single issue record, the unit of merge and
sync, along with the substantive-equality helpers the merge engine and the
staging layer rely on.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Fields that never participate in substantive equality
METADATA_FIELDS: frozenset[str] = frozenset({"version", "updated_at"})


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class RecordStatus(str, Enum):
    """Lifecycle status of a record."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"


class RecordKind(str, Enum):
    """Kind of work a record describes."""

    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


class Dependency(BaseModel):
    """A dependency edge from the owning record to another record."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(default="blocks", description="Edge type")
    target: str = Field(..., description="Stable id of the target record")

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.target)


class Record(BaseModel):
    """
    A single issue record.

    Records are never hard-deleted; removal is a status transition so that
    every change stays mergeable.

    Example:
        >>> record = Record(id="rec-01hx...", title="Fix login")
        >>> record.status
        <RecordStatus.OPEN: 'open'>
        >>> touched = record.touch()
        >>> touched.version == record.version + 1
        True
    """

    model_config = ConfigDict(use_enum_values=False, validate_assignment=True)

    id: str = Field(..., description="Stable identifier (never changes)")
    short_id: str | None = Field(default=None, description="Display identifier")
    title: str = Field(..., description="One-line summary")
    status: RecordStatus = Field(default=RecordStatus.OPEN)
    priority: int = Field(default=2, ge=0, le=4)
    kind: RecordKind = Field(default=RecordKind.TASK)
    labels: list[str] = Field(default_factory=list)
    description: str | None = Field(default=None)
    notes: str | None = Field(default=None)
    assignee: str | None = Field(default=None)
    parent_id: str | None = Field(default=None)
    dependencies: list[Dependency] = Field(default_factory=list)
    external_issue_url: str | None = Field(default=None)
    child_order_hints: list[str] = Field(default_factory=list)
    extensions: dict[str, Any] = Field(default_factory=dict)
    closed_at: datetime | None = Field(default=None)
    close_reason: str | None = Field(default=None)
    version: int = Field(default=1, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator(
        "short_id",
        "description",
        "notes",
        "assignee",
        "parent_id",
        "external_issue_url",
        "close_reason",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("labels", mode="before")
    @classmethod
    def _normalize_labels(cls, value: Any) -> Any:
        if value is None:
            return []
        return sorted({str(label) for label in value if str(label).strip()})

    @field_validator("dependencies", mode="before")
    @classmethod
    def _normalize_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        deps = [Dependency.model_validate(d) for d in value]
        unique = {d.key: d for d in deps}
        return [unique[k] for k in sorted(unique)]

    @field_validator("child_order_hints", mode="before")
    @classmethod
    def _normalize_hints(cls, value: Any) -> Any:
        return [] if value is None else list(value)

    @field_validator("extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("closed_at", "created_at", "updated_at", mode="after")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def touch(self, now: datetime | None = None, **changes: Any) -> Record:
        """
        Return a copy with local changes applied, version bumped, and
        updated_at refreshed.

        Args:
            now: Timestamp to stamp (defaults to current UTC time)
            **changes: Field values to change

        Returns:
            New Record instance
        """
        data = self.model_dump()
        data.update(changes)
        data["version"] = self.version + 1
        data["updated_at"] = now or utc_now()
        return Record.model_validate(data)


def substantive_view(record: Record) -> dict[str, Any]:
    """
    JSON-able view of every field that participates in substantive equality.

    Null and absent are already normalized by the model validators, so two
    records that differ only in how an empty value was spelled compare equal.
    """
    return record.model_dump(mode="json", exclude=set(METADATA_FIELDS))


def substantively_equal(a: Record, b: Record) -> bool:
    """Check equality of all fields except version and updated_at."""
    return substantive_view(a) == substantive_view(b)


def canonical_json(value: Any) -> str:
    """Stable JSON encoding used for deterministic tiebreaks."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(data: str | bytes) -> str:
    """SHA-256 of serialized record bytes, for cheap change detection."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()
