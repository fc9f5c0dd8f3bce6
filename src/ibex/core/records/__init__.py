"""
Issue records: the model, the on-disk format, and identifiers.
"""

from .ids import IdMapping, derive_short_id, generate_record_id, generate_short_id, is_record_id
from .models import (
    Dependency,
    Record,
    RecordKind,
    RecordStatus,
    content_hash,
    substantive_view,
    substantively_equal,
    utc_now,
)
from .storage import (
    LoadResult,
    RecordParseError,
    RecordStore,
    ensure_layout,
    parse_record,
    serialize_record,
)

__all__ = [
    "Dependency",
    "IdMapping",
    "LoadResult",
    "Record",
    "RecordKind",
    "RecordParseError",
    "RecordStatus",
    "RecordStore",
    "content_hash",
    "derive_short_id",
    "ensure_layout",
    "generate_record_id",
    "generate_short_id",
    "is_record_id",
    "parse_record",
    "serialize_record",
    "substantive_view",
    "substantively_equal",
    "utc_now",
]
