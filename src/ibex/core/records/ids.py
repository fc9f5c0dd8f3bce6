"""
Record identifiers and the display-id mapping.

Stable ids are ``rec-`` followed by 26 lowercase Crockford base32 characters
(10 time characters then 16 random ones), so ids sort roughly by creation
time. Display ids are short base36 strings kept in ``mappings/ids.yml``,
derived from the stable id.

A display id may be remapped but is never reused for a different record:
every short id ever handed out stays reserved.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import time
from pathlib import Path

import yaml

from .storage import MAPPINGS_DIR, atomic_write

CROCKFORD = "0123456789abcdefghjkmnpqrstvwxyz"
BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
RECORD_ID_PREFIX = "rec-"
SHORT_ID_LENGTH = 4
MAPPING_FILE = "ids.yml"

_RECORD_ID_RE = re.compile(rf"^{RECORD_ID_PREFIX}[{CROCKFORD}]{{26}}$")


def generate_record_id(now_ms: int | None = None) -> str:
    """Generate a new stable record id."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    time_part = ""
    for _ in range(10):
        time_part = CROCKFORD[now_ms % 32] + time_part
        now_ms //= 32
    random_part = "".join(secrets.choice(CROCKFORD) for _ in range(16))
    return f"{RECORD_ID_PREFIX}{time_part}{random_part}"


def is_record_id(value: str) -> bool:
    return bool(_RECORD_ID_RE.match(value))


def generate_short_id(taken: set[str], length: int = SHORT_ID_LENGTH) -> str:
    """
    Generate a display id not present in ``taken``.

    Widens the id by one character after repeated collisions.
    """
    while True:
        for _ in range(100):
            candidate = "".join(secrets.choice(BASE36) for _ in range(length))
            if candidate not in taken:
                return candidate
        length += 1


def derive_short_id(record_id: str, taken: set[str], length: int = SHORT_ID_LENGTH) -> str:
    """
    Derive a display id from the record id.

    The id is a prefix of the base36 SHA-256 of ``record_id``, widened one
    character at a time while the prefix is taken, so every clone derives the
    same id from the same mapping.
    """
    value = int(hashlib.sha256(record_id.encode("utf-8")).hexdigest(), 16)
    digits = ""
    while value:
        value, rem = divmod(value, 36)
        digits += BASE36[rem]
    for size in range(length, len(digits) + 1):
        if digits[:size] not in taken:
            return digits[:size]
    return generate_short_id(taken, len(digits) + 1)


class IdMapping:
    """
    Display-id mapping for a data directory.

    Stored as YAML::

        ids:
          a1b2: rec-01hx...
        retired:
          - zz99

    Example:
        >>> mapping = IdMapping.load(data_dir)
        >>> short = mapping.assign(record.id)
        >>> mapping.resolve(short) == record.id
        True
        >>> mapping.save(data_dir)
    """

    def __init__(self, ids: dict[str, str] | None = None, retired: set[str] | None = None):
        self.ids: dict[str, str] = dict(ids or {})
        self.retired: set[str] = set(retired or ())

    @staticmethod
    def path_for(data_dir: Path) -> Path:
        return data_dir / MAPPINGS_DIR / MAPPING_FILE

    @classmethod
    def from_text(cls, text: str | bytes | None) -> IdMapping:
        if not text:
            return cls()
        data = yaml.safe_load(text) or {}
        ids = {str(k): str(v) for k, v in (data.get("ids") or {}).items()}
        retired = {str(s) for s in (data.get("retired") or [])}
        return cls(ids, retired)

    @classmethod
    def load(cls, data_dir: Path) -> IdMapping:
        path = cls.path_for(data_dir)
        if not path.exists():
            return cls()
        return cls.from_text(path.read_text(encoding="utf-8"))

    def to_text(self) -> str:
        data: dict[str, object] = {"ids": dict(sorted(self.ids.items()))}
        if self.retired:
            data["retired"] = sorted(self.retired)
        return yaml.safe_dump(data, sort_keys=False)

    def save(self, data_dir: Path) -> bool:
        """Write the mapping; returns False when the file was already identical."""
        path = self.path_for(data_dir)
        text = self.to_text()
        if path.exists() and path.read_text(encoding="utf-8") == text:
            return False
        atomic_write(path, text)
        return True

    def short_for(self, record_id: str) -> str | None:
        for short, rid in self.ids.items():
            if rid == record_id:
                return short
        return None

    def _taken(self) -> set[str]:
        return set(self.ids) | self.retired

    def assign(self, record_id: str) -> str:
        """Return the record's display id, allocating one if needed."""
        existing = self.short_for(record_id)
        if existing:
            return existing
        short = derive_short_id(record_id, self._taken())
        self.ids[short] = record_id
        return short

    def remap(self, record_id: str) -> str:
        """Give a record a fresh display id, retiring its old one."""
        old = self.short_for(record_id)
        if old:
            del self.ids[old]
            self.retired.add(old)
        short = generate_short_id(self._taken())
        self.ids[short] = record_id
        return short

    def resolve(self, key: str) -> str | None:
        """Resolve a display id or stable id to the stable id."""
        if key in self.ids:
            return self.ids[key]
        if key in self.ids.values():
            return key
        return None

    def merge(self, other: IdMapping) -> list[str]:
        """
        Merge another mapping into this one.

        Resolution is deterministic so every clone converges:

        - a retired display id on either side is dropped everywhere
        - a display id claimed by two records stays with the smaller stable id
        - a record holding two display ids keeps the smaller one and the
          other is retired
        - a record left without a display id gets one derived from its stable id

        Returns:
            Stable ids of records whose display id changed
        """
        before = {rid: short for short, rid in self.ids.items()}
        retired = self.retired | other.retired

        claims: dict[str, str] = {}
        for source in (self.ids, other.ids):
            for short, rid in source.items():
                if short in retired:
                    continue
                if short not in claims or rid < claims[short]:
                    claims[short] = rid

        by_record: dict[str, str] = {}
        for short, rid in sorted(claims.items()):
            if rid in by_record:
                retired.add(short)
            else:
                by_record[rid] = short

        self.retired = retired
        self.ids = {short: rid for rid, short in by_record.items()}

        all_records = set(self.ids.values()) | set(before) | set(other.ids.values())
        for rid in sorted(all_records - set(by_record)):
            self.ids[derive_short_id(rid, self._taken())] = rid

        return sorted(rid for rid in before if self.short_for(rid) != before[rid])
