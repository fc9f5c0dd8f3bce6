"""
Per-field merge strategies.

``FIELD_STRATEGIES`` declares how every Record field is reconciled when both
sides changed it relative to the base. The helpers here are pure functions
over JSON-able values; the engine decides when to call them.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from ibex.core.records.models import canonical_json


class FieldStrategy(str, Enum):
    """Merge policy for a single field."""

    IMMUTABLE = "immutable"
    LWW = "lww"
    UNION = "union"
    MANUAL_ORDER = "manual_order"
    STRUCTURAL = "structural"
    METADATA = "metadata"


FIELD_STRATEGIES: dict[str, FieldStrategy] = {
    "id": FieldStrategy.IMMUTABLE,
    "created_at": FieldStrategy.IMMUTABLE,
    "short_id": FieldStrategy.LWW,
    "title": FieldStrategy.LWW,
    "status": FieldStrategy.LWW,
    "priority": FieldStrategy.LWW,
    "kind": FieldStrategy.LWW,
    "description": FieldStrategy.LWW,
    "notes": FieldStrategy.LWW,
    "assignee": FieldStrategy.LWW,
    "parent_id": FieldStrategy.LWW,
    "external_issue_url": FieldStrategy.LWW,
    "closed_at": FieldStrategy.LWW,
    "close_reason": FieldStrategy.LWW,
    "labels": FieldStrategy.UNION,
    "dependencies": FieldStrategy.STRUCTURAL,
    "extensions": FieldStrategy.STRUCTURAL,
    "child_order_hints": FieldStrategy.MANUAL_ORDER,
    "version": FieldStrategy.METADATA,
    "updated_at": FieldStrategy.METADATA,
}


class _Missing:
    """Marker for a value absent from one side (or from the base)."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def _key(item: Any) -> str:
    return item if isinstance(item, str) else canonical_json(item)


def union_merge(local: Iterable[Any], remote: Iterable[Any], base: Iterable[Any] | None) -> list[Any]:
    """
    Three-way set union that honors deletions.

    A value present in ``base`` and missing from either side is a deletion.
    Values added on either side since ``base`` are kept. Without a base the
    result is the plain union. Output is sorted for a stable encoding.

    Example:
        >>> union_merge(["a", "b"], ["a", "c"], ["a"])
        ['a', 'b', 'c']
        >>> union_merge(["a"], ["a", "b"], ["a", "b"])
        ['a']
    """
    local_map = {_key(v): v for v in local}
    remote_map = {_key(v): v for v in remote}
    base_keys = {_key(v) for v in base} if base is not None else set()

    kept = base_keys & set(local_map) & set(remote_map)
    added = (set(local_map) - base_keys) | (set(remote_map) - base_keys)
    merged = {**remote_map, **local_map}
    return [merged[k] for k in sorted(kept | added)]


def order_by_hints(ids: Iterable[str], hints: Iterable[str]) -> list[str]:
    """
    Order ids by a manual hint list.

    Ids named in ``hints`` come first, in hint order; the rest follow sorted.
    Hints naming ids not in ``ids`` are ignored.

    Example:
        >>> order_by_hints(["c", "a", "b"], ["b", "zz", "c"])
        ['b', 'c', 'a']
    """
    id_list = list(dict.fromkeys(ids))
    present = set(id_list)
    hinted = [h for h in dict.fromkeys(hints) if h in present]
    hinted_set = set(hinted)
    return hinted + sorted(i for i in id_list if i not in hinted_set)


def merge_manual_order(
    local: list[str], remote: list[str], base: list[str] | None, winner: list[str]
) -> list[str]:
    """Membership by three-way union, order from the LWW winner's list."""
    return order_by_hints(union_merge(local, remote, base), winner)


def merge_structural(
    local: Any,
    remote: Any,
    base: Any,
    pick: Callable[[str, Any, Any], Any],
    path: str,
) -> Any:
    """
    Key-wise recursive three-way merge of nested mappings.

    Leaves changed differently on both sides are resolved by ``pick(path,
    local, remote)``. ``MISSING`` stands for an absent key; returning it
    drops the key.
    """
    if local == remote:
        return local
    if base is not MISSING and local == base:
        return remote
    if base is not MISSING and remote == base:
        return local
    if isinstance(local, dict) and isinstance(remote, dict):
        base_dict = base if isinstance(base, dict) else {}
        out: dict[str, Any] = {}
        for key in sorted(set(local) | set(remote)):
            sub_base = base_dict.get(key, MISSING) if isinstance(base, dict) else MISSING
            value = merge_structural(
                local.get(key, MISSING),
                remote.get(key, MISSING),
                sub_base,
                pick,
                f"{path}.{key}",
            )
            if value is not MISSING:
                out[key] = value
        return out
    if local is MISSING:
        return remote
    if remote is MISSING:
        return local
    return pick(path, local, remote)


def dependency_key(dep: dict[str, Any]) -> str:
    return f"{dep.get('type', 'blocks')}:{dep['target']}"


def merge_dependencies(
    local: list[dict[str, Any]], remote: list[dict[str, Any]], base: list[dict[str, Any]] | None
) -> list[dict[str, Any]]:
    """Edge-list union of dependency edges keyed by (type, target)."""
    local_map = {dependency_key(d): d for d in local}
    remote_map = {dependency_key(d): d for d in remote}
    base_keys = [dependency_key(d) for d in base] if base is not None else None
    keys = union_merge(local_map, remote_map, base_keys)
    merged = {**remote_map, **local_map}
    return [merged[k] for k in keys]
