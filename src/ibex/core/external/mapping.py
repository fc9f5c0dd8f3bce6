"""
Status mapping between records and external issues.

Both directions are total: a local status with no external analogue maps to
``None`` (no change on push), and an external state/reason pair with no
local meaning leaves the record untouched on pull.
"""

from __future__ import annotations

from ibex.core.records.models import RecordStatus

# local status -> (external state, close reason); None = no external change
LOCAL_TO_EXTERNAL: dict[RecordStatus, tuple[str, str | None] | None] = {
    RecordStatus.OPEN: ("open", None),
    RecordStatus.IN_PROGRESS: ("open", None),
    RecordStatus.BLOCKED: None,
    RecordStatus.DEFERRED: ("closed", "not_planned"),
    RecordStatus.CLOSED: ("closed", "completed"),
}


def local_to_external(status: RecordStatus) -> tuple[str, str | None] | None:
    return LOCAL_TO_EXTERNAL.get(status)


def external_to_local(state: str, reason: str | None, current: RecordStatus) -> RecordStatus | None:
    """
    Local status implied by an external state, or None for no change.

    An open external issue only reopens a record that is closed or deferred;
    any open-ish local status (open, in progress, blocked) is left alone.
    """
    state = (state or "").lower()
    if state == "open":
        if current in (RecordStatus.CLOSED, RecordStatus.DEFERRED):
            return RecordStatus.OPEN
        return None
    if state == "closed":
        target = RecordStatus.DEFERRED if reason == "not_planned" else RecordStatus.CLOSED
        return None if target == current else target
    return None


def external_matches(status: RecordStatus, state: str, reason: str | None) -> bool:
    """Whether the external issue already reflects the local status."""
    mapped = local_to_external(status)
    if mapped is None:
        return True
    want_state, want_reason = mapped
    if want_state != state:
        return False
    return want_state == "open" or want_reason == reason
