"""
Sync failure taxonomy and classifier.

All message-based classification lives in ``classify_failure``, driven by
``FAILURE_PATTERNS``. Call sites never match on error strings themselves.
"""

from __future__ import annotations

import re
from enum import Enum


class FailureKind(str, Enum):
    """How a failed sync step should be handled."""

    STALE = "stale"  # remote moved on; refetch and retry
    TRANSIENT = "transient"  # network trouble; retry is reasonable
    PERMANENT = "permanent"  # not retryable; stage to a workspace instead
    FATAL = "fatal"  # local failure (disk, corruption); stop without staging


# Checked in order; the first matching row wins.
FAILURE_PATTERNS: list[tuple[FailureKind, re.Pattern[str]]] = [
    (FailureKind.FATAL, re.compile(r"no space left on device|disk quota exceeded|read-only file system", re.I)),
    (FailureKind.FATAL, re.compile(r"object file .* is empty|loose object .* is corrupt|bad object", re.I)),
    (FailureKind.PERMANENT, re.compile(r"permission (to .* )?denied|access denied|forbidden|\b403\b", re.I)),
    (FailureKind.PERMANENT, re.compile(r"protected branch|pre-receive hook declined|\bGH006\b", re.I)),
    (FailureKind.PERMANENT, re.compile(r"authentication failed|could not read username|invalid credentials|\b401\b", re.I)),
    (FailureKind.PERMANENT, re.compile(r"repository not found|does not appear to be a git repository", re.I)),
    (FailureKind.STALE, re.compile(r"non-fast-forward|fetch first|\[rejected\]|stale info", re.I)),
    (FailureKind.STALE, re.compile(r"cannot lock ref|incorrect old value|failed to update ref", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"timed? ?out|timeout", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"could not resolve host|name or service not known|temporary failure in name resolution", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"connection (reset|refused|closed)|network is unreachable|broken pipe", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"early eof|unexpected disconnect|remote end hung up", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"\b50[0234]\b|internal server error|bad gateway|service unavailable", re.I)),
    (FailureKind.TRANSIENT, re.compile(r"rate limit", re.I)),
]


def classify_failure(message: str) -> FailureKind:
    """
    Classify a failure message.

    Unknown messages are TRANSIENT: suggesting a retry is safer than
    discarding work.

    Example:
        >>> classify_failure("! [remote rejected] ibex-sync (protected branch hook declined)")
        <FailureKind.PERMANENT: 'permanent'>
        >>> classify_failure("something odd happened")
        <FailureKind.TRANSIENT: 'transient'>
    """
    for kind, pattern in FAILURE_PATTERNS:
        if pattern.search(message or ""):
            return kind
    return FailureKind.TRANSIENT


def is_retryable(kind: FailureKind) -> bool:
    return kind in (FailureKind.STALE, FailureKind.TRANSIENT)

