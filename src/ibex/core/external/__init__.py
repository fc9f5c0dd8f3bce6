"""
Optional status and label mirroring with an external issue tracker.
"""

from .adapter import ExternalSync, ExternalSyncResult
from .client import ExternalTracker, ExternalTrackerError, GitHubTracker
from .mapping import LOCAL_TO_EXTERNAL, external_matches, external_to_local, local_to_external
from .models import ExternalState, IssueRef

__all__ = [
    "LOCAL_TO_EXTERNAL",
    "ExternalState",
    "ExternalSync",
    "ExternalSyncResult",
    "ExternalTracker",
    "ExternalTrackerError",
    "GitHubTracker",
    "IssueRef",
    "external_matches",
    "external_to_local",
    "local_to_external",
]
