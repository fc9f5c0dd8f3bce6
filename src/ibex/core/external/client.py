"""
External tracker clients.

``ExternalTracker`` is the capability surface the sync adapter consumes.
``GitHubTracker`` implements it with the ``gh`` CLI. Every call carries a
bounded timeout; a timeout is raised as a transient failure. There is no
retry at this layer.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Protocol

from ibex.core.sync.errors import FailureKind, classify_failure

from .models import ExternalState, IssueRef

logger = logging.getLogger(__name__)


class ExternalTrackerError(Exception):
    """Error from an external tracker call."""

    def __init__(self, message: str, kind: FailureKind | None = None):
        super().__init__(message)
        self.kind = kind if kind is not None else classify_failure(message)


class ExternalTracker(Protocol):
    """Operations the sync adapter needs from an external tracker."""

    def get_state(self, ref: IssueRef) -> ExternalState: ...

    def set_state(self, ref: IssueRef, state: str, reason: str | None) -> None: ...

    def add_label(self, ref: IssueRef, label: str) -> None: ...

    def remove_label(self, ref: IssueRef, label: str) -> None: ...


class GitHubTracker:
    """
    GitHub issues via ``gh api``.

    Example:
        >>> if GitHubTracker.is_available():
        ...     tracker = GitHubTracker(timeout=30)
        ...     state = tracker.get_state(IssueRef.from_url(url))
    """

    def __init__(self, timeout: float = 30) -> None:
        self.timeout = timeout

    @staticmethod
    def is_available() -> bool:
        """Check that gh is installed and authenticated."""
        try:
            result = subprocess.run(
                ["gh", "auth", "status"],
                capture_output=True,
                text=True,
                check=False,
                timeout=10,
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired):
            return False

    def _api(self, path: str, *args: str) -> str:
        command = ["gh", "api", path, *args]
        logger.debug("%s", " ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalTrackerError(
                f"gh api {path} timed out after {self.timeout}s", FailureKind.TRANSIENT
            ) from e
        except OSError as e:
            raise ExternalTrackerError(f"Failed to run gh command: {e}", FailureKind.PERMANENT) from e

        if result.returncode != 0:
            error_msg = (result.stderr or result.stdout).strip() or "Unknown error"
            raise ExternalTrackerError(f"gh api {path} failed: {error_msg}")
        return result.stdout

    def get_state(self, ref: IssueRef) -> ExternalState:
        out = self._api(f"repos/{ref.owner}/{ref.repo}/issues/{ref.number}")
        try:
            return ExternalState.from_gh_api(json.loads(out))
        except json.JSONDecodeError as e:
            raise ExternalTrackerError(f"Failed to parse GitHub API response: {e}") from e

    def set_state(self, ref: IssueRef, state: str, reason: str | None) -> None:
        args = ["-X", "PATCH", "-f", f"state={state}"]
        if reason:
            args += ["-f", f"state_reason={reason}"]
        self._api(f"repos/{ref.owner}/{ref.repo}/issues/{ref.number}", *args)

    def ensure_label(self, ref: IssueRef, label: str) -> None:
        """Create a repository label; an existing label is not an error."""
        try:
            self._api(f"repos/{ref.owner}/{ref.repo}/labels", "-X", "POST", "-f", f"name={label}")
        except ExternalTrackerError as e:
            text = str(e).lower()
            if "already_exists" in text or "already exists" in text or "422" in text:
                return
            raise

    def add_label(self, ref: IssueRef, label: str) -> None:
        self.ensure_label(ref, label)
        self._api(
            f"repos/{ref.owner}/{ref.repo}/issues/{ref.number}/labels",
            "-X",
            "POST",
            "-f",
            f"labels[]={label}",
        )

    def remove_label(self, ref: IssueRef, label: str) -> None:
        try:
            self._api(
                f"repos/{ref.owner}/{ref.repo}/issues/{ref.number}/labels/{label}",
                "-X",
                "DELETE",
            )
        except ExternalTrackerError as e:
            # already gone
            if "404" in str(e) or "not found" in str(e).lower():
                return
            raise
