"""
External tracker data models.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, computed_field

_ISSUE_URL_RE = re.compile(r"^https?://github\.com/([^/\s]+)/([^/\s]+)/(?:issues|pull)/(\d+)/?(?:[#?].*)?$")


class IssueRef(BaseModel):
    """
    Reference to an issue in the external tracker.

    Example:
        >>> IssueRef.from_url("https://github.com/acme/widgets/issues/42")
        IssueRef(owner='acme', repo='widgets', number=42)
    """

    owner: str = Field(..., description="Repository owner")
    repo: str = Field(..., description="Repository name")
    number: int = Field(..., description="Issue number")

    @computed_field
    @property
    def url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}/issues/{self.number}"

    @classmethod
    def from_url(cls, url: str) -> IssueRef | None:
        """Parse an issue URL; returns None if it is not a recognized issue link."""
        match = _ISSUE_URL_RE.match(url.strip())
        if not match:
            return None
        return cls(owner=match.group(1), repo=match.group(2), number=int(match.group(3)))

    def __repr__(self) -> str:
        return f"IssueRef(owner={self.owner!r}, repo={self.repo!r}, number={self.number})"


class ExternalState(BaseModel):
    """State of an external issue: open/closed, close reason, labels."""

    state: str = Field(..., description="'open' or 'closed'")
    reason: str | None = Field(default=None, description="Close reason, e.g. 'completed', 'not_planned'")
    labels: list[str] = Field(default_factory=list)

    @classmethod
    def from_gh_api(cls, data: dict) -> ExternalState:
        """Build from a GitHub REST issue payload."""
        labels = []
        for label in data.get("labels") or []:
            name = label.get("name") if isinstance(label, dict) else label
            if name:
                labels.append(str(name))
        return cls(
            state=str(data.get("state", "open")).lower(),
            reason=data.get("state_reason"),
            labels=sorted(set(labels)),
        )
