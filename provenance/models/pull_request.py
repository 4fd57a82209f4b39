"""Pull request model."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from provenance.models.change import ChangeType

if TYPE_CHECKING:
    from provenance.models.change import PullRequestChange


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a GitHub ISO-8601 timestamp (``2024-01-01T00:00:00Z``)."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)


class PRState(str, Enum):
    """Lifecycle state of a pull request."""

    OPEN = "open"
    CLOSED = "closed"
    MERGED = "merged"


@dataclass
class PullRequest:
    """A tracked GitHub pull request and its aggregate counters."""

    id: str
    pr_number: int
    url: str
    title: str
    author: str
    repo_full_name: str
    state: PRState = PRState.OPEN
    merged: bool = False
    author_full_name: str | None = None
    head_sha: str | None = None
    base_branch: str = "main"
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    surviving_lines: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    # Validation patterns
    REPO_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r"^[a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+$")
    SHA_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r"^[a-f0-9]{40}$")

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if not self.id:
            raise ValueError("PR id cannot be empty")

        if self.pr_number <= 0:
            raise ValueError(f"PR number must be positive, got {self.pr_number}")

        if not self.REPO_PATTERN.match(self.repo_full_name):
            raise ValueError(
                f"Invalid repository format: {self.repo_full_name}. Expected format: owner/repo"
            )

        if self.head_sha is not None and not self.SHA_PATTERN.match(self.head_sha):
            raise ValueError(
                f"Invalid SHA format: {self.head_sha}. Expected 40-character hex string"
            )

        for counter in ("additions", "deletions", "changed_files"):
            if getattr(self, counter) < 0:
                raise ValueError(f"{counter} must be non-negative, got {getattr(self, counter)}")

        self.state = PRState(self.state)
        if self.state == PRState.MERGED:
            self.merged = True

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> PullRequest:
        """Create a PullRequest from a GitHub pull_request webhook payload.

        Args:
            payload: The webhook payload containing pull_request data.

        Returns:
            PullRequest instance.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If field values are invalid.
        """
        pr = payload["pull_request"]
        repository = payload["repository"]["full_name"]
        merged = bool(pr.get("merged", False))

        if merged:
            state = PRState.MERGED
        elif pr.get("state") == "closed":
            state = PRState.CLOSED
        else:
            state = PRState.OPEN

        created_at = parse_timestamp(pr.get("created_at")) or datetime.now(UTC)

        return cls(
            id=str(pr.get("id") or f"{repository}#{payload['number']}"),
            pr_number=payload["number"],
            url=pr["html_url"],
            title=pr["title"],
            author=pr["user"]["login"],
            repo_full_name=repository,
            state=state,
            merged=merged,
            head_sha=pr["head"]["sha"],
            base_branch=pr["base"]["ref"],
            additions=pr.get("additions", 0),
            deletions=pr.get("deletions", 0),
            changed_files=pr.get("changed_files", 0),
            created_at=created_at,
            updated_at=parse_timestamp(pr.get("updated_at")),
        )

    @property
    def is_open(self) -> bool:
        """Whether the PR is still open."""
        return self.state == PRState.OPEN

    def file_url(self, file_path: str, line: int | None = None) -> str:
        """Link to a file in this PR's diff view.

        GitHub anchors diff files by the SHA-256 of their path.
        """
        anchor = hashlib.sha256(file_path.encode()).hexdigest()
        suffix = f"R{line}" if line is not None else ""
        return f"{self.url}/files#diff-{anchor}{suffix}"

    def commit_url(self, commit_sha: str) -> str:
        """Link to a commit in this PR's repository."""
        return f"https://github.com/{self.repo_full_name}/commit/{commit_sha}"

    def apply_change(self, change: PullRequestChange) -> None:
        """Mutate lifecycle state according to a recorded change event.

        Args:
            change: An event already accepted by the PR's change log.
        """
        if change.type == ChangeType.MERGED:
            self.state = PRState.MERGED
            self.merged = True
        elif change.type == ChangeType.CLOSED:
            self.state = PRState.MERGED if change.merged else PRState.CLOSED
            self.merged = bool(change.merged)
        elif change.type == ChangeType.REOPENED:
            self.state = PRState.OPEN
        elif change.type == ChangeType.EDITED and change.new_title and self.is_open:
            self.title = change.new_title

        self.updated_at = change.changed_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract."""
        return {
            "id": self.id,
            "url": self.url,
            "prNumber": self.pr_number,
            "title": self.title,
            "state": self.state.value,
            "merged": self.merged,
            "repoFullName": self.repo_full_name,
            "author": {
                "githubUsername": self.author,
                "fullName": self.author_full_name,
            },
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "additions": self.additions,
            "deletions": self.deletions,
            "changedFiles": self.changed_files,
            "survivingLines": self.surviving_lines,
        }
