"""Pull request change event log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003
from enum import Enum
from typing import Any


class ChangeLogError(Exception):
    """Raised when an event would break the change log's ordering rules."""

    pass


class ChangeType(str, Enum):
    """Type of a pull request change event."""

    OPENED = "pr_opened"
    SYNCHRONIZE = "pr_synchronize"
    MERGED = "pr_merged"
    CLOSED = "pr_closed"
    REOPENED = "pr_reopened"
    EDITED = "pr_edited"


TERMINAL_TYPES = {ChangeType.MERGED, ChangeType.CLOSED}

# Events a PR accepts once its current open period has ended
AFTER_TERMINAL: dict[bool, set[ChangeType]] = {
    False: {ChangeType.REOPENED, ChangeType.EDITED},  # closed without merge
    True: {ChangeType.EDITED},  # merged
}


@dataclass
class PullRequestChange:
    """One entry of a PR's change history."""

    pull_request_id: str
    type: ChangeType
    github_user: str
    changed_at: datetime
    id: int = 0
    author_full_name: str | None = None
    pr_title: str | None = None
    pr_number: int | None = None
    repo_full_name: str | None = None
    merged: bool | None = None
    merged_by: str | None = None
    merged_by_full_name: str | None = None
    new_title: str | None = None

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        self.type = ChangeType(self.type)

        if not self.github_user:
            raise ValueError("github_user cannot be empty")

        if self.changed_at.tzinfo is None:
            raise ValueError("changed_at must be timezone-aware")

        if self.type == ChangeType.MERGED and not self.merged_by:
            raise ValueError("pr_merged events require merged_by")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract, with type-specific fields."""
        data: dict[str, Any] = {
            "id": self.id,
            "pullRequestId": self.pull_request_id,
            "githubUser": self.github_user,
            "authorFullName": self.author_full_name,
            "changedAt": self.changed_at.isoformat(),
            "type": self.type.value,
        }

        if self.type == ChangeType.OPENED:
            data.update(
                prTitle=self.pr_title,
                prNumber=self.pr_number,
                repoFullName=self.repo_full_name,
            )
        elif self.type == ChangeType.CLOSED:
            data.update(merged=bool(self.merged), mergedBy=self.merged_by)
        elif self.type == ChangeType.MERGED:
            data.update(mergedBy=self.merged_by, mergedByFullName=self.merged_by_full_name)
        elif self.type == ChangeType.EDITED:
            data.update(newTitle=self.new_title)

        return data


@dataclass
class PullRequestChangeLog:
    """Append-only, ordered event history of a single pull request."""

    pull_request_id: str
    changes: list[PullRequestChange] = field(default_factory=list)

    @property
    def is_terminated(self) -> bool:
        """Whether the current open period ended with a merge or close."""
        for change in reversed(self.changes):
            if change.type in TERMINAL_TYPES:
                return True
            if change.type in {ChangeType.REOPENED, ChangeType.OPENED}:
                return False
        return False

    @property
    def is_merged(self) -> bool:
        """Whether any recorded terminal event was a merge."""
        return any(
            c.type == ChangeType.MERGED or (c.type == ChangeType.CLOSED and c.merged)
            for c in self.changes
        )

    def append(self, change: PullRequestChange) -> PullRequestChange:
        """Validate and record a new event, assigning its sequence id.

        Args:
            change: The event to record.

        Returns:
            The recorded event.

        Raises:
            ChangeLogError: If the event violates ordering or lifecycle rules.
        """
        if change.pull_request_id != self.pull_request_id:
            raise ChangeLogError(
                f"Event for PR {change.pull_request_id} appended to log of {self.pull_request_id}"
            )

        if not self.changes:
            if change.type != ChangeType.OPENED:
                raise ChangeLogError(f"First event must be pr_opened, got {change.type.value}")
        else:
            last = self.changes[-1]
            if change.changed_at <= last.changed_at:
                raise ChangeLogError(
                    f"changed_at must increase: {change.changed_at.isoformat()} "
                    f"is not after {last.changed_at.isoformat()}"
                )

            if change.type == ChangeType.OPENED:
                raise ChangeLogError("A pull request has exactly one pr_opened event")

            if self.is_terminated:
                allowed = AFTER_TERMINAL[self.is_merged]
                if change.type not in allowed:
                    raise ChangeLogError(
                        f"{change.type.value} not allowed after the PR was "
                        f"{'merged' if self.is_merged else 'closed'}"
                    )
            elif change.type == ChangeType.REOPENED:
                raise ChangeLogError("pr_reopened requires a closed pull request")

        change.id = len(self.changes) + 1
        self.changes.append(change)
        return change
