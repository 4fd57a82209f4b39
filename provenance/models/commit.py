"""Commit metadata model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Commit:
    """A commit of a pull request, with its per-file patches."""

    sha: str
    committed_at: datetime
    author_login: str | None = None
    author_name: str | None = None
    patches: dict[str, str | None] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if not self.sha:
            raise ValueError("commit sha cannot be empty")

        if self.committed_at.tzinfo is None:
            raise ValueError("committed_at must be timezone-aware")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Commit:
        """Create a Commit from its JSON form.

        Expects `sha`, an ISO-8601 `committedAt`, and optionally
        `authorLogin`, `authorName` and `files` (`[{filename, patch}]`).
        """
        return cls(
            sha=data["sha"],
            committed_at=datetime.fromisoformat(data["committedAt"].replace("Z", "+00:00")),
            author_login=data.get("authorLogin"),
            author_name=data.get("authorName"),
            patches={f["filename"]: f.get("patch") for f in data.get("files", [])},
        )
