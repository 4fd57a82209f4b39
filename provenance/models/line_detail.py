"""Line- and file-level survival results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from provenance.models.file_diff import FileStatus

if TYPE_CHECKING:
    from provenance.models.pull_request import PullRequest


class LineStatus(str, Enum):
    """Status of a line in a survival analysis."""

    SURVIVING = "SURVIVING"  # Introduced by the PR, still in the current file
    CURRENT = "CURRENT"  # In the current file, not introduced by the PR
    DELETED = "DELETED"  # Introduced by the PR, gone from the current file


def survival_rate(surviving: int, additions: int) -> int:
    """Percentage of added lines that survive, rounded; 0 when nothing was added."""
    if additions <= 0:
        return 0
    return round(surviving / additions * 100)


@dataclass(frozen=True)
class LineDetail:
    """Provenance of a single line."""

    content: str
    status: LineStatus
    line_number: int | None
    original_line_number: int | None = None
    commit_sha: str | None = None
    commit_url: str | None = None
    author_full_name: str | None = None
    author_github_username: str | None = None
    origin_pr_number: int | None = None
    origin_pr_url: str | None = None
    pr_file_url: str | None = None

    def __post_init__(self) -> None:
        """Check that the line number agrees with the status."""
        if self.status == LineStatus.DELETED and self.line_number is not None:
            raise ValueError("DELETED lines cannot have a current line number")

        if self.status != LineStatus.DELETED and self.line_number is None:
            raise ValueError(f"{self.status.value} lines require a current line number")

        if self.line_number is not None and self.line_number < 1:
            raise ValueError(f"line_number must be 1-based, got {self.line_number}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract, omitting unknown fields."""
        data: dict[str, Any] = {
            "lineNumber": self.line_number,
            "content": self.content,
            "status": self.status.value,
        }
        optional = {
            "originalLineNumber": self.original_line_number,
            "commitSha": self.commit_sha,
            "commitUrl": self.commit_url,
            "authorFullName": self.author_full_name,
            "authorGithubUsername": self.author_github_username,
            "originPrNumber": self.origin_pr_number,
            "originPrUrl": self.origin_pr_url,
            "prFileUrl": self.pr_file_url,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class PRFileDetail:
    """Survival analysis of one file touched by a PR."""

    file_path: str
    status: FileStatus
    additions: int
    deletions: int
    current_lines: int = 0
    surviving_lines: int = 0
    deleted_lines: int = 0
    lines: list[LineDetail] = field(default_factory=list)
    previous_file_path: str | None = None
    binary: bool = False
    truncated: bool = False
    analysis_incomplete: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        """Validate counters."""
        if self.surviving_lines > self.additions:
            raise ValueError(
                f"surviving_lines ({self.surviving_lines}) exceeds additions ({self.additions})"
            )

    @property
    def survival_rate(self) -> int:
        """Rounded percentage of this file's added lines still present."""
        return survival_rate(self.surviving_lines, self.additions)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract."""
        data: dict[str, Any] = {
            "filePath": self.file_path,
            "status": self.status.value,
            "additions": self.additions,
            "deletions": self.deletions,
            "survivingLines": self.surviving_lines,
            "deletedLines": self.deleted_lines,
            "currentLines": self.current_lines,
            "survivalRate": self.survival_rate,
            "binary": self.binary,
            "truncated": self.truncated,
            "analysisIncomplete": self.analysis_incomplete,
            "lines": [line.to_dict() for line in self.lines],
        }
        if self.previous_file_path:
            data["previousFilePath"] = self.previous_file_path
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class PRDetailedAnalysis:
    """A PR together with the survival analysis of all its files."""

    pull_request: PullRequest
    head_sha: str
    files: list[PRFileDetail] = field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(f.additions for f in self.files)

    @property
    def deletions(self) -> int:
        return sum(f.deletions for f in self.files)

    @property
    def surviving_lines(self) -> int:
        return sum(f.surviving_lines for f in self.files)

    @property
    def deleted_lines(self) -> int:
        return sum(f.deleted_lines for f in self.files)

    @property
    def survival_rate(self) -> int:
        return survival_rate(self.surviving_lines, self.additions)

    @property
    def analysis_incomplete(self) -> bool:
        """True when at least one file could not be fully analysed."""
        return any(f.analysis_incomplete for f in self.files)

    @property
    def truncated(self) -> bool:
        return any(f.truncated for f in self.files)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract."""
        data = self.pull_request.to_dict()
        data.update(
            {
                "additions": self.additions,
                "deletions": self.deletions,
                "changedFiles": len(self.files),
                "survivingLines": self.surviving_lines,
                "deletedLines": self.deleted_lines,
                "survivalRate": self.survival_rate,
                "analysisIncomplete": self.analysis_incomplete,
                "truncated": self.truncated,
                "headSha": self.head_sha,
                "files": [f.to_dict() for f in self.files],
            }
        )
        return data
