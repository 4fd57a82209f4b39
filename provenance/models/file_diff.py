"""File diff model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FileStatus(str, Enum):
    """Status of a file in a pull request."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"

    @classmethod
    def from_github(cls, status: str) -> FileStatus:
        """Map a GitHub file status onto the four statuses the engine tracks.

        GitHub also reports "copied", "changed" and "unchanged"; those carry
        content like a modification.
        """
        try:
            return cls(status)
        except ValueError:
            if status in {"copied", "changed", "unchanged"}:
                return cls.MODIFIED
            raise


@dataclass
class FileDiff:
    """One file's changes in a pull request, as delivered by ingestion."""

    filename: str
    status: FileStatus
    additions: int
    deletions: int
    patch: str | None = None
    previous_filename: str | None = None
    sha: str | None = None
    blob_url: str | None = None

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        if not self.filename:
            raise ValueError("filename cannot be empty")

        if self.additions < 0:
            raise ValueError(f"additions must be non-negative, got {self.additions}")

        if self.deletions < 0:
            raise ValueError(f"deletions must be non-negative, got {self.deletions}")

        if isinstance(self.status, str) and not isinstance(self.status, FileStatus):
            self.status = FileStatus.from_github(self.status)

    @property
    def is_binary(self) -> bool:
        """Check if file appears to be binary.

        GitHub omits the patch for binary files and reports no line counts
        for them. Removed files, pure renames and oversized text diffs also
        come without a patch but are not binary.
        """
        if self.patch is not None:
            return self.patch.lstrip().startswith("Binary files ")
        if self.status == FileStatus.REMOVED or self.is_pure_rename:
            return False
        return self.total_changes == 0

    @property
    def patch_withheld(self) -> bool:
        """A text diff whose patch GitHub left out because it is too large."""
        return self.patch is None and not self.is_pure_rename and self.total_changes > 0

    @property
    def is_pure_rename(self) -> bool:
        """A rename that carries no content delta."""
        return (
            self.status == FileStatus.RENAMED
            and self.additions == 0
            and self.deletions == 0
            and not self.patch
        )

    @property
    def total_changes(self) -> int:
        """Total lines changed (added + deleted)."""
        return self.additions + self.deletions
