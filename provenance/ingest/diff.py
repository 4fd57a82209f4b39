"""Unified diff parsing into per-file line operations."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from provenance.models.file_diff import FileDiff, FileStatus
from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = get_logger("ingest.diff")


class DiffParseError(Exception):
    """Raised when a patch is not a well-formed unified diff."""

    pass


class LineOp(str, Enum):
    """Kind of line operation."""

    ADD = "ADD"
    REMOVE = "REMOVE"
    CONTEXT = "CONTEXT"


@dataclass(frozen=True)
class LineOperation:
    """One line of a hunk, tied to the commit it belongs to."""

    op: LineOp
    content: str
    commit_sha: str | None
    source_line_no: int | None
    target_line_no: int | None


@dataclass
class DiffHunk:
    """Represents a hunk in a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str
    lines: list[str]
    no_newline_at_eof: bool = False


@dataclass(frozen=True)
class CommitPatch:
    """A single PR commit's patch for one file."""

    sha: str
    patch: str | None


@dataclass
class FileOperations:
    """The ingested form of one file of one PR."""

    filename: str
    status: FileStatus
    operations: list[LineOperation] = field(default_factory=list)
    previous_filename: str | None = None
    binary: bool = False
    truncated: bool = False
    no_newline_at_eof: bool = False
    parse_error: str | None = None

    @property
    def additions(self) -> list[LineOperation]:
        return [op for op in self.operations if op.op == LineOp.ADD]

    @property
    def removals(self) -> list[LineOperation]:
        return [op for op in self.operations if op.op == LineOp.REMOVE]

    def target_lines(self) -> dict[int, str]:
        """Head-side line contents known from the hunks, by head line number."""
        return {
            op.target_line_no: op.content
            for op in self.operations
            if op.target_line_no is not None
        }


# Pattern to match hunk headers: @@ -old_start,old_count +new_start,new_count @@
HUNK_HEADER_PATTERN = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
# Prefix of "\ No newline at end of file" and its localized variants
NO_NEWLINE_PREFIX = "\\"
BINARY_PATTERN = re.compile(r"^(Binary files .* differ|GIT binary patch)$")

# git extended header lines that may precede the first hunk
GIT_HEADER_PREFIXES = (
    "diff --git ",
    "index ",
    "--- ",
    "+++ ",
    "old mode ",
    "new mode ",
    "deleted file mode ",
    "new file mode ",
    "similarity index ",
    "dissimilarity index ",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
)


def normalize_trailing(content: str) -> str:
    """Normalization used for survival matching: trailing whitespace is ignored."""
    return content.rstrip()


def split_lines(content: str) -> list[str]:
    """Split file text into lines the way a unified diff counts them.

    Only a newline ends a line; form feeds and Unicode line separators stay
    inside it. A final newline does not start an extra empty line, and a CRLF
    ending loses its carriage return.
    """
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def is_binary_patch(patch: str | None) -> bool:
    """Check whether a patch only states that binary content differs."""
    if not patch:
        return False
    return any(BINARY_PATTERN.match(line) for line in patch.split("\n"))


def parse_unified_diff(patch: str | None) -> list[DiffHunk]:
    """Parse a unified diff patch into hunks.

    Accepts GitHub `patch` fields as well as full `git diff` sections; git
    extended headers before the first hunk are skipped.

    Args:
        patch: The unified diff patch content, or None for binary files.

    Returns:
        List of DiffHunk objects.

    Raises:
        DiffParseError: If a hunk header is malformed, a hunk line has an
            unknown prefix, or a hunk's body disagrees with its header counts.
    """
    if not patch:
        return []

    hunks: list[DiffHunk] = []
    current: DiffHunk | None = None
    old_left = new_left = 0

    for line_no, line in enumerate(patch.split("\n"), start=1):
        if line.startswith("@@"):
            if current is not None:
                _check_hunk_complete(current, old_left, new_left)
                hunks.append(current)

            match = HUNK_HEADER_PATTERN.match(line)
            if not match:
                raise DiffParseError(f"Malformed hunk header at line {line_no}: {line!r}")

            current = DiffHunk(
                old_start=int(match.group(1)),
                old_count=int(match.group(2)) if match.group(2) is not None else 1,
                new_start=int(match.group(3)),
                new_count=int(match.group(4)) if match.group(4) is not None else 1,
                header=line,
                lines=[],
            )
            old_left, new_left = current.old_count, current.new_count
            continue

        if current is None:
            if line and not line.startswith(GIT_HEADER_PREFIXES) and not BINARY_PATTERN.match(line):
                raise DiffParseError(f"Unexpected content before first hunk at line {line_no}")
            continue

        if line.startswith(NO_NEWLINE_PREFIX):
            current.no_newline_at_eof = True
            continue

        if old_left == 0 and new_left == 0:
            # Hunk is complete; only trailing blank lines or a following git header may appear
            if line and not line.startswith(GIT_HEADER_PREFIXES):
                raise DiffParseError(f"Hunk body longer than its header at line {line_no}")
            continue

        prefix, content = (line[0], line[1:]) if line else (" ", "")
        if prefix == "+":
            new_left -= 1
        elif prefix == "-":
            old_left -= 1
        elif prefix == " ":
            old_left -= 1
            new_left -= 1
        else:
            raise DiffParseError(f"Unknown line prefix {prefix!r} at line {line_no}")

        if old_left < 0 or new_left < 0:
            raise DiffParseError(f"Hunk body longer than its header at line {line_no}")

        current.lines.append(prefix + content)

    if current is not None:
        _check_hunk_complete(current, old_left, new_left)
        hunks.append(current)

    return hunks


def _check_hunk_complete(hunk: DiffHunk, old_left: int, new_left: int) -> None:
    if old_left or new_left:
        raise DiffParseError(
            f"Hunk {hunk.header!r} is short by {old_left} old and {new_left} new lines"
        )


def extract_line_operations(
    patch: str | None,
    commit_sha: str | None = None,
) -> list[LineOperation]:
    """Turn a patch into ordered ADD/REMOVE/CONTEXT operations.

    Args:
        patch: The unified diff patch content.
        commit_sha: Commit every operation is attributed to for now.

    Returns:
        Operations in patch order.
    """
    operations: list[LineOperation] = []

    for hunk in parse_unified_diff(patch):
        old_line = hunk.old_start
        new_line = hunk.new_start

        for line in hunk.lines:
            prefix, content = line[0], line[1:]

            if prefix == "+":
                operations.append(LineOperation(LineOp.ADD, content, commit_sha, None, new_line))
                new_line += 1
            elif prefix == "-":
                operations.append(LineOperation(LineOp.REMOVE, content, commit_sha, old_line, None))
                old_line += 1
            else:
                operations.append(
                    LineOperation(LineOp.CONTEXT, content, commit_sha, old_line, new_line)
                )
                old_line += 1
                new_line += 1

    return operations


def _truncate(operations: list[LineOperation], limit: int) -> list[LineOperation]:
    """Keep operations up to the `limit`-th ADD/REMOVE."""
    changed = 0
    for index, operation in enumerate(operations):
        if operation.op != LineOp.CONTEXT:
            changed += 1
            if changed > limit:
                return operations[:index]
    return operations


def build_file_operations(
    file_diff: FileDiff,
    commit_sha: str | None,
    max_changed_lines: int,
    head_content: str | None = None,
) -> FileOperations:
    """Ingest one file of a PR.

    Binary files and pure renames produce no operations. Added files whose
    patch GitHub withheld are rebuilt from their head content when given;
    any other withheld patch with line changes leaves the file truncated.
    A malformed patch is recorded on the result rather than raised so the
    rest of the PR can still be analysed.

    Args:
        file_diff: The file as delivered by ingestion.
        commit_sha: Commit the operations are attributed to (the PR head).
        max_changed_lines: Size guard for ADD+REMOVE operations.
        head_content: File content at the PR head, if available.

    Returns:
        FileOperations for the file.
    """
    result = FileOperations(
        filename=file_diff.filename,
        status=file_diff.status,
        previous_filename=file_diff.previous_filename,
    )

    if file_diff.is_pure_rename:
        logger.debug("Pure rename, no line operations", extra={"file_path": file_diff.filename})
        return result

    if (
        file_diff.patch is None
        and file_diff.status == FileStatus.ADDED
        and head_content is not None
        and "\x00" not in head_content
    ):
        result.operations = [
            LineOperation(LineOp.ADD, line, commit_sha, None, number)
            for number, line in enumerate(split_lines(head_content), start=1)
        ]
    elif file_diff.patch_withheld:
        # GitHub drops the patch of very large text diffs
        result.truncated = True
        logger.warning(
            "Patch withheld for a text diff, marking truncated",
            extra={"file_path": file_diff.filename, "changed_lines": file_diff.total_changes},
        )
        return result
    elif file_diff.is_binary or is_binary_patch(file_diff.patch):
        result.binary = True
        logger.info("Skipping binary file", extra={"file_path": file_diff.filename})
        return result
    else:
        try:
            hunks = parse_unified_diff(file_diff.patch)
            result.operations = extract_line_operations(file_diff.patch, commit_sha)
        except DiffParseError as e:
            logger.warning(
                "Malformed diff, skipping file",
                extra={"file_path": file_diff.filename, "error": str(e)},
            )
            result.parse_error = str(e)
            return result
        result.no_newline_at_eof = any(h.no_newline_at_eof for h in hunks)

    changed = sum(1 for op in result.operations if op.op != LineOp.CONTEXT)
    if changed > max_changed_lines:
        result.operations = _truncate(result.operations, max_changed_lines)
        result.truncated = True
        logger.warning(
            "Diff exceeds size guard, truncated",
            extra={
                "file_path": file_diff.filename,
                "changed_lines": changed,
                "limit": max_changed_lines,
            },
        )

    return result


def attribute_commits(
    operations: list[LineOperation],
    commit_patches: Iterable[CommitPatch],
    default_sha: str | None,
) -> list[LineOperation]:
    """Assign each ADD operation to the PR commit that introduced it.

    The PR-level diff only knows the final state; each ADD is credited to the
    latest commit (in PR order) whose own patch added the same content.
    Lines no commit patch explains keep `default_sha`.

    Args:
        operations: Operations from the PR-level diff.
        commit_patches: The PR's commits in chronological order, with their
            patch for this file.
        default_sha: Fallback commit (usually the PR head).

    Returns:
        A new list of operations with commit SHAs resolved.
    """
    introduced_by: dict[str, str] = {}
    for commit in commit_patches:
        try:
            commit_ops = extract_line_operations(commit.patch, commit.sha)
        except DiffParseError as e:
            logger.debug(
                "Ignoring unparsable commit patch",
                extra={"commit_sha": commit.sha, "error": str(e)},
            )
            continue
        for op in commit_ops:
            if op.op == LineOp.ADD:
                introduced_by[normalize_trailing(op.content)] = commit.sha

    return [
        LineOperation(
            op.op,
            op.content,
            introduced_by.get(normalize_trailing(op.content), default_sha)
            if op.op == LineOp.ADD
            else default_sha,
            op.source_line_no,
            op.target_line_no,
        )
        for op in operations
    ]
