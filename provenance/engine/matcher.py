"""Alignment of a PR's added lines against the current file, with line attribution."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from provenance.ingest.diff import normalize_trailing, split_lines
from provenance.models.line_detail import LineDetail, LineStatus, PRFileDetail
from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from provenance.engine.content_index import ContentIndex, Origin
    from provenance.engine.snapshot_store import CancelToken
    from provenance.ingest.diff import FileOperations, LineOperation
    from provenance.models.commit import Commit
    from provenance.models.pull_request import PullRequest

logger = get_logger("engine.matcher")

# Lines processed between cancellation checks
CANCEL_CHECK_INTERVAL = 256


@dataclass
class AttributionContext:
    """What the matcher needs to know about the PR under analysis."""

    pull_request: PullRequest
    commits: Mapping[str, Commit] = field(default_factory=dict)
    full_names: Mapping[str, str] = field(default_factory=dict)
    is_reachable: Callable[[str], bool] | None = None

    def full_name(self, login: str | None, fallback: str | None = None) -> str | None:
        """Application full name for a GitHub login, else the git author name."""
        if login and login in self.full_names:
            return self.full_names[login]
        return fallback


class LineMatcher:
    """Classifies the lines of one file for one PR.

    A line the PR added survives when its content, ignoring trailing
    whitespace, is present anywhere in the current file; every occurrence is
    reported. Current lines the PR did not add are attributed through the
    repository's content index when possible.
    """

    def __init__(self, index: ContentIndex) -> None:
        self.index = index

    def match(
        self,
        operations: FileOperations,
        current_content: str | None,
        context: AttributionContext,
        additions: int,
        deletions: int,
        token: CancelToken | None = None,
    ) -> PRFileDetail:
        """Compute the survival detail of one file.

        Args:
            operations: The PR's ingested operations for the file.
            current_content: File text at the analysed HEAD; None if the file is gone.
            context: Attribution data for the PR.
            additions: Added-line count to report (at least the ADD operations).
            deletions: Removed-line count to report.
            token: Cancellation token polled while matching.

        Returns:
            The file detail. Lines follow the current file; each deleted line sits
            before the current line holding its original line number.
        """
        detail = PRFileDetail(
            file_path=operations.filename,
            status=operations.status,
            additions=additions,
            deletions=deletions,
            previous_file_path=operations.previous_filename,
            binary=operations.binary,
            truncated=operations.truncated,
        )

        if operations.binary:
            return detail

        add_ops = operations.additions
        if not add_ops:
            return detail

        current = split_lines(current_content) if current_content is not None else []
        detail.current_lines = len(current)

        positions: dict[str, list[int]] = defaultdict(list)
        for number, text in enumerate(current, start=1):
            positions[normalize_trailing(text)].append(number)

        owner_of_line = self._pair_occurrences(add_ops, positions)
        deleted = [op for op in add_ops if normalize_trailing(op.content) not in positions]
        placed = deque(
            sorted(
                (op for op in deleted if op.target_line_no is not None),
                key=lambda op: op.target_line_no or 0,
            )
        )
        pr = context.pull_request

        if token is not None:
            token.raise_if_cancelled()

        with self.index.file_lock(operations.filename):
            for number, text in enumerate(current, start=1):
                if token is not None and number % CANCEL_CHECK_INTERVAL == 0:
                    token.raise_if_cancelled()

                while placed and (placed[0].target_line_no or 0) <= number:
                    detail.lines.append(
                        self._pr_line(placed.popleft(), None, operations.filename, context)
                    )

                op = owner_of_line.get(number)
                if op is not None:
                    detail.lines.append(self._pr_line(op, number, operations.filename, context))
                    continue

                before, after = self.index.context(current, number)
                origin = self.index.lookup(
                    text,
                    before,
                    after,
                    is_reachable=context.is_reachable,
                    exclude_pr_id=pr.id,
                )
                detail.lines.append(self._current_line(text, number, origin, context))

        # Deleted lines past the end of the file, then those with no known position
        for op in [*placed, *(op for op in deleted if op.target_line_no is None)]:
            detail.lines.append(self._pr_line(op, None, operations.filename, context))
        detail.deleted_lines = len(deleted)

        detail.surviving_lines = len(add_ops) - detail.deleted_lines

        logger.debug(
            "Matched file",
            extra={
                "pr_id": pr.id,
                "file_path": operations.filename,
                "surviving": detail.surviving_lines,
                "deleted": detail.deleted_lines,
                "current_lines": detail.current_lines,
            },
        )
        return detail

    @staticmethod
    def _pair_occurrences(
        add_ops: list[LineOperation],
        positions: Mapping[str, list[int]],
    ) -> dict[int, LineOperation]:
        """Map each current line holding PR-added content to the ADD that explains it.

        The k-th occurrence pairs with the k-th ADD of that content; further
        occurrences (copies, moves) are credited to the last such ADD.
        """
        ops_by_content: dict[str, list[LineOperation]] = defaultdict(list)
        for op in add_ops:
            ops_by_content[normalize_trailing(op.content)].append(op)

        owner: dict[int, LineOperation] = {}
        for content, ops in ops_by_content.items():
            for k, number in enumerate(positions.get(content, ())):
                owner[number] = ops[min(k, len(ops) - 1)]
        return owner

    @staticmethod
    def _pr_line(
        op: LineOperation,
        line_number: int | None,
        file_path: str,
        context: AttributionContext,
    ) -> LineDetail:
        pr = context.pull_request
        commit = context.commits.get(op.commit_sha) if op.commit_sha else None
        login = (commit.author_login if commit else None) or pr.author

        return LineDetail(
            content=op.content,
            status=LineStatus.SURVIVING if line_number is not None else LineStatus.DELETED,
            line_number=line_number,
            original_line_number=op.target_line_no,
            commit_sha=op.commit_sha,
            commit_url=pr.commit_url(op.commit_sha) if op.commit_sha else None,
            author_full_name=context.full_name(
                login, commit.author_name if commit else pr.author_full_name
            ),
            author_github_username=login,
            pr_file_url=pr.file_url(file_path, op.target_line_no),
        )

    @staticmethod
    def _current_line(
        text: str,
        line_number: int,
        origin: Origin | None,
        context: AttributionContext,
    ) -> LineDetail:
        if origin is None:
            return LineDetail(content=text, status=LineStatus.CURRENT, line_number=line_number)

        pr = context.pull_request
        return LineDetail(
            content=text,
            status=LineStatus.CURRENT,
            line_number=line_number,
            commit_sha=origin.commit_sha,
            commit_url=pr.commit_url(origin.commit_sha),
            author_full_name=context.full_name(origin.author_login, origin.author_name),
            author_github_username=origin.author_login,
            origin_pr_number=origin.pr_number,
            origin_pr_url=origin.pr_url,
        )
