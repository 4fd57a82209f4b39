"""Survival analysis of a whole pull request against a repository HEAD."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from provenance.engine.snapshot_store import SnapshotKey
from provenance.ingest.github import ContentUnavailableError, GitHubToolError
from provenance.models.line_detail import PRDetailedAnalysis, PRFileDetail
from provenance.utils.logging import get_logger
from provenance.utils.retry import RetryError, retry_with_backoff

if TYPE_CHECKING:
    from collections.abc import Callable

    from provenance.engine.catalog import PullRequestRecord
    from provenance.engine.matcher import AttributionContext
    from provenance.engine.scope import RepositoryScope
    from provenance.engine.snapshot_store import CancelToken
    from provenance.ingest.diff import FileOperations
    from provenance.ingest.github import ContentSource
    from provenance.models.config import EngineConfig
    from provenance.models.file_diff import FileDiff

logger = get_logger("engine.analyzer")


class PullRequestAnalyzer:
    """Runs the matcher over every file of a PR through the snapshot store."""

    def __init__(
        self,
        scope: RepositoryScope,
        source: ContentSource,
        config: EngineConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.scope = scope
        self.source = source
        self.config = config
        self._sleep = sleep

    def analyze(
        self,
        record: PullRequestRecord,
        context: AttributionContext,
        head_sha: str,
    ) -> PRDetailedAnalysis:
        """Analyse all files of an ingested PR against `head_sha`.

        Files are matched in parallel. A file that cannot be analysed is
        reported with `analysis_incomplete` instead of failing the PR.

        Raises:
            AnalysisCancelled: If the PR was removed while the analysis ran.
        """
        pr = record.pull_request
        paths = list(record.operations)

        logger.info(
            "Analyzing pull request",
            extra={
                "pr_id": pr.id,
                "repository": pr.repo_full_name,
                "head_sha": head_sha,
                "file_count": len(paths),
            },
        )

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="provenance-match",
        ) as pool:
            files = list(
                pool.map(lambda path: self.analyze_file(record, path, context, head_sha), paths)
            )

        analysis = PRDetailedAnalysis(pull_request=pr, head_sha=head_sha, files=files)
        pr.surviving_lines = analysis.surviving_lines

        logger.info(
            "Pull request analyzed",
            extra={
                "pr_id": pr.id,
                "surviving_lines": analysis.surviving_lines,
                "additions": analysis.additions,
                "survival_rate": analysis.survival_rate,
                "incomplete": analysis.analysis_incomplete,
            },
        )
        return analysis

    def analyze_file(
        self,
        record: PullRequestRecord,
        file_path: str,
        context: AttributionContext,
        head_sha: str,
    ) -> PRFileDetail:
        """Return the snapshot detail of one file, computing it if needed."""
        operations = record.operations[file_path]
        file_diff = record.files[file_path]

        if operations.parse_error:
            return self._incomplete(file_diff, operations, operations.parse_error)

        key = SnapshotKey(record.pull_request.id, file_path, head_sha)

        def compute(token: CancelToken) -> PRFileDetail:
            return self._match(record, file_diff, operations, context, head_sha, token)

        try:
            snapshot = self.scope.store.get_or_compute(key, record.diff_sha or head_sha, compute)
        except (RetryError, GitHubToolError) as e:
            logger.warning(
                "File content unavailable, analysis incomplete",
                extra={"pr_id": key.pr_id, "file_path": file_path, "error": str(e)},
            )
            return self._incomplete(file_diff, operations, str(e))

        return snapshot.detail

    def _match(
        self,
        record: PullRequestRecord,
        file_diff: FileDiff,
        operations: FileOperations,
        context: AttributionContext,
        head_sha: str,
        token: CancelToken,
    ) -> PRFileDetail:
        repository = record.pull_request.repo_full_name
        needs_content = not operations.binary and bool(operations.additions)
        content = (
            self._fetch_content(repository, operations.filename, head_sha)
            if needs_content
            else None
        )
        token.raise_if_cancelled()

        return self.scope.matcher.match(
            operations,
            content,
            context,
            additions=_reported_additions(file_diff, operations),
            deletions=_reported_deletions(file_diff, operations),
            token=token,
        )

    def _fetch_content(self, repository: str, file_path: str, ref: str) -> str | None:
        """Fetch a blob, retrying transient failures.

        Raises:
            RetryError: If every attempt failed.
        """
        return retry_with_backoff(
            lambda: self.source.get_file_content(repository, file_path, ref),
            config=self.config.fetch_retry,
            retry_on=(ContentUnavailableError,),
            sleep=self._sleep,
        )

    @staticmethod
    def _incomplete(file_diff: FileDiff, operations: FileOperations, error: str) -> PRFileDetail:
        return PRFileDetail(
            file_path=file_diff.filename,
            status=file_diff.status,
            additions=_reported_additions(file_diff, operations),
            deletions=_reported_deletions(file_diff, operations),
            previous_file_path=file_diff.previous_filename,
            binary=operations.binary,
            truncated=operations.truncated,
            analysis_incomplete=True,
            error=error,
        )


def _reported_additions(file_diff: FileDiff, operations: FileOperations) -> int:
    # Truncated, binary and unparsable files only know GitHub's counters
    added = len(operations.additions)
    if operations.truncated or operations.binary or operations.parse_error:
        return max(file_diff.additions, added)
    return added


def _reported_deletions(file_diff: FileDiff, operations: FileOperations) -> int:
    removed = len(operations.removals)
    if operations.truncated or operations.binary or operations.parse_error:
        return max(file_diff.deletions, removed)
    return removed
