"""Ingestion and read operations of the provenance engine."""

from __future__ import annotations

import hashlib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from provenance.engine.aggregation import compute_report
from provenance.engine.analyzer import PullRequestAnalyzer
from provenance.engine.catalog import Catalog
from provenance.engine.content_index import Origin
from provenance.engine.matcher import AttributionContext
from provenance.engine.scope import ScopeRegistry
from provenance.engine.snapshot_store import AnalysisCancelled
from provenance.engine.summary import summarize_project
from provenance.ingest.diff import (
    CommitPatch,
    attribute_commits,
    build_file_operations,
    split_lines,
)
from provenance.ingest.github import ContentUnavailableError, GitHubToolError
from provenance.models.change import ChangeLogError, ChangeType, PullRequestChange
from provenance.models.config import EngineConfig
from provenance.models.file_diff import FileStatus
from provenance.utils.logging import get_logger
from provenance.utils.retry import RetryError, retry_with_backoff

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from provenance.engine.catalog import PullRequestRecord
    from provenance.engine.scope import RepositoryScope
    from provenance.engine.summary import ProjectAnalysisResult
    from provenance.ingest.diff import FileOperations
    from provenance.ingest.github import ContentSource, GitHubSource
    from provenance.models.commit import Commit
    from provenance.models.file_diff import FileDiff
    from provenance.models.line_detail import PRDetailedAnalysis, PRFileDetail
    from provenance.models.pull_request import PullRequest
    from provenance.models.report import Project, Report, ReportResult

logger = get_logger("service")


class NotFoundError(Exception):
    """Raised when a requested pull request, report or project is unknown."""

    pass


@dataclass
class IngestRequest:
    """The inputs of one pull request ingestion."""

    pull_request: PullRequest
    files: Sequence[FileDiff]
    commits: Sequence[Commit] = ()
    head_contents: Mapping[str, str] = field(default_factory=dict)


def diff_signature(pull_request: PullRequest, files: Sequence[FileDiff]) -> str:
    """Identify a PR diff: its head SHA, or a hash of the patches when unknown."""
    if pull_request.head_sha:
        return pull_request.head_sha

    digest = hashlib.sha1()
    for f in sorted(files, key=lambda f: f.filename):
        digest.update(f"{f.filename}\x00{f.status.value}\x00{f.patch or ''}\x1e".encode())
    return digest.hexdigest()


class ProvenanceService:
    """Entry point used by the HTTP layer and by ingestion jobs.

    Owns the catalog of ingested data and the per-repository scopes; a
    service instance is self-contained and can be discarded with `close()`.
    """

    def __init__(
        self,
        source: ContentSource,
        config: EngineConfig | None = None,
        catalog: Catalog | None = None,
        feed: GitHubSource | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the service.

        Args:
            source: Where current file contents and branch HEADs come from.
            config: Engine configuration. Uses defaults if not provided.
            catalog: Pre-populated catalog; a fresh one if not provided.
            feed: GitHub client used to sync PRs announced by webhooks.
            sleep: Sleep function for fetch retries, injectable for tests.
        """
        self.source = source
        self.config = config or EngineConfig.default()
        self.catalog = catalog or Catalog()
        self.feed = feed
        self.scopes = ScopeRegistry(self.config)
        self._sleep = sleep

    def close(self) -> None:
        """Cancel running analyses and release every repository scope."""
        self.scopes.close_all()

    # Ingestion

    def ingest_pull_request(
        self,
        pull_request: PullRequest,
        files: Sequence[FileDiff],
        commits: Sequence[Commit] = (),
        head_contents: Mapping[str, str] | None = None,
    ) -> bool:
        """Ingest a PR's diff: parse, attribute, index.

        Idempotent on (PR id, diff). When the diff of a known PR changed,
        its snapshots are invalidated.

        Args:
            pull_request: Trusted PR metadata.
            files: The PR's files with their patches.
            commits: The PR's commits with their per-file patches.
            head_contents: File contents at the PR head, by path, if known.

        Returns:
            False if this diff had already been ingested.
        """
        head_contents = head_contents or {}
        diff_sha = diff_signature(pull_request, files)
        record = self.catalog.upsert_pull_request(pull_request)
        scope = self.scopes.scope(pull_request.repo_full_name)

        with record.lock:
            if record.diff_sha == diff_sha:
                logger.debug(
                    "Diff already ingested",
                    extra={"pr_id": pull_request.id, "diff_sha": diff_sha},
                )
                return False

            if record.ingested:
                dropped = scope.store.invalidate_pr(pull_request.id)
                logger.info(
                    "PR diff changed, snapshots invalidated",
                    extra={"pr_id": pull_request.id, "dropped": dropped},
                )

            ordered = sorted(commits, key=lambda c: c.committed_at)
            operations: dict[str, FileOperations] = {}
            for file_diff in files:
                ops = build_file_operations(
                    file_diff,
                    pull_request.head_sha,
                    self.config.max_changed_lines,
                    head_content=head_contents.get(file_diff.filename),
                )
                ops.operations = attribute_commits(
                    ops.operations,
                    [
                        CommitPatch(c.sha, c.patches[file_diff.filename])
                        for c in ordered
                        if file_diff.filename in c.patches
                    ],
                    pull_request.head_sha,
                )
                operations[file_diff.filename] = ops

            indexed = self._index(scope, pull_request, operations, ordered, head_contents)

            record.files = {f.filename: f for f in files}
            record.operations = operations
            record.commits = ordered
            record.diff_sha = diff_sha
            pull_request.surviving_lines = None

        logger.info(
            "Pull request ingested",
            extra={
                "pr_id": pull_request.id,
                "repository": pull_request.repo_full_name,
                "file_count": len(operations),
                "commit_count": len(ordered),
                "indexed_lines": indexed,
            },
        )
        return True

    def ingest_many(self, requests: Iterable[IngestRequest]) -> list[bool]:
        """Ingest several PRs in parallel."""
        with ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="provenance-ingest",
        ) as pool:
            return list(
                pool.map(
                    lambda r: self.ingest_pull_request(
                        r.pull_request, r.files, r.commits, r.head_contents
                    ),
                    requests,
                )
            )

    def sync_pull_request(self, repository: str, pr_number: int) -> bool:
        """Fetch a PR from GitHub and ingest it.

        Raises:
            GitHubToolError: If no feed is configured or GitHub calls fail.
        """
        if self.feed is None:
            raise GitHubToolError("No GitHub feed configured")

        pull_request = self.feed.fetch_pull_request(repository, pr_number)
        known = self.catalog.get(pull_request.id)
        if known is not None:
            pull_request.state = known.pull_request.state
            pull_request.merged = known.pull_request.merged

        files = self.feed.list_pr_files(repository, pr_number)
        commits = self.feed.list_pr_commits(repository, pr_number)
        head_contents = self._withheld_added_contents(self.feed, pull_request, files)
        return self.ingest_pull_request(pull_request, files, commits, head_contents)

    def record_change(
        self,
        pull_request: PullRequest,
        change: PullRequestChange,
    ) -> PullRequestChange | None:
        """Apply a lifecycle event to a PR, creating the PR on first sighting.

        A PR first seen through a later event gets a synthetic `pr_opened`
        at its creation time. Events the change log rejects (redeliveries,
        out-of-order events) are logged and ignored.

        Returns:
            The recorded event, or None if it was rejected.
        """
        known = self.catalog.get(pull_request.id)
        if (
            known is not None
            and not known.pull_request.is_open
            and change.type != ChangeType.REOPENED
        ):
            # Closed PRs keep their metadata until reopened
            record = known
        else:
            record = self.catalog.upsert_pull_request(pull_request)

        with record.lock:
            log = record.change_log
            if not log.changes and change.type != ChangeType.OPENED:
                opened_at = min(
                    record.pull_request.created_at,
                    change.changed_at - timedelta(microseconds=1),
                )
                log.append(
                    PullRequestChange(
                        pull_request_id=pull_request.id,
                        type=ChangeType.OPENED,
                        github_user=pull_request.author,
                        changed_at=opened_at,
                        pr_title=pull_request.title,
                        pr_number=pull_request.pr_number,
                        repo_full_name=pull_request.repo_full_name,
                    )
                )

            try:
                log.append(change)
            except ChangeLogError as e:
                logger.warning(
                    "Change event rejected",
                    extra={"pr_id": pull_request.id, "type": change.type.value, "error": str(e)},
                )
                return None

            full_names = self.catalog.full_names()
            change.author_full_name = full_names.get(change.github_user)
            if change.merged_by:
                change.merged_by_full_name = full_names.get(change.merged_by)
            record.pull_request.apply_change(change)

        if change.type == ChangeType.SYNCHRONIZE:
            self.scopes.scope(pull_request.repo_full_name).store.invalidate_pr(pull_request.id)

        logger.info(
            "Change event recorded",
            extra={"pr_id": pull_request.id, "type": change.type.value, "change_id": change.id},
        )
        return change

    def remove_pull_request(self, pr_id: str) -> None:
        """Forget a PR, cancelling its in-flight analyses.

        Raises:
            NotFoundError: If the PR is unknown.
        """
        record = self.catalog.remove(pr_id)
        if record is None:
            raise NotFoundError(f"Pull request {pr_id} not found")

        repository = record.pull_request.repo_full_name
        if repository in self.scopes:
            self.scopes.scope(repository).store.cancel(pr_id)

        logger.info("Pull request removed", extra={"pr_id": pr_id, "repository": repository})

    def register_project(self, project: Project) -> None:
        self.catalog.put_project(project)

    def register_report(self, report: Report) -> None:
        self.catalog.put_report(report)

    # Reads

    def analyze(self, pr_id: str, head_sha: str | None = None) -> PRDetailedAnalysis:
        """Survival analysis of a PR against a repository HEAD.

        Args:
            pr_id: The PR to analyse.
            head_sha: Repository SHA to analyse against. Defaults to the HEAD of
                the configured default branch; pass a SHA to pin another state.

        Raises:
            NotFoundError: If the PR is unknown or was never ingested.
            GitHubToolError: If the HEAD cannot be resolved.
            AnalysisCancelled: If the PR was removed during the analysis.
        """
        record = self._ingested_record(pr_id)
        pr = record.pull_request
        head = head_sha or self._current_head(record)
        scope = self.scopes.scope(pr.repo_full_name)

        reachable = self.catalog.merged_commits(pr.repo_full_name)
        reachable.update(c.sha for c in record.commits)
        if pr.head_sha:
            reachable.add(pr.head_sha)

        context = AttributionContext(
            pull_request=pr,
            commits=record.commit_map,
            full_names=self.catalog.full_names(),
            is_reachable=reachable.__contains__,
        )
        if pr.author_full_name is None:
            pr.author_full_name = context.full_name(pr.author)

        analyzer = PullRequestAnalyzer(scope, self.source, self.config, sleep=self._sleep)
        return analyzer.analyze(record, context, head)

    def get_files(self, pr_id: str, head_sha: str | None = None) -> list[PRFileDetail]:
        return self.analyze(pr_id, head_sha).files

    def get_history(self, pr_id: str) -> list[PullRequestChange]:
        """Change events of a PR in order.

        Raises:
            NotFoundError: If the PR is unknown.
        """
        record = self.catalog.get(pr_id)
        if record is None:
            raise NotFoundError(f"Pull request {pr_id} not found")
        return list(record.change_log.changes)

    def freshness(self, pr_id: str, head_sha: str | None = None) -> tuple[str, dict[str, bool]]:
        """Which files of a PR have a cached result for a HEAD.

        Returns:
            The HEAD checked and the validity of each file.

        Raises:
            NotFoundError: If the PR is unknown or was never ingested.
        """
        record = self._ingested_record(pr_id)
        head = head_sha or self._current_head(record)
        store = self.scopes.scope(record.pull_request.repo_full_name).store
        return head, {
            path: store.is_valid(pr_id, path, head, record.diff_sha)
            for path in record.operations
        }

    def compute_report(
        self,
        report_id: int,
        statuses: str | Iterable[str] | None = None,
        project_id: int | None = None,
    ) -> ReportResult:
        """Compute a report over its project's tasks.

        Raises:
            NotFoundError: If the report or its project is unknown.
            ReportValidationError: If the report or status filter is invalid.
        """
        report = self.catalog.get_report(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")

        project = self._project(project_id if project_id is not None else report.project_id)
        return compute_report(
            report,
            project.tasks,
            project.students,
            project.sprints,
            statuses=statuses,
            timeout_seconds=self.config.report_timeout_seconds,
        )

    def project_analysis(self, project_id: int) -> ProjectAnalysisResult:
        """Analyse every PR linked to a project's tasks and summarize.

        Raises:
            NotFoundError: If the project is unknown.
        """
        project = self._project(project_id)
        pr_ids = list(dict.fromkeys(pr_id for t in project.tasks for pr_id in t.pull_request_ids))

        analyses: list[PRDetailedAnalysis] = []
        failed = 0
        for pr_id in pr_ids:
            try:
                analyses.append(self.analyze(pr_id))
            except (NotFoundError, GitHubToolError, AnalysisCancelled) as e:
                failed += 1
                logger.warning(
                    "Linked PR could not be analysed",
                    extra={"project_id": project_id, "pr_id": pr_id, "error": str(e)},
                )

        return summarize_project(
            project.id,
            analyses,
            project.tasks,
            project.sprints,
            project_name=project.name,
            full_names=project.full_names,
            failed_prs=failed,
        )

    def evict_expired(self, now: float | None = None) -> int:
        """Evict expired snapshots of closed and merged PRs in every repository."""
        evicted = 0
        for repository in sorted(self.catalog.repositories()):
            if repository in self.scopes:
                store = self.scopes.scope(repository).store
                evicted += store.evict_expired(self.catalog.open_pr_ids(repository), now=now)
        return evicted

    # Helpers

    def _index(
        self,
        scope: RepositoryScope,
        pull_request: PullRequest,
        operations: Mapping[str, FileOperations],
        commits: Sequence[Commit],
        head_contents: Mapping[str, str],
    ) -> int:
        """Record every line the PR adds in the repository's content index."""
        commit_map = {c.sha: c for c in commits}
        fallback_time = pull_request.updated_at or pull_request.created_at
        indexed = 0

        for path, ops in operations.items():
            content = head_contents.get(path)
            lines = split_lines(content) if content is not None else ops.target_lines()

            for op in ops.additions:
                commit = commit_map.get(op.commit_sha) if op.commit_sha else None
                origin = Origin(
                    commit_sha=op.commit_sha or "",
                    committed_at=commit.committed_at if commit else fallback_time,
                    pr_id=pull_request.id,
                    pr_number=pull_request.pr_number,
                    pr_url=pull_request.url,
                    author_login=(commit.author_login if commit else None) or pull_request.author,
                    author_name=commit.author_name if commit else pull_request.author_full_name,
                )
                before, after = scope.index.context(lines, op.target_line_no)
                if scope.index.add(op.content, origin, before, after):
                    indexed += 1

        return indexed

    def _withheld_added_contents(
        self,
        feed: GitHubSource,
        pull_request: PullRequest,
        files: Sequence[FileDiff],
    ) -> dict[str, str]:
        """Head contents of added files whose patch GitHub left out.

        Files that still cannot be fetched are ingested without content and
        stay marked truncated.
        """
        contents: dict[str, str] = {}
        head = pull_request.head_sha
        if not head:
            return contents

        for file_diff in files:
            if file_diff.status != FileStatus.ADDED or not file_diff.patch_withheld:
                continue
            path = file_diff.filename
            try:
                content = retry_with_backoff(
                    lambda path=path: feed.get_file_content(
                        pull_request.repo_full_name, path, head
                    ),
                    config=self.config.fetch_retry,
                    retry_on=(ContentUnavailableError,),
                    sleep=self._sleep,
                )
            except RetryError as e:
                logger.warning(
                    "Added file content unavailable",
                    extra={"pr_id": pull_request.id, "file_path": path, "error": str(e)},
                )
                continue
            if content is not None:
                contents[path] = content
        return contents

    def _ingested_record(self, pr_id: str) -> PullRequestRecord:
        record = self.catalog.get(pr_id)
        if record is None or not record.ingested:
            raise NotFoundError(f"Pull request {pr_id} not found")
        return record

    def _current_head(self, record: PullRequestRecord) -> str:
        # Every PR, open or closed, is measured against the default branch
        repository = record.pull_request.repo_full_name
        return self.source.head_sha(repository, self.config.default_branch)

    def _project(self, project_id: int | None) -> Project:
        project = self.catalog.get_project(project_id) if project_id is not None else None
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project
