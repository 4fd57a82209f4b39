"""In-memory catalog of ingested pull requests and project data."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from provenance.models.change import PullRequestChangeLog
from provenance.models.pull_request import PRState

if TYPE_CHECKING:
    from provenance.ingest.diff import FileOperations
    from provenance.models.commit import Commit
    from provenance.models.file_diff import FileDiff
    from provenance.models.pull_request import PullRequest
    from provenance.models.report import Project, Report


@dataclass
class PullRequestRecord:
    """Everything ingested for one pull request.

    `diff_sha` is the PR head the current `operations` were built from; it
    signs the snapshots computed from them.
    """

    pull_request: PullRequest
    change_log: PullRequestChangeLog
    files: dict[str, FileDiff] = field(default_factory=dict)
    operations: dict[str, FileOperations] = field(default_factory=dict)
    commits: list[Commit] = field(default_factory=list)
    diff_sha: str | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def commit_map(self) -> dict[str, Commit]:
        return {c.sha: c for c in self.commits}

    @property
    def ingested(self) -> bool:
        return self.diff_sha is not None


class Catalog:
    """Thread-safe store of the engine's inputs."""

    def __init__(self) -> None:
        self._records: dict[str, PullRequestRecord] = {}
        self._projects: dict[int, Project] = {}
        self._reports: dict[int, Report] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    def upsert_pull_request(self, pull_request: PullRequest) -> PullRequestRecord:
        """Create the record of a PR, or refresh the metadata of an existing one."""
        with self._lock:
            record = self._records.get(pull_request.id)
            if record is None:
                record = PullRequestRecord(
                    pull_request=pull_request,
                    change_log=PullRequestChangeLog(pull_request.id),
                )
                self._records[pull_request.id] = record
            else:
                known = record.pull_request
                pull_request.surviving_lines = known.surviving_lines
                if known.author_full_name and not pull_request.author_full_name:
                    pull_request.author_full_name = known.author_full_name
                record.pull_request = pull_request
            return record

    def get(self, pr_id: str) -> PullRequestRecord | None:
        with self._lock:
            return self._records.get(pr_id)

    def remove(self, pr_id: str) -> PullRequestRecord | None:
        with self._lock:
            return self._records.pop(pr_id, None)

    def records(self, repository: str | None = None) -> list[PullRequestRecord]:
        """All records, optionally of one repository, ordered by PR number."""
        with self._lock:
            found = [
                r
                for r in self._records.values()
                if repository is None or r.pull_request.repo_full_name == repository
            ]
        found.sort(key=lambda r: (r.pull_request.repo_full_name, r.pull_request.pr_number))
        return found

    def repositories(self) -> set[str]:
        with self._lock:
            return {r.pull_request.repo_full_name for r in self._records.values()}

    def open_pr_ids(self, repository: str) -> set[str]:
        return {
            r.pull_request.id for r in self.records(repository) if r.pull_request.is_open
        }

    def merged_commits(self, repository: str) -> set[str]:
        """Commits that reached the base branch through merged PRs."""
        return {
            commit.sha
            for r in self.records(repository)
            if r.pull_request.state == PRState.MERGED
            for commit in r.commits
        }

    def put_project(self, project: Project) -> None:
        with self._lock:
            self._projects[project.id] = project

    def get_project(self, project_id: int) -> Project | None:
        with self._lock:
            return self._projects.get(project_id)

    def put_report(self, report: Report) -> None:
        with self._lock:
            self._reports[report.id] = report

    def get_report(self, report_id: int) -> Report | None:
        with self._lock:
            return self._reports.get(report_id)

    def full_names(self) -> dict[str, str]:
        """Application full names by GitHub login, across all projects."""
        with self._lock:
            projects = list(self._projects.values())
        names: dict[str, str] = {}
        for project in projects:
            names.update(project.full_names)
        return names
