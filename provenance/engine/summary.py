"""Project-wide survival summaries by author and by sprint."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from provenance.models.line_detail import survival_rate
from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from provenance.models.line_detail import PRDetailedAnalysis
    from provenance.models.report import Sprint, Task

logger = get_logger("engine.summary")


class AnalysisStatus(str, Enum):
    """Outcome of a project analysis."""

    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class _Tally:
    surviving_lines: int = 0
    deleted_lines: int = 0
    additions: int = 0
    file_count: int = 0

    def add(self, analysis: PRDetailedAnalysis) -> None:
        self.surviving_lines += analysis.surviving_lines
        self.deleted_lines += analysis.deleted_lines
        self.additions += analysis.additions
        self.file_count += len(analysis.files)

    @property
    def survival_rate(self) -> int:
        return survival_rate(self.surviving_lines, self.additions)


@dataclass
class AuthorSummary:
    """Survival totals of the PRs one author opened."""

    author_username: str
    author_name: str | None = None
    tally: _Tally = field(default_factory=_Tally)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authorId": self.author_username,
            "authorName": self.author_name,
            "authorUsername": self.author_username,
            "survivingLines": self.tally.surviving_lines,
            "deletedLines": self.tally.deleted_lines,
            "fileCount": self.tally.file_count,
            "survivalRate": self.tally.survival_rate,
        }


@dataclass
class SprintSummary:
    """Survival totals of the PRs linked to a sprint's tasks."""

    sprint_id: int
    sprint_name: str | None = None
    tally: _Tally = field(default_factory=_Tally)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sprintId": self.sprint_id,
            "sprintName": self.sprint_name,
            "survivingLines": self.tally.surviving_lines,
            "deletedLines": self.tally.deleted_lines,
            "fileCount": self.tally.file_count,
            "survivalRate": self.tally.survival_rate,
        }


@dataclass
class ProjectAnalysisResult:
    """Summary of the survival analyses of all PRs linked to a project."""

    project_id: int
    status: AnalysisStatus
    project_name: str | None = None
    total_prs: int = 0
    processed_prs: int = 0
    totals: _Tally = field(default_factory=_Tally)
    author_summaries: list[AuthorSummary] = field(default_factory=list)
    sprint_summaries: list[SprintSummary] = field(default_factory=list)
    error_message: str | None = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def survival_rate(self) -> int:
        return self.totals.survival_rate

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract."""
        progress = round(self.processed_prs / self.total_prs * 100) if self.total_prs else 100
        return {
            "analysis": {
                "projectId": self.project_id,
                "projectName": self.project_name,
                "status": self.status.value,
                "completedAt": self.completed_at.isoformat(),
                "totalPrs": self.total_prs,
                "processedPrs": self.processed_prs,
                "progressPercent": progress,
                "totalFiles": self.totals.file_count,
                "totalSurvivingLines": self.totals.surviving_lines,
                "totalDeletedLines": self.totals.deleted_lines,
                "survivalRate": self.survival_rate,
                "errorMessage": self.error_message,
            },
            "authorSummaries": [a.to_dict() for a in self.author_summaries],
            "sprintSummaries": [s.to_dict() for s in self.sprint_summaries],
        }


def summarize_project(
    project_id: int,
    analyses: Sequence[PRDetailedAnalysis],
    tasks: Sequence[Task],
    sprints: Sequence[Sprint],
    project_name: str | None = None,
    full_names: Mapping[str, str] | None = None,
    failed_prs: int = 0,
) -> ProjectAnalysisResult:
    """Summarize PR analyses by author and by sprint.

    A PR counts once for each sprint of the tasks that link it.

    Args:
        project_id: The project summarized.
        analyses: One analysis per linked PR that could be computed.
        tasks: Project tasks, used to map PRs to sprints.
        sprints: Project sprints, for names and ordering.
        project_name: Display name of the project.
        full_names: Application full names by GitHub login.
        failed_prs: Number of linked PRs whose analysis failed.

    Returns:
        A DONE result, or FAILED when linked PRs exist but none was analysed.
    """
    full_names = full_names or {}
    total = len(analyses) + failed_prs

    if failed_prs and not analyses:
        logger.warning(
            "Project analysis failed",
            extra={"project_id": project_id, "failed_prs": failed_prs},
        )
        return ProjectAnalysisResult(
            project_id=project_id,
            project_name=project_name,
            status=AnalysisStatus.FAILED,
            total_prs=total,
            error_message=f"None of the {failed_prs} linked pull requests could be analysed",
        )

    sprints_of_pr: dict[str, set[int]] = {}
    for task in tasks:
        for pr_id in task.pull_request_ids:
            sprints_of_pr.setdefault(pr_id, set()).update(task.sprint_ids)

    result = ProjectAnalysisResult(
        project_id=project_id,
        project_name=project_name,
        status=AnalysisStatus.DONE,
        total_prs=total,
        processed_prs=len(analyses),
    )
    authors: dict[str, AuthorSummary] = {}
    by_sprint = {s.id: SprintSummary(sprint_id=s.id, sprint_name=s.name) for s in sprints}

    for analysis in analyses:
        pr = analysis.pull_request
        result.totals.add(analysis)

        author = authors.get(pr.author)
        if author is None:
            author = AuthorSummary(
                author_username=pr.author,
                author_name=full_names.get(pr.author, pr.author_full_name),
            )
            authors[pr.author] = author
        author.tally.add(analysis)

        for sprint_id in sorted(sprints_of_pr.get(pr.id, ())):
            summary = by_sprint.setdefault(sprint_id, SprintSummary(sprint_id=sprint_id))
            summary.tally.add(analysis)

    result.author_summaries = sorted(authors.values(), key=lambda a: a.author_username)
    result.sprint_summaries = list(by_sprint.values())

    logger.info(
        "Project analysis summarized",
        extra={
            "project_id": project_id,
            "processed_prs": result.processed_prs,
            "failed_prs": failed_prs,
            "survival_rate": result.survival_rate,
        },
    )
    return result
