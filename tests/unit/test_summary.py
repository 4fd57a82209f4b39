"""Unit tests for project survival summaries."""

from __future__ import annotations

from provenance.engine.summary import AnalysisStatus, summarize_project
from provenance.models.file_diff import FileStatus
from provenance.models.line_detail import PRDetailedAnalysis, PRFileDetail
from provenance.models.pull_request import PullRequest
from provenance.models.report import Sprint, Task, TaskStatus

SPRINTS = [Sprint(1, "Sprint 1"), Sprint(2, "Sprint 2")]


def make_analysis(
    pr_id: str,
    author: str,
    surviving: int,
    deleted: int,
    additions: int,
    files: int = 1,
) -> PRDetailedAnalysis:
    """Analysis with the counters spread on the first file."""
    pr = PullRequest(
        id=pr_id,
        pr_number=int(pr_id.split("-")[1]),
        url=f"https://github.com/acme/widgets/pull/{pr_id}",
        title=f"PR {pr_id}",
        author=author,
        repo_full_name="acme/widgets",
    )
    details = [
        PRFileDetail(
            file_path="a.py",
            status=FileStatus.MODIFIED,
            additions=additions,
            deletions=0,
            surviving_lines=surviving,
            deleted_lines=deleted,
        )
    ]
    details += [
        PRFileDetail(file_path=f"f{i}.py", status=FileStatus.MODIFIED, additions=0, deletions=0)
        for i in range(1, files)
    ]
    return PRDetailedAnalysis(pull_request=pr, head_sha="a" * 40, files=details)


def linking_task(task_id: int, sprints: list[int], prs: list[str]) -> Task:
    return Task(
        id=task_id,
        name=f"Task {task_id}",
        status=TaskStatus.DONE,
        sprint_ids=sprints,
        pull_request_ids=prs,
    )


class TestSummarizeProject:
    """Tests for summarize_project."""

    def test_totals_and_rate(self) -> None:
        """Test project-wide totals."""
        analyses = [
            make_analysis("pr-1", "alice", surviving=6, deleted=4, additions=10, files=2),
            make_analysis("pr-2", "bob", surviving=3, deleted=0, additions=3),
        ]

        result = summarize_project(10, analyses, [], SPRINTS)

        assert result.status == AnalysisStatus.DONE
        assert result.total_prs == 2
        assert result.processed_prs == 2
        assert result.totals.surviving_lines == 9
        assert result.totals.deleted_lines == 4
        assert result.totals.file_count == 3
        assert result.survival_rate == 69

    def test_author_summaries(self) -> None:
        """Test grouping by PR author with application full names."""
        analyses = [
            make_analysis("pr-2", "bob", surviving=1, deleted=1, additions=2),
            make_analysis("pr-1", "alice", surviving=2, deleted=0, additions=2),
            make_analysis("pr-3", "alice", surviving=0, deleted=2, additions=2),
        ]

        result = summarize_project(
            10, analyses, [], SPRINTS, full_names={"alice": "Alice Liddell"}
        )

        assert [a.author_username for a in result.author_summaries] == ["alice", "bob"]
        alice = result.author_summaries[0]
        assert alice.author_name == "Alice Liddell"
        assert alice.tally.surviving_lines == 2
        assert alice.tally.deleted_lines == 2
        assert alice.tally.survival_rate == 50
        assert result.author_summaries[1].author_name is None

    def test_sprint_summaries_follow_task_links(self) -> None:
        """Test that a PR counts in each sprint of the tasks linking it."""
        analyses = [
            make_analysis("pr-1", "alice", surviving=4, deleted=0, additions=4),
            make_analysis("pr-2", "bob", surviving=1, deleted=1, additions=2),
        ]
        tasks = [
            linking_task(1, [1], ["pr-1"]),
            linking_task(2, [1, 2], ["pr-2"]),
        ]

        result = summarize_project(10, analyses, tasks, SPRINTS)

        first, second = result.sprint_summaries
        assert (first.sprint_id, first.sprint_name) == (1, "Sprint 1")
        assert first.tally.surviving_lines == 5
        assert second.tally.surviving_lines == 1
        assert second.tally.survival_rate == 50

    def test_sprints_without_prs_are_listed(self) -> None:
        """Test that every sprint appears, with zeroes when nothing links to it."""
        result = summarize_project(10, [], [], SPRINTS)

        assert result.status == AnalysisStatus.DONE
        assert [s.sprint_id for s in result.sprint_summaries] == [1, 2]
        assert all(s.tally.survival_rate == 0 for s in result.sprint_summaries)

    def test_partial_failures_still_done(self) -> None:
        """Test that some failed PRs do not fail the whole project."""
        analyses = [make_analysis("pr-1", "alice", surviving=1, deleted=0, additions=1)]

        result = summarize_project(10, analyses, [], SPRINTS, failed_prs=1)

        assert result.status == AnalysisStatus.DONE
        assert result.total_prs == 2
        assert result.processed_prs == 1
        assert result.to_dict()["analysis"]["progressPercent"] == 50

    def test_all_failed(self) -> None:
        """Test the FAILED status when no linked PR could be analysed."""
        result = summarize_project(10, [], [], SPRINTS, failed_prs=3)

        assert result.status == AnalysisStatus.FAILED
        assert result.error_message is not None
        assert result.to_dict()["analysis"]["status"] == "FAILED"

    def test_serialization(self) -> None:
        """Test the camelCase JSON form."""
        analyses = [make_analysis("pr-1", "alice", surviving=3, deleted=1, additions=4)]
        tasks = [linking_task(1, [2], ["pr-1"])]

        data = summarize_project(
            10, analyses, tasks, SPRINTS, project_name="Widgets"
        ).to_dict()

        assert data["analysis"]["projectName"] == "Widgets"
        assert data["analysis"]["totalSurvivingLines"] == 3
        assert data["analysis"]["survivalRate"] == 75
        assert data["authorSummaries"][0]["authorUsername"] == "alice"
        assert data["sprintSummaries"][1] == {
            "sprintId": 2,
            "sprintName": "Sprint 2",
            "survivingLines": 3,
            "deletedLines": 1,
            "fileCount": 1,
            "survivalRate": 75,
        }
