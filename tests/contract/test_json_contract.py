"""Contract tests for the JSON shapes served by the read API.

These tests pin the camelCase field names clients depend on.
"""

import json
from typing import Any

import pytest

from provenance.main import create_handler
from provenance.models.change import ChangeType, PullRequestChange
from provenance.models.commit import Commit
from provenance.models.file_diff import FileDiff, FileStatus
from provenance.models.pull_request import PullRequest
from provenance.models.report import (
    AxisType,
    Project,
    Report,
    ReportElement,
    ReportMagnitude,
    Sprint,
    Student,
    Task,
    TaskStatus,
)
from provenance.service import ProvenanceService
from tests.fixtures.diffs import ADD_AT_HEAD, ADD_AT_HEAD_CONTENT
from tests.fixtures.sources import BASE_HEAD, PR_HEAD, REPO, InMemorySource
from tests.fixtures.webhook_payloads import create_get_event, create_webhook_event

PULL_REQUEST_FIELDS = {
    "id",
    "url",
    "prNumber",
    "title",
    "state",
    "merged",
    "repoFullName",
    "author",
    "createdAt",
    "updatedAt",
    "additions",
    "deletions",
    "changedFiles",
    "survivingLines",
    "deletedLines",
    "survivalRate",
    "analysisIncomplete",
    "truncated",
    "headSha",
    "files",
}

FILE_FIELDS = {
    "filePath",
    "status",
    "additions",
    "deletions",
    "survivingLines",
    "deletedLines",
    "currentLines",
    "survivalRate",
    "binary",
    "truncated",
    "analysisIncomplete",
    "lines",
}

LINE_FIELDS = {
    "lineNumber",
    "content",
    "status",
    "originalLineNumber",
    "commitSha",
    "commitUrl",
    "authorFullName",
    "authorGithubUsername",
    "originPrNumber",
    "originPrUrl",
    "prFileUrl",
}

REPORT_FIELDS = {
    "reportId",
    "reportName",
    "projectId",
    "rowType",
    "columnType",
    "element",
    "magnitude",
    "rowHeaders",
    "columnHeaders",
    "data",
    "rowTotals",
    "columnTotals",
    "grandTotal",
    "truncated",
}

ANALYSIS_FIELDS = {
    "projectId",
    "projectName",
    "status",
    "completedAt",
    "totalPrs",
    "processedPrs",
    "progressPercent",
    "totalFiles",
    "totalSurvivingLines",
    "totalDeletedLines",
    "survivalRate",
    "errorMessage",
}


@pytest.fixture
def handler(
    service: ProvenanceService,
    source: InMemorySource,
    pull_request: PullRequest,
    pr_commit: Commit,
) -> Any:
    """Handler over a service with the sample PR ingested and a project registered."""
    source.put(REPO, "src/calc.c", BASE_HEAD, ADD_AT_HEAD_CONTENT)
    service.ingest_pull_request(
        pull_request,
        [FileDiff("src/calc.c", FileStatus.MODIFIED, 1, 0, patch=ADD_AT_HEAD)],
        [pr_commit],
    )
    service.register_project(
        Project(
            id=10,
            name="Widgets",
            students=[Student("s1", "Alice Liddell", "alice")],
            sprints=[Sprint(1, "Sprint 1")],
            tasks=[
                Task(
                    id=1,
                    name="Increment",
                    status=TaskStatus.DONE,
                    estimation_points=5,
                    assignee_id="s1",
                    sprint_ids=[1],
                    pull_request_ids=["1001"],
                )
            ],
        )
    )
    service.register_report(
        Report(
            id=5,
            name="Points",
            project_id=10,
            row_type=AxisType.STUDENTS,
            column_type=AxisType.SPRINTS,
            element=ReportElement.TASK,
            magnitude=ReportMagnitude.ESTIMATION_POINTS,
        )
    )
    return create_handler(service)


def get_json(handler: Any, path: str, query: dict[str, str] | None = None) -> tuple[int, Any]:
    response = handler(create_get_event(path, query), None)
    assert response["headers"]["Content-Type"] == "application/json"
    return response["statusCode"], json.loads(response["body"])


class TestPullRequestContract:
    """Contract tests for pull request endpoints."""

    def test_analysis_shape(self, handler: Any) -> None:
        """Test the fields of a PR analysis."""
        status, body = get_json(handler, "/pull-requests/1001")

        assert status == 200
        assert set(body) == PULL_REQUEST_FIELDS
        assert set(body["author"]) == {"githubUsername", "fullName"}
        assert body["state"] == "OPEN"
        assert body["createdAt"] == "2024-03-01T10:00:00+00:00"

    def test_file_shape(self, handler: Any) -> None:
        """Test the fields of a file detail."""
        status, body = get_json(handler, "/pull-requests/1001/files")

        assert status == 200
        assert isinstance(body, list)
        assert FILE_FIELDS <= set(body[0])
        assert body[0]["status"] == "MODIFIED"

    def test_line_shape(self, handler: Any) -> None:
        """Test the fields of a surviving line."""
        _, body = get_json(handler, "/pull-requests/1001/files")

        surviving = [line for line in body[0]["lines"] if line["status"] == "SURVIVING"]

        assert len(surviving) == 1
        line = surviving[0]
        assert {"lineNumber", "content", "status", "commitSha"} <= set(line) <= LINE_FIELDS
        assert line["content"] == "return x + 1;"
        assert line["commitSha"] == PR_HEAD
        assert line["originPrNumber"] == 7
        assert line["authorGithubUsername"] == "alice"

    def test_history_shape(self, handler: Any, service: ProvenanceService) -> None:
        """Test the fields of a pr_opened history entry."""
        record = service.catalog.get("1001")
        assert record is not None
        pr = record.pull_request
        service.record_change(
            pr,
            PullRequestChange(
                pull_request_id=pr.id,
                type=ChangeType.OPENED,
                github_user=pr.author,
                changed_at=pr.created_at,
                pr_title=pr.title,
                pr_number=pr.pr_number,
                repo_full_name=pr.repo_full_name,
            ),
        )

        status, body = get_json(handler, "/pull-requests/1001/history")

        assert status == 200
        assert set(body[0]) == {
            "id",
            "pullRequestId",
            "githubUser",
            "authorFullName",
            "changedAt",
            "type",
            "prTitle",
            "prNumber",
            "repoFullName",
        }
        assert body[0]["type"] == "pr_opened"

    def test_freshness_shape(self, handler: Any) -> None:
        """Test the fields of the freshness endpoint."""
        status, body = get_json(handler, "/pull-requests/1001/freshness")

        assert status == 200
        assert set(body) == {"pullRequestId", "headSha", "fresh", "files"}


class TestReportContract:
    """Contract tests for report and project endpoints."""

    def test_report_shape(self, handler: Any) -> None:
        """Test the fields of a computed report."""
        status, body = get_json(handler, "/reports/5/compute")

        assert status == 200
        assert set(body) == REPORT_FIELDS
        assert body["rowHeaders"] == [{"id": "s1", "name": "Alice Liddell"}]
        assert body["columnHeaders"] == [{"id": "1", "name": "Sprint 1"}]
        assert body["rowType"] == "STUDENTS"

    def test_project_analysis_shape(self, handler: Any) -> None:
        """Test the fields of a project analysis."""
        status, body = get_json(handler, "/projects/10/analysis")

        assert status == 200
        assert set(body) == {"analysis", "authorSummaries", "sprintSummaries"}
        assert set(body["analysis"]) == ANALYSIS_FIELDS
        assert set(body["authorSummaries"][0]) == {
            "authorId",
            "authorName",
            "authorUsername",
            "survivingLines",
            "deletedLines",
            "fileCount",
            "survivalRate",
        }
        assert set(body["sprintSummaries"][0]) == {
            "sprintId",
            "sprintName",
            "survivingLines",
            "deletedLines",
            "fileCount",
            "survivalRate",
        }


class TestErrorContract:
    """Contract tests for error bodies."""

    def test_not_found(self, handler: Any) -> None:
        """Test the body of an unknown PR."""
        status, body = get_json(handler, "/pull-requests/missing")

        assert status == 404
        assert body == {"error": "not_found", "message": "Pull request missing not found"}

    def test_unknown_report(self, handler: Any) -> None:
        """Test the body of an unknown report."""
        status, body = get_json(handler, "/reports/99/compute")

        assert status == 404
        assert body["error"] == "not_found"

    def test_validation_error(self, handler: Any) -> None:
        """Test the body of an invalid status filter."""
        status, body = get_json(handler, "/reports/5/compute", {"statuses": "DONE,NOPE"})

        assert status == 400
        assert body["error"] == "validation_error"
        assert "NOPE" in body["message"]

    def test_invalid_payload(self, handler: Any) -> None:
        """Test the body of a malformed webhook."""
        response = handler(create_webhook_event("[1, 2"), None)
        body = json.loads(response["body"])

        assert response["statusCode"] == 400
        assert set(body) == {"error", "message"}
        assert body["error"] == "invalid_payload"

    def test_unknown_path(self, handler: Any) -> None:
        """Test the body of an unknown route."""
        status, body = get_json(handler, "/pulls")

        assert status == 404
        assert body == {"error": "not_found", "message": "Path not found: GET /pulls"}
