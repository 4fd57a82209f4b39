"""Unit tests for pivot report aggregation."""

from __future__ import annotations

import pytest

from provenance.engine.aggregation import (
    ReportValidationError,
    compute_report,
    parse_statuses,
    validate_report,
)
from provenance.models.report import (
    AxisType,
    Report,
    ReportElement,
    ReportMagnitude,
    Sprint,
    Student,
    Task,
    TaskStatus,
    TaskType,
)

STUDENTS = [Student("s1", "Ana Pérez", "ana"), Student("s2", "Bruno Díaz", "bruno")]
SPRINTS = [Sprint(1, "Sprint 1"), Sprint(2, "Sprint 2")]


def make_report(
    row: AxisType | None = AxisType.STUDENTS,
    column: AxisType | None = AxisType.SPRINTS,
    magnitude: ReportMagnitude | None = ReportMagnitude.ESTIMATION_POINTS,
) -> Report:
    return Report(
        id=1,
        name="Points per sprint",
        project_id=10,
        row_type=row,
        column_type=column,
        element=ReportElement.TASK,
        magnitude=magnitude,
    )


def make_task(
    task_id: int,
    assignee: str | None,
    sprints: list[int],
    points: int = 1,
    status: TaskStatus = TaskStatus.DONE,
    task_type: TaskType = TaskType.TASK,
    prs: list[str] | None = None,
) -> Task:
    return Task(
        id=task_id,
        name=f"Task {task_id}",
        status=status,
        estimation_points=points,
        type=task_type,
        assignee_id=assignee,
        sprint_ids=sprints,
        pull_request_ids=prs or [],
    )


@pytest.fixture
def tasks() -> list[Task]:
    """Two students across two sprints."""
    return [
        make_task(1, "s1", [1], points=3),
        make_task(2, "s1", [2], points=5, status=TaskStatus.INPROGRESS),
        make_task(3, "s2", [1], points=2),
        make_task(4, "s2", [2], points=8),
        make_task(5, "s1", [1], points=1, status=TaskStatus.TODO),
    ]


class TestComputeReport:
    """Tests for compute_report."""

    def test_students_by_sprints_points(self, tasks: list[Task]) -> None:
        """Test the 2x2 matrix cell sums and totals."""
        result = compute_report(make_report(), tasks, STUDENTS, SPRINTS)

        assert result.data == {"s1:1": 4, "s1:2": 5, "s2:1": 2, "s2:2": 8}
        assert result.row_totals == {"s1": 9, "s2": 10}
        assert result.column_totals == {"1": 6, "2": 13}
        assert result.grand_total == 19
        assert result.is_consistent
        assert result.truncated is False

    def test_transposed_axes(self, tasks: list[Task]) -> None:
        """Test sprints as rows and students as columns."""
        result = compute_report(
            make_report(row=AxisType.SPRINTS, column=AxisType.STUDENTS), tasks, STUDENTS, SPRINTS
        )

        assert result.cell("1", "s1") == 4
        assert result.cell("2", "s2") == 8
        assert result.grand_total == 19

    def test_headers_list_every_student_and_sprint(self) -> None:
        """Test that empty rows and columns still get headers."""
        result = compute_report(make_report(), [], STUDENTS, SPRINTS)

        assert [h.id for h in result.row_headers] == ["s1", "s2"]
        assert [h.name for h in result.column_headers] == ["Sprint 1", "Sprint 2"]
        assert result.data == {}
        assert result.row_totals == {"s1": 0, "s2": 0}
        assert result.grand_total == 0
        assert result.is_consistent

    def test_status_filter(self, tasks: list[Task]) -> None:
        """Test that only tasks with the requested statuses are counted."""
        result = compute_report(make_report(), tasks, STUDENTS, SPRINTS, statuses="DONE")

        assert result.data == {"s1:1": 3, "s2:1": 2, "s2:2": 8}
        assert result.grand_total == 13

    def test_status_filter_accepts_lists(self, tasks: list[Task]) -> None:
        """Test statuses given as a list, in any case."""
        result = compute_report(
            make_report(), tasks, STUDENTS, SPRINTS, statuses=["todo", "InProgress"]
        )

        assert result.grand_total == 6

    def test_user_stories_are_skipped(self) -> None:
        """Test that element=TASK counts tasks and bugs only."""
        tasks = [
            make_task(1, "s1", [1], points=13, task_type=TaskType.USER_STORY),
            make_task(2, "s1", [1], points=2, task_type=TaskType.BUG),
            make_task(3, "s1", [1], points=3),
        ]

        result = compute_report(make_report(), tasks, STUDENTS, SPRINTS)

        assert result.cell("s1", "1") == 5

    def test_pull_request_magnitude_counts_distinct_prs(self) -> None:
        """Test the PULL_REQUESTS magnitude."""
        tasks = [
            make_task(1, "s1", [1], prs=["pr-1", "pr-2", "pr-1"]),
            make_task(2, "s2", [2], prs=[]),
        ]

        result = compute_report(
            make_report(magnitude=ReportMagnitude.PULL_REQUESTS), tasks, STUDENTS, SPRINTS
        )

        assert result.cell("s1", "1") == 2
        assert result.cell("s2", "2") == 0
        assert result.grand_total == 2

    def test_task_in_several_sprints(self) -> None:
        """Test that a carried-over task counts in each of its sprints."""
        result = compute_report(
            make_report(), [make_task(1, "s1", [1, 2], points=3)], STUDENTS, SPRINTS
        )

        assert result.data == {"s1:1": 3, "s1:2": 3}
        assert result.grand_total == 6
        assert result.is_consistent

    def test_tasks_without_keys_are_skipped(self) -> None:
        """Test unassigned tasks, tasks outside sprints and unknown students."""
        tasks = [
            make_task(1, None, [1], points=3),
            make_task(2, "s1", [], points=5),
            make_task(3, "ghost", [1], points=7),
        ]

        result = compute_report(make_report(), tasks, STUDENTS, SPRINTS)

        assert result.grand_total == 0
        assert result.is_consistent

    def test_soft_timeout_returns_consistent_partial_result(self) -> None:
        """Test that a passed deadline truncates but keeps totals reconciled."""
        tasks = [make_task(i, "s1", [1]) for i in range(100)]
        ticks = iter([0.0, 5.0, 20.0])

        result = compute_report(
            make_report(),
            tasks,
            STUDENTS,
            SPRINTS,
            timeout_seconds=10.0,
            clock=lambda: next(ticks),
        )

        assert result.truncated is True
        assert result.grand_total == 64
        assert result.is_consistent

    def test_result_serialization(self, tasks: list[Task]) -> None:
        """Test the camelCase JSON form."""
        data = compute_report(make_report(), tasks, STUDENTS, SPRINTS).to_dict()

        assert data["rowType"] == "STUDENTS"
        assert data["columnType"] == "SPRINTS"
        assert data["grandTotal"] == 19
        assert data["rowHeaders"][0] == {"id": "s1", "name": "Ana Pérez"}
        assert data["data"]["s2:2"] == 8


class TestValidation:
    """Tests for report validation."""

    def test_same_axis_rejected(self) -> None:
        """Test that row and column types must differ."""
        with pytest.raises(ReportValidationError, match="both axes"):
            validate_report(make_report(row=AxisType.SPRINTS, column=AxisType.SPRINTS))

    def test_missing_fields_rejected(self) -> None:
        """Test that incomplete reports are rejected."""
        with pytest.raises(ReportValidationError, match="magnitude"):
            compute_report(make_report(magnitude=None), [], STUDENTS, SPRINTS)

    def test_missing_axis_rejected(self) -> None:
        """Test that a report without a row axis is rejected."""
        with pytest.raises(ReportValidationError, match="rowType"):
            compute_report(make_report(row=None), [], STUDENTS, SPRINTS)

    def test_unknown_status_rejected(self) -> None:
        """Test that unknown status names are rejected."""
        with pytest.raises(ReportValidationError, match="ARCHIVED"):
            compute_report(make_report(), [], STUDENTS, SPRINTS, statuses="DONE,ARCHIVED")

    def test_parse_statuses(self) -> None:
        """Test status filter parsing."""
        assert parse_statuses(None) is None
        assert parse_statuses("") is None
        assert parse_statuses(" done , todo ") == {TaskStatus.DONE, TaskStatus.TODO}
