"""Pivot report aggregation over tasks, students and sprints."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from provenance.models.report import (
    AxisHeader,
    AxisType,
    ReportMagnitude,
    ReportResult,
    TaskStatus,
    TaskType,
)
from provenance.utils.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from provenance.models.report import Report, Sprint, Student, Task

logger = get_logger("engine.aggregation")

# Task types counted by element=TASK; user stories only group tasks
COUNTED_TYPES = {TaskType.TASK, TaskType.BUG}

# Tasks processed between deadline checks
DEADLINE_CHECK_INTERVAL = 64


class ReportValidationError(Exception):
    """Raised when a report cannot be computed as configured."""

    pass


def parse_statuses(raw: str | Iterable[str] | None) -> set[TaskStatus] | None:
    """Parse a status filter such as ``"TODO,DONE"``.

    Returns:
        The statuses, or None when no filter was given.

    Raises:
        ReportValidationError: If a status name is unknown.
    """
    if raw is None:
        return None

    names = raw.split(",") if isinstance(raw, str) else list(raw)
    names = [n.strip().upper() for n in names if n.strip()]
    if not names:
        return None

    statuses: set[TaskStatus] = set()
    for name in names:
        try:
            statuses.add(TaskStatus(name))
        except ValueError as e:
            valid = ", ".join(s.value for s in TaskStatus)
            raise ReportValidationError(f"Unknown status '{name}'. Valid: {valid}") from e
    return statuses


def validate_report(report: Report) -> None:
    """Check that a report is fully configured.

    Raises:
        ReportValidationError: If an axis, the element or the magnitude is
            missing, or both axes are the same.
    """
    missing = [
        name
        for name, value in (
            ("rowType", report.row_type),
            ("columnType", report.column_type),
            ("element", report.element),
            ("magnitude", report.magnitude),
        )
        if value is None
    ]
    if missing:
        raise ReportValidationError(
            f"Report {report.id} is incomplete, missing: {', '.join(missing)}"
        )

    if report.row_type == report.column_type:
        raise ReportValidationError(
            f"Report {report.id} uses {report.row_type.value} on both axes"
        )


def _headers(
    axis: AxisType,
    students: Sequence[Student],
    sprints: Sequence[Sprint],
) -> list[AxisHeader]:
    if axis == AxisType.STUDENTS:
        return [AxisHeader(id=str(s.id), name=s.full_name) for s in students]
    return [AxisHeader(id=str(s.id), name=s.name) for s in sprints]


def _keys(axis: AxisType, task: Task) -> list[str]:
    if axis == AxisType.STUDENTS:
        return [str(task.assignee_id)] if task.assignee_id is not None else []
    return [str(sprint_id) for sprint_id in dict.fromkeys(task.sprint_ids)]


def _magnitude(magnitude: ReportMagnitude, task: Task) -> int:
    if magnitude == ReportMagnitude.ESTIMATION_POINTS:
        return task.estimation_points
    return len(set(task.pull_request_ids))


def compute_report(
    report: Report,
    tasks: Iterable[Task],
    students: Sequence[Student],
    sprints: Sequence[Sprint],
    statuses: str | Iterable[str] | None = None,
    timeout_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> ReportResult:
    """Aggregate tasks into a row x column matrix.

    Cells and totals are accumulated together, so every returned result is
    consistent even when the deadline cut the pass short.

    Args:
        report: The report configuration.
        tasks: Project tasks.
        students: Project members, listed as STUDENTS headers.
        sprints: Project sprints, listed as SPRINTS headers.
        statuses: Optional status filter, names or a comma-separated string.
        timeout_seconds: Soft deadline; when passed, the partial result is
            returned with `truncated=True`.
        clock: Monotonic clock, injectable for tests.

    Returns:
        The computed ReportResult.

    Raises:
        ReportValidationError: If the report or the status filter is invalid.
    """
    validate_report(report)
    status_filter = parse_statuses(statuses)

    row_headers = _headers(report.row_type, students, sprints)
    column_headers = _headers(report.column_type, students, sprints)
    known_rows = {h.id for h in row_headers}
    known_columns = {h.id for h in column_headers}

    result = ReportResult(
        report_id=report.id,
        report_name=report.name,
        project_id=report.project_id,
        row_type=report.row_type,
        column_type=report.column_type,
        element=report.element,
        magnitude=report.magnitude,
        row_headers=row_headers,
        column_headers=column_headers,
        row_totals=dict.fromkeys(known_rows, 0),
        column_totals=dict.fromkeys(known_columns, 0),
    )

    deadline = clock() + timeout_seconds if timeout_seconds is not None else None
    counted = 0

    for position, task in enumerate(tasks):
        if deadline is not None and position % DEADLINE_CHECK_INTERVAL == 0 and clock() > deadline:
            result.truncated = True
            logger.warning(
                "Report aggregation timed out, returning partial result",
                extra={"report_id": report.id, "tasks_counted": counted},
            )
            break

        if task.type not in COUNTED_TYPES:
            continue
        if status_filter is not None and task.status not in status_filter:
            continue

        value = _magnitude(report.magnitude, task)
        rows = [k for k in _keys(report.row_type, task) if k in known_rows]
        columns = [k for k in _keys(report.column_type, task) if k in known_columns]

        for row in rows:
            for column in columns:
                cell = f"{row}:{column}"
                result.data[cell] = result.data.get(cell, 0) + value
                result.row_totals[row] += value
                result.column_totals[column] += value
                result.grand_total += value

        if rows and columns:
            counted += 1

    logger.info(
        "Report computed",
        extra={
            "report_id": report.id,
            "tasks_counted": counted,
            "grand_total": result.grand_total,
            "truncated": result.truncated,
        },
    )
    return result
