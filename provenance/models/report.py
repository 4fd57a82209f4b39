"""Report configuration, pivot result and the task projections they aggregate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AxisType(str, Enum):
    """What a report axis enumerates."""

    STUDENTS = "STUDENTS"
    SPRINTS = "SPRINTS"


class ReportElement(str, Enum):
    """What a report counts."""

    TASK = "TASK"


class ReportMagnitude(str, Enum):
    """What is summed in each cell."""

    ESTIMATION_POINTS = "ESTIMATION_POINTS"
    PULL_REQUESTS = "PULL_REQUESTS"


class TaskStatus(str, Enum):
    """Workflow status of a task."""

    BACKLOG = "BACKLOG"
    TODO = "TODO"
    INPROGRESS = "INPROGRESS"
    VERIFY = "VERIFY"
    DONE = "DONE"


class TaskType(str, Enum):
    """Kind of backlog item."""

    USER_STORY = "USER_STORY"
    TASK = "TASK"
    BUG = "BUG"


@dataclass(frozen=True)
class Student:
    """A project member whose work is reported on."""

    id: str
    full_name: str
    github_username: str | None = None


@dataclass(frozen=True)
class Sprint:
    """A project sprint."""

    id: int
    name: str


@dataclass
class Task:
    """Read-only projection of a backlog task."""

    id: int
    name: str
    status: TaskStatus
    estimation_points: int = 0
    type: TaskType = TaskType.TASK
    assignee_id: str | None = None
    sprint_ids: list[int] = field(default_factory=list)
    pull_request_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate fields after initialization."""
        self.status = TaskStatus(self.status)
        self.type = TaskType(self.type)

        if self.estimation_points < 0:
            raise ValueError(
                f"estimation_points must be non-negative, got {self.estimation_points}"
            )


@dataclass
class Report:
    """A user-configured pivot definition.

    Axis, element and magnitude start out unset while a report is being
    edited; computing an incomplete report is a validation error.
    """

    id: int
    name: str
    project_id: int | None = None
    row_type: AxisType | None = None
    column_type: AxisType | None = None
    element: ReportElement | None = None
    magnitude: ReportMagnitude | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Report:
        """Build a report from its camelCase JSON form.

        Raises:
            ValueError: If an enum value is unknown.
        """

        def _enum[E: Enum](enum_type: type[E], key: str) -> E | None:
            value = data.get(key)
            return enum_type(value) if value is not None else None

        return cls(
            id=data["id"],
            name=data["name"],
            project_id=data.get("projectId"),
            row_type=_enum(AxisType, "rowType"),
            column_type=_enum(AxisType, "columnType"),
            element=_enum(ReportElement, "element"),
            magnitude=_enum(ReportMagnitude, "magnitude"),
        )


@dataclass(frozen=True)
class AxisHeader:
    """A row or column label."""

    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass
class ReportResult:
    """A computed pivot matrix with its totals."""

    report_id: int
    report_name: str
    project_id: int | None
    row_type: AxisType
    column_type: AxisType
    element: ReportElement
    magnitude: ReportMagnitude
    row_headers: list[AxisHeader] = field(default_factory=list)
    column_headers: list[AxisHeader] = field(default_factory=list)
    data: dict[str, int] = field(default_factory=dict)
    row_totals: dict[str, int] = field(default_factory=dict)
    column_totals: dict[str, int] = field(default_factory=dict)
    grand_total: int = 0
    truncated: bool = False

    @property
    def is_consistent(self) -> bool:
        """Whether cells, row totals, column totals and the grand total agree."""
        return (
            sum(self.data.values())
            == sum(self.row_totals.values())
            == sum(self.column_totals.values())
            == self.grand_total
        ) and all(value >= 0 for value in self.data.values())

    def cell(self, row_id: str, column_id: str) -> int:
        """Value of a cell; absent cells of the sparse matrix are zero."""
        return self.data.get(f"{row_id}:{column_id}", 0)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON contract."""
        return {
            "reportId": self.report_id,
            "reportName": self.report_name,
            "projectId": self.project_id,
            "rowType": self.row_type.value,
            "columnType": self.column_type.value,
            "element": self.element.value,
            "magnitude": self.magnitude.value,
            "rowHeaders": [h.to_dict() for h in self.row_headers],
            "columnHeaders": [h.to_dict() for h in self.column_headers],
            "data": dict(self.data),
            "rowTotals": dict(self.row_totals),
            "columnTotals": dict(self.column_totals),
            "grandTotal": self.grand_total,
            "truncated": self.truncated,
        }


@dataclass
class Project:
    """The members, sprints and tasks of one project, as known to the engine."""

    id: int
    name: str
    students: list[Student] = field(default_factory=list)
    sprints: list[Sprint] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)

    @property
    def full_names(self) -> dict[str, str]:
        """Full name of each member by GitHub login."""
        return {s.github_username: s.full_name for s in self.students if s.github_username}
