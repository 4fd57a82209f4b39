"""Data models for the provenance engine."""

from provenance.models.change import (
    ChangeLogError,
    ChangeType,
    PullRequestChange,
    PullRequestChangeLog,
)
from provenance.models.commit import Commit
from provenance.models.config import EngineConfig
from provenance.models.file_diff import FileDiff, FileStatus
from provenance.models.line_detail import (
    LineDetail,
    LineStatus,
    PRDetailedAnalysis,
    PRFileDetail,
    survival_rate,
)
from provenance.models.pull_request import PRState, PullRequest
from provenance.models.report import (
    AxisHeader,
    AxisType,
    Project,
    Report,
    ReportElement,
    ReportMagnitude,
    ReportResult,
    Sprint,
    Student,
    Task,
    TaskStatus,
    TaskType,
)

__all__ = [
    "AxisHeader",
    "AxisType",
    "ChangeLogError",
    "ChangeType",
    "Commit",
    "EngineConfig",
    "FileDiff",
    "FileStatus",
    "LineDetail",
    "LineStatus",
    "PRDetailedAnalysis",
    "PRFileDetail",
    "PRState",
    "Project",
    "PullRequest",
    "PullRequestChange",
    "PullRequestChangeLog",
    "Report",
    "ReportElement",
    "ReportMagnitude",
    "ReportResult",
    "Sprint",
    "Student",
    "Task",
    "TaskStatus",
    "TaskType",
    "survival_rate",
]
