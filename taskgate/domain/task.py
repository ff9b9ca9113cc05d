"""Task domain models and enums."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from taskgate.core.config import constants


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    TODO = "ToDo"
    IN_PROGRESS = "InProgress"
    IN_REVIEW = "InReview"
    DONE = "Done"
    CANCELLED = "Cancelled"


class TaskPriority(StrEnum):
    """Task priority."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


FINISHED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.CANCELLED})


def is_active_status(status: TaskStatus) -> bool:
    """A task is active while its status is neither Done nor Cancelled."""
    return status not in FINISHED_STATUSES


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID from database")
    title: str = Field(..., description="Task title")
    description: str | None = Field(default=None, description="Detailed task description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Current status")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Priority")
    created: datetime = Field(..., description="Creation timestamp")
    updated: datetime | None = Field(default=None, description="Last update timestamp")
    due_date: date | None = Field(default=None, description="Optional due date")
    group_id: str = Field(..., description="Owning group ID")
    assigned_user_id: str | None = Field(default=None, description="Assigned user ID")
    created_by_id: str = Field(..., description="Creating user ID, immutable")
    version: int = Field(default=1, description="Optimistic concurrency version")

    @property
    def is_active(self) -> bool:
        return is_active_status(self.status)


def validate_due_date(value: date | None, *, today: date | None = None) -> date | None:
    """Due dates may not lie in the past nor more than one year ahead."""
    if value is None:
        return None

    today = today or date.today()
    if value < today:
        raise ValueError("Due date cannot be in the past")
    if value > today + constants.DUE_DATE_HORIZON:
        raise ValueError("Due date is too far ahead (at most one year)")
    return value
