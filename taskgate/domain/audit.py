"""Audit log domain models.

An audit entry has two parts: live references used for navigation, which may be
cleared when the referenced entity is removed, and a by-value snapshot that is
the authoritative history and never changes.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from taskgate.domain.task import TaskPriority, TaskStatus


class AuditAction(StrEnum):
    """Kind of change an audit entry records."""

    CREATED = "Created"
    UPDATED = "Updated"
    DELETED = "Deleted"
    STATUS_CHANGED = "StatusChanged"
    PRIORITY_CHANGED = "PriorityChanged"
    ASSIGNED_TO_USER = "AssignedToUser"
    UNASSIGNED_FROM_USER = "UnassignedFromUser"
    DUE_DATE_CHANGED = "DueDateChanged"


class AuditSnapshot(BaseModel):
    """Task, group and assignee details copied at the moment of the event."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    task_title: str
    task_status: TaskStatus
    task_priority: TaskPriority
    group_id: str
    group_name: str = ""
    assigned_user_id: str | None = None
    assigned_user_first_name: str | None = None
    assigned_user_last_name: str | None = None


class AuditReferences(BaseModel):
    """Live links to the entities an entry describes; None once the entity is gone."""

    model_config = ConfigDict(frozen=True)

    task_id: str | None = None
    group_id: str | None = None
    assigned_user_id: str | None = None


class AuditLog(BaseModel):
    """Audit log entry data transfer object."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique log ID from database")
    user_id: str = Field(..., description="ID of user who performed the action")
    timestamp: datetime = Field(..., description="When the action occurred")
    action: AuditAction = Field(..., description="Kind of change")
    description: str | None = Field(default=None, description="Human-readable description")
    snapshot: AuditSnapshot
    references: AuditReferences

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AuditLog":
        """Build an entry from a flat audit_logs row."""
        return cls(
            id=record["id"],
            user_id=record["user_id"],
            timestamp=record["timestamp"],
            action=record["action"],
            description=record.get("description"),
            snapshot=AuditSnapshot(
                task_id=record["task_id"],
                task_title=record["task_title"],
                task_status=record["task_status"],
                task_priority=record["task_priority"],
                group_id=record["group_id"],
                group_name=record.get("group_name") or "",
                assigned_user_id=record.get("assigned_user_id"),
                assigned_user_first_name=record.get("assigned_user_first_name"),
                assigned_user_last_name=record.get("assigned_user_last_name"),
            ),
            references=AuditReferences(
                task_id=record.get("task_ref_id"),
                group_id=record.get("group_ref_id"),
                assigned_user_id=record.get("assigned_user_ref_id"),
            ),
        )
