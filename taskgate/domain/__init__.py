"""Domain models and DTOs."""

from taskgate.domain.audit import AuditAction, AuditLog, AuditReferences, AuditSnapshot
from taskgate.domain.create_models import GroupCreate, TaskCreate, UserCreate
from taskgate.domain.group import Group, GroupDeletionInfo
from taskgate.domain.outcome import MutationStage, Outcome, OutcomeStatus
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task, TaskPriority, TaskStatus
from taskgate.domain.update_models import GroupUpdate, TaskUpdate
from taskgate.domain.user import User, UserRole


__all__ = [
    "AuditAction",
    "AuditLog",
    "AuditReferences",
    "AuditSnapshot",
    "Group",
    "GroupCreate",
    "GroupDeletionInfo",
    "GroupUpdate",
    "MutationStage",
    "Outcome",
    "OutcomeStatus",
    "Principal",
    "Task",
    "TaskCreate",
    "TaskPriority",
    "TaskStatus",
    "TaskUpdate",
    "User",
    "UserCreate",
    "UserRole",
]
