"""Audit recorder: derive and persist immutable audit entries for task changes.

Each entry copies the task, group and assignee details by value at the moment of
the event. The copied fields are the history; the *_ref_id columns are only
navigation links and are cleared when the referenced row is removed.
"""

import logging
from datetime import UTC, datetime

import aiosqlite
from pydantic import BaseModel, ConfigDict

from taskgate.core import db_client
from taskgate.core.config import constants
from taskgate.core.errors import FatalMutationError
from taskgate.domain.audit import AuditAction, AuditLog, AuditSnapshot
from taskgate.domain.group import Group
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task
from taskgate.domain.user import User, UserRole


logger = logging.getLogger(__name__)

# Changes to these fields without a status, priority or assignee change produce one Updated entry
DETAIL_FIELDS = ("title", "description", "due_date", "group_id")


class PendingEntry(BaseModel):
    """An audit entry derived from a change, not yet persisted."""

    model_config = ConfigDict(frozen=True)

    action: AuditAction
    description: str
    snapshot: AuditSnapshot


def build_snapshot(task: Task, group: Group, assignee: User | None) -> AuditSnapshot:
    """Copy the descriptive fields of the task, its group and its assignee."""
    return AuditSnapshot(
        task_id=task.id,
        task_title=task.title,
        task_status=task.status,
        task_priority=task.priority,
        group_id=group.id,
        group_name=group.name,
        assigned_user_id=assignee.id if assignee else None,
        assigned_user_first_name=assignee.first_name if assignee else None,
        assigned_user_last_name=assignee.last_name if assignee else None,
    )


def creation_entry(task: Task, group: Group, assignee: User | None) -> PendingEntry:
    if assignee is not None:
        description = f"Task created and assigned to {assignee.full_name}"
    else:
        description = "Task created (unassigned)"
    return PendingEntry(
        action=AuditAction.CREATED,
        description=description,
        snapshot=build_snapshot(task, group, assignee),
    )


def deletion_entry(task: Task, group: Group, assignee: User | None) -> PendingEntry:
    """Entry describing the task's final state before it is removed."""
    return PendingEntry(
        action=AuditAction.DELETED,
        description=f"Task '{task.title}' was deleted",
        snapshot=build_snapshot(task, group, assignee),
    )


def unassignment_entry(task: Task, group: Group, previous_assignee: User | None) -> PendingEntry:
    """Entry for clearing an assignment; the snapshot reflects the task after the change."""
    name = previous_assignee.full_name if previous_assignee else "user"
    return PendingEntry(
        action=AuditAction.UNASSIGNED_FROM_USER,
        description=f"Task unassigned from {name}",
        snapshot=build_snapshot(task, group, None),
    )


def derive_update_entries(
    before: Task,
    after: Task,
    *,
    group: Group,
    assignee: User | None,
    previous_assignee: User | None = None,
    role: UserRole | None = None,
) -> list[PendingEntry]:
    """Derive one entry per distinct change between two task states.

    Status, priority and assignment changes each get their own entry. When none
    of those changed but other details did, a single Updated entry is produced.
    An unchanged task produces nothing. Priority and assignment are ignored for
    the plain User role, which cannot write them.
    """
    snapshot = build_snapshot(after, group, assignee)
    entries: list[PendingEntry] = []

    if before.status != after.status:
        entries.append(
            PendingEntry(
                action=AuditAction.STATUS_CHANGED,
                description=f"Status changed from {before.status} to {after.status}",
                snapshot=snapshot,
            )
        )

    if role != UserRole.USER:
        if before.priority != after.priority:
            entries.append(
                PendingEntry(
                    action=AuditAction.PRIORITY_CHANGED,
                    description=f"Priority changed from {before.priority} to {after.priority}",
                    snapshot=snapshot,
                )
            )

        if before.assigned_user_id != after.assigned_user_id:
            if after.assigned_user_id is not None:
                name = assignee.full_name if assignee else "user"
                entries.append(
                    PendingEntry(
                        action=AuditAction.ASSIGNED_TO_USER,
                        description=f"Task assigned to {name}",
                        snapshot=snapshot,
                    )
                )
            else:
                entries.append(unassignment_entry(after, group, previous_assignee))

    if not entries and any(getattr(before, name) != getattr(after, name) for name in DETAIL_FIELDS):
        entries.append(
            PendingEntry(action=AuditAction.UPDATED, description="Task details updated", snapshot=snapshot)
        )

    return entries


async def record(*, conn: aiosqlite.Connection, principal: Principal, entry: PendingEntry) -> AuditLog:
    """Persist one entry inside the caller's transaction.

    Raises:
        FatalMutationError: If the entry cannot be written; the caller must roll back
    """
    snapshot = entry.snapshot
    data = {
        "user_id": principal.id,
        "timestamp": datetime.now(UTC).isoformat(),
        "action": entry.action.value,
        "description": entry.description[: constants.AUDIT_DESCRIPTION_MAX_LENGTH],
        **snapshot.model_dump(mode="json"),
        "task_ref_id": snapshot.task_id,
        "group_ref_id": snapshot.group_id,
        "assigned_user_ref_id": snapshot.assigned_user_id,
    }

    try:
        created = await db_client.create_record(collection="audit_logs", data=data, conn=conn)
    except db_client.DatabaseError as e:
        logger.error(
            "audit_write_failed",
            extra={"task_id": snapshot.task_id, "action": entry.action, "error": str(e)},
        )
        raise FatalMutationError(f"Failed to write audit entry for task {snapshot.task_id}") from e

    logger.info("Recorded audit entry", extra={"task_id": snapshot.task_id, "action": entry.action})
    return AuditLog.from_record(created)


async def record_all(
    *, conn: aiosqlite.Connection, principal: Principal, entries: list[PendingEntry]
) -> list[AuditLog]:
    return [await record(conn=conn, principal=principal, entry=entry) for entry in entries]
