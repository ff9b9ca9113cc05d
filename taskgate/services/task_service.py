"""Task service for creating, updating and deleting tasks with an audit trail."""

import logging
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from taskgate.core import db_client
from taskgate.core.errors import ForbiddenError, InvalidInputError
from taskgate.domain.create_models import TaskCreate
from taskgate.domain.group import Group
from taskgate.domain.outcome import Outcome
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task, validate_due_date
from taskgate.domain.update_models import TaskUpdate
from taskgate.domain.user import User, UserRole
from taskgate.services import audit_recorder, entity_store
from taskgate.services.access_policy import NOT_GROUP_MANAGER, Action, EntityType, authorize
from taskgate.services.mutation_orchestrator import MutationContext, mutation


logger = logging.getLogger(__name__)


async def _existing_group(group_id: Any, conn: aiosqlite.Connection) -> Group | None:
    if group_id in (None, ""):
        return None
    try:
        return await entity_store.get_group(str(group_id), conn=conn)
    except db_client.RecordNotFoundError:
        return None


async def _assignee(user_id: str | None, conn: aiosqlite.Connection) -> User | None:
    """Resolve an assignee id, rejecting ids that do not exist."""
    if user_id is None:
        return None
    user = await entity_store.find_user(user_id, conn=conn)
    if user is None:
        raise InvalidInputError(f"Assigned user {user_id} does not exist")
    return user


async def create_task(*, principal: Principal, data: dict[str, Any]) -> Outcome[Task]:
    """Create a task in a group.

    Args:
        principal: Acting principal (Administrator, or Manager of the group)
        data: Task fields; the creator is always the principal

    Returns:
        Outcome with the created task, or the rejection
    """
    async with mutation("task_service.create_task", principal) as m:
        group = await _existing_group(data.get("group_id"), m.conn)
        m.authorize(authorize(principal, Action.CREATE, EntityType.TASK, owning_group=group))

        fields = TaskCreate.model_validate(m.project(EntityType.TASK, data))
        if group is None:
            raise InvalidInputError(f"Group {fields.group_id} does not exist")
        assignee = await _assignee(fields.assigned_user_id, m.conn)

        record = await db_client.create_record(
            collection="tasks",
            data={
                **fields.model_dump(mode="json"),
                "created": datetime.now(UTC).isoformat(),
                "created_by_id": principal.id,
            },
            conn=m.conn,
        )
        task = Task(**record)
        m.applied()

        await m.log([audit_recorder.creation_entry(task, group, assignee)])
        logger.info("Created task", extra={"task_id": task.id, "group_id": group.id, "user_id": principal.id})
        m.succeed(task)

    return m.outcome


async def update_task(
    *,
    principal: Principal,
    task_id: str,
    changes: dict[str, Any],
    expected_version: int | None = None,
) -> Outcome[Task]:
    """Apply a change-set to a task.

    Fields the principal's role may not write are dropped silently. A change-set
    that leaves every field as it was writes nothing: no audit entry, no new
    updated timestamp, no version bump.

    Args:
        principal: Acting principal
        task_id: Task to update
        changes: Field name to new value
        expected_version: Version the caller last read; a mismatch is a conflict

    Returns:
        Outcome with the task as stored after the call, or the rejection
    """
    async with mutation("task_service.update_task", principal) as m:
        task = await entity_store.get_task(task_id, conn=m.conn)
        group = await entity_store.get_group(task.group_id, conn=m.conn)
        m.authorize(authorize(principal, Action.UPDATE, task, owning_group=group))

        new_values = TaskUpdate.model_validate(m.project(EntityType.TASK, changes)).changes()
        diff = {name: value for name, value in new_values.items() if getattr(task, name) != value}
        entity_store.ensure_version("tasks", task.id, task.version, expected_version)

        if diff:
            m.succeed(await _apply_changes(m, task, group, diff))
        else:
            m.succeed(task)

    return m.outcome


async def _apply_changes(m: MutationContext, task: Task, group: Group, diff: dict[str, Any]) -> Task:
    """Validate the effective changes, write them and log the derived audit entries."""
    principal = m.principal

    # Guard: due dates are range-checked only when they change
    if diff.get("due_date") is not None:
        try:
            validate_due_date(diff["due_date"])
        except ValueError as e:
            raise InvalidInputError(str(e)) from e

    after_group = group
    if "group_id" in diff:
        after_group = await _existing_group(diff["group_id"], m.conn)
        if after_group is None:
            raise InvalidInputError(f"Group {diff['group_id']} does not exist")
        if m.role == UserRole.MANAGER and after_group.manager_id != principal.id:
            raise ForbiddenError(f"{NOT_GROUP_MANAGER} of destination group")

    previous_assignee = await entity_store.find_user(task.assigned_user_id, conn=m.conn)
    if "assigned_user_id" in diff:
        assignee = await _assignee(diff["assigned_user_id"], m.conn)
    else:
        assignee = previous_assignee

    record = await db_client.update_record(
        collection="tasks",
        record_id=task.id,
        data={**diff, "updated": datetime.now(UTC).isoformat()},
        expected_version=task.version,
        conn=m.conn,
    )
    updated = Task(**record)
    m.applied()

    await m.log(
        audit_recorder.derive_update_entries(
            task,
            updated,
            group=after_group,
            assignee=assignee,
            previous_assignee=previous_assignee,
            role=m.role,
        )
    )
    logger.info("Updated task", extra={"task_id": task.id, "fields": sorted(diff), "user_id": principal.id})
    return updated


async def delete_task(
    *, principal: Principal, task_id: str, expected_version: int | None = None
) -> Outcome[None]:
    """Delete a task, recording its final state in the audit trail first.

    Args:
        principal: Acting principal (Administrator, or Manager of the owning group)
        task_id: Task to delete
        expected_version: Version the caller last read; a mismatch is a conflict

    Returns:
        Outcome with no value, or the rejection
    """
    async with mutation("task_service.delete_task", principal) as m:
        task = await entity_store.get_task(task_id, conn=m.conn)
        group = await entity_store.get_group(task.group_id, conn=m.conn)
        m.authorize(authorize(principal, Action.DELETE, task, owning_group=group))
        entity_store.ensure_version("tasks", task.id, task.version, expected_version)

        await remove_task(m, task, group)
        logger.info("Deleted task", extra={"task_id": task.id, "user_id": principal.id})

    return m.outcome


async def remove_task(m: MutationContext, task: Task, group: Group) -> None:
    """Log a Deleted entry for the task, then remove its row, inside the caller's mutation."""
    assignee = await entity_store.find_user(task.assigned_user_id, conn=m.conn)
    await m.log([audit_recorder.deletion_entry(task, group, assignee)])
    await db_client.delete_record(collection="tasks", record_id=task.id, conn=m.conn)
    m.applied()
