"""Group service for creating, updating and deleting groups and their membership."""

import logging
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from taskgate.core import db_client
from taskgate.core.errors import InvalidInputError
from taskgate.core.logging import span
from taskgate.domain.create_models import GroupCreate
from taskgate.domain.group import Group, GroupDeletionInfo
from taskgate.domain.outcome import Outcome, OutcomeStatus
from taskgate.domain.principal import Principal
from taskgate.domain.update_models import GroupUpdate
from taskgate.domain.user import UserRole
from taskgate.services import entity_store, invariant_guards
from taskgate.services.access_policy import Action, EntityType, authorize
from taskgate.services.mutation_orchestrator import MutationContext, mutation
from taskgate.services.task_service import remove_task


logger = logging.getLogger(__name__)


async def _require_users(user_ids: set[str], conn: aiosqlite.Connection) -> None:
    missing = [user_id for user_id in sorted(user_ids) if await entity_store.find_user(user_id, conn=conn) is None]
    if missing:
        raise InvalidInputError(f"Unknown user id(s): {', '.join(missing)}")


async def replace_members(
    *, group_id: str, current: frozenset[str], wanted: set[str], conn: aiosqlite.Connection
) -> tuple[set[str], set[str]]:
    """Make the group's member set equal to wanted; return (added, removed)."""
    added = wanted - current
    removed = current - wanted

    if removed:
        group_filter = f'group_id = "{db_client.sanitize_param(group_id)}"'
        await db_client.delete_records(
            collection="group_members",
            filter_query=f'{group_filter} && {db_client.any_of("user_id", sorted(removed))}',
            conn=conn,
        )
    for user_id in sorted(added):
        await db_client.create_record(
            collection="group_members", data={"group_id": group_id, "user_id": user_id}, conn=conn
        )

    if added or removed:
        logger.info(
            "Group membership changed",
            extra={"group_id": group_id, "added": sorted(added), "removed": sorted(removed)},
        )
    return added, removed


async def create_group(*, principal: Principal, data: dict[str, Any]) -> Outcome[Group]:
    """Create a group.

    A Manager who creates a group becomes its manager; only an Administrator
    may choose someone else.
    """
    async with mutation("group_service.create_group", principal) as m:
        m.authorize(authorize(principal, Action.CREATE, EntityType.GROUP))
        fields = GroupCreate.model_validate(m.project(EntityType.GROUP, data))

        manager_id = principal.id if m.role == UserRole.MANAGER else fields.manager_id
        members = set(fields.member_ids)
        await _require_users(members | ({manager_id} if manager_id else set()), m.conn)

        record = await db_client.create_record(
            collection="task_groups",
            data={
                "name": fields.name,
                "description": fields.description,
                "manager_id": manager_id,
                "created": datetime.now(UTC).isoformat(),
            },
            conn=m.conn,
        )
        await replace_members(group_id=record["id"], current=frozenset(), wanted=members, conn=m.conn)
        m.applied()

        m.succeed(await entity_store.get_group(record["id"], conn=m.conn))
        logger.info("Created group", extra={"group_id": record["id"], "user_id": principal.id})

    return m.outcome


async def update_group(
    *,
    principal: Principal,
    group_id: str,
    changes: dict[str, Any],
    expected_version: int | None = None,
) -> Outcome[Group]:
    """Update a group's details and, when member_ids is given, replace its member list.

    A Manager's manager_id change is dropped by field projection.
    """
    async with mutation("group_service.update_group", principal) as m:
        group = await entity_store.get_group(group_id, conn=m.conn)
        m.authorize(authorize(principal, Action.UPDATE, group))

        new_values = GroupUpdate.model_validate(m.project(EntityType.GROUP, changes)).changes()
        entity_store.ensure_version("task_groups", group.id, group.version, expected_version)

        wanted_members = new_values.pop("member_ids", None)
        diff = {name: value for name, value in new_values.items() if getattr(group, name) != value}
        if diff.get("manager_id"):
            await _require_users({diff["manager_id"]}, m.conn)

        members_changed = wanted_members is not None and set(wanted_members) != group.member_ids
        if members_changed:
            await _require_users(set(wanted_members) - group.member_ids, m.conn)
            await replace_members(
                group_id=group.id, current=group.member_ids, wanted=set(wanted_members), conn=m.conn
            )
        # A member list edit is a group edit: it moves the version too
        if diff or members_changed:
            await db_client.update_record(
                collection="task_groups",
                record_id=group.id,
                data=diff,
                expected_version=group.version,
                conn=m.conn,
            )
        m.applied()

        m.succeed(await entity_store.get_group(group.id, conn=m.conn))

    return m.outcome


async def _deletion_info(group: Group, conn: aiosqlite.Connection | None) -> GroupDeletionInfo:
    return GroupDeletionInfo(
        group_id=group.id,
        group_name=group.name,
        active_task_count=await entity_store.count_active_tasks(group.id, conn=conn),
        total_task_count=await db_client.count_records(
            collection="tasks", filter_query=f'group_id = "{db_client.sanitize_param(group.id)}"', conn=conn
        ),
        member_count=len(group.member_ids),
    )


async def get_group_deletion_info(*, principal: Principal, group_id: str) -> Outcome[GroupDeletionInfo]:
    """Counts to show before deleting a group: active tasks, total tasks, members."""
    with span("group_service.get_group_deletion_info"):
        try:
            group = await entity_store.get_group(group_id)
        except db_client.RecordNotFoundError:
            return Outcome.rejected(OutcomeStatus.NOT_FOUND, f"Group {group_id} not found")

        decision = authorize(principal, Action.DELETE, group)
        if not decision.allowed:
            return Outcome.rejected(OutcomeStatus.FORBIDDEN, decision.reason or "forbidden")

        return Outcome.success(await _deletion_info(group, None))


async def delete_group(
    *, principal: Principal, group_id: str, expected_version: int | None = None
) -> Outcome[None]:
    """Delete a group that has no active tasks.

    Its remaining (Done or Cancelled) tasks are removed with it, each with a
    Deleted audit entry written before the row goes.
    """
    async with mutation("group_service.delete_group", principal) as m:
        group = await entity_store.get_group(group_id, conn=m.conn)
        m.authorize(authorize(principal, Action.DELETE, group))
        entity_store.ensure_version("task_groups", group.id, group.version, expected_version)

        info = await _deletion_info(group, m.conn)
        m.guard(invariant_guards.active_tasks_guard(info))

        await _remove_group(m, group)
        logger.info(
            "Deleted group",
            extra={"group_id": group.id, "removed_tasks": info.total_task_count, "user_id": principal.id},
        )

    return m.outcome


async def _remove_group(m: MutationContext, group: Group) -> None:
    for task in await entity_store.list_group_tasks(group.id, conn=m.conn):
        await remove_task(m, task, group)
    await db_client.delete_record(collection="task_groups", record_id=group.id, conn=m.conn)
    m.applied()
