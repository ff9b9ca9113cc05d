"""User service for registering users, managing their roles and group membership."""

import logging
from datetime import UTC, datetime
from typing import Any

from taskgate.core import db_client
from taskgate.core.errors import InvalidInputError
from taskgate.domain.create_models import UserCreate
from taskgate.domain.outcome import Outcome
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task
from taskgate.domain.user import User, UserRole
from taskgate.services import audit_recorder, entity_store, invariant_guards
from taskgate.services.access_policy import Action, Decision, EntityType, authorize
from taskgate.services.mutation_orchestrator import MutationContext, mutation


logger = logging.getLogger(__name__)

# Acts for the very first registration, before any Administrator exists
BOOTSTRAP_PRINCIPAL = Principal(id="bootstrap")


async def _set_roles(m: MutationContext, user: User, roles: frozenset[UserRole]) -> None:
    """Replace the user's role rows with roles."""
    removed = user.roles - roles
    if removed:
        user_filter = f'user_id = "{db_client.sanitize_param(user.id)}"'
        await db_client.delete_records(
            collection="user_roles",
            filter_query=f'{user_filter} && {db_client.any_of("role", sorted(removed))}',
            conn=m.conn,
        )
    for role in sorted(roles - user.roles):
        await db_client.create_record(collection="user_roles", data={"user_id": user.id, "role": role}, conn=m.conn)
    m.applied()

    logger.info(
        "Changed user roles",
        extra={"user_id": user.id, "roles": sorted(roles), "actor_id": m.principal.id},
    )


async def create_user(*, principal: Principal | None, data: dict[str, Any]) -> Outcome[User]:
    """Register a user with an initial role set (User when none is given).

    Only an Administrator may register users, except while no Administrator
    exists yet: that first registration is allowed without a principal.

    Args:
        principal: Acting principal, or None for the bootstrap registration
        data: Email, names, optional phone, date of birth and roles

    Returns:
        Outcome with the created user, or the rejection
    """
    actor = principal or BOOTSTRAP_PRINCIPAL
    async with mutation("user_service.create_user", actor) as m:
        admin_count = await entity_store.count_users_with_role(UserRole.ADMINISTRATOR, conn=m.conn)
        if admin_count == 0:
            m.authorize(Decision.allow(UserRole.ADMINISTRATOR))
        else:
            m.authorize(authorize(actor, Action.CREATE, EntityType.USER))

        fields = UserCreate.model_validate(data)

        # Guard: e-mail addresses identify users
        existing = await db_client.find_by_field(collection="users", field="email", value=fields.email, conn=m.conn)
        if existing:
            raise InvalidInputError(f"A user with e-mail {fields.email} already exists")

        record = await db_client.create_record(
            collection="users",
            data={
                **fields.model_dump(mode="json", exclude={"roles"}),
                "created": datetime.now(UTC).isoformat(),
            },
            conn=m.conn,
        )
        user = User(**record)
        await _set_roles(m, user, fields.roles)

        m.succeed(await entity_store.get_user(user.id, conn=m.conn))
        logger.info("Created user", extra={"user_id": user.id, "bootstrap": admin_count == 0})

    return m.outcome


async def assign_role(
    *, principal: Principal, user_id: str, role: UserRole, replace: bool = False
) -> Outcome[User]:
    """Grant a role, or with replace=True make it the user's only role.

    Replacing can take Administrator away, so it is subject to the
    last-Administrator guard.
    """
    async with mutation("user_service.assign_role", principal) as m:
        user = await entity_store.get_user(user_id, conn=m.conn)
        m.authorize(authorize(principal, Action.MANAGE_ROLES, user))

        roles = frozenset({role}) if replace else user.roles | {role}
        m.guard(await invariant_guards.last_administrator_guard(user=user, remaining_roles=roles, conn=m.conn))

        if roles != user.roles:
            await _set_roles(m, user, roles)
        m.succeed(await entity_store.get_user(user.id, conn=m.conn))

    return m.outcome


async def remove_role(*, principal: Principal, user_id: str, role: UserRole) -> Outcome[User]:
    """Take a role away from a user.

    Removing the last Administrator's Administrator role is rejected. Leaving a
    user with no role at all is allowed but comes back with a warning.
    """
    async with mutation("user_service.remove_role", principal) as m:
        user = await entity_store.get_user(user_id, conn=m.conn)
        m.authorize(authorize(principal, Action.MANAGE_ROLES, user))

        roles = user.roles - {role}
        m.guard(await invariant_guards.last_administrator_guard(user=user, remaining_roles=roles, conn=m.conn))

        if roles != user.roles:
            await _set_roles(m, user, roles)
            warning = invariant_guards.role_removal_warning(user, roles)
            if warning:
                m.warn(warning)
        m.succeed(await entity_store.get_user(user.id, conn=m.conn))

    return m.outcome


async def delete_user(*, principal: Principal, user_id: str) -> Outcome[None]:
    """Delete a user.

    Rejected for the last Administrator and for anyone who created tasks (the
    creator of a task never changes). Tasks assigned to the user are unassigned
    first, each with an audit entry.
    """
    async with mutation("user_service.delete_user", principal) as m:
        user = await entity_store.get_user(user_id, conn=m.conn)
        m.authorize(authorize(principal, Action.DELETE, user))
        m.guard(await invariant_guards.last_administrator_guard(user=user, remaining_roles=None, conn=m.conn))

        user_filter = f'"{db_client.sanitize_param(user.id)}"'
        created = await db_client.count_records(
            collection="tasks", filter_query=f"created_by_id = {user_filter}", conn=m.conn
        )
        if created:
            m.guard(Decision.deny(f"{user.full_name} created {created} task(s) and cannot be deleted"))

        for task in await entity_store.list_tasks(filter_query=f"assigned_user_id = {user_filter}", conn=m.conn):
            await _unassign(m, task, user)

        await db_client.delete_record(collection="users", record_id=user.id, conn=m.conn)
        m.applied()
        logger.info("Deleted user", extra={"user_id": user.id, "actor_id": principal.id})

    return m.outcome


async def _unassign(m: MutationContext, task: Task, user: User) -> None:
    group = await entity_store.get_group(task.group_id, conn=m.conn)
    record = await db_client.update_record(
        collection="tasks",
        record_id=task.id,
        data={"assigned_user_id": None, "updated": datetime.now(UTC).isoformat()},
        expected_version=task.version,
        conn=m.conn,
    )
    await m.log([audit_recorder.unassignment_entry(Task(**record), group, user)])


async def manage_group_membership(
    *, principal: Principal, user_id: str, group_ids: list[str]
) -> Outcome[list[str]]:
    """Make the user a member of exactly the given groups.

    Unknown group ids are ignored with a warning. The value is the user's
    resulting group ids.
    """
    async with mutation("user_service.manage_group_membership", principal) as m:
        user = await entity_store.get_user(user_id, conn=m.conn)
        m.authorize(authorize(principal, Action.MANAGE_MEMBERS, user))

        requested = {str(group_id) for group_id in group_ids}
        # Ids are numeric; anything else cannot name a group
        candidates = sorted(group_id for group_id in requested if group_id.isdigit())
        known = {group.id for group in await entity_store.list_groups(group_ids=candidates, conn=m.conn)}
        unknown = requested - known
        if unknown:
            m.warn(f"Ignored unknown group id(s): {', '.join(sorted(unknown))}")

        current = set(await entity_store.list_member_group_ids(user.id, conn=m.conn))
        added, removed = known - current, current - known

        if removed:
            user_filter = f'user_id = "{db_client.sanitize_param(user.id)}"'
            await db_client.delete_records(
                collection="group_members",
                filter_query=f'{user_filter} && {db_client.any_of("group_id", sorted(removed))}',
                conn=m.conn,
            )
        for group_id in sorted(added):
            await db_client.create_record(
                collection="group_members", data={"group_id": group_id, "user_id": user.id}, conn=m.conn
            )
        for group_id in sorted(added | removed, key=int):
            await db_client.update_record(collection="task_groups", record_id=group_id, data={}, conn=m.conn)
        m.applied()

        logger.info(
            "Replaced group membership",
            extra={"user_id": user.id, "added": sorted(added), "removed": sorted(removed)},
        )
        m.succeed(sorted(known, key=int))

    return m.outcome
