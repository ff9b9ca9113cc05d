"""Role-scoped read paths.

Listing is a filter, never a denial: each role sees the slice it is entitled to
(Administrator everything, Manager what sits under the groups they manage, User
what they are a member of or assigned to). Fetching a single entity the
principal may not see is Forbidden.
"""

import logging

from taskgate.core import db_client
from taskgate.core.config import settings
from taskgate.core.logging import span
from taskgate.domain.audit import AuditLog
from taskgate.domain.group import Group
from taskgate.domain.outcome import Outcome, OutcomeStatus
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task
from taskgate.domain.user import User, UserRole
from taskgate.services import entity_store
from taskgate.services.access_policy import Action, EntityType, authorize


logger = logging.getLogger(__name__)

Entity = User | Group | Task | AuditLog


def _by_id(entities: list[Entity]) -> dict[str, Entity]:
    return {entity.id: entity for entity in entities}


async def _visible_tasks(principal: Principal) -> list[Task]:
    if principal.is_administrator:
        return await entity_store.list_tasks()

    found: dict[str, Task] = {}
    if principal.has_role(UserRole.MANAGER):
        managed = await entity_store.list_managed_group_ids(principal.id)
        if managed:
            found.update(_by_id(await entity_store.list_tasks(filter_query=db_client.any_of("group_id", managed))))
    if principal.has_role(UserRole.USER):
        assigned = f'assigned_user_id = "{db_client.sanitize_param(principal.id)}"'
        found.update(_by_id(await entity_store.list_tasks(filter_query=assigned)))

    return sorted(found.values(), key=lambda task: (task.created, int(task.id)), reverse=True)


async def _visible_groups(principal: Principal) -> list[Group]:
    if principal.is_administrator:
        return await entity_store.list_groups()

    group_ids: set[str] = set()
    if principal.has_role(UserRole.MANAGER):
        group_ids.update(await entity_store.list_managed_group_ids(principal.id))
    if principal.has_role(UserRole.USER):
        group_ids.update(await entity_store.list_member_group_ids(principal.id))

    return await entity_store.list_groups(group_ids=sorted(group_ids))


async def _visible_users(principal: Principal) -> list[User]:
    if principal.is_administrator:
        return await entity_store.list_users()
    user = await entity_store.find_user(principal.id)
    return [user] if user else []


async def _visible_audit_logs(principal: Principal) -> list[AuditLog]:
    if principal.is_administrator:
        return await entity_store.list_audit_logs()

    found: dict[str, AuditLog] = {}
    if principal.has_role(UserRole.MANAGER):
        managed = await entity_store.list_managed_group_ids(principal.id)
        if managed:
            found.update(
                _by_id(await entity_store.list_audit_logs(filter_query=db_client.any_of("group_ref_id", managed)))
            )
    if principal.has_role(UserRole.USER):
        assigned = f'assigned_user_id = "{db_client.sanitize_param(principal.id)}"'
        found.update(_by_id(await entity_store.list_audit_logs(filter_query=assigned)))

    entries = sorted(found.values(), key=lambda entry: (entry.timestamp, int(entry.id)), reverse=True)
    return entries[: settings.audit_log_list_limit]


VISIBLE_LOADERS = {
    EntityType.TASK: _visible_tasks,
    EntityType.GROUP: _visible_groups,
    EntityType.USER: _visible_users,
    EntityType.AUDIT_LOG: _visible_audit_logs,
}


async def list_visible(*, principal: Principal, entity_type: EntityType) -> Outcome[list]:
    """List the entities of one type the principal may see."""
    with span(f"query_service.list_visible.{entity_type}"):
        if not principal.roles:
            return Outcome.success([])

        entities = await VISIBLE_LOADERS[entity_type](principal)
        logger.debug(
            "Listed visible entities",
            extra={"user_id": principal.id, "entity_type": entity_type, "count": len(entities)},
        )
        return Outcome.success(entities)


async def _load(entity_type: EntityType, entity_id: str) -> tuple[Entity, Group | None]:
    """Load an entity and the group that scopes it (for tasks and audit entries)."""
    if entity_type == EntityType.TASK:
        task = await entity_store.get_task(entity_id)
        return task, await entity_store.get_group(task.group_id)
    if entity_type == EntityType.GROUP:
        return await entity_store.get_group(entity_id), None
    if entity_type == EntityType.USER:
        return await entity_store.get_user(entity_id), None

    entry = await entity_store.get_audit_log(entity_id)
    group = None
    if entry.references.group_id:
        try:
            group = await entity_store.get_group(entry.references.group_id)
        except db_client.RecordNotFoundError:
            group = None
    return entry, group


async def get_if_visible(*, principal: Principal, entity_type: EntityType, entity_id: str) -> Outcome[Entity]:
    """Fetch one entity: the entity, NOT_FOUND, or FORBIDDEN with the policy's reason."""
    with span(f"query_service.get_if_visible.{entity_type}"):
        try:
            entity, owning_group = await _load(entity_type, entity_id)
        except db_client.RecordNotFoundError:
            return Outcome.rejected(OutcomeStatus.NOT_FOUND, f"{entity_type} {entity_id} not found")

        decision = authorize(principal, Action.READ, entity, owning_group=owning_group)
        if not decision.allowed:
            logger.info(
                "Read denied",
                extra={"user_id": principal.id, "entity_type": entity_type, "entity_id": entity_id},
            )
            return Outcome.rejected(OutcomeStatus.FORBIDDEN, decision.reason or "forbidden")

        return Outcome.success(entity)
