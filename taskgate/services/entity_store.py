"""Typed loaders over the SQLite entity store."""

import logging

import aiosqlite

from taskgate.core import db_client
from taskgate.core.config import settings
from taskgate.domain.audit import AuditLog
from taskgate.domain.group import Group
from taskgate.domain.task import FINISHED_STATUSES, Task
from taskgate.domain.user import User, UserRole


logger = logging.getLogger(__name__)

Connection = aiosqlite.Connection | None


def _active_filter(group_id: str) -> str:
    finished = " && ".join(f'status != "{status}"' for status in sorted(FINISHED_STATUSES))
    return f'group_id = "{db_client.sanitize_param(group_id)}" && {finished}'


async def _roles_of(user_id: str, conn: Connection) -> frozenset[UserRole]:
    rows = await db_client.list_all_records(
        collection="user_roles",
        filter_query=f'user_id = "{db_client.sanitize_param(user_id)}"',
        conn=conn,
    )
    return frozenset(UserRole(row["role"]) for row in rows)


async def _member_ids_of(group_id: str, conn: Connection) -> frozenset[str]:
    rows = await db_client.list_all_records(
        collection="group_members",
        filter_query=f'group_id = "{db_client.sanitize_param(group_id)}"',
        conn=conn,
    )
    return frozenset(row["user_id"] for row in rows)


async def get_user(user_id: str, *, conn: Connection = None) -> User:
    """Load a user with its role set. Raises RecordNotFoundError if missing."""
    record = await db_client.get_record(collection="users", record_id=user_id, conn=conn)
    return User(**record, roles=await _roles_of(record["id"], conn))


async def find_user(user_id: str | None, *, conn: Connection = None) -> User | None:
    """Like get_user, but None for a missing id or missing user."""
    if not user_id:
        return None
    try:
        return await get_user(user_id, conn=conn)
    except db_client.RecordNotFoundError:
        return None


async def get_group(group_id: str, *, conn: Connection = None) -> Group:
    """Load a group with its member ids. Raises RecordNotFoundError if missing."""
    record = await db_client.get_record(collection="task_groups", record_id=group_id, conn=conn)
    return Group(**record, member_ids=await _member_ids_of(record["id"], conn))


async def get_task(task_id: str, *, conn: Connection = None) -> Task:
    """Load a task. Raises RecordNotFoundError if missing."""
    record = await db_client.get_record(collection="tasks", record_id=task_id, conn=conn)
    return Task(**record)


async def list_users(*, conn: Connection = None) -> list[User]:
    records = await db_client.list_all_records(collection="users", sort="last_name", conn=conn)
    role_rows = await db_client.list_all_records(collection="user_roles", conn=conn)

    roles: dict[str, set[UserRole]] = {}
    for row in role_rows:
        roles.setdefault(row["user_id"], set()).add(UserRole(row["role"]))

    return [User(**record, roles=frozenset(roles.get(record["id"], ()))) for record in records]


async def list_groups(*, group_ids: list[str] | None = None, conn: Connection = None) -> list[Group]:
    """List groups, optionally restricted to the given ids (an empty list yields nothing)."""
    if group_ids is not None and not group_ids:
        return []

    filter_query = db_client.any_of("id", group_ids) if group_ids else ""
    records = await db_client.list_all_records(
        collection="task_groups", filter_query=filter_query, sort="name", conn=conn
    )
    member_rows = await db_client.list_all_records(collection="group_members", conn=conn)

    members: dict[str, set[str]] = {}
    for row in member_rows:
        members.setdefault(row["group_id"], set()).add(row["user_id"])

    return [Group(**record, member_ids=frozenset(members.get(record["id"], ()))) for record in records]


async def list_tasks(*, filter_query: str = "", conn: Connection = None) -> list[Task]:
    records = await db_client.list_all_records(
        collection="tasks", filter_query=filter_query, sort="created DESC", conn=conn
    )
    return [Task(**record) for record in records]


async def list_group_tasks(group_id: str, *, conn: Connection = None) -> list[Task]:
    return await list_tasks(filter_query=f'group_id = "{db_client.sanitize_param(group_id)}"', conn=conn)


async def list_managed_group_ids(manager_id: str, *, conn: Connection = None) -> list[str]:
    records = await db_client.list_all_records(
        collection="task_groups",
        filter_query=f'manager_id = "{db_client.sanitize_param(manager_id)}"',
        conn=conn,
    )
    return [record["id"] for record in records]


async def list_member_group_ids(user_id: str, *, conn: Connection = None) -> list[str]:
    rows = await db_client.list_all_records(
        collection="group_members",
        filter_query=f'user_id = "{db_client.sanitize_param(user_id)}"',
        conn=conn,
    )
    return [row["group_id"] for row in rows]


async def count_active_tasks(group_id: str, *, conn: Connection = None) -> int:
    """Tasks in the group whose status is neither Done nor Cancelled."""
    return await db_client.count_records(collection="tasks", filter_query=_active_filter(group_id), conn=conn)


async def count_users_with_role(role: UserRole, *, conn: Connection = None) -> int:
    return await db_client.count_records(collection="user_roles", filter_query=f'role = "{role}"', conn=conn)


async def list_audit_logs(*, filter_query: str = "", limit: int | None = None, conn: Connection = None) -> list[AuditLog]:
    """Newest entries first, capped at the configured listing limit."""
    records = await db_client.list_records(
        collection="audit_logs",
        per_page=limit or settings.audit_log_list_limit,
        filter_query=filter_query,
        sort="timestamp DESC",
        conn=conn,
    )
    return [AuditLog.from_record(record) for record in records]


async def get_audit_log(log_id: str, *, conn: Connection = None) -> AuditLog:
    record = await db_client.get_record(collection="audit_logs", record_id=log_id, conn=conn)
    return AuditLog.from_record(record)


def ensure_version(collection: str, record_id: str, current: int, expected: int | None) -> None:
    """Raise ConcurrencyConflictError when the caller's expected version is stale."""
    if expected is not None and expected != current:
        raise db_client.ConcurrencyConflictError(
            collection=collection, record_id=record_id, expected_version=expected
        )
