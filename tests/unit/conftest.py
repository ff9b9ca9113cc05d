"""Pytest configuration and fixtures for unit tests.

Every test that needs the store gets its own SQLite file under tmp_path. Rows are
inserted directly through db_client so each test controls the exact state it
starts from; the services under test are then exercised against that state.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from taskgate.core import db_client
from taskgate.core.config import settings
from taskgate.domain.group import Group
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task, TaskPriority, TaskStatus
from taskgate.domain.user import User, UserRole
from taskgate.services import entity_store


def principal_of(user: User) -> Principal:
    """The principal a request by this user would resolve to."""
    return Principal(id=user.id, roles=user.roles)


@pytest.fixture
async def db(tmp_path, monkeypatch):
    """A fresh schema in a temporary database file."""
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "taskgate.db"))
    await db_client.init_db()
    yield
    await db_client.close_connection()


@pytest.fixture
def make_user(db) -> Callable[..., Awaitable[User]]:
    counter = {"n": 0}

    async def _make_user(first_name: str, last_name: str, *roles: UserRole, phone: str | None = None) -> User:
        counter["n"] += 1
        record = await db_client.create_record(
            collection="users",
            data={
                "email": f"{first_name.lower()}{counter['n']}@example.com",
                "first_name": first_name,
                "last_name": last_name,
                "phone": phone,
                "created": datetime.now(UTC).isoformat(),
            },
        )
        for role in roles:
            await db_client.create_record(collection="user_roles", data={"user_id": record["id"], "role": role})
        return await entity_store.get_user(record["id"])

    return _make_user


@pytest.fixture
def make_group(db) -> Callable[..., Awaitable[Group]]:
    async def _make_group(name: str, manager: User | None = None, members: tuple[User, ...] = ()) -> Group:
        record = await db_client.create_record(
            collection="task_groups",
            data={
                "name": name,
                "description": f"{name} tasks",
                "manager_id": manager.id if manager else None,
                "created": datetime.now(UTC).isoformat(),
            },
        )
        for member in members:
            await db_client.create_record(
                collection="group_members", data={"group_id": record["id"], "user_id": member.id}
            )
        return await entity_store.get_group(record["id"])

    return _make_group


@pytest.fixture
def make_task(db) -> Callable[..., Awaitable[Task]]:
    async def _make_task(
        title: str,
        group: Group,
        created_by: User,
        *,
        assignee: User | None = None,
        status: TaskStatus = TaskStatus.TODO,
        priority: TaskPriority = TaskPriority.MEDIUM,
        **extra: Any,
    ) -> Task:
        record = await db_client.create_record(
            collection="tasks",
            data={
                "title": title,
                "status": status,
                "priority": priority,
                "group_id": group.id,
                "assigned_user_id": assignee.id if assignee else None,
                "created_by_id": created_by.id,
                "created": datetime.now(UTC).isoformat(),
                **extra,
            },
        )
        return Task(**record)

    return _make_task


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("Admin", "System", UserRole.ADMINISTRATOR)


@pytest.fixture
async def manager(make_user) -> User:
    return await make_user("Jan", "Kowalski", UserRole.MANAGER)


@pytest.fixture
async def other_manager(make_user) -> User:
    return await make_user("Piotr", "Zielinski", UserRole.MANAGER)


@pytest.fixture
async def member(make_user) -> User:
    return await make_user("Anna", "Nowak", UserRole.USER)


@pytest.fixture
async def outsider(make_user) -> User:
    return await make_user("Ewa", "Wisniewska", UserRole.USER)


@pytest.fixture
async def group(make_group, manager, member) -> Group:
    """Marketing: managed by the manager, with the member in it."""
    return await make_group("Marketing", manager=manager, members=(member,))


@pytest.fixture
async def other_group(make_group, other_manager) -> Group:
    """Development: managed by the other manager."""
    return await make_group("Development", manager=other_manager)


@pytest.fixture
async def task(make_task, group, manager, member) -> Task:
    """A ToDo/Medium task in Marketing assigned to the member."""
    return await make_task("Create marketing campaign", group, manager, assignee=member)


async def audit_entries(task_id: str | None = None) -> list[dict[str, Any]]:
    """Raw audit rows, oldest first, optionally for one task id."""
    filter_query = f'task_id = "{task_id}"' if task_id else ""
    return await db_client.list_all_records(collection="audit_logs", filter_query=filter_query)


@pytest.fixture
def read_audit() -> Callable[..., Awaitable[list[dict[str, Any]]]]:
    return audit_entries


@pytest.fixture
def as_principal() -> Callable[[User], Principal]:
    return principal_of
