#!/usr/bin/env python3
"""Seed a fresh database with demo accounts, groups and tasks.

Usage:
    uv run python scripts/seed_data.py
    uv run python scripts/seed_data.py --tokens   # only print tokens for existing accounts
"""

import asyncio
import logging
import sys
from datetime import date, timedelta

from taskgate.core import db_client
from taskgate.core.db_client import init_db
from taskgate.domain.principal import Principal
from taskgate.domain.task import TaskPriority, TaskStatus
from taskgate.domain.user import UserRole
from taskgate.interface.principal_resolver import issue_principal_token
from taskgate.services import group_service, task_service, user_service


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)

DEMO_ACCOUNTS = [
    {
        "email": "admin@taskmanager.com",
        "first_name": "Admin",
        "last_name": "System",
        "roles": [UserRole.ADMINISTRATOR],
    },
    {
        "email": "manager@taskmanager.com",
        "first_name": "Jan",
        "last_name": "Kowalski",
        "roles": [UserRole.MANAGER],
    },
    {
        "email": "user@taskmanager.com",
        "first_name": "Anna",
        "last_name": "Nowak",
        "roles": [UserRole.USER],
    },
]


def _require(outcome, what: str):
    if not outcome.ok:
        logger.error(f"Failed to seed {what}: {outcome.reason}")
        sys.exit(1)
    return outcome.value


async def seed() -> None:
    """Create the demo data through the services so the audit trail is filled too."""
    existing = await db_client.find_by_field(collection="users", field="email", value=DEMO_ACCOUNTS[0]["email"])
    if existing:
        logger.info("Database already seeded")
        return

    admin_user = _require(await user_service.create_user(principal=None, data=DEMO_ACCOUNTS[0]), "administrator")
    admin = Principal(id=admin_user.id, roles=admin_user.roles)
    manager_user = _require(await user_service.create_user(principal=admin, data=DEMO_ACCOUNTS[1]), "manager")
    normal_user = _require(await user_service.create_user(principal=admin, data=DEMO_ACCOUNTS[2]), "user")
    manager = Principal(id=manager_user.id, roles=manager_user.roles)
    user = Principal(id=normal_user.id, roles=normal_user.roles)

    marketing = _require(
        await group_service.create_group(
            principal=admin,
            data={
                "name": "Marketing",
                "description": "Marketing team tasks",
                "manager_id": manager.id,
                "member_ids": [user.id, manager.id],
            },
        ),
        "Marketing group",
    )
    development = _require(
        await group_service.create_group(
            principal=admin,
            data={
                "name": "Development",
                "description": "Software development tasks",
                "manager_id": admin.id,
                "member_ids": [admin.id, user.id],
            },
        ),
        "Development group",
    )

    campaign = _require(
        await task_service.create_task(
            principal=manager,
            data={
                "title": "Create marketing campaign",
                "description": "Develop Q1 marketing campaign strategy",
                "priority": TaskPriority.HIGH,
                "due_date": date.today() + timedelta(days=14),
                "group_id": marketing.id,
                "assigned_user_id": user.id,
            },
        ),
        "campaign task",
    )
    _require(
        await task_service.update_task(
            principal=user, task_id=campaign.id, changes={"status": TaskStatus.IN_PROGRESS}
        ),
        "campaign status",
    )
    _require(
        await task_service.create_task(
            principal=admin,
            data={
                "title": "Fix login bug",
                "description": "Users reporting login issues on mobile devices",
                "priority": TaskPriority.CRITICAL,
                "due_date": date.today() + timedelta(days=3),
                "group_id": development.id,
                "assigned_user_id": admin.id,
            },
        ),
        "login bug task",
    )
    docs = _require(
        await task_service.create_task(
            principal=admin,
            data={
                "title": "Update documentation",
                "description": "Update user documentation for new features",
                "priority": TaskPriority.LOW,
                "group_id": development.id,
                "assigned_user_id": user.id,
            },
        ),
        "documentation task",
    )
    _require(
        await task_service.update_task(principal=admin, task_id=docs.id, changes={"status": TaskStatus.DONE}),
        "documentation status",
    )

    logger.info("Seeded 3 users, 2 groups and 3 tasks")


async def print_tokens() -> None:
    """Print a principal token for every demo account."""
    for account in DEMO_ACCOUNTS:
        record = await db_client.find_by_field(collection="users", field="email", value=account["email"])
        if record:
            logger.info(f"{account['email']}: {issue_principal_token(record['id'])}")


async def main() -> None:
    """Main entry point."""
    args = sys.argv[1:]

    if "--help" in args or "-h" in args:
        logger.info(__doc__)
        return

    await init_db()
    if "--tokens" not in args:
        await seed()
    await print_tokens()


if __name__ == "__main__":
    asyncio.run(main())
