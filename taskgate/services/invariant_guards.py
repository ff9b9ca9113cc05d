"""Invariant guards that hold regardless of the acting role."""

import aiosqlite

from taskgate.domain.group import GroupDeletionInfo
from taskgate.domain.user import User, UserRole
from taskgate.services import entity_store
from taskgate.services.access_policy import Decision


ROLELESS_WARNING = "User {name} now has no role and cannot act until a new role is assigned"


async def last_administrator_guard(
    *,
    user: User,
    remaining_roles: frozenset[UserRole] | None,
    conn: aiosqlite.Connection | None = None,
) -> Decision:
    """Deny when the change would leave no Administrator.

    Args:
        user: User whose roles change or who is being deleted
        remaining_roles: Role set after the change, or None when the user is deleted
        conn: Transaction connection, so the count sees the locked state

    Returns:
        Decision (the granting role is left unset)
    """
    loses_admin = UserRole.ADMINISTRATOR in user.roles and (
        remaining_roles is None or UserRole.ADMINISTRATOR not in remaining_roles
    )
    if not loses_admin:
        return Decision(allowed=True)

    admin_count = await entity_store.count_users_with_role(UserRole.ADMINISTRATOR, conn=conn)
    if admin_count <= 1:
        return Decision.deny(f"{user.full_name} is the last Administrator and cannot lose that role")
    return Decision(allowed=True)


def active_tasks_guard(info: GroupDeletionInfo) -> Decision:
    """Deny deleting a group that still has tasks neither Done nor Cancelled."""
    if info.can_be_deleted:
        return Decision(allowed=True)
    return Decision.deny(
        f"Group '{info.group_name}' has {info.active_task_count} active task(s) "
        f"out of {info.total_task_count}; complete or cancel them before deleting"
    )


def role_removal_warning(user: User, remaining_roles: frozenset[UserRole]) -> str | None:
    """Advisory warning when a user is left without any role."""
    if remaining_roles:
        return None
    return ROLELESS_WARNING.format(name=user.full_name)
