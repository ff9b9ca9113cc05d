"""Field projection: which fields a role may write on an entity type."""

import logging
from typing import Any

from taskgate.domain.user import UserRole
from taskgate.services.access_policy import EntityType


logger = logging.getLogger(__name__)


TASK_MANAGEMENT_FIELDS = frozenset(
    {"title", "description", "status", "priority", "due_date", "group_id", "assigned_user_id"}
)
GROUP_FIELDS = frozenset({"name", "description", "member_ids"})
USER_PROFILE_FIELDS = frozenset({"email", "first_name", "last_name", "phone", "date_of_birth"})

WRITABLE_FIELDS: dict[tuple[UserRole, EntityType], frozenset[str]] = {
    (UserRole.ADMINISTRATOR, EntityType.TASK): TASK_MANAGEMENT_FIELDS,
    (UserRole.MANAGER, EntityType.TASK): TASK_MANAGEMENT_FIELDS,
    (UserRole.USER, EntityType.TASK): frozenset({"status"}),
    (UserRole.ADMINISTRATOR, EntityType.GROUP): GROUP_FIELDS | {"manager_id"},
    (UserRole.MANAGER, EntityType.GROUP): GROUP_FIELDS,
    (UserRole.ADMINISTRATOR, EntityType.USER): USER_PROFILE_FIELDS,
}


def writable_fields(role: UserRole | None, entity_type: EntityType) -> frozenset[str]:
    """Fields the role may write; empty when the role may write nothing."""
    if role is None:
        return frozenset()
    return WRITABLE_FIELDS.get((role, entity_type), frozenset())


def project_changes(
    role: UserRole | None, entity_type: EntityType, changes: dict[str, Any]
) -> tuple[dict[str, Any], set[str]]:
    """Split a change-set into the part the role may write and the names it may not.

    Disallowed fields are dropped silently; they are not a validation failure.
    """
    allowed = writable_fields(role, entity_type)
    kept = {name: value for name, value in changes.items() if name in allowed}
    dropped = set(changes) - allowed

    if dropped:
        logger.debug(
            "Dropped fields outside role projection",
            extra={"role": role, "entity_type": entity_type, "dropped": sorted(dropped)},
        )
    return kept, dropped
