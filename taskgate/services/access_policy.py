"""Access policy: pure decisions over (principal, action, target).

Nothing here touches the store or the request context. Callers load the target
(and, for tasks and audit entries, the owning group) and pass the snapshots in.

A principal may hold several roles. Roles are evaluated most-privileged first
and the first role that allows the action wins; the decision records which role
granted it so field projection can narrow the change-set for that role.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from taskgate.domain.audit import AuditLog
from taskgate.domain.group import Group
from taskgate.domain.principal import Principal
from taskgate.domain.task import Task
from taskgate.domain.user import ROLE_PRECEDENCE, User, UserRole


class Action(StrEnum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_ROLES = "manage_roles"


class EntityType(StrEnum):
    USER = "user"
    GROUP = "group"
    TASK = "task"
    AUDIT_LOG = "audit_log"


Target = User | Group | Task | AuditLog | EntityType

NOT_GROUP_MANAGER = "not group manager"
NO_ROLE = "account has no role assigned"


class Decision(BaseModel):
    """Allow, or Deny with a reason."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str | None = None
    role: UserRole | None = None

    @classmethod
    def allow(cls, role: UserRole) -> "Decision":
        return cls(allowed=True, role=role)

    @classmethod
    def deny(cls, reason: str) -> "Decision":
        return cls(allowed=False, reason=reason)


def entity_type_of(target: Target) -> EntityType:
    if isinstance(target, EntityType):
        return target
    if isinstance(target, Task):
        return EntityType.TASK
    if isinstance(target, Group):
        return EntityType.GROUP
    if isinstance(target, User):
        return EntityType.USER
    return EntityType.AUDIT_LOG


def _manages(principal: Principal, group: Group | None) -> bool:
    return group is not None and group.manager_id == principal.id


def _manager_rule(
    principal: Principal, action: Action, target: Target, owning_group: Group | None
) -> str | None:
    """Return None to allow, or the deny reason."""
    entity_type = entity_type_of(target)

    if entity_type == EntityType.TASK:
        return None if _manages(principal, owning_group) else NOT_GROUP_MANAGER

    if entity_type == EntityType.GROUP:
        if action == Action.CREATE:
            return None
        return None if isinstance(target, Group) and _manages(principal, target) else NOT_GROUP_MANAGER

    if entity_type == EntityType.AUDIT_LOG:
        if action != Action.READ:
            return "audit log entries are read-only"
        return None if _manages(principal, owning_group) else NOT_GROUP_MANAGER

    return _self_only(principal, action, target)


def _user_rule(principal: Principal, action: Action, target: Target, owning_group: Group | None) -> str | None:
    """Return None to allow, or the deny reason."""
    entity_type = entity_type_of(target)

    if entity_type == EntityType.TASK:
        if action not in (Action.READ, Action.UPDATE):
            return "users may only view and update tasks assigned to them"
        if isinstance(target, Task) and target.assigned_user_id == principal.id:
            return None
        return "not task assignee"

    if entity_type == EntityType.GROUP:
        if action != Action.READ:
            return "group management requires Administrator or Manager"
        if isinstance(target, Group) and principal.id in target.member_ids:
            return None
        return "not group member"

    if entity_type == EntityType.AUDIT_LOG:
        if action == Action.READ and isinstance(target, AuditLog):
            if target.snapshot.assigned_user_id == principal.id:
                return None
        return "not task assignee"

    return _self_only(principal, action, target)


def _self_only(principal: Principal, action: Action, target: Target) -> str | None:
    if action == Action.READ and isinstance(target, User) and target.id == principal.id:
        return None
    return "user management requires Administrator"


def authorize(
    principal: Principal,
    action: Action,
    target: Target,
    *,
    owning_group: Group | None = None,
) -> Decision:
    """Decide whether the principal may perform the action on the target.

    Args:
        principal: Acting principal
        action: What is being attempted
        target: Entity snapshot, or an EntityType for creation without an instance
        owning_group: Group owning a task (or referenced by an audit entry)

    Returns:
        Decision allowing (with the granting role) or denying (with a reason)
    """
    if not principal.roles:
        return Decision.deny(NO_ROLE)

    first_reason: str | None = None
    for role in ROLE_PRECEDENCE:
        if role not in principal.roles:
            continue

        if role == UserRole.ADMINISTRATOR:
            reason = None
        elif role == UserRole.MANAGER:
            reason = _manager_rule(principal, action, target, owning_group)
        else:
            reason = _user_rule(principal, action, target, owning_group)

        if reason is None:
            return Decision.allow(role)
        first_reason = first_reason or reason

    return Decision.deny(first_reason or NO_ROLE)
