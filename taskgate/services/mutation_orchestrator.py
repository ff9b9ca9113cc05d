"""Mutation pipeline: authorize, project, guard, apply, log and commit as one unit.

Usage:
    async with mutation("task_service.update_task", principal) as m:
        task = await entity_store.get_task(task_id, conn=m.conn)
        m.authorize(access_policy.authorize(principal, Action.UPDATE, task, owning_group=group))
        changes = m.project(EntityType.TASK, changes)
        ...
        m.applied()
        await m.log(entries)
        m.succeed(updated)
    return m.outcome

Rejections (not found, forbidden, invalid input, conflict, invariant violation)
roll the transaction back and become a typed Outcome. Anything else rolls back
and is raised as FatalMutationError.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar

import aiosqlite
from pydantic import ValidationError

from taskgate.core import db_client
from taskgate.core.errors import (
    ConflictError,
    FatalMutationError,
    ForbiddenError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    TaskgateError,
)
from taskgate.core.logging import log_with_user_context, span
from taskgate.domain.audit import AuditLog
from taskgate.domain.outcome import MutationStage, Outcome, OutcomeStatus
from taskgate.domain.principal import Principal
from taskgate.domain.user import UserRole
from taskgate.services import audit_recorder
from taskgate.services.access_policy import Decision, EntityType
from taskgate.services.audit_recorder import PendingEntry
from taskgate.services.field_projection import project_changes


logger = logging.getLogger(__name__)

T = TypeVar("T")

REJECTIONS = (
    TaskgateError,
    ValidationError,
    db_client.RecordNotFoundError,
    db_client.ConcurrencyConflictError,
)


def format_validation_error(error: ValidationError) -> str:
    """Join pydantic errors into one line, e.g. "due_date: Due date cannot be in the past"."""
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        message = detail["msg"].removeprefix("Value error, ")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


class MutationContext(Generic[T]):
    """State of one mutation request as it moves through the pipeline."""

    def __init__(self, name: str, principal: Principal) -> None:
        self.name = name
        self.principal = principal
        self.stage = MutationStage.RECEIVED
        self.role: UserRole | None = None
        self.dropped_fields: set[str] = set()
        self.warnings: list[str] = []
        self.audit_entries: list[AuditLog] = []
        self.value: T | None = None
        self.outcome: Outcome[T] | None = None
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Mutation has no open transaction"
            raise RuntimeError(msg)
        return self._conn

    def authorize(self, decision: Decision) -> None:
        """Raise ForbiddenError unless the access policy allowed the action."""
        if not decision.allowed:
            raise ForbiddenError(decision.reason or "forbidden")
        self.role = decision.role
        self.stage = MutationStage.AUTHORIZED

    def project(self, entity_type: EntityType, changes: dict[str, Any]) -> dict[str, Any]:
        """Narrow the change-set to the fields the authorizing role may write."""
        kept, self.dropped_fields = project_changes(self.role, entity_type, changes)
        self.stage = MutationStage.PROJECTED
        return kept

    def guard(self, decision: Decision) -> None:
        """Raise InvariantViolationError when an invariant guard denied the change."""
        if not decision.allowed:
            raise InvariantViolationError(decision.reason or "invariant violated")
        self.stage = MutationStage.GUARDED

    def applied(self) -> None:
        self.stage = MutationStage.APPLIED

    async def log(self, entries: list[PendingEntry]) -> list[AuditLog]:
        """Persist audit entries in the same transaction as the change."""
        logged = await audit_recorder.record_all(conn=self.conn, principal=self.principal, entries=entries)
        self.audit_entries.extend(logged)
        self.stage = MutationStage.LOGGED
        return logged

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def succeed(self, value: T | None = None) -> None:
        self.value = value


async def _rejection(ctx: MutationContext[Any], error: Exception) -> Outcome[Any]:
    if isinstance(error, db_client.ConcurrencyConflictError):
        # The row may have been removed rather than modified
        if not await db_client.record_exists(collection=error.collection, record_id=error.record_id):
            return Outcome.rejected(
                OutcomeStatus.NOT_FOUND, "The record no longer exists", rejected_at=MutationStage.APPLIED
            )
        return Outcome.rejected(
            OutcomeStatus.CONFLICT,
            "The record was changed by someone else; reload and try again",
            rejected_at=MutationStage.APPLIED,
        )

    if isinstance(error, ValidationError):
        return Outcome.rejected(
            OutcomeStatus.INVALID_INPUT, format_validation_error(error), rejected_at=MutationStage.PROJECTED
        )

    if isinstance(error, db_client.RecordNotFoundError | NotFoundError):
        reason = error.reason if isinstance(error, NotFoundError) else str(error).strip("'\"")
        return Outcome.rejected(OutcomeStatus.NOT_FOUND, reason, rejected_at=ctx.stage)

    if isinstance(error, InvariantViolationError):
        return Outcome.rejected(OutcomeStatus.INVARIANT_VIOLATION, error.reason, rejected_at=MutationStage.GUARDED)

    if isinstance(error, ForbiddenError):
        return Outcome.rejected(OutcomeStatus.FORBIDDEN, error.reason, rejected_at=MutationStage.AUTHORIZED)

    if isinstance(error, InvalidInputError):
        return Outcome.rejected(OutcomeStatus.INVALID_INPUT, error.reason, rejected_at=MutationStage.PROJECTED)

    if isinstance(error, ConflictError):
        return Outcome.rejected(OutcomeStatus.CONFLICT, error.reason, rejected_at=MutationStage.APPLIED)

    msg = f"Unmapped rejection: {error!r}"
    raise FatalMutationError(msg) from error


@asynccontextmanager
async def mutation(name: str, principal: Principal) -> AsyncIterator[MutationContext[Any]]:
    """Run a mutation inside one span and one store transaction.

    After the block, ``ctx.outcome`` holds the typed result.

    Raises:
        FatalMutationError: If the change could not be applied and logged; nothing was committed
    """
    ctx: MutationContext[Any] = MutationContext(name, principal)

    with span(name):
        try:
            async with db_client.transaction() as conn:
                ctx._conn = conn
                yield ctx
        except FatalMutationError:
            log_with_user_context(
                logger, "error", "mutation_failed", user_id=principal.id, operation=name, stage=ctx.stage
            )
            raise
        except REJECTIONS as e:
            ctx.outcome = await _rejection(ctx, e)
            log_with_user_context(
                logger,
                "warning",
                "mutation_rejected",
                user_id=principal.id,
                operation=name,
                status=ctx.outcome.status,
                rejected_at=ctx.outcome.rejected_at,
                reason=ctx.outcome.reason,
            )
        except Exception as e:
            log_with_user_context(
                logger,
                "error",
                "mutation_failed",
                user_id=principal.id,
                operation=name,
                stage=ctx.stage,
                error=str(e),
            )
            raise FatalMutationError(f"{name} failed and was rolled back") from e
        else:
            ctx.stage = MutationStage.COMMITTED
            ctx.outcome = Outcome.success(ctx.value, warnings=ctx.warnings)
            log_with_user_context(
                logger,
                "info",
                "mutation_committed",
                user_id=principal.id,
                operation=name,
                audit_entries=len(ctx.audit_entries),
                dropped_fields=sorted(ctx.dropped_fields),
            )
        finally:
            ctx._conn = None
