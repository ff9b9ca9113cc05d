"""Typed results returned to callers instead of raised errors."""

from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field


T = TypeVar("T")


class OutcomeStatus(StrEnum):
    """How a request ended."""

    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INVARIANT_VIOLATION = "invariant_violation"


class MutationStage(StrEnum):
    """Stages a mutation request passes through."""

    RECEIVED = "received"
    AUTHORIZED = "authorized"
    PROJECTED = "projected"
    GUARDED = "guarded"
    APPLIED = "applied"
    LOGGED = "logged"
    COMMITTED = "committed"
    REJECTED = "rejected"


class Outcome(BaseModel, Generic[T]):
    """Result of a query or mutation."""

    status: OutcomeStatus
    value: T | None = None
    reason: str | None = None
    warnings: list[str] = Field(default_factory=list)
    rejected_at: MutationStage | None = Field(
        default=None, description="Stage whose check rejected the request"
    )

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK

    @classmethod
    def success(cls, value: T | None = None, *, warnings: list[str] | None = None) -> "Outcome[T]":
        return cls(status=OutcomeStatus.OK, value=value, warnings=warnings or [])

    @classmethod
    def rejected(
        cls,
        status: OutcomeStatus,
        reason: str,
        *,
        rejected_at: MutationStage | None = None,
    ) -> "Outcome[T]":
        return cls(status=status, reason=reason, rejected_at=rejected_at)
