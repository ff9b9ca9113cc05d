"""JSON API router driving the task, group, user and audit operations."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from taskgate.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    TaskgateError,
    classify_error_with_response,
)
from taskgate.domain.outcome import Outcome, OutcomeStatus
from taskgate.domain.principal import Principal
from taskgate.domain.user import UserRole
from taskgate.interface.principal_resolver import resolve_optional_principal, resolve_principal
from taskgate.services import group_service, query_service, task_service, user_service
from taskgate.services.access_policy import EntityType


logger = logging.getLogger(__name__)

router = APIRouter(tags=["taskgate"])

# Outcome status -> (exception carrying the reason, HTTP status)
REJECTION_RESPONSES: dict[OutcomeStatus, tuple[type[TaskgateError], int]] = {
    OutcomeStatus.NOT_FOUND: (NotFoundError, status.HTTP_404_NOT_FOUND),
    OutcomeStatus.FORBIDDEN: (ForbiddenError, status.HTTP_403_FORBIDDEN),
    OutcomeStatus.INVARIANT_VIOLATION: (InvariantViolationError, status.HTTP_403_FORBIDDEN),
    OutcomeStatus.INVALID_INPUT: (InvalidInputError, status.HTTP_422_UNPROCESSABLE_CONTENT),
    OutcomeStatus.CONFLICT: (ConflictError, status.HTTP_409_CONFLICT),
}


class RoleAssignment(BaseModel):
    """Body of a role assignment request."""

    role: UserRole
    replace: bool = Field(default=False, description="Make this the user's only role")


class MembershipReplacement(BaseModel):
    """Body of a membership replacement request."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    group_ids: list[str]


def to_response(outcome: Outcome[Any], *, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Render an outcome: the value and warnings on success, an ErrorResponse otherwise."""
    if outcome.ok:
        return JSONResponse(
            status_code=success_status,
            content=outcome.model_dump(mode="json", include={"value", "warnings"}),
        )

    error_type, http_status = REJECTION_RESPONSES[outcome.status]
    error = classify_error_with_response(error_type(outcome.reason or outcome.status.value))
    return JSONResponse(
        status_code=http_status,
        content={
            "error": error.model_dump(mode="json"),
            "status": outcome.status.value,
            "rejected_at": outcome.rejected_at.value if outcome.rejected_at else None,
        },
    )


# Tasks


@router.get("/tasks")
async def list_tasks(principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await query_service.list_visible(principal=principal, entity_type=EntityType.TASK))


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(
        await query_service.get_if_visible(principal=principal, entity_type=EntityType.TASK, entity_id=task_id)
    )


@router.post("/tasks")
async def create_task(
    data: dict[str, Any] = Body(...), principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await task_service.create_task(principal=principal, data=data)
    return to_response(outcome, success_status=status.HTTP_201_CREATED)


@router.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    changes: dict[str, Any] = Body(...),
    expected_version: int | None = None,
    principal: Principal = Depends(resolve_principal),
) -> JSONResponse:
    outcome = await task_service.update_task(
        principal=principal, task_id=task_id, changes=changes, expected_version=expected_version
    )
    return to_response(outcome)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str, expected_version: int | None = None, principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await task_service.delete_task(principal=principal, task_id=task_id, expected_version=expected_version)
    return to_response(outcome)


# Groups


@router.get("/groups")
async def list_groups(principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await query_service.list_visible(principal=principal, entity_type=EntityType.GROUP))


@router.get("/groups/{group_id}")
async def get_group(group_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(
        await query_service.get_if_visible(principal=principal, entity_type=EntityType.GROUP, entity_id=group_id)
    )


@router.get("/groups/{group_id}/deletion-info")
async def get_group_deletion_info(group_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await group_service.get_group_deletion_info(principal=principal, group_id=group_id))


@router.post("/groups")
async def create_group(
    data: dict[str, Any] = Body(...), principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await group_service.create_group(principal=principal, data=data)
    return to_response(outcome, success_status=status.HTTP_201_CREATED)


@router.patch("/groups/{group_id}")
async def update_group(
    group_id: str,
    changes: dict[str, Any] = Body(...),
    expected_version: int | None = None,
    principal: Principal = Depends(resolve_principal),
) -> JSONResponse:
    outcome = await group_service.update_group(
        principal=principal, group_id=group_id, changes=changes, expected_version=expected_version
    )
    return to_response(outcome)


@router.delete("/groups/{group_id}")
async def delete_group(
    group_id: str, expected_version: int | None = None, principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await group_service.delete_group(
        principal=principal, group_id=group_id, expected_version=expected_version
    )
    return to_response(outcome)


# Users


@router.get("/users")
async def list_users(principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await query_service.list_visible(principal=principal, entity_type=EntityType.USER))


@router.get("/users/{user_id}")
async def get_user(user_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(
        await query_service.get_if_visible(principal=principal, entity_type=EntityType.USER, entity_id=user_id)
    )


@router.post("/users")
async def create_user(
    data: dict[str, Any] = Body(...), principal: Principal | None = Depends(resolve_optional_principal)
) -> JSONResponse:
    outcome = await user_service.create_user(principal=principal, data=data)
    return to_response(outcome, success_status=status.HTTP_201_CREATED)


@router.delete("/users/{user_id}")
async def delete_user(user_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await user_service.delete_user(principal=principal, user_id=user_id))


@router.post("/users/{user_id}/roles")
async def assign_role(
    user_id: str, body: RoleAssignment, principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await user_service.assign_role(
        principal=principal, user_id=user_id, role=body.role, replace=body.replace
    )
    return to_response(outcome)


@router.delete("/users/{user_id}/roles/{role}")
async def remove_role(user_id: str, role: UserRole, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await user_service.remove_role(principal=principal, user_id=user_id, role=role))


@router.put("/users/{user_id}/groups")
async def replace_group_membership(
    user_id: str, body: MembershipReplacement, principal: Principal = Depends(resolve_principal)
) -> JSONResponse:
    outcome = await user_service.manage_group_membership(
        principal=principal, user_id=user_id, group_ids=body.group_ids
    )
    return to_response(outcome)


# Audit trail


@router.get("/audit-logs")
async def list_audit_logs(principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(await query_service.list_visible(principal=principal, entity_type=EntityType.AUDIT_LOG))


@router.get("/audit-logs/{log_id}")
async def get_audit_log(log_id: str, principal: Principal = Depends(resolve_principal)) -> JSONResponse:
    return to_response(
        await query_service.get_if_visible(principal=principal, entity_type=EntityType.AUDIT_LOG, entity_id=log_id)
    )
