"""Change-set models for updating entities.

Only fields present in the incoming change-set are set; use model_fields_set to
tell "not provided" apart from "cleared".
"""

from datetime import date
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from taskgate.core.config import constants
from taskgate.domain.create_models import _blank_to_none
from taskgate.domain.task import TaskPriority, TaskStatus


class TaskUpdate(BaseModel):
    """Task change-set."""

    model_config = ConfigDict(coerce_numbers_to_str=True, str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=1, max_length=constants.TASK_TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=constants.TASK_DESCRIPTION_MAX_LENGTH)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    due_date: date | None = None
    group_id: str | None = None
    assigned_user_id: str | None = None

    @field_validator("assigned_user_id", "description", "due_date", mode="before")
    @classmethod
    def blank_is_none(cls, v: object) -> object:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def required_fields_not_cleared(self) -> Self:
        for name in ("title", "status", "priority", "group_id"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def changes(self) -> dict[str, object]:
        """The provided fields and their new values."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class GroupUpdate(BaseModel):
    """Group change-set."""

    model_config = ConfigDict(coerce_numbers_to_str=True, str_strip_whitespace=True)

    name: str | None = Field(default=None, min_length=1, max_length=constants.GROUP_NAME_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=constants.GROUP_DESCRIPTION_MAX_LENGTH)
    manager_id: str | None = None
    member_ids: list[str] | None = None

    @field_validator("manager_id", "description", mode="before")
    @classmethod
    def blank_is_none(cls, v: object) -> object:
        return _blank_to_none(v)

    @model_validator(mode="after")
    def name_not_cleared(self) -> Self:
        if "name" in self.model_fields_set and self.name is None:
            raise ValueError("name cannot be cleared")
        return self

    def changes(self) -> dict[str, object]:
        """The provided fields and their new values."""
        return {name: getattr(self, name) for name in self.model_fields_set}
