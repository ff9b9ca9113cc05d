"""Input models for creating entities."""

import re
from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskgate.core.config import constants
from taskgate.domain.task import TaskPriority, TaskStatus, validate_due_date
from taskgate.domain.user import UserRole, normalize_phone, validate_person_name


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _blank_to_none(value: object) -> object:
    """Forms send an empty string for "no selection"."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


class TaskCreate(BaseModel):
    """Fields accepted when creating a task."""

    model_config = ConfigDict(coerce_numbers_to_str=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=constants.TASK_TITLE_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=constants.TASK_DESCRIPTION_MAX_LENGTH)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: date | None = None
    group_id: str = Field(..., min_length=1)
    assigned_user_id: str | None = None

    @field_validator("assigned_user_id", "description", "due_date", mode="before")
    @classmethod
    def blank_is_none(cls, v: object) -> object:
        return _blank_to_none(v)

    @field_validator("due_date")
    @classmethod
    def due_date_in_range(cls, v: date | None) -> date | None:
        return validate_due_date(v)


class GroupCreate(BaseModel):
    """Fields accepted when creating a group."""

    model_config = ConfigDict(coerce_numbers_to_str=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=constants.GROUP_NAME_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=constants.GROUP_DESCRIPTION_MAX_LENGTH)
    manager_id: str | None = None
    member_ids: list[str] = Field(default_factory=list)

    @field_validator("manager_id", "description", mode="before")
    @classmethod
    def blank_is_none(cls, v: object) -> object:
        return _blank_to_none(v)


class UserCreate(BaseModel):
    """Fields accepted when registering a user."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    date_of_birth: date | None = None
    roles: frozenset[UserRole] = Field(default_factory=lambda: frozenset({UserRole.USER}))

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Invalid e-mail address")
        return v.lower()

    @field_validator("first_name")
    @classmethod
    def validate_first_name(cls, v: str) -> str:
        return validate_person_name(v, max_length=constants.FIRST_NAME_MAX_LENGTH)

    @field_validator("last_name")
    @classmethod
    def validate_last_name(cls, v: str) -> str:
        return validate_person_name(v, max_length=constants.LAST_NAME_MAX_LENGTH)

    @field_validator("phone", mode="before")
    @classmethod
    def validate_phone(cls, v: object) -> object:
        v = _blank_to_none(v)
        return normalize_phone(v) if isinstance(v, str) else v

    @field_validator("date_of_birth")
    @classmethod
    def validate_date_of_birth(cls, v: date | None) -> date | None:
        if v is not None and v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return v
