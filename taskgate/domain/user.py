"""User domain models and enums."""

import re
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


PHONE_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")
NAME_PATTERN = re.compile(r"^(?:[^\W\d_]|[\s'-])+$")


class UserRole(StrEnum):
    """Role held by a user. A user may hold several."""

    ADMINISTRATOR = "Administrator"
    MANAGER = "Manager"
    USER = "User"


# Highest privilege first; decides which role's rules apply to a multi-role principal
ROLE_PRECEDENCE: tuple[UserRole, ...] = (UserRole.ADMINISTRATOR, UserRole.MANAGER, UserRole.USER)


class User(BaseModel):
    """User data transfer object."""

    id: str = Field(..., description="Unique user ID from database")
    email: str = Field(..., description="Login e-mail address")
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    phone: str | None = Field(default=None, description="Phone number in E.164 format")
    date_of_birth: date | None = Field(default=None, description="Optional date of birth")
    roles: frozenset[UserRole] = Field(default_factory=frozenset, description="Roles currently held")
    created: datetime = Field(..., description="Creation timestamp")
    version: int = Field(default=1, description="Optimistic concurrency version")

    @property
    def full_name(self) -> str:
        """First and last name joined with a space."""
        return f"{self.first_name} {self.last_name}".strip()


def normalize_phone(value: str) -> str:
    """Strip separators and validate the result is E.164 (e.g. +48111111111)."""
    compact = re.sub(r"[\s\-()]", "", value)
    if not PHONE_PATTERN.match(compact):
        msg = "Phone number must be in E.164 format (e.g., +48111111111)"
        raise ValueError(msg)
    return compact


def validate_person_name(value: str, *, max_length: int) -> str:
    """Validate name is usable - allows Unicode letters, spaces, hyphens, apostrophes."""
    value = value.strip()

    if not value:
        raise ValueError("Name cannot be empty")

    if len(value) > max_length:
        raise ValueError(f"Name too long (max {max_length} characters)")

    if not NAME_PATTERN.match(value):
        raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")

    return value
