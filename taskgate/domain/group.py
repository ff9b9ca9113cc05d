"""Group domain models."""

from datetime import datetime

from pydantic import BaseModel, Field


class Group(BaseModel):
    """Group data transfer object."""

    id: str = Field(..., description="Unique group ID from database")
    name: str = Field(..., description="Group name")
    description: str | None = Field(default=None, description="Optional description")
    created: datetime = Field(..., description="Creation timestamp")
    manager_id: str | None = Field(default=None, description="Managing user ID")
    member_ids: frozenset[str] = Field(default_factory=frozenset, description="IDs of member users")
    version: int = Field(default=1, description="Optimistic concurrency version")


class GroupDeletionInfo(BaseModel):
    """Counts shown to whoever is about to delete a group."""

    group_id: str
    group_name: str
    active_task_count: int
    total_task_count: int
    member_count: int

    @property
    def can_be_deleted(self) -> bool:
        return self.active_task_count == 0
