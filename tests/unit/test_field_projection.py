"""Unit tests for field_projection module."""

import pytest

from taskgate.domain.user import UserRole
from taskgate.services.access_policy import EntityType
from taskgate.services.field_projection import project_changes, writable_fields


@pytest.mark.unit
class TestWritableFields:
    @pytest.mark.parametrize("role", [UserRole.ADMINISTRATOR, UserRole.MANAGER])
    def test_task_management_roles(self, role):
        assert writable_fields(role, EntityType.TASK) == {
            "title",
            "description",
            "status",
            "priority",
            "due_date",
            "group_id",
            "assigned_user_id",
        }

    def test_user_writes_only_status(self):
        assert writable_fields(UserRole.USER, EntityType.TASK) == {"status"}

    def test_only_administrator_writes_group_manager(self):
        assert "manager_id" in writable_fields(UserRole.ADMINISTRATOR, EntityType.GROUP)
        assert "manager_id" not in writable_fields(UserRole.MANAGER, EntityType.GROUP)

    def test_no_role_writes_nothing(self):
        assert writable_fields(None, EntityType.TASK) == frozenset()


@pytest.mark.unit
class TestProjectChanges:
    def test_user_priority_change_is_dropped_silently(self):
        kept, dropped = project_changes(UserRole.USER, EntityType.TASK, {"priority": "Critical", "status": "Done"})

        assert kept == {"status": "Done"}
        assert dropped == {"priority"}

    def test_unknown_fields_are_dropped(self):
        kept, dropped = project_changes(
            UserRole.ADMINISTRATOR, EntityType.TASK, {"title": "New", "created_by_id": "9", "id": "1"}
        )

        assert kept == {"title": "New"}
        assert dropped == {"created_by_id", "id"}

    def test_manager_cannot_reassign_group_manager(self):
        kept, dropped = project_changes(UserRole.MANAGER, EntityType.GROUP, {"name": "Ops", "manager_id": "7"})

        assert kept == {"name": "Ops"}
        assert dropped == {"manager_id"}
