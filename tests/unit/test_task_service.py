"""Unit tests for task_service module."""

from datetime import date, timedelta

import pytest

from taskgate.core import db_client
from taskgate.core.errors import FatalMutationError
from taskgate.domain.audit import AuditAction
from taskgate.domain.outcome import MutationStage, OutcomeStatus
from taskgate.domain.task import TaskPriority, TaskStatus
from taskgate.services import entity_store, task_service


@pytest.mark.unit
class TestCreateTask:
    async def test_admin_creates_unassigned_task(self, admin, group, as_principal, read_audit):
        outcome = await task_service.create_task(
            principal=as_principal(admin), data={"title": "Plan Q1", "group_id": group.id}
        )

        assert outcome.ok
        task = outcome.value
        assert task.status == TaskStatus.TODO
        assert task.priority == TaskPriority.MEDIUM
        assert task.created_by_id == admin.id

        entries = await read_audit(task.id)
        assert len(entries) == 1
        assert entries[0]["action"] == AuditAction.CREATED
        assert "unassigned" in entries[0]["description"]

    async def test_manager_creates_assigned_task_in_managed_group(
        self, manager, member, group, as_principal, read_audit
    ):
        outcome = await task_service.create_task(
            principal=as_principal(manager),
            data={
                "title": "Draft brief",
                "group_id": group.id,
                "assigned_user_id": member.id,
                "due_date": (date.today() + timedelta(days=7)).isoformat(),
            },
        )

        assert outcome.ok
        entries = await read_audit(outcome.value.id)
        assert entries[0]["description"] == "Task created and assigned to Anna Nowak"
        assert entries[0]["assigned_user_last_name"] == "Nowak"
        assert entries[0]["group_name"] == "Marketing"

    async def test_manager_cannot_create_in_other_group(self, manager, other_group, as_principal):
        outcome = await task_service.create_task(
            principal=as_principal(manager), data={"title": "Sneaky", "group_id": other_group.id}
        )

        assert outcome.status == OutcomeStatus.FORBIDDEN
        assert outcome.rejected_at == MutationStage.AUTHORIZED
        assert await db_client.count_records(collection="tasks") == 0

    async def test_user_cannot_create(self, member, group, as_principal):
        outcome = await task_service.create_task(
            principal=as_principal(member), data={"title": "Mine", "group_id": group.id}
        )

        assert outcome.status == OutcomeStatus.FORBIDDEN

    @pytest.mark.parametrize("days", [-1, 400])
    async def test_due_date_out_of_range(self, admin, group, as_principal, days):
        outcome = await task_service.create_task(
            principal=as_principal(admin),
            data={"title": "Late", "group_id": group.id, "due_date": date.today() + timedelta(days=days)},
        )

        assert outcome.status == OutcomeStatus.INVALID_INPUT
        assert "due_date" in outcome.reason

    async def test_title_required(self, admin, group, as_principal):
        outcome = await task_service.create_task(principal=as_principal(admin), data={"group_id": group.id})

        assert outcome.status == OutcomeStatus.INVALID_INPUT

    async def test_unknown_group_is_invalid(self, admin, as_principal):
        outcome = await task_service.create_task(
            principal=as_principal(admin), data={"title": "Orphan", "group_id": "999"}
        )

        assert outcome.status == OutcomeStatus.INVALID_INPUT

    async def test_unknown_assignee_is_invalid(self, admin, group, as_principal):
        outcome = await task_service.create_task(
            principal=as_principal(admin), data={"title": "Ghost", "group_id": group.id, "assigned_user_id": "999"}
        )

        assert outcome.status == OutcomeStatus.INVALID_INPUT


@pytest.mark.unit
class TestUpdateTask:
    async def test_manager_status_change_logs_single_status_entry(self, manager, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id=task.id, changes={"status": "InProgress"}
        )

        assert outcome.ok
        assert outcome.value.status == TaskStatus.IN_PROGRESS
        assert outcome.value.updated is not None
        entries = await read_audit(task.id)
        assert [entry["action"] for entry in entries] == [AuditAction.STATUS_CHANGED]
        assert entries[0]["task_status"] == TaskStatus.IN_PROGRESS

    async def test_unchanged_values_write_nothing(self, manager, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=task.id,
            changes={"title": task.title, "status": task.status, "priority": task.priority},
        )

        assert outcome.ok
        stored = await entity_store.get_task(task.id)
        assert stored.updated == task.updated
        assert stored.version == task.version
        assert await read_audit(task.id) == []

    async def test_user_priority_change_is_dropped(self, member, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(member), task_id=task.id, changes={"priority": "Critical"}
        )

        assert outcome.ok
        assert (await entity_store.get_task(task.id)).priority == TaskPriority.MEDIUM
        assert await read_audit(task.id) == []

    async def test_user_status_and_priority_logs_only_status(self, member, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(member),
            task_id=task.id,
            changes={"status": "Done", "priority": "Critical", "title": "Hijacked"},
        )

        assert outcome.ok
        stored = await entity_store.get_task(task.id)
        assert stored.status == TaskStatus.DONE
        assert stored.priority == TaskPriority.MEDIUM
        assert stored.title == task.title
        assert [entry["action"] for entry in await read_audit(task.id)] == [AuditAction.STATUS_CHANGED]

    async def test_non_assignee_user_is_forbidden(self, outsider, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(outsider), task_id=task.id, changes={"status": "Done"}
        )

        assert outcome.status == OutcomeStatus.FORBIDDEN
        assert (await entity_store.get_task(task.id)).status == TaskStatus.TODO

    async def test_other_manager_is_forbidden(self, other_manager, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(other_manager), task_id=task.id, changes={"title": "Mine now"}
        )

        assert outcome.status == OutcomeStatus.FORBIDDEN
        assert outcome.reason == "not group manager"

    async def test_several_dimensions_log_one_entry_each(self, manager, outsider, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=task.id,
            changes={"status": "InReview", "priority": "High", "assigned_user_id": outsider.id},
        )

        assert outcome.ok
        actions = {entry["action"] for entry in await read_audit(task.id)}
        assert actions == {AuditAction.STATUS_CHANGED, AuditAction.PRIORITY_CHANGED, AuditAction.ASSIGNED_TO_USER}

    async def test_detail_change_logs_updated(self, manager, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id=task.id, changes={"description": "Now with detail"}
        )

        assert outcome.ok
        assert [entry["action"] for entry in await read_audit(task.id)] == [AuditAction.UPDATED]

    async def test_clearing_assignee_logs_unassignment(self, manager, task, as_principal, read_audit):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id=task.id, changes={"assigned_user_id": None}
        )

        assert outcome.ok
        assert outcome.value.assigned_user_id is None
        assert [entry["action"] for entry in await read_audit(task.id)] == [AuditAction.UNASSIGNED_FROM_USER]

    async def test_stale_version_is_conflict(self, manager, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=task.id,
            changes={"title": "Too late"},
            expected_version=task.version + 1,
        )

        assert outcome.status == OutcomeStatus.CONFLICT
        assert outcome.rejected_at == MutationStage.APPLIED
        assert (await entity_store.get_task(task.id)).title == task.title

    async def test_matching_version_applies_and_bumps(self, manager, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=task.id,
            changes={"title": "On time"},
            expected_version=task.version,
        )

        assert outcome.ok
        assert outcome.value.version == task.version + 1

    async def test_missing_task_is_not_found(self, manager, db, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id="404", changes={"status": "Done"}
        )

        assert outcome.status == OutcomeStatus.NOT_FOUND

    async def test_manager_cannot_move_task_to_unmanaged_group(self, manager, task, other_group, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id=task.id, changes={"group_id": other_group.id}
        )

        assert outcome.status == OutcomeStatus.FORBIDDEN
        assert (await entity_store.get_task(task.id)).group_id == task.group_id

    async def test_unchanged_past_due_date_is_accepted(self, manager, group, member, make_task, as_principal):
        overdue = await make_task(
            "Overdue", group, manager, assignee=member, due_date=(date.today() - timedelta(days=3)).isoformat()
        )

        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=overdue.id,
            changes={"due_date": overdue.due_date.isoformat(), "priority": "High"},
        )

        assert outcome.ok

    async def test_new_past_due_date_is_invalid(self, manager, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager),
            task_id=task.id,
            changes={"due_date": (date.today() - timedelta(days=1)).isoformat()},
        )

        assert outcome.status == OutcomeStatus.INVALID_INPUT

    async def test_clearing_required_field_is_invalid(self, manager, task, as_principal):
        outcome = await task_service.update_task(
            principal=as_principal(manager), task_id=task.id, changes={"title": None}
        )

        assert outcome.status == OutcomeStatus.INVALID_INPUT

    async def test_audit_failure_rolls_back_the_change(self, manager, task, as_principal, monkeypatch, read_audit):
        original_create_record = db_client.create_record

        async def create_record(*, collection, data, conn=None):
            if collection == "audit_logs":
                raise db_client.DatabaseError("audit store unavailable")
            return await original_create_record(collection=collection, data=data, conn=conn)

        monkeypatch.setattr(db_client, "create_record", create_record)

        with pytest.raises(FatalMutationError):
            await task_service.update_task(
                principal=as_principal(manager), task_id=task.id, changes={"status": "Done"}
            )

        stored = await entity_store.get_task(task.id)
        assert stored.status == TaskStatus.TODO
        assert stored.version == task.version
        assert await read_audit(task.id) == []


@pytest.mark.unit
class TestDeleteTask:
    async def test_deletion_is_logged_and_survives(self, manager, task, as_principal, read_audit):
        outcome = await task_service.delete_task(principal=as_principal(manager), task_id=task.id)

        assert outcome.ok
        assert not await db_client.record_exists(collection="tasks", record_id=task.id)

        entries = await read_audit(task.id)
        assert [entry["action"] for entry in entries] == [AuditAction.DELETED]
        assert entries[0]["task_title"] == task.title
        assert entries[0]["task_ref_id"] is None

    async def test_other_manager_cannot_delete(self, other_manager, task, as_principal):
        outcome = await task_service.delete_task(principal=as_principal(other_manager), task_id=task.id)

        assert outcome.status == OutcomeStatus.FORBIDDEN
        assert await db_client.record_exists(collection="tasks", record_id=task.id)

    async def test_assignee_cannot_delete(self, member, task, as_principal):
        outcome = await task_service.delete_task(principal=as_principal(member), task_id=task.id)

        assert outcome.status == OutcomeStatus.FORBIDDEN

    async def test_earlier_entries_keep_their_snapshot(self, manager, task, as_principal, read_audit):
        await task_service.update_task(principal=as_principal(manager), task_id=task.id, changes={"status": "Done"})
        await task_service.delete_task(principal=as_principal(manager), task_id=task.id)

        entries = await read_audit(task.id)
        assert [entry["action"] for entry in entries] == [AuditAction.STATUS_CHANGED, AuditAction.DELETED]
        assert entries[0]["task_status"] == TaskStatus.DONE
        assert all(entry["task_ref_id"] is None for entry in entries)
