"""Unit tests for the SQLite db_client module."""

from datetime import UTC, datetime

import pytest

from taskgate.core import db_client


async def _user(email: str) -> dict:
    return await db_client.create_record(
        collection="users",
        data={"email": email, "first_name": "A", "last_name": "B", "created": datetime.now(UTC).isoformat()},
    )


@pytest.mark.unit
class TestParseFilter:
    def test_and_with_or_group(self):
        where, params = db_client.parse_filter('status != "Done" && (group_id = "1" || group_id = "2")')

        assert where == "status != ? AND (group_id = ? OR group_id = ?)"
        assert params == ["Done", 1, 2]

    def test_any_of(self):
        assert db_client.any_of("id", ["1", "2"]) == '(id = "1" || id = "2")'

    def test_like(self):
        where, params = db_client.parse_filter('title ~ "report"')

        assert where == "title LIKE ?"
        assert params == ["%report%"]

    def test_invalid_syntax(self):
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            db_client.parse_filter("title report")


@pytest.mark.unit
class TestCrud:
    async def test_create_converts_ids_to_strings(self, db):
        record = await _user("a@example.com")

        assert isinstance(record["id"], str)
        assert record["version"] == 1

    async def test_get_missing_raises(self, db):
        with pytest.raises(db_client.RecordNotFoundError):
            await db_client.get_record(collection="users", record_id="404")

    async def test_non_numeric_id_is_not_found(self, db):
        with pytest.raises(db_client.RecordNotFoundError):
            await db_client.get_record(collection="users", record_id="abc")

    async def test_update_bumps_version(self, db):
        record = await _user("a@example.com")

        updated = await db_client.update_record(
            collection="users", record_id=record["id"], data={"first_name": "C"}, expected_version=1
        )

        assert updated["first_name"] == "C"
        assert updated["version"] == 2

    async def test_stale_version_conflicts(self, db):
        record = await _user("a@example.com")
        await db_client.update_record(collection="users", record_id=record["id"], data={"first_name": "C"})

        with pytest.raises(db_client.ConcurrencyConflictError):
            await db_client.update_record(
                collection="users", record_id=record["id"], data={"first_name": "D"}, expected_version=1
            )

    async def test_update_of_removed_record_is_not_found(self, db):
        record = await _user("a@example.com")
        await db_client.delete_record(collection="users", record_id=record["id"])

        with pytest.raises(db_client.RecordNotFoundError):
            await db_client.update_record(
                collection="users", record_id=record["id"], data={"first_name": "D"}, expected_version=1
            )

    async def test_delete_records_requires_filter(self, db):
        with pytest.raises(ValueError, match="Refusing"):
            await db_client.delete_records(collection="users", filter_query="")

    async def test_list_sort_and_count(self, db):
        for email in ("b@example.com", "a@example.com", "c@example.com"):
            await _user(email)

        records = await db_client.list_records(collection="users", sort="email DESC")

        assert [record["email"] for record in records] == ["c@example.com", "b@example.com", "a@example.com"]
        assert await db_client.count_records(collection="users", filter_query='email ~ "example"') == 3

    async def test_duplicate_email_violates_constraint(self, db):
        await _user("a@example.com")

        with pytest.raises(db_client.DatabaseError):
            await _user("a@example.com")


@pytest.mark.unit
class TestTransaction:
    async def test_rollback_discards_all_writes(self, db):
        with pytest.raises(RuntimeError):
            async with db_client.transaction() as conn:
                await db_client.create_record(
                    collection="users",
                    data={"email": "x@example.com", "first_name": "X", "last_name": "Y", "created": "2026-01-01"},
                    conn=conn,
                )
                raise RuntimeError("boom")

        assert await db_client.count_records(collection="users") == 0

    async def test_commit_is_visible_to_readers(self, db):
        async with db_client.transaction() as conn:
            await db_client.create_record(
                collection="users",
                data={"email": "x@example.com", "first_name": "X", "last_name": "Y", "created": "2026-01-01"},
                conn=conn,
            )

        assert await db_client.count_records(collection="users") == 1

    async def test_empty_update_bumps_only_the_version(self, db):
        record = await _user("a@example.com")

        updated = await db_client.update_record(collection="users", record_id=record["id"], data={}, expected_version=1)

        assert updated["version"] == 2
        assert updated["first_name"] == "A"

    async def test_empty_update_of_unversioned_collection_is_refused(self, db):
        with pytest.raises(ValueError, match="Empty update payload"):
            await db_client.update_record(collection="user_roles", record_id="1", data={})


@pytest.mark.unit
class TestFindByField:
    async def test_value_with_quotes_is_bound(self, db):
        record = await _user("o'brien@example.com")

        found = await db_client.find_by_field(collection="users", field="email", value="o'brien@example.com")

        assert found is not None
        assert found["id"] == record["id"]

    async def test_missing_is_none(self, db):
        assert await db_client.find_by_field(collection="users", field="email", value='x"y@example.com') is None

    async def test_field_name_is_validated(self, db):
        with pytest.raises(db_client.DatabaseError):
            await db_client.find_by_field(collection="users", field="email = email OR 1", value="a")
