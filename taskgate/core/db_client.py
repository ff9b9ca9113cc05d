"""SQLite entity store with CRUD operations, transactions and optimistic concurrency."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from taskgate.core.config import constants, settings


logger = logging.getLogger(__name__)


# Collections whose rows carry a version column for optimistic concurrency
VERSIONED_COLLECTIONS = frozenset({"users", "task_groups", "tasks"})


class DatabaseError(RuntimeError):
    """Store operation failed."""


class RecordNotFoundError(KeyError):
    """No record with the requested id exists."""


class ConcurrencyConflictError(DatabaseError):
    """The record's version changed between read and write."""

    def __init__(self, *, collection: str, record_id: str, expected_version: int) -> None:
        super().__init__(
            f"Record {record_id} in {collection} was modified concurrently (expected version {expected_version})"
        )
        self.collection = collection
        self.record_id = record_id
        self.expected_version = expected_version


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and foreign key fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def _to_db_value(value: Any) -> Any:
    """Convert a Python value to something SQLite can store."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return f"%{value.replace('%', '').replace('_', '')}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(['"])([^'"]*)\3""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list."""
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        # Handle parenthesized OR groups
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def any_of(field: str, values: list[str]) -> str:
    """Build an OR group matching any of the values, e.g. '(group_id = "1" || group_id = "2")'."""
    return "(" + " || ".join(f'{field} = "{sanitize_param(value)}"' for value in values) + ")"


async def _open_connection(path: Path) -> aiosqlite.Connection:
    """Open a new connection with foreign keys enforced."""
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(path), timeout=settings.sqlite_busy_timeout_seconds, isolation_level=None)
    await conn.execute("PRAGMA foreign_keys = ON")
    return conn


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached autocommit connection for the current thread, loop, and db path.

    The cached connection serves reads outside a transaction; writes that must be
    atomic go through transaction().
    """
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        conn = await _open_connection(path)
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path(db_path)
    cache_key = (thread_id, loop_id, str(path))

    if cache_key not in _db_connections:
        return

    try:
        async with _db_lock:
            conn = _db_connections.pop(cache_key, None)
            if conn is not None:
                await conn.close()
                logger.info(
                    "Closed SQLite connection",
                    extra={"thread_id": thread_id, "loop_id": loop_id, "db_path": str(path)},
                )
    except Exception as e:
        logger.warning(
            "Error closing SQLite connection",
            extra={"error": str(e), "thread_id": thread_id, "loop_id": loop_id},
        )


@asynccontextmanager
async def transaction(*, db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Run a unit of work on a dedicated connection inside BEGIN IMMEDIATE ... COMMIT.

    Any exception rolls the whole unit back and propagates. Readers on other
    connections never observe a partially applied unit.
    """
    conn = await _open_connection(get_db_path(db_path))
    try:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            await conn.execute("ROLLBACK")
            raise
        await conn.execute("COMMIT")
    finally:
        await conn.close()


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from taskgate.core import schema

    await schema.init_db(db_path=db_path)


async def _resolve(conn: aiosqlite.Connection | None) -> aiosqlite.Connection:
    return conn if conn is not None else await get_connection()


async def create_record(
    *, collection: str, data: dict[str, Any], conn: aiosqlite.Connection | None = None
) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        columns = list(data.keys())
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_to_db_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        cursor = await db.execute(query, values)

        record_id = cursor.lastrowid
        result = await get_record(collection=collection, record_id=str(record_id), conn=db)

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except Exception as e:
        if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
            msg = f"Table '{collection}' does not exist. Call init_db() first."
            logger.error("Table not found", extra={"collection": collection})
            raise DatabaseError(msg) from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_record(
    *, collection: str, record_id: str, conn: aiosqlite.Connection | None = None
) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        if not str(record_id).isdigit():
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await db.execute(query, (int(record_id),))
        row = await cursor.fetchone()

        if row is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        columns = [description[0] for description in cursor.description]
        record = dict(zip(columns, row, strict=True))

        logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
        return _convert_record_ids(record)
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def record_exists(*, collection: str, record_id: str, conn: aiosqlite.Connection | None = None) -> bool:
    """Return True if a record with the id exists."""
    try:
        await get_record(collection=collection, record_id=record_id, conn=conn)
    except RecordNotFoundError:
        return False
    return True


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_version: int | None = None,
    conn: aiosqlite.Connection | None = None,
) -> dict[str, Any]:
    """Update a record by ID and return the updated record.

    Versioned collections get their version bumped on every update, and an
    empty payload bumps only the version. When expected_version is given the
    write only applies if the stored version still matches.

    Raises:
        RecordNotFoundError: If the record no longer exists
        ConcurrencyConflictError: If the stored version differs from expected_version
    """
    if not data and collection not in VERSIONED_COLLECTIONS:
        msg = "Empty update payload"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        assignments = [f"{key} = ?" for key in data]
        values = [_to_db_value(val) for val in data.values()]
        if collection in VERSIONED_COLLECTIONS:
            assignments.append("version = version + 1")

        where = "id = ?"
        values.append(int(record_id))
        if expected_version is not None:
            where += " AND version = ?"
            values.append(expected_version)

        query = f"UPDATE {collection} SET {', '.join(assignments)} WHERE {where}"  # noqa: S608 - collection is validated
        cursor = await db.execute(query, values)
        if conn is None:
            await db.commit()

        if cursor.rowcount == 0:
            if not await record_exists(collection=collection, record_id=record_id, conn=db):
                msg = f"Record not found in {collection}: {record_id}"
                raise RecordNotFoundError(msg)
            raise ConcurrencyConflictError(
                collection=collection,
                record_id=record_id,
                expected_version=expected_version if expected_version is not None else -1,
            )

        logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
        return await get_record(collection=collection, record_id=record_id, conn=db)
    except (RecordNotFoundError, ConcurrencyConflictError):
        raise
    except Exception as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise DatabaseError(msg) from e


async def delete_record(*, collection: str, record_id: str, conn: aiosqlite.Connection | None = None) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await db.execute(query, (int(record_id),))
        if conn is None:
            await db.commit()

        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

        logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})
    except RecordNotFoundError:
        raise
    except Exception as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to delete record from {collection}: {e}"
        raise DatabaseError(msg) from e


async def delete_records(*, collection: str, filter_query: str, conn: aiosqlite.Connection | None = None) -> int:
    """Delete every record matching the filter and return how many were removed."""
    where_clause, params = parse_filter(filter_query)
    if not where_clause:
        msg = "Refusing to delete without a filter"
        raise ValueError(msg)

    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        query = f"DELETE FROM {collection} WHERE {where_clause}"  # noqa: S608 - collection is validated
        cursor = await db.execute(query, params)
        if conn is None:
            await db.commit()

        logger.info("Deleted records", extra={"collection": collection, "count": cursor.rowcount})
        return cursor.rowcount
    except Exception as e:
        logger.error("delete_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to delete records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
    conn: aiosqlite.Connection | None = None,
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        where_clause = ""
        params: list[Any] = []
        if filter_query:
            where_clause, params = parse_filter(filter_query)
            where_clause = f"WHERE {where_clause}"

        # Only allow: column_name [ASC|DESC]
        safe_sort = "id ASC"
        if sort:
            sort_pattern = re.match(r"^[A-Za-z_][A-Za-z0-9_]*\s*(ASC|DESC)?$", sort.strip(), re.IGNORECASE)
            if sort_pattern:
                tiebreak = "id DESC" if sort.strip().upper().endswith("DESC") else "id"
                safe_sort = f"{sort.strip()}, {tiebreak}"
            else:
                logger.warning("Invalid sort parameter, using default", extra={"sort": sort})

        offset = (page - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {safe_sort} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()

        columns = [description[0] for description in cursor.description]
        records = [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e


async def list_all_records(
    *,
    collection: str,
    filter_query: str = "",
    sort: str = "",
    conn: aiosqlite.Connection | None = None,
) -> list[dict[str, Any]]:
    """List every matching record, fetching page by page."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection,
            page=page,
            per_page=constants.DEFAULT_PER_PAGE_LIMIT,
            filter_query=filter_query,
            sort=sort,
            conn=conn,
        )
        records.extend(batch)
        if len(batch) < constants.DEFAULT_PER_PAGE_LIMIT:
            return records
        page += 1


async def count_records(
    *, collection: str, filter_query: str = "", conn: aiosqlite.Connection | None = None
) -> int:
    """Count records matching the filter."""
    try:
        _validate_collection_name(collection)
        db = await _resolve(conn)

        where_clause, params = parse_filter(filter_query)
        query = f"SELECT COUNT(*) FROM {collection}"  # noqa: S608 - collection is validated
        if where_clause:
            query += f" WHERE {where_clause}"

        cursor = await db.execute(query, params)
        row = await cursor.fetchone()
        return int(row[0]) if row else 0
    except Exception as e:
        logger.error("count_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to count records in {collection}: {e}"
        raise DatabaseError(msg) from e


async def get_first_record(
    *, collection: str, filter_query: str, conn: aiosqlite.Connection | None = None
) -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, per_page=1, filter_query=filter_query, conn=conn)
    return records[0] if records else None


async def find_by_field(
    *, collection: str, field: str, value: str | int, conn: aiosqlite.Connection | None = None
) -> dict[str, Any] | None:
    """Return the first record whose field equals value, or None.

    The value is bound as a query parameter, so free text (quotes included)
    never passes through the filter syntax.
    """
    try:
        _validate_collection_name(collection)
        _validate_collection_name(field)
        db = await _resolve(conn)

        query = f"SELECT * FROM {collection} WHERE {field} = ? ORDER BY id LIMIT 1"  # noqa: S608 - names are validated
        cursor = await db.execute(query, (value,))
        row = await cursor.fetchone()
        if row is None:
            return None

        columns = [description[0] for description in cursor.description]
        return _convert_record_ids(dict(zip(columns, row, strict=True)))
    except Exception as e:
        logger.error("find_by_field_failed", extra={"collection": collection, "field": field, "error": str(e)})
        msg = f"Failed to look up {collection} by {field}: {e}"
        raise DatabaseError(msg) from e
