"""SQLite schema management (code-first approach)."""

import logging

from taskgate.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema, in creation order
COLLECTIONS = [
    "users",
    "user_roles",
    "task_groups",
    "group_members",
    "tasks",
    "audit_logs",
]

# Audit columns that are history and must never change once written.
# The *_ref_id columns are live navigation links and may be cleared by FK actions.
AUDIT_SNAPSHOT_COLUMNS = [
    "user_id",
    "timestamp",
    "action",
    "description",
    "task_id",
    "task_title",
    "task_status",
    "task_priority",
    "group_id",
    "group_name",
    "assigned_user_id",
    "assigned_user_first_name",
    "assigned_user_last_name",
]

TABLE_SCHEMAS: dict[str, str] = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            phone TEXT,
            date_of_birth TEXT,
            created TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 1
        )
    """,
    "user_roles": """
        CREATE TABLE IF NOT EXISTS user_roles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            role TEXT NOT NULL CHECK (role IN ('Administrator', 'Manager', 'User')),
            UNIQUE (user_id, role)
        )
    """,
    "task_groups": """
        CREATE TABLE IF NOT EXISTS task_groups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            created TEXT NOT NULL,
            manager_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            version INTEGER NOT NULL DEFAULT 1
        )
    """,
    "group_members": """
        CREATE TABLE IF NOT EXISTS group_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            group_id INTEGER NOT NULL REFERENCES task_groups(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            UNIQUE (group_id, user_id)
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'ToDo'
                CHECK (status IN ('ToDo', 'InProgress', 'InReview', 'Done', 'Cancelled')),
            priority TEXT NOT NULL DEFAULT 'Medium'
                CHECK (priority IN ('Low', 'Medium', 'High', 'Critical')),
            created TEXT NOT NULL,
            updated TEXT,
            due_date TEXT,
            group_id INTEGER NOT NULL REFERENCES task_groups(id) ON DELETE RESTRICT,
            assigned_user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            created_by_id INTEGER NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            version INTEGER NOT NULL DEFAULT 1
        )
    """,
    "audit_logs": """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            timestamp TEXT NOT NULL,
            action TEXT NOT NULL,
            description TEXT,
            task_id INTEGER NOT NULL,
            task_title TEXT NOT NULL,
            task_status TEXT NOT NULL,
            task_priority TEXT NOT NULL,
            group_id INTEGER NOT NULL,
            group_name TEXT NOT NULL DEFAULT '',
            assigned_user_id INTEGER,
            assigned_user_first_name TEXT,
            assigned_user_last_name TEXT,
            task_ref_id INTEGER REFERENCES tasks(id) ON DELETE SET NULL,
            group_ref_id INTEGER REFERENCES task_groups(id) ON DELETE SET NULL,
            assigned_user_ref_id INTEGER REFERENCES users(id) ON DELETE SET NULL
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_user_roles_role ON user_roles (role)",
    "CREATE INDEX IF NOT EXISTS idx_group_members_user ON group_members (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_groups_manager ON task_groups (manager_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_group ON tasks (group_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assigned_user ON tasks (assigned_user_id)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_timestamp ON audit_logs (timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_audit_logs_group_ref ON audit_logs (group_ref_id)",
]

TRIGGERS = [
    f"""
    CREATE TRIGGER IF NOT EXISTS audit_logs_snapshot_immutable
    BEFORE UPDATE OF {", ".join(AUDIT_SNAPSHOT_COLUMNS)} ON audit_logs
    BEGIN
        SELECT RAISE(ABORT, 'audit log entries are immutable');
    END
    """,
]


async def init_db(*, db_path: str | None = None) -> None:
    """Create all tables, indexes and triggers if they do not exist yet."""
    conn = await db_client.get_connection(db_path=db_path)

    for collection in COLLECTIONS:
        await conn.execute(TABLE_SCHEMAS[collection])
    for statement in INDEXES + TRIGGERS:
        await conn.execute(statement)

    logger.info("Database schema initialized", extra={"collections": COLLECTIONS})
