"""Ad-hoc database migrations for FocusBlocks."""

from __future__ import annotations

from sqlalchemy import text


def _column_exists(conn, table: str, column: str) -> bool:
    result = conn.execute(text(f"PRAGMA table_info('{table}')"))
    return any(row[1] == column for row in result)


def ensure_session_columns(conn) -> None:
    # columns added after the first release
    columns = {
        "has_synced_to_calendar": "BOOLEAN NOT NULL DEFAULT 0",
        "synced_start": "DATETIME",
        "synced_end": "DATETIME",
        "imported_event_id": "VARCHAR",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "focussession", name):
            conn.execute(text(f"ALTER TABLE focussession ADD COLUMN {name} {ddl_type}"))


def ensure_sync_operation_columns(conn) -> None:
    columns = {
        "last_error": "VARCHAR",
        "color_hex": "VARCHAR",
    }
    for name, ddl_type in columns.items():
        if not _column_exists(conn, "syncoperation", name):
            conn.execute(text(f"ALTER TABLE syncoperation ADD COLUMN {name} {ddl_type}"))


def ensure_task_tag_position(conn) -> None:
    if not _column_exists(conn, "task_tags", "position"):
        conn.execute(text("ALTER TABLE task_tags ADD COLUMN position INTEGER NOT NULL DEFAULT 0"))


def ensure_indexes(conn) -> None:
    conn.execute(
        text(
            """
            CREATE INDEX IF NOT EXISTS ix_focussession_planned_start
            ON focussession (planned_start)
            """
        )
    )
    # at most one running timer
    conn.execute(
        text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS ux_focussession_single_active
            ON focussession (is_active) WHERE is_active = 1
            """
        )
    )


def run_all(engine) -> None:
    with engine.begin() as conn:
        ensure_session_columns(conn)
        ensure_sync_operation_columns(conn)
        ensure_task_tag_position(conn)
        ensure_indexes(conn)


__all__ = ["run_all"]
