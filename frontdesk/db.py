from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

DEFAULT_DB_PATH = Path.home() / ".frontdesk" / "frontdesk.sqlite"

SCHEMA_VERSION = 3


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    if str(db_path) == ":memory:":
        conn = sqlite3.connect(":memory:", check_same_thread=check_same_thread)
    else:
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=check_same_thread)
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode = DELETE")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    # Identifier columns carry no type affinity: numeric ids are stored as
    # integers and opaque remote keys as text in the same column.
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS users (
            id PRIMARY KEY NOT NULL,
            name TEXT NOT NULL,
            pin TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'agent',
            extra_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_users_name ON users(name COLLATE NOCASE);
        CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);

        CREATE TABLE IF NOT EXISTS calls (
            id PRIMARY KEY NOT NULL,
            client_name TEXT,
            duration INTEGER,
            recording_blob BLOB,
            recording_ref TEXT,
            timestamp INTEGER,
            date_string TEXT,
            user_id,
            extra_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_calls_timestamp ON calls(timestamp);
        CREATE INDEX IF NOT EXISTS idx_calls_client ON calls(client_name);
        CREATE INDEX IF NOT EXISTS idx_calls_user ON calls(user_id);
        CREATE INDEX IF NOT EXISTS idx_calls_date ON calls(date_string);

        CREATE TABLE IF NOT EXISTS activities (
            id PRIMARY KEY NOT NULL,
            title TEXT,
            status TEXT,
            timestamp INTEGER,
            user_id,
            extra_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_activities_status ON activities(status);
        CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON activities(timestamp);
        CREATE INDEX IF NOT EXISTS idx_activities_user ON activities(user_id);

        CREATE TABLE IF NOT EXISTS tickets (
            id PRIMARY KEY NOT NULL,
            description TEXT,
            status TEXT,
            priority TEXT,
            created_at INTEGER,
            date_string TEXT,
            client_name TEXT,
            user_id,
            assignee_id,
            call_id,
            duration INTEGER,
            extra_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status);
        CREATE INDEX IF NOT EXISTS idx_tickets_created ON tickets(created_at);
        CREATE INDEX IF NOT EXISTS idx_tickets_user ON tickets(user_id);
        CREATE INDEX IF NOT EXISTS idx_tickets_call ON tickets(call_id);
        CREATE INDEX IF NOT EXISTS idx_tickets_assignee ON tickets(assignee_id);
        CREATE INDEX IF NOT EXISTS idx_tickets_client ON tickets(client_name);

        CREATE TABLE IF NOT EXISTS case_notes (
            id PRIMARY KEY NOT NULL,
            date_string TEXT,
            case_type TEXT,
            client_name TEXT,
            notes TEXT,
            user_id,
            timestamp INTEGER,
            extra_json TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_case_notes_timestamp ON case_notes(timestamp);
        CREATE INDEX IF NOT EXISTS idx_case_notes_client ON case_notes(client_name);
        CREATE INDEX IF NOT EXISTS idx_case_notes_user ON case_notes(user_id);

        CREATE TABLE IF NOT EXISTS id_sequences (
            collection TEXT PRIMARY KEY,
            seq INTEGER NOT NULL
        );
        """
    )
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def initialize_outbox_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sync_outbox (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            collection TEXT NOT NULL,
            doc_key TEXT NOT NULL,
            op TEXT NOT NULL,
            payload_json TEXT,
            created_at TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            last_attempt_at TEXT,
            dead_at TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_sync_outbox_doc ON sync_outbox(collection, doc_key);
        """
    )
    _ensure_column(conn, "sync_outbox", "dead_at", "TEXT")
    conn.commit()


def initialize_cursor_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS sync_cursors (
            source TEXT NOT NULL,
            collection TEXT NOT NULL,
            cursor INTEGER NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (source, collection)
        );
        """
    )
    conn.commit()


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
