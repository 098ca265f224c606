"""SQLite utilities backing the durable ledger store."""

from __future__ import annotations

import sqlite3
from pathlib import Path


SCHEMA_VERSION = 1


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path, *, timeout: float = 5.0) -> sqlite3.Connection:
    """Return a SQLite connection shared across request threads."""

    conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute(f"PRAGMA busy_timeout = {int(timeout * 1000)}")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the ledger schema if it does not yet exist.

    Refuses a ledger written by a newer schema version.
    """

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS bookings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            request_type TEXT NOT NULL,
            ticket_family TEXT,
            request_date TEXT NOT NULL,
            patient_id TEXT,
            patient_given_name TEXT,
            patient_family_name TEXT,
            ticket_number TEXT,
            details TEXT,
            created_at TEXT NOT NULL,
            UNIQUE(request_date, ticket_family, ticket_number)
        );

        CREATE INDEX IF NOT EXISTS idx_bookings_date_type
            ON bookings(request_date, request_type);

        CREATE INDEX IF NOT EXISTS idx_bookings_patient_date
            ON bookings(patient_id, request_date);
        """
    )

    stored = get_metadata(conn, "schema_version")
    if stored is not None and int(stored) > SCHEMA_VERSION:
        raise sqlite3.DatabaseError(
            f"Ledger schema version {stored} is newer than supported version {SCHEMA_VERSION}"
        )
    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str) -> None:
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default
