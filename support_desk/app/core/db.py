"""
SQLite database integration and simple migration system.

This module provides functions for obtaining a database connection
(``get_connection``), applying migrations on application start
(``init_db``) and a few helpers for identifiers and timestamps that
all services share.  Applied migration versions are stored in the
``migrations`` table and new migrations are executed in order.
"""

import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .config import settings

# Project root (the directory containing the ``support_desk`` package).
BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent


def resolve_path(path: str) -> str:
    """Resolve ``path`` against the project root unless it is absolute."""
    if os.path.isabs(path):
        return path
    return str((BASE_DIR / path).resolve())


def get_database_path() -> str:
    """Compute the path to the SQLite database file."""
    return resolve_path(settings.database_url)


def get_connection() -> sqlite3.Connection:
    """Create and return a new SQLite connection.

    Rows are returned as ``sqlite3.Row`` so columns can be accessed by
    name.  Foreign keys are enforced for the lifetime of the
    connection.
    """
    conn = sqlite3.connect(get_database_path())
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_cursor() -> Iterator[sqlite3.Cursor]:
    """Context manager that yields a cursor and closes the connection on exit."""
    conn = get_connection()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


def new_id() -> str:
    """Return a new opaque identifier."""
    return str(uuid.uuid4())


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string with microseconds."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


MIGRATIONS: list[tuple[int, str]] = [
    # Migration 1: accounts and customers
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS customers (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            code INTEGER NOT NULL UNIQUE,
            type TEXT NOT NULL DEFAULT 'PERSONAL',
            category TEXT NOT NULL DEFAULT 'OTHER',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            first_name TEXT NOT NULL DEFAULT '',
            last_name TEXT NOT NULL DEFAULT '',
            password TEXT,
            role TEXT NOT NULL CHECK (role IN ('staff', 'customer')),
            customer_id TEXT,
            disabled INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(customer_id) REFERENCES customers(id)
        );

        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT,
            action TEXT NOT NULL,
            object_type TEXT,
            object_id TEXT,
            timestamp TEXT NOT NULL,
            details TEXT
        );
        """,
    ),
    # Migration 2: tickets and the conversation log
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS support_tickets (
            id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL,
            creator_id TEXT NOT NULL,
            subject TEXT NOT NULL,
            priority TEXT NOT NULL DEFAULT 'MEDIUM',
            status TEXT NOT NULL DEFAULT 'OPEN',
            assigned_to_id TEXT,
            closed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(customer_id) REFERENCES customers(id),
            FOREIGN KEY(creator_id) REFERENCES users(id),
            FOREIGN KEY(assigned_to_id) REFERENCES users(id)
        );

        CREATE TABLE IF NOT EXISTS support_messages (
            id TEXT PRIMARY KEY,
            ticket_id TEXT NOT NULL,
            sender_type TEXT NOT NULL CHECK (sender_type IN ('STAFF', 'CUSTOMER')),
            sender_id TEXT NOT NULL,
            body TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            FOREIGN KEY(ticket_id) REFERENCES support_tickets(id),
            FOREIGN KEY(sender_id) REFERENCES users(id)
        );

        CREATE INDEX IF NOT EXISTS idx_support_tickets_customer ON support_tickets(customer_id);
        CREATE INDEX IF NOT EXISTS idx_support_tickets_assigned ON support_tickets(assigned_to_id);
        CREATE INDEX IF NOT EXISTS idx_support_messages_ticket ON support_messages(ticket_id, created_at);
        """,
    ),
    # Migration 3: uploaded attachments
    (
        3,
        """
        -- An attachment is uploaded first (message_id NULL) and bound to a
        -- message when a reply references it.
        CREATE TABLE IF NOT EXISTS support_attachments (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            content_type TEXT NOT NULL,
            size INTEGER NOT NULL,
            storage_path TEXT NOT NULL,
            uploader_id TEXT NOT NULL,
            message_id TEXT,
            position INTEGER,
            created_at TEXT NOT NULL,
            FOREIGN KEY(uploader_id) REFERENCES users(id),
            FOREIGN KEY(message_id) REFERENCES support_messages(id)
        );

        CREATE INDEX IF NOT EXISTS idx_support_attachments_message ON support_attachments(message_id, position);
        """,
    ),
]


def init_db() -> None:
    """Initialise the database and apply pending migrations.

    Creates the ``migrations`` table if it does not exist, checks the
    current schema version and applies every newer entry of
    ``MIGRATIONS``.  To change the schema, append a migration with an
    incremented version number.
    """
    with get_cursor() as cursor:
        cursor.execute("CREATE TABLE IF NOT EXISTS migrations (version INTEGER PRIMARY KEY)")
        cursor.execute("SELECT MAX(version) as version FROM migrations")
        row = cursor.fetchone()
        current_version = row["version"] if row and row["version"] is not None else 0

        for version, sql in MIGRATIONS:
            if version > current_version:
                cursor.executescript(sql)
                cursor.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
                current_version = version
