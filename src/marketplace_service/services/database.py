"""Shared aiosqlite connection and schema for the marketplace stores."""

from __future__ import annotations

import asyncio
import contextlib
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite

if TYPE_CHECKING:
    from collections.abc import Sequence

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    skills TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'open',
    selected_bid_id TEXT,
    proposals INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS bids (
    bid_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    freelancer_id TEXT NOT NULL,
    amount REAL NOT NULL,
    proposal TEXT NOT NULL,
    timeline_days INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    ai_generated INTEGER NOT NULL DEFAULT 0,
    original_proposal TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(job_id, freelancer_id)
);
CREATE INDEX IF NOT EXISTS idx_bids_job_status ON bids(job_id, status);

CREATE TABLE IF NOT EXISTS conversations (
    conversation_id TEXT PRIMARY KEY,
    participants TEXT NOT NULL,
    job_id TEXT,
    bid_id TEXT,
    contract_id TEXT,
    created_at TEXT NOT NULL,
    UNIQUE(job_id, bid_id)
);

CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    sender_id TEXT NOT NULL,
    content TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'text',
    created_at TEXT NOT NULL,
    deleted_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, created_at);

CREATE TABLE IF NOT EXISTS conversation_reads (
    conversation_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    last_read_at TEXT NOT NULL,
    PRIMARY KEY (conversation_id, user_id)
);

CREATE TABLE IF NOT EXISTS contracts (
    contract_id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    bid_id TEXT NOT NULL,
    client_id TEXT NOT NULL,
    freelancer_id TEXT NOT NULL,
    amount REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    payment_status TEXT NOT NULL DEFAULT 'pending',
    payment_intent_id TEXT,
    payment_attempt INTEGER NOT NULL DEFAULT 0,
    checkout_session_id TEXT,
    conversation_id TEXT NOT NULL,
    paid_at TEXT,
    start_date TEXT NOT NULL,
    end_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE(job_id, bid_id)
);
CREATE INDEX IF NOT EXISTS idx_contracts_intent ON contracts(payment_intent_id);

CREATE TABLE IF NOT EXISTS contract_tasks (
    task_id TEXT PRIMARY KEY,
    contract_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo',
    assigned_to TEXT NOT NULL,
    due_date TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contract_tasks_contract ON contract_tasks(contract_id);

CREATE TABLE IF NOT EXISTS milestones (
    milestone_id TEXT PRIMARY KEY,
    contract_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    amount REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    due_date TEXT,
    approved_at TEXT,
    paid_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_milestones_contract ON milestones(contract_id);

CREATE TABLE IF NOT EXISTS notifications (
    notification_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    read INTEGER NOT NULL DEFAULT 0,
    read_at TEXT,
    action_url TEXT,
    dedupe_key TEXT UNIQUE,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, read, created_at);

CREATE TABLE IF NOT EXISTS webhook_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    processed_at TEXT NOT NULL
);
"""


class Database:
    """
    Single aiosqlite connection shared by all stores.

    The connection runs in autocommit mode, so every statement is its own
    transaction. Multi-statement writes go through ``execute_batch``, which
    wraps them in ``BEGIN IMMEDIATE``. An asyncio lock keeps a batch from
    interleaving with statements issued by other coroutines.
    """

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._db = connection
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, db_path: str) -> Database:
        """Open (creating if needed) the database file and apply the schema."""
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        connection = await aiosqlite.connect(db_path, isolation_level=None)
        connection.row_factory = aiosqlite.Row
        await connection.execute("PRAGMA journal_mode=WAL")
        await connection.execute("PRAGMA busy_timeout=5000")
        await connection.executescript(SCHEMA)
        return cls(connection)

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
        """Execute a query and return the first row as a dict, or None."""
        async with self._lock, self._db.execute(sql, tuple(params)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        async with self._lock, self._db.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Execute a query and return the first column of the first row."""
        async with self._lock, self._db.execute(sql, tuple(params)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return row[0]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute a single write statement and return the affected row count."""
        async with self._lock, self._db.execute(sql, tuple(params)) as cursor:
            return int(cursor.rowcount)

    async def execute_batch(self, statements: Sequence[tuple[str, Sequence[Any]]]) -> None:
        """Execute several write statements atomically."""
        async with self._lock:
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                for sql, params in statements:
                    await self._db.execute(sql, tuple(params))
                await self._db.execute("COMMIT")
            except Exception:
                with contextlib.suppress(sqlite3.Error):
                    await self._db.execute("ROLLBACK")
                raise

    async def close(self) -> None:
        """Close the underlying connection."""
        await self._db.close()


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    """Whether an IntegrityError was raised by a UNIQUE or PRIMARY KEY constraint."""
    return "unique" in str(exc).lower()
