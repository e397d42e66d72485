"""
SQLite database manager for quill.

Initialises schema (users, sessions, notes, tags, reminders, todos, integrations,
conversations, messages, ingestion logs).
Uses WAL mode for concurrent read safety with single-writer asyncio pattern.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import aiosqlite

from ..config import settings
from ..exceptions import StorageError
from ..models import utcnow

logger = logging.getLogger(__name__)


_DDL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS users (
    id           TEXT PRIMARY KEY,
    email        TEXT NOT NULL UNIQUE COLLATE NOCASE,
    name         TEXT,
    created_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token        TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    expires_at   TEXT NOT NULL,
    created_at   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title        TEXT NOT NULL,
    content      TEXT NOT NULL,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL,
    deleted_at   TEXT
);
CREATE INDEX IF NOT EXISTS idx_notes_user_deleted ON notes(user_id, deleted_at);

CREATE TABLE IF NOT EXISTS tags (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    color        TEXT NOT NULL DEFAULT '#6b7280',
    created_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tags_user ON tags(user_id);

CREATE TABLE IF NOT EXISTS note_tags (
    note_id      TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
    tag_id       TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (note_id, tag_id)
);

CREATE TABLE IF NOT EXISTS reminders (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    message      TEXT NOT NULL,
    remind_at    TEXT,
    notify_via   TEXT NOT NULL DEFAULT 'both',
    status       TEXT NOT NULL DEFAULT 'pending',
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reminders_status_remind ON reminders(status, remind_at);
CREATE INDEX IF NOT EXISTS idx_reminders_user_status ON reminders(user_id, status);

CREATE TABLE IF NOT EXISTS todos (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title        TEXT NOT NULL,
    description  TEXT,
    priority     TEXT NOT NULL DEFAULT 'do_first',
    status       TEXT NOT NULL DEFAULT 'pending',
    due_date     TEXT,
    completed_at TEXT,
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_todos_user_status ON todos(user_id, status);

CREATE TABLE IF NOT EXISTS user_integrations (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    provider             TEXT NOT NULL,
    connected_account_id TEXT NOT NULL,
    status               TEXT NOT NULL DEFAULT 'active',
    created_at           TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_user_integrations_user ON user_integrations(user_id, provider);

CREATE TABLE IF NOT EXISTS conversations (
    id           TEXT PRIMARY KEY,
    user_id      TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    title        TEXT NOT NULL DEFAULT 'New conversation',
    created_at   TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id);

CREATE TABLE IF NOT EXISTS messages (
    id               TEXT PRIMARY KEY,
    conversation_id  TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role             TEXT NOT NULL,
    content          TEXT NOT NULL,
    tool_results     TEXT,
    created_at       TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);

CREATE TABLE IF NOT EXISTS ingestion_logs (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT REFERENCES users(id) ON DELETE SET NULL,
    from_email           TEXT NOT NULL,
    to_email             TEXT NOT NULL,
    subject              TEXT,
    body                 TEXT NOT NULL,
    ai_result            TEXT,
    action_type          TEXT,
    related_note_id      TEXT REFERENCES notes(id) ON DELETE SET NULL,
    related_reminder_id  TEXT REFERENCES reminders(id) ON DELETE SET NULL,
    status               TEXT NOT NULL DEFAULT 'pending',
    error_message        TEXT,
    created_at           TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ingestion_logs_user_status ON ingestion_logs(user_id, status);
"""


class DatabaseManager:
    """Manages the SQLite connection and schema for quill."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path or settings.db_path
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open connection, run DDL."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)

        self._conn = await aiosqlite.connect(self.db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.executescript(_DDL)
        await self._conn.commit()
        logger.info("Database initialised: %s", self.db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the shared connection. Callers must not close it."""
        if self._conn is None:
            raise StorageError("DatabaseManager not initialised, call init() first")
        yield self._conn

    async def upsert_user(self, user_id: str, email: str, name: str | None = None) -> None:
        async with self.get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO users (id, email, name, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email=excluded.email,
                    name=excluded.name
                """,
                (user_id, email, name, utcnow()),
            )
            await conn.commit()

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, email, name FROM users WHERE id = ?", (user_id,)
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def find_user_by_email(self, email: str) -> dict[str, Any] | None:
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, email, name FROM users WHERE email = ?", (email.strip(),)
            )
            row = await cursor.fetchone()
            return dict(row) if row else None
