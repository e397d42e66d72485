"""Tests for quill/memory/database.py — schema init, pragmas, users."""

import pytest

from quill.exceptions import StorageError
from quill.memory.database import DatabaseManager
from quill.memory.sessions import SessionResolver

from conftest import OTHER_USER_ID, USER_EMAIL, USER_ID


@pytest.mark.asyncio
async def test_init_creates_tables(db):
    """All expected tables should exist after init."""
    async with db.get_connection() as conn:
        rows = await conn.execute_fetchall(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        )
        names = {r["name"] for r in rows}

    assert {
        "users", "sessions", "notes", "tags", "note_tags", "reminders", "todos",
        "user_integrations", "conversations", "messages", "ingestion_logs",
    } <= names


@pytest.mark.asyncio
async def test_init_is_idempotent(tmp_path):
    path = str(tmp_path / "again.db")
    first = DatabaseManager(db_path=path)
    await first.init()
    await first.upsert_user("u", "u@example.com")
    await first.close()

    second = DatabaseManager(db_path=path)
    await second.init()
    assert (await second.get_user("u"))["email"] == "u@example.com"
    await second.close()


@pytest.mark.asyncio
async def test_wal_mode_enabled(db):
    async with db.get_connection() as conn:
        row = (await conn.execute_fetchall("PRAGMA journal_mode"))[0]
    assert row[0] == "wal"


@pytest.mark.asyncio
async def test_foreign_keys_enabled(db):
    async with db.get_connection() as conn:
        row = (await conn.execute_fetchall("PRAGMA foreign_keys"))[0]
    assert row[0] == 1


@pytest.mark.asyncio
async def test_get_connection_before_init_raises(tmp_path):
    manager = DatabaseManager(db_path=str(tmp_path / "x.db"))
    with pytest.raises(StorageError):
        async with manager.get_connection():
            pass


@pytest.mark.asyncio
async def test_upsert_user_updates_existing(db):
    await db.upsert_user(USER_ID, USER_EMAIL, "Ada Lovelace")
    user = await db.get_user(USER_ID)
    assert user["name"] == "Ada Lovelace"


@pytest.mark.asyncio
async def test_find_user_by_email_is_case_insensitive(db):
    user = await db.find_user_by_email("ADA@Example.com")
    assert user["id"] == USER_ID
    assert await db.find_user_by_email("nobody@example.com") is None


@pytest.mark.asyncio
async def test_sessions_resolve_live_tokens_only(db):
    sessions = SessionResolver(db)
    token = await sessions.create(USER_ID)
    assert await sessions.resolve(token) == USER_ID
    assert await sessions.resolve("bogus") is None
    assert await sessions.resolve(None) is None


@pytest.mark.asyncio
async def test_sessions_expired_token_rejected(db):
    from datetime import timedelta

    sessions = SessionResolver(db)
    token = await sessions.create(OTHER_USER_ID, ttl=timedelta(seconds=-1))
    assert await sessions.resolve(token) is None
