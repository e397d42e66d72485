"""
NoteStore — user-scoped CRUD for notes and their tags.

Every read and write is filtered by user_id so a note owned by another user
is indistinguishable from a missing one. Deletion is soft (deleted_at).
"""

import logging
import uuid
from typing import Any

from .database import DatabaseManager
from ..models import utcnow

logger = logging.getLogger(__name__)

_NOTE_COLUMNS = "id, user_id, title, content, created_at, updated_at, deleted_at"


class NoteStore:
    """Persistent store for notes and tags."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create(self, user_id: str, title: str, content: str) -> dict[str, Any]:
        """Insert a new note. Returns the stored row."""
        now = utcnow()
        note = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "title": title,
            "content": content,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO notes (id, user_id, title, content, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (note["id"], user_id, title, content, now, now),
            )
            await conn.commit()
        return note

    async def get(
        self, user_id: str, note_id: str, include_deleted: bool = False
    ) -> dict[str, Any] | None:
        """Return the note if it exists and belongs to user_id."""
        sql = f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ? AND user_id = ?"
        if not include_deleted:
            sql += " AND deleted_at IS NULL"
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(sql, (note_id, user_id))
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_active(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Non-deleted notes, most recently updated first."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_NOTE_COLUMNS} FROM notes "
                "WHERE user_id = ? AND deleted_at IS NULL "
                "ORDER BY updated_at DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def update(
        self,
        user_id: str,
        note_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
    ) -> dict[str, Any] | None:
        """Patch title and/or content. Returns the updated row, or None if not found."""
        note = await self.get(user_id, note_id)
        if note is None:
            return None

        if title is not None:
            note["title"] = title
        if content is not None:
            note["content"] = content
        note["updated_at"] = utcnow()

        async with self._db.get_connection() as conn:
            await conn.execute(
                "UPDATE notes SET title = ?, content = ?, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                (note["title"], note["content"], note["updated_at"], note_id, user_id),
            )
            await conn.commit()
        return note

    async def soft_delete(self, user_id: str, note_id: str) -> bool:
        """Set deleted_at. Returns True if a live note was deleted."""
        now = utcnow()
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "UPDATE notes SET deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND user_id = ? AND deleted_at IS NULL",
                (now, now, note_id, user_id),
            )
            await conn.commit()
            return cursor.rowcount > 0

    # ── Tags ────────────────────────────────────────────────────────────────────

    async def create_tag(self, user_id: str, name: str, color: str = "#6b7280") -> str:
        tag_id = str(uuid.uuid4())
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO tags (id, user_id, name, color, created_at) VALUES (?, ?, ?, ?, ?)",
                (tag_id, user_id, name, color, utcnow()),
            )
            await conn.commit()
        return tag_id

    async def list_tags(self, user_id: str) -> list[dict[str, Any]]:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, name, color FROM tags WHERE user_id = ? ORDER BY name",
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def assign_tags(self, user_id: str, note_id: str, names: list[str]) -> list[str]:
        """
        Link the user's existing tags matching `names` (case-insensitive) to a note.
        Unknown names are ignored. Returns the canonical names that were linked.
        """
        if not names:
            return []
        wanted = {n.strip().lower() for n in names if n and n.strip()}
        matching = [t for t in await self.list_tags(user_id) if t["name"].lower() in wanted]
        if not matching:
            return []

        async with self._db.get_connection() as conn:
            await conn.executemany(
                "INSERT OR IGNORE INTO note_tags (note_id, tag_id) VALUES (?, ?)",
                [(note_id, t["id"]) for t in matching],
            )
            await conn.commit()
        return [t["name"] for t in matching]

    async def tags_for_note(self, note_id: str) -> list[str]:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT t.name FROM tags t JOIN note_tags nt ON nt.tag_id = t.id "
                "WHERE nt.note_id = ? ORDER BY t.name",
                (note_id,),
            )
            rows = await cursor.fetchall()
            return [r["name"] for r in rows]
