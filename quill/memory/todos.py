"""
TodoStore — user-scoped CRUD for todos.

Todos are sorted into Eisenhower quadrants by `priority`. Completing a todo
stamps completed_at; deleting one removes the row.
"""

import logging
import uuid
from typing import Any

from .database import DatabaseManager
from ..models import utcnow

logger = logging.getLogger(__name__)

_TODO_COLUMNS = (
    "id, user_id, title, description, priority, status, due_date, completed_at, "
    "created_at, updated_at"
)

_UPDATABLE = ("title", "description", "priority", "due_date")


class TodoStore:
    """Persistent store for user todos."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create(
        self,
        user_id: str,
        title: str,
        description: str | None = None,
        priority: str = "do_first",
        due_date: str | None = None,
    ) -> dict[str, Any]:
        now = utcnow()
        todo = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "title": title,
            "description": description,
            "priority": priority,
            "status": "pending",
            "due_date": due_date,
            "completed_at": None,
            "created_at": now,
            "updated_at": now,
        }
        async with self._db.get_connection() as conn:
            await conn.execute(
                f"INSERT INTO todos ({_TODO_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                tuple(todo.values()),
            )
            await conn.commit()
        return todo

    async def get(self, user_id: str, todo_id: str) -> dict[str, Any] | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_TODO_COLUMNS} FROM todos WHERE id = ? AND user_id = ?",
                (todo_id, user_id),
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_pending(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Pending todos, newest first."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_TODO_COLUMNS} FROM todos "
                "WHERE user_id = ? AND status = 'pending' "
                "ORDER BY created_at DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def update(self, user_id: str, todo_id: str, **fields: Any) -> dict[str, Any] | None:
        """
        Patch any of title / description / priority / due_date.
        Returns the updated row, or None if the todo is not the user's.
        """
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update todo fields: {sorted(unknown)}")

        todo = await self.get(user_id, todo_id)
        if todo is None:
            return None

        todo.update(fields)
        todo["updated_at"] = utcnow()

        async with self._db.get_connection() as conn:
            await conn.execute(
                "UPDATE todos SET title = ?, description = ?, priority = ?, due_date = ?, "
                "updated_at = ? WHERE id = ? AND user_id = ?",
                (
                    todo["title"], todo["description"], todo["priority"], todo["due_date"],
                    todo["updated_at"], todo_id, user_id,
                ),
            )
            await conn.commit()
        return todo

    async def complete(self, user_id: str, todo_id: str) -> dict[str, Any] | None:
        todo = await self.get(user_id, todo_id)
        if todo is None:
            return None

        now = utcnow()
        todo.update(status="completed", completed_at=now, updated_at=now)
        async with self._db.get_connection() as conn:
            await conn.execute(
                "UPDATE todos SET status = 'completed', completed_at = ?, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                (now, now, todo_id, user_id),
            )
            await conn.commit()
        return todo

    async def delete(self, user_id: str, todo_id: str) -> dict[str, Any] | None:
        """Remove the todo. Returns the deleted row, or None if it is not the user's."""
        todo = await self.get(user_id, todo_id)
        if todo is None:
            return None
        async with self._db.get_connection() as conn:
            await conn.execute("DELETE FROM todos WHERE id = ? AND user_id = ?", (todo_id, user_id))
            await conn.commit()
        logger.debug("Deleted todo %s for user %s", todo_id, user_id)
        return todo
