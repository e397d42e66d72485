"""
ReminderStore — user-scoped CRUD for reminders.

remind_at is stored as a UTC ISO 8601 string so lexical comparison matches
chronological order; get_due() relies on that for the reminder sweep.
"""

import logging
import uuid
from typing import Any

from .database import DatabaseManager
from ..models import utcnow

logger = logging.getLogger(__name__)

_REMINDER_COLUMNS = "id, user_id, message, remind_at, notify_via, status, created_at, updated_at"

_UPDATABLE = ("message", "remind_at", "notify_via", "status")


class ReminderStore:
    """Persistent store for user reminders."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create(
        self,
        user_id: str,
        message: str,
        remind_at: str | None = None,
        notify_via: str = "both",
    ) -> dict[str, Any]:
        """Insert a pending reminder. Returns the stored row."""
        now = utcnow()
        reminder = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "message": message,
            "remind_at": remind_at,
            "notify_via": notify_via,
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        async with self._db.get_connection() as conn:
            await conn.execute(
                f"INSERT INTO reminders ({_REMINDER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                tuple(reminder.values()),
            )
            await conn.commit()
        return reminder

    async def get(self, user_id: str, reminder_id: str) -> dict[str, Any] | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_REMINDER_COLUMNS} FROM reminders WHERE id = ? AND user_id = ?",
                (reminder_id, user_id),
            )
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def list_pending(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Pending reminders, newest first."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_REMINDER_COLUMNS} FROM reminders "
                "WHERE user_id = ? AND status = 'pending' "
                "ORDER BY created_at DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    async def update(self, user_id: str, reminder_id: str, **fields: Any) -> dict[str, Any] | None:
        """
        Patch any of message / remind_at / notify_via / status.
        Returns the updated row, or None if the reminder is not the user's.
        """
        unknown = set(fields) - set(_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update reminder fields: {sorted(unknown)}")

        reminder = await self.get(user_id, reminder_id)
        if reminder is None:
            return None

        reminder.update(fields)
        reminder["updated_at"] = utcnow()

        async with self._db.get_connection() as conn:
            await conn.execute(
                "UPDATE reminders SET message = ?, remind_at = ?, notify_via = ?, status = ?, "
                "updated_at = ? WHERE id = ? AND user_id = ?",
                (
                    reminder["message"], reminder["remind_at"], reminder["notify_via"],
                    reminder["status"], reminder["updated_at"], reminder_id, user_id,
                ),
            )
            await conn.commit()
        return reminder

    async def set_status(self, user_id: str, reminder_id: str, status: str) -> dict[str, Any] | None:
        return await self.update(user_id, reminder_id, status=status)

    async def get_due(self, now: str | None = None) -> list[dict[str, Any]]:
        """Pending reminders across all users whose remind_at is at or before `now`."""
        now = now or utcnow()
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_REMINDER_COLUMNS} FROM reminders "
                "WHERE status = 'pending' AND remind_at IS NOT NULL AND remind_at <= ? "
                "ORDER BY remind_at",
                (now,),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]
