"""
IngestionLogStore — audit trail for inbound email.

A row is written as `pending` before the orchestrator runs and its outcome
columns are overwritten afterwards. Reprocessing overwrites the same row, so
the id, addresses and raw body never change once written.
"""

import json
import logging
import uuid

from .database import DatabaseManager
from ..models import IngestionLog, IngestionOutcome, utcnow

logger = logging.getLogger(__name__)

_LOG_COLUMNS = (
    "id, user_id, from_email, to_email, subject, body, ai_result, action_type, "
    "related_note_id, related_reminder_id, status, error_message, created_at"
)


def _row_to_log(row) -> IngestionLog:
    data = dict(row)
    if data.get("ai_result"):
        data["ai_result"] = json.loads(data["ai_result"])
    return IngestionLog(**data)


class IngestionLogStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create_pending(
        self,
        user_id: str | None,
        from_email: str,
        to_email: str,
        subject: str | None,
        body: str,
    ) -> IngestionLog:
        log = IngestionLog(
            id=str(uuid.uuid4()),
            user_id=user_id,
            from_email=from_email,
            to_email=to_email,
            subject=subject,
            body=body,
            created_at=utcnow(),
        )
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO ingestion_logs "
                "(id, user_id, from_email, to_email, subject, body, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, 'pending', ?)",
                (log.id, user_id, from_email, to_email, subject, body, log.created_at),
            )
            await conn.commit()
        return log

    async def record_outcome(self, log_id: str, outcome: IngestionOutcome) -> None:
        """Overwrite the outcome columns of an existing row."""
        ai_result = json.dumps(outcome.ai_result) if outcome.ai_result is not None else None
        async with self._db.get_connection() as conn:
            await conn.execute(
                "UPDATE ingestion_logs SET ai_result = ?, action_type = ?, status = ?, "
                "error_message = ?, related_note_id = ?, related_reminder_id = ? "
                "WHERE id = ?",
                (
                    ai_result, outcome.action_type, outcome.status, outcome.error_message,
                    outcome.related_note_id, outcome.related_reminder_id, log_id,
                ),
            )
            await conn.commit()
        logger.debug("Ingestion log %s → %s", log_id, outcome.status)

    async def get(self, user_id: str, log_id: str) -> IngestionLog | None:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                f"SELECT {_LOG_COLUMNS} FROM ingestion_logs WHERE id = ? AND user_id = ?",
                (log_id, user_id),
            )
            row = await cursor.fetchone()
            return _row_to_log(row) if row else None

    async def list_for_user(
        self, user_id: str, limit: int = 20, offset: int = 0, status: str | None = None
    ) -> tuple[list[IngestionLog], int]:
        """Return one page of logs (newest first) and the total matching count."""
        where = "WHERE user_id = ?"
        params: list = [user_id]
        if status:
            where += " AND status = ?"
            params.append(status)

        async with self._db.get_connection() as conn:
            cursor = await conn.execute(f"SELECT COUNT(*) FROM ingestion_logs {where}", params)
            total = (await cursor.fetchone())[0]
            cursor = await conn.execute(
                f"SELECT {_LOG_COLUMNS} FROM ingestion_logs {where} "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            rows = await cursor.fetchall()
        return [_row_to_log(r) for r in rows], total

    async def delete(self, user_id: str, log_id: str) -> bool:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM ingestion_logs WHERE id = ? AND user_id = ?",
                (log_id, user_id),
            )
            await conn.commit()
            return cursor.rowcount > 0

