"""
ConversationStore — chat threads and their immutable messages.

A conversation's updated_at is bumped in the same transaction that inserts a
message, so it is never older than its newest message.
"""

import json
import logging
import uuid

from .database import DatabaseManager
from ..models import (
    Conversation,
    Message,
    ToolExecutionResult,
    dump_tool_results,
    parse_tool_results,
    utcnow,
)

logger = logging.getLogger(__name__)


def title_from_message(message: str, max_length: int = 50) -> str:
    """First `max_length` characters of the opening message, with an ellipsis if cut."""
    text = " ".join(message.split())
    if len(text) <= max_length:
        return text or "New conversation"
    return text[:max_length] + "..."


class ConversationStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def create(self, user_id: str, title: str) -> Conversation:
        now = utcnow()
        conversation = Conversation(
            id=str(uuid.uuid4()), user_id=user_id, title=title,
            created_at=now, updated_at=now,
        )
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO conversations (id, user_id, title, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (conversation.id, user_id, title, now, now),
            )
            await conn.commit()
        logger.debug("Created conversation %s for user %s", conversation.id, user_id)
        return conversation

    async def get(self, user_id: str, conversation_id: str) -> Conversation | None:
        """Return the conversation only if user_id owns it."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, user_id, title, created_at, updated_at FROM conversations "
                "WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            row = await cursor.fetchone()
            return Conversation(**dict(row)) if row else None

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Conversation]:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, user_id, title, created_at, updated_at FROM conversations "
                "WHERE user_id = ? ORDER BY updated_at DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
            return [Conversation(**dict(r)) for r in rows]

    async def delete(self, user_id: str, conversation_id: str) -> bool:
        """Delete an owned conversation; messages go with it (ON DELETE CASCADE)."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def append_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_results: list[ToolExecutionResult] | None = None,
    ) -> Message:
        """Insert a message and bump the parent's updated_at."""
        if role != "assistant":
            tool_results = None
        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_results=tool_results,
            created_at=utcnow(),
        )
        encoded = json.dumps(dump_tool_results(tool_results)) if tool_results else None
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO messages (id, conversation_id, role, content, tool_results, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (message.id, conversation_id, role, content, encoded, message.created_at),
            )
            await conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (message.created_at, conversation_id),
            )
            await conn.commit()
        return message

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """All messages in insertion order."""
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, conversation_id, role, content, tool_results, created_at "
                "FROM messages WHERE conversation_id = ? ORDER BY created_at, rowid",
                (conversation_id,),
            )
            rows = await cursor.fetchall()

        messages = []
        for row in rows:
            data = dict(row)
            raw = data.pop("tool_results")
            messages.append(Message(**data, tool_results=parse_tool_results(raw) if raw else None))
        return messages
