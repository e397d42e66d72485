"""
Bearer-token sessions.

Issuing sessions belongs to the auth service; quill only resolves tokens.
create() exists so deployments and tests can seed the table.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from .database import DatabaseManager
from ..models import utcnow

logger = logging.getLogger(__name__)


class SessionResolver:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def resolve(self, token: str | None) -> str | None:
        """Return the user id for a live session token, else None."""
        if not token:
            return None
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT user_id FROM sessions WHERE token = ? AND expires_at > ?",
                (token, utcnow()),
            )
            row = await cursor.fetchone()
            return row["user_id"] if row else None

    async def create(self, user_id: str, ttl: timedelta = timedelta(days=7)) -> str:
        token = secrets.token_urlsafe(32)
        expires_at = (datetime.now(timezone.utc) + ttl).isoformat()
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO sessions (token, user_id, expires_at, created_at) VALUES (?, ?, ?, ?)",
                (token, user_id, expires_at, utcnow()),
            )
            await conn.commit()
        return token
