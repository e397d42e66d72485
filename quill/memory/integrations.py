"""IntegrationStore — which third-party providers a user has connected."""

import uuid
from typing import Any

from .database import DatabaseManager
from ..models import utcnow


class IntegrationStore:
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def add(
        self, user_id: str, provider: str, connected_account_id: str, status: str = "active"
    ) -> str:
        integration_id = str(uuid.uuid4())
        async with self._db.get_connection() as conn:
            await conn.execute(
                "INSERT INTO user_integrations "
                "(id, user_id, provider, connected_account_id, status, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (integration_id, user_id, provider, connected_account_id, status, utcnow()),
            )
            await conn.commit()
        return integration_id

    async def list_active(self, user_id: str) -> list[dict[str, Any]]:
        async with self._db.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT provider, connected_account_id FROM user_integrations "
                "WHERE user_id = ? AND status = 'active' ORDER BY created_at",
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]
