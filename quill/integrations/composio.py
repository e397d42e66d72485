"""
Composio client — Google Calendar actions exposed as extra agent tools.

Only used when the user has an active google-calendar integration and a
Composio API key is configured. Tool definitions are fetched per invocation;
any that fail to load are logged and left out.
"""

import asyncio
import logging
from typing import Any

import httpx

from ..ai.tools.base import Tool, failure
from ..config import settings
from ..constants import CALENDAR_PROVIDER
from ..models import ToolExecutionResult, ToolSuccess, UserContext

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_ACTIONS = (
    "GOOGLECALENDAR_CREATE_EVENT",
    "GOOGLECALENDAR_EVENTS_LIST",
    "GOOGLECALENDAR_UPDATE_EVENT",
    "GOOGLECALENDAR_DELETE_EVENT",
    "GOOGLECALENDAR_EVENTS_GET",
    "GOOGLECALENDAR_FIND_EVENT",
)


class ComposioClient:
    """Thin async client for the Composio v3 tools API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.composio_api_key
        self._base_url = (base_url or settings.composio_base_url).rstrip("/")
        self._timeout = timeout or settings.composio_timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"x-api-key": self._api_key},
            transport=self._transport,
        )

    async def get_tool(self, slug: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(f"/tools/{slug}")
            response.raise_for_status()
            return response.json()

    async def execute(
        self,
        slug: str,
        user_id: str,
        arguments: dict[str, Any],
        connected_account_id: str | None = None,
    ) -> dict[str, Any]:
        """Run an action. Returns Composio's envelope: {data, error, successful}."""
        body: dict[str, Any] = {"user_id": user_id, "arguments": arguments}
        if connected_account_id:
            body["connected_account_id"] = connected_account_id
        async with self._client() as client:
            response = await client.post(f"/tools/execute/{slug}", json=body)
            response.raise_for_status()
            return response.json()

    def _as_tool(self, definition: dict[str, Any], user_id: str, connected_account_id: str) -> Tool:
        slug = definition.get("slug") or definition["name"]

        async def execute(uid: str, arguments: dict) -> ToolExecutionResult:
            try:
                envelope = await self.execute(slug, uid, arguments, connected_account_id)
            except httpx.HTTPError as e:
                logger.warning("Composio %s failed for user %s: %s", slug, uid, e)
                return failure(slug, f"calendar request failed: {e}")

            if not envelope.get("successful"):
                return failure(slug, str(envelope.get("error") or "calendar action failed"))
            data = envelope.get("data")
            return ToolSuccess(
                action=slug,
                message=f"{slug} completed",
                data=data if isinstance(data, dict) else {"result": data},
            )

        return Tool(
            name=slug,
            description=definition.get("description") or slug,
            executor=execute,
            raw_schema=definition.get("input_parameters") or {"type": "object", "properties": {}},
        )

    async def load_calendar_tools(self, user_id: str, connected_account_id: str) -> list[Tool]:
        """Fetch every calendar action definition; skip the ones that fail."""
        results = await asyncio.gather(
            *(self.get_tool(slug) for slug in GOOGLE_CALENDAR_ACTIONS),
            return_exceptions=True,
        )
        tools = []
        for slug, result in zip(GOOGLE_CALENDAR_ACTIONS, results):
            if isinstance(result, Exception):
                logger.error("Failed to load Composio tool %s: %s", slug, result)
                continue
            tools.append(self._as_tool(result, user_id, connected_account_id))
        logger.info("Loaded %d Google Calendar tools for user %s", len(tools), user_id)
        return tools


async def calendar_tools_for(
    user_id: str, context: UserContext, client: ComposioClient | None = None
) -> list[Tool]:
    """Calendar tools for this user, or [] when the integration is absent or unusable."""
    integration = next(
        (i for i in context.integrations if i.provider == CALENDAR_PROVIDER), None
    )
    if integration is None:
        return []
    client = client or ComposioClient()
    if not client.configured:
        logger.debug("User %s has a calendar integration but Composio is not configured", user_id)
        return []
    try:
        return await client.load_calendar_tools(user_id, integration.connected_account_id)
    except Exception as e:
        logger.error("Failed to load Google Calendar tools for user %s: %s", user_id, e, exc_info=True)
        return []
