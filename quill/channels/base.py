"""
Shared invocation path for every channel.

Each invocation builds the user's context, a fresh tool registry (plus
calendar tools when connected) and runs the orchestrator. Channels only add
their own admission checks and persistence around it.
"""

import logging
from typing import AsyncIterator, Sequence

from ..ai.context import ContextBuilder
from ..ai.orchestrator import AgentComplete, AgentEvent, AgentOrchestrator, ModelClient
from ..ai.prompts import resolve_timezone
from ..ai.tools.registry import build_tool_registry
from ..config import settings
from ..exceptions import RateLimitExceededError
from ..constants import ERROR_MESSAGES
from ..integrations.composio import ComposioClient, calendar_tools_for
from ..memory.database import DatabaseManager
from ..models import AgentResponse
from ..utils.rate_limit import RateLimiter, RateLimitResult

logger = logging.getLogger(__name__)


class AgentService:
    """orchestrate(user_id, text, timezone?, history?) for all channels."""

    def __init__(
        self,
        db: DatabaseManager,
        model: ModelClient,
        composio: ComposioClient | None = None,
        max_steps: int | None = None,
    ) -> None:
        self._db = db
        self._context = ContextBuilder(db)
        self._orchestrator = AgentOrchestrator(model, max_steps=max_steps)
        self._composio = composio

    async def orchestrate_stream(
        self,
        user_id: str,
        text: str,
        timezone: str | None = None,
        history: Sequence[dict] = (),
    ) -> AsyncIterator[AgentEvent]:
        tz = resolve_timezone(timezone, settings.default_timezone)
        context = await self._context.build(user_id)

        registry = build_tool_registry(self._db, tz)
        calendar_tools = await calendar_tools_for(user_id, context, self._composio)
        registry.extend(calendar_tools)

        async for event in self._orchestrator.stream(
            user_id, text, context, registry, tz,
            history=history, has_calendar_tools=bool(calendar_tools),
        ):
            yield event

    async def orchestrate(
        self,
        user_id: str,
        text: str,
        timezone: str | None = None,
        history: Sequence[dict] = (),
    ) -> AgentResponse:
        response: AgentResponse | None = None
        async for event in self.orchestrate_stream(user_id, text, timezone, history):
            if isinstance(event, AgentComplete):
                response = event.response
        if response is None:
            raise RuntimeError("Agent stream ended without completing")
        return response


def enforce_rate_limit(limiter: RateLimiter, key: str, limit: int, window_ms: int) -> RateLimitResult:
    """Count one request; raise RateLimitExceededError when the window is used up."""
    result = limiter.check(key, limit, window_ms)
    if not result.allowed:
        raise RateLimitExceededError(ERROR_MESSAGES["rate_limited"], result, limit)
    return result
