"""
Chat channel — multi-turn conversations with streamed replies.

A turn loads the prior messages as history, persists the user message,
streams text to a sink as it arrives, then persists the assistant message
with its tool results. The assistant message is never written if the
orchestrator fails. A failing sink (client gone) only stops forwarding;
the turn still completes and is persisted.
"""

import logging
from typing import Awaitable, Callable, Sequence

from ..ai.claude_client import TextChunk
from ..ai.input_validator import validate_message_input
from ..ai.orchestrator import AgentComplete
from ..config import settings
from ..constants import ERROR_MESSAGES
from ..exceptions import NotFoundError, ValidationError
from ..memory.conversations import ConversationStore, title_from_message
from ..memory.database import DatabaseManager
from ..models import AgentResponse, Conversation, Message
from ..utils.rate_limit import RateLimiter, RateLimitResult
from .base import AgentService, enforce_rate_limit

logger = logging.getLogger(__name__)

Sink = Callable[[str], Awaitable[None]]


def to_history(messages: Sequence[Message]) -> list[dict]:
    """
    Stored messages as Anthropic message params. Consecutive same-role
    messages (a turn whose reply was never written) are merged so roles
    alternate.
    """
    history: list[dict] = []
    for m in messages:
        if not m.content:
            continue
        if history and history[-1]["role"] == m.role:
            history[-1]["content"] += "\n\n" + m.content
        else:
            history.append({"role": m.role, "content": m.content})
    if history and history[0]["role"] != "user":
        history.pop(0)
    return history


class ChatChannel:
    def __init__(
        self,
        db: DatabaseManager,
        agent: AgentService,
        limiter: RateLimiter,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> None:
        self._conversations = ConversationStore(db)
        self._agent = agent
        self._limiter = limiter
        self.limit = limit or settings.rate_limit_chat
        self.window_ms = window_ms or settings.rate_limit_window_ms

    # ── Turn lifecycle ──────────────────────────────────────────────────────────

    async def admit(
        self, user_id: str, conversation_id: str | None, message: object
    ) -> tuple[Conversation, str, RateLimitResult]:
        """
        Validate the message, resolve the conversation, then count the turn
        against `chat:<user_id>`. Rejected input and unknown conversations
        consume no quota, and a new conversation is only created once the
        turn has been admitted.
        """
        valid, reason = validate_message_input(message, settings.max_message_length)
        if not valid:
            key = "empty_message" if reason == "input_required" else reason
            raise ValidationError(ERROR_MESSAGES[key])
        text = message.strip()

        existing = await self._find(user_id, conversation_id) if conversation_id else None
        quota = enforce_rate_limit(self._limiter, f"chat:{user_id}", self.limit, self.window_ms)
        conversation = existing or await self.open_conversation(user_id, None, text)
        return conversation, text, quota

    async def _find(self, user_id: str, conversation_id: str) -> Conversation:
        conversation = await self._conversations.get(user_id, conversation_id)
        if conversation is None:
            raise NotFoundError(ERROR_MESSAGES["conversation_not_found"])
        return conversation

    async def open_conversation(
        self, user_id: str, conversation_id: str | None, message: str
    ) -> Conversation:
        """Return the owned conversation, or create one titled from the message."""
        if conversation_id:
            return await self._find(user_id, conversation_id)

        conversation = await self._conversations.create(
            user_id, title_from_message(message, settings.conversation_title_length)
        )
        logger.info("Created conversation %s for user %s", conversation.id, user_id)
        return conversation

    async def run_turn(
        self,
        user_id: str,
        conversation: Conversation,
        message: str,
        sink: Sink,
        timezone: str | None = None,
    ) -> AgentResponse:
        history = to_history(await self._conversations.get_messages(conversation.id))
        await self._conversations.append_message(conversation.id, "user", message)

        forwarding = True

        async def forward(text: str) -> None:
            nonlocal forwarding
            if not forwarding or not text:
                return
            try:
                await sink(text)
            except Exception as e:
                forwarding = False
                logger.info(
                    "Stopped streaming conversation %s (client gone?): %s", conversation.id, e,
                )

        response: AgentResponse | None = None
        async for event in self._agent.orchestrate_stream(user_id, message, timezone, history):
            if isinstance(event, TextChunk):
                await forward(event.text)
            elif isinstance(event, AgentComplete):
                response = event.response
                if event.synthesized:
                    await forward(("\n\n" if event.steps > 1 else "") + response.message)

        if response is None:
            raise RuntimeError("Agent stream ended without completing")

        await self._conversations.append_message(
            conversation.id, "assistant", response.message, response.tool_results or None,
        )
        logger.info(
            "Chat turn completed for user %s in %s (%d tool results)",
            user_id, conversation.id, len(response.tool_results),
        )
        return response

    # ── Conversation management ─────────────────────────────────────────────────

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        return await self._conversations.list_for_user(user_id)

    async def get_conversation(self, user_id: str, conversation_id: str) -> tuple[Conversation, list[Message]]:
        conversation = await self._conversations.get(user_id, conversation_id)
        if conversation is None:
            raise NotFoundError(ERROR_MESSAGES["conversation_not_found"])
        return conversation, await self._conversations.get_messages(conversation_id)

    async def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        if not await self._conversations.delete(user_id, conversation_id):
            raise NotFoundError(ERROR_MESSAGES["conversation_not_found"])
