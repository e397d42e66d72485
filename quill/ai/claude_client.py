"""
Anthropic Claude API client with streaming tool use.

stream_turn() runs ONE model call: it yields TextChunk deltas as they arrive
and finishes with a ModelTurn describing what the model asked for. Looping
over turns and executing tools is the orchestrator's job.

Includes exponential backoff on rate-limit, overload and connection errors.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Union

import anthropic

from ..config import settings
from ..exceptions import ServiceUnavailableError
from .tools.base import ToolCall

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Model events                                                                #
# --------------------------------------------------------------------------- #

@dataclass
class TextChunk:
    """A partial text delta from Claude."""
    text: str


@dataclass
class ModelTurn:
    """
    The end of one model call.
    `assistant_blocks` are the raw content blocks needed to replay this turn
    in the next request.
    """
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: str | None = None
    assistant_blocks: list[dict] = field(default_factory=list)


ModelEvent = Union[TextChunk, ModelTurn]


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (anthropic.RateLimitError, anthropic.APIConnectionError)):
        return True
    return isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500


class ClaudeClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        # The SDK's own retries are disabled so backoff is only applied here
        self._client = client or anthropic.AsyncAnthropic(
            api_key=api_key or settings.anthropic_api_key, max_retries=0,
        )
        self._model = model or settings.model_agent
        self._max_retries = max_retries or settings.claude_max_retries
        self._retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.claude_retry_base_delay
        )

    async def stream_turn(
        self,
        messages: list[dict],
        system: str,
        tools: list[dict],
    ) -> AsyncIterator[ModelEvent]:
        """
        Stream one response from Claude.

        Transient errors are retried while nothing has been yielded yet; once
        text has reached the caller a retry would duplicate it, so the error
        is surfaced instead. Raises ServiceUnavailableError on final failure.
        """
        for attempt in range(self._max_retries):
            emitted = False
            try:
                async with self._client.messages.stream(
                    model=self._model,
                    max_tokens=settings.anthropic_max_tokens,
                    system=system,
                    messages=messages,
                    tools=tools,
                ) as stream:
                    async for text in stream.text_stream:
                        emitted = True
                        yield TextChunk(text=text)
                    final_msg = await stream.get_final_message()
            except anthropic.APIError as e:
                if emitted or not _is_retryable(e) or attempt == self._max_retries - 1:
                    logger.error(
                        "Anthropic request failed (attempt %d/%d): %s",
                        attempt + 1, self._max_retries, e,
                    )
                    raise ServiceUnavailableError(f"Model request failed: {e}") from e
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Anthropic transient error %s (attempt %d/%d). Retrying in %.1fs",
                    type(e).__name__, attempt + 1, self._max_retries, delay,
                )
                await asyncio.sleep(delay)
                continue

            yield _to_model_turn(final_msg)
            return


def _to_model_turn(final_msg) -> ModelTurn:
    texts: list[str] = []
    tool_calls: list[ToolCall] = []
    blocks: list[dict] = []
    for block in final_msg.content:
        if block.type == "text":
            texts.append(block.text)
            blocks.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            tool_calls.append(ToolCall(id=block.id, name=block.name, input=block.input or {}))
            blocks.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
    return ModelTurn(
        text="".join(texts),
        tool_calls=tool_calls,
        stop_reason=final_msg.stop_reason,
        assistant_blocks=blocks,
    )
