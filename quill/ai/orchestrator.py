"""
Agent orchestrator — the bounded reason/act loop.

Each step is one model call. If the model asks for tools, the step's calls
are executed concurrently (results in request order) and fed back before the
next step. After `max_steps` tool-using steps the loop stops without another
model call and a best-effort message is built from the collected results.

stream() yields events as they happen; run() drains it and returns the
final AgentResponse. Streaming and batch callers share one loop.
"""

from __future__ import annotations

import json
import logging
import zoneinfo
from dataclasses import dataclass
from typing import AsyncIterator, Protocol, Sequence, Union

from ..config import settings
from ..models import AgentResponse, ToolExecutionResult, ToolSuccess, UserContext
from .claude_client import ModelEvent, ModelTurn, TextChunk
from .prompts import build_system_prompt
from .tools.base import ToolCall
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    def stream_turn(
        self, messages: list[dict], system: str, tools: list[dict]
    ) -> AsyncIterator[ModelEvent]: ...


# --------------------------------------------------------------------------- #
# Agent events                                                                #
# --------------------------------------------------------------------------- #

@dataclass
class ToolCallChunk:
    """The model requested a tool (emitted before execution)."""
    step: int
    call: ToolCall


@dataclass
class ToolResultChunk:
    """A requested tool has finished."""
    step: int
    call: ToolCall
    result: ToolExecutionResult


@dataclass
class AgentComplete:
    response: AgentResponse
    steps: int
    hit_step_limit: bool = False
    # True when the message was built from tool results rather than streamed
    synthesized: bool = False


AgentEvent = Union[TextChunk, ToolCallChunk, ToolResultChunk, AgentComplete]


def _tool_result_block(call: ToolCall, result: ToolExecutionResult) -> dict:
    return {
        "type": "tool_result",
        "tool_use_id": call.id,
        "content": json.dumps(result.model_dump()),
        "is_error": not result.success,
    }


def _assistant_blocks(turn: ModelTurn) -> list[dict]:
    if turn.assistant_blocks:
        return turn.assistant_blocks
    blocks: list[dict] = [{"type": "text", "text": turn.text}] if turn.text else []
    blocks.extend(
        {"type": "tool_use", "id": c.id, "name": c.name, "input": c.input}
        for c in turn.tool_calls
    )
    return blocks


def summarize_results(results: Sequence[ToolExecutionResult]) -> str:
    """A plain confirmation built only from tool results."""
    if not results:
        return "I wasn't able to complete that request."
    lines = []
    for r in results:
        if isinstance(r, ToolSuccess):
            lines.append(r.message or f"{r.action} succeeded")
        else:
            lines.append(f"{r.action} failed: {r.error}")
    return "Here's what I did:\n" + "\n".join(f"- {line}" for line in lines)


class AgentOrchestrator:
    def __init__(self, model: ModelClient, max_steps: int | None = None) -> None:
        self._model = model
        self._max_steps = max(1, max_steps or settings.agent_max_steps)

    @property
    def max_steps(self) -> int:
        return self._max_steps

    async def stream(
        self,
        user_id: str,
        text: str,
        context: UserContext,
        registry: ToolRegistry,
        tz: zoneinfo.ZoneInfo,
        history: Sequence[dict] = (),
        has_calendar_tools: bool = False,
    ) -> AsyncIterator[AgentEvent]:
        """
        Run the loop for one invocation, yielding events as they happen.
        The last event is always AgentComplete. Model failures propagate.
        """
        system = build_system_prompt(context, tz, has_calendar_tools)
        messages: list[dict] = [dict(m) for m in history]
        if messages and messages[-1]["role"] == "user" and isinstance(messages[-1]["content"], str):
            # An earlier turn that never got a reply; roles must alternate
            messages[-1]["content"] += "\n\n" + text
        else:
            messages.append({"role": "user", "content": text})
        tools = registry.schemas
        results: list[ToolExecutionResult] = []

        for step in range(1, self._max_steps + 1):
            turn: ModelTurn | None = None
            async for event in self._model.stream_turn(messages, system, tools):
                if isinstance(event, TextChunk):
                    yield event
                else:
                    turn = event

            if turn is None:
                turn = ModelTurn(text="")

            if not turn.tool_calls:
                message = turn.text.strip()
                synthesized = not message
                if synthesized:
                    message = summarize_results(results)
                logger.info(
                    "Agent finished for user %s after %d step(s), %d tool call(s)",
                    user_id, step, len(results),
                )
                yield AgentComplete(
                    AgentResponse(message=message, tool_results=results),
                    steps=step,
                    synthesized=synthesized,
                )
                return

            for call in turn.tool_calls:
                logger.info("Step %d: %s requested for user %s", step, call.name, user_id)
                yield ToolCallChunk(step=step, call=call)

            step_results = await registry.dispatch_many(turn.tool_calls, user_id)
            for call, result in zip(turn.tool_calls, step_results):
                yield ToolResultChunk(step=step, call=call, result=result)
            results.extend(step_results)

            messages.append({"role": "assistant", "content": _assistant_blocks(turn)})
            messages.append({
                "role": "user",
                "content": [_tool_result_block(c, r) for c, r in zip(turn.tool_calls, step_results)],
            })

        logger.warning(
            "Agent hit the step limit (%d) for user %s with %d tool call(s)",
            self._max_steps, user_id, len(results),
        )
        yield AgentComplete(
            AgentResponse(message=summarize_results(results), tool_results=results),
            steps=self._max_steps,
            hit_step_limit=True,
            synthesized=True,
        )

    async def run(self, *args, **kwargs) -> AgentResponse:
        """Drain stream() and return the final response."""
        response: AgentResponse | None = None
        async for event in self.stream(*args, **kwargs):
            if isinstance(event, AgentComplete):
                response = event.response
        if response is None:
            raise RuntimeError("Agent stream ended without completing")
        return response
