"""
Tool registry class and dispatch logic.

A registry is built fresh for every invocation: the built-in note, reminder and todo
tools, plus whatever external tools the caller appends with extend(). Every
dispatch returns a ToolExecutionResult; nothing raised by an executor escapes.
"""

from __future__ import annotations

import asyncio
import logging
import zoneinfo
from typing import Any, Iterable, Sequence

from ...memory.database import DatabaseManager
from ...memory.notes import NoteStore
from ...memory.reminders import ReminderStore
from ...memory.todos import TodoStore
from ...models import ToolExecutionResult
from .base import Tool, ToolCall, ToolInputError, failure
from .notes import note_tools
from .reminders import reminder_tools
from .todos import todo_tools

logger = logging.getLogger(__name__)


class ToolRegistry:
    """
    Holds the tools available to one invocation and dispatches tool calls
    from the Anthropic API.

    `validation_context` is handed to every pydantic input model (the
    invocation timezone lives there).
    """

    def __init__(
        self,
        tools: Iterable[Tool] = (),
        validation_context: dict[str, Any] | None = None,
    ) -> None:
        self._tools: dict[str, Tool] = {}
        self._validation_context = validation_context or {}
        self.extend(tools)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("Tool %s registered twice; keeping the newer one", tool.name)
        self._tools[tool.name] = tool

    def extend(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    @property
    def schemas(self) -> list[dict]:
        """Anthropic tool schemas in registration order."""
        return [t.to_anthropic() for t in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(self, tool_name: str, tool_input: Any, user_id: str) -> ToolExecutionResult:
        """Validate and execute one tool call."""
        tool = self._tools.get(tool_name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", tool_name)
            return failure(tool_name, f"unknown tool: {tool_name}")

        try:
            validated = tool.validate(tool_input, self._validation_context)
        except ToolInputError as e:
            logger.info("Tool %s rejected input for user %s: %s", tool_name, user_id, e)
            return failure(tool_name, f"validation: {e}")

        try:
            return await tool.executor(user_id, validated)
        except Exception as e:
            logger.error(
                "Tool %s failed for user %s: %s", tool_name, user_id, e, exc_info=True,
            )
            return failure(tool_name, f"Tool '{tool_name}' encountered an error")

    async def dispatch_many(
        self, calls: Sequence[ToolCall], user_id: str
    ) -> list[ToolExecutionResult]:
        """Execute one step's calls concurrently; results keep request order."""
        return list(
            await asyncio.gather(*(self.dispatch(c.name, c.input, user_id) for c in calls))
        )


def build_tool_registry(db: DatabaseManager, tz: zoneinfo.ZoneInfo) -> ToolRegistry:
    """The built-in tools, bound to the store and the invocation timezone."""
    return ToolRegistry(
        [
            *note_tools(NoteStore(db)),
            *reminder_tools(ReminderStore(db)),
            *todo_tools(TodoStore(db)),
        ],
        validation_context={"tz": tz},
    )
