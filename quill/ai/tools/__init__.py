"""
Tool package for native Anthropic tool use (function calling).

The package is organised into domain-specific modules:
- base.py: Tool dataclass, ToolCall, result helpers
- registry.py: ToolRegistry class, dispatch logic, build_tool_registry()
- notes.py: create_note / update_note / delete_note
- reminders.py: create_reminder / update_reminder / complete_reminder / cancel_reminder
- todos.py: create_todo / update_todo / complete_todo / delete_todo

Re-exports:
    ToolRegistry: Main class for dispatching tool calls
    build_tool_registry: Fresh registry of built-in tools for one invocation
"""

from .base import Tool, ToolCall
from .registry import ToolRegistry, build_tool_registry

__all__ = ["Tool", "ToolCall", "ToolRegistry", "build_tool_registry"]
