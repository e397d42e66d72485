"""
Tool definition shared by built-in and external tools.

A Tool pairs an Anthropic tool schema with an async executor. Built-in tools
declare a pydantic input model (its JSON schema is what the model sees);
external tools carry the raw JSON schema their provider published.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ...models import ToolExecutionResult, ToolFailure, ToolSuccess

Executor = Callable[[str, Any], Awaitable[ToolExecutionResult]]


class ToolInputError(Exception):
    """Tool input failed validation. The message is safe to show the model."""


@dataclass
class ToolCall:
    """One tool_use block requested by the model."""
    id: str
    name: str
    input: dict = field(default_factory=dict)


def success(action: str, message: str, **data: Any) -> ToolSuccess:
    return ToolSuccess(action=action, message=message, data=data)


def failure(action: str, error: str) -> ToolFailure:
    return ToolFailure(action=action, error=error)


def not_found(action: str, kind: str, record_id: str) -> ToolFailure:
    return failure(action, f"not_found: no {kind} with id {record_id}")


def _format_pydantic_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _check_required(schema: dict, raw: dict) -> None:
    missing = [k for k in schema.get("required", []) if k not in raw]
    if missing:
        raise ToolInputError(f"missing required field(s): {', '.join(missing)}")


@dataclass
class Tool:
    name: str
    description: str
    executor: Executor
    input_model: Optional[type[BaseModel]] = None
    raw_schema: dict = field(default_factory=dict)

    @property
    def input_schema(self) -> dict:
        if self.input_model is not None:
            schema = self.input_model.model_json_schema()
            schema.pop("title", None)
            return schema
        return self.raw_schema or {"type": "object", "properties": {}}

    def to_anthropic(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    def validate(self, raw: Any, context: dict | None = None) -> Any:
        """
        Return the executor's input. Raises ToolInputError on anything the
        executor must not see.
        """
        if not isinstance(raw, dict):
            raise ToolInputError("input must be a JSON object")
        if self.input_model is None:
            _check_required(self.raw_schema, raw)
            return raw
        try:
            return self.input_model.model_validate(raw, context=context)
        except PydanticValidationError as e:
            raise ToolInputError(_format_pydantic_errors(e)) from e
