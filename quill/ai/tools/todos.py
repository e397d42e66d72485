"""
Todo tool executors: create_todo, update_todo, complete_todo, delete_todo.

Priority is one of the four Eisenhower quadrants. due_date follows the same
rules as a reminder's remind_at: naive values are read in the invocation's
timezone and stored in UTC.
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from ...memory.todos import TodoStore
from ...models import ToolExecutionResult
from .base import Tool, not_found, success
from .reminders import normalize_remind_at

logger = logging.getLogger(__name__)

Priority = Literal["do_first", "schedule", "delegate", "eliminate"]

QUADRANT_LABELS = {
    "do_first": "Do First (urgent & important)",
    "schedule": "Schedule (important, not urgent)",
    "delegate": "Delegate (urgent, not important)",
    "eliminate": "Eliminate (not urgent, not important)",
}

_PRIORITY_HELP = (
    '"do_first" (urgent & important), "schedule" (important, not urgent), '
    '"delegate" (urgent, not important) or "eliminate" (not urgent, not important)'
)


def _due_date_validator(value: Optional[str], info: ValidationInfo) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return normalize_remind_at(value, (info.context or {}).get("tz"), field="due_date")


class CreateTodoInput(BaseModel):
    title: str = Field(min_length=1, description="A short, actionable task title")
    description: Optional[str] = Field(default=None, description="Optional longer description")
    priority: Priority = Field(
        default="do_first", description=f"Priority quadrant: {_PRIORITY_HELP}. Defaults to do_first.",
    )
    due_date: Optional[str] = Field(
        default=None, description="Optional ISO 8601 datetime the task is due",
    )

    @field_validator("due_date")
    @classmethod
    def _check_due_date(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _due_date_validator(v, info)


class UpdateTodoInput(BaseModel):
    todo_id: str = Field(min_length=1, description="ID of the todo, from the user context")
    title: Optional[str] = Field(default=None, min_length=1, description="New title")
    description: Optional[str] = Field(default=None, description="New description")
    priority: Optional[Priority] = Field(default=None, description="New priority quadrant")
    due_date: Optional[str] = Field(
        default=None, description="New ISO 8601 due date, or null to remove it",
    )

    @field_validator("due_date")
    @classmethod
    def _check_due_date(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _due_date_validator(v, info)

    def changes(self) -> dict:
        """Fields the caller actually set. description and due_date may be cleared with null."""
        return {
            k: getattr(self, k)
            for k in self.model_fields_set - {"todo_id"}
            if getattr(self, k) is not None or k in ("description", "due_date")
        }

    @model_validator(mode="after")
    def _has_change(self) -> "UpdateTodoInput":
        if not self.changes():
            raise ValueError("one of title, description, priority or due_date is required")
        return self


class TodoIdInput(BaseModel):
    todo_id: str = Field(min_length=1, description="ID of the todo, from the user context")


def todo_tools(todos: TodoStore) -> list[Tool]:
    async def create_todo(user_id: str, inp: CreateTodoInput) -> ToolExecutionResult:
        todo = await todos.create(
            user_id, inp.title, description=inp.description,
            priority=inp.priority, due_date=inp.due_date,
        )
        due = f" (due: {todo['due_date']})" if todo["due_date"] else ""
        logger.info("Created todo %s for user %s", todo["id"], user_id)
        return success(
            "create_todo",
            f'Created todo: "{todo["title"]}" in {todo["priority"]} quadrant{due}',
            todoId=todo["id"],
            title=todo["title"],
            priority=todo["priority"],
        )

    async def update_todo(user_id: str, inp: UpdateTodoInput) -> ToolExecutionResult:
        updated = await todos.update(user_id, inp.todo_id, **inp.changes())
        if updated is None:
            return not_found("update_todo", "todo", inp.todo_id)
        return success(
            "update_todo", f'Updated todo: "{updated["title"]}"',
            todoId=updated["id"], title=updated["title"],
        )

    async def complete_todo(user_id: str, inp: TodoIdInput) -> ToolExecutionResult:
        done = await todos.complete(user_id, inp.todo_id)
        if done is None:
            return not_found("complete_todo", "todo", inp.todo_id)
        return success("complete_todo", f'Completed todo: "{done["title"]}"', todoId=done["id"])

    async def delete_todo(user_id: str, inp: TodoIdInput) -> ToolExecutionResult:
        removed = await todos.delete(user_id, inp.todo_id)
        if removed is None:
            return not_found("delete_todo", "todo", inp.todo_id)
        return success("delete_todo", f'Deleted todo: "{removed["title"]}"', todoId=removed["id"])

    return [
        Tool(
            name="create_todo",
            description=(
                "Create a todo: a task or action item for the user's to-do list. Todos are "
                "sorted by priority into Eisenhower quadrants."
            ),
            executor=create_todo,
            input_model=CreateTodoInput,
        ),
        Tool(
            name="update_todo",
            description="Change an existing todo's title, description, priority or due date by id.",
            executor=update_todo,
            input_model=UpdateTodoInput,
        ),
        Tool(
            name="complete_todo",
            description="Mark an existing todo as done by id.",
            executor=complete_todo,
            input_model=TodoIdInput,
        ),
        Tool(
            name="delete_todo",
            description="Remove an existing todo from the user's list by id.",
            executor=delete_todo,
            input_model=TodoIdInput,
        ),
    ]
