"""Note tool executors: create_note, update_note, delete_note."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ...memory.notes import NoteStore
from ...models import ToolExecutionResult
from .base import Tool, not_found, success

logger = logging.getLogger(__name__)


class CreateNoteInput(BaseModel):
    title: str = Field(min_length=1, description="A concise, descriptive title for the note")
    content: str = Field(
        description="The full content of the note, formatted as clean markdown if appropriate"
    )
    tags: Optional[list[str]] = Field(
        default=None,
        description="1-3 relevant tag names from the user's available tags",
    )

    @field_validator("tags")
    @classmethod
    def _at_most_three(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return v[:3] if v else v


class UpdateNoteInput(BaseModel):
    note_id: str = Field(min_length=1, description="ID of the note to update, from the user context")
    title: Optional[str] = Field(default=None, description="New title")
    content: Optional[str] = Field(default=None, description="Replacement content")
    append_content: Optional[str] = Field(
        default=None, description="Text to add at the end of the existing content"
    )

    @model_validator(mode="after")
    def _has_change(self) -> "UpdateNoteInput":
        if self.title is None and self.content is None and self.append_content is None:
            raise ValueError("one of title, content or append_content is required")
        return self


class DeleteNoteInput(BaseModel):
    note_id: str = Field(min_length=1, description="ID of the note to delete, from the user context")


def note_tools(notes: NoteStore) -> list[Tool]:
    async def create_note(user_id: str, inp: CreateNoteInput) -> ToolExecutionResult:
        note = await notes.create(user_id, inp.title, inp.content)
        assigned = await notes.assign_tags(user_id, note["id"], inp.tags or [])
        message = f'Created note: "{note["title"]}"'
        if assigned:
            message += f" with tags: {', '.join(assigned)}"
        logger.info("Created note %s for user %s", note["id"], user_id)
        return success(
            "create_note", message, noteId=note["id"], title=note["title"], tags=assigned,
        )

    async def update_note(user_id: str, inp: UpdateNoteInput) -> ToolExecutionResult:
        existing = await notes.get(user_id, inp.note_id)
        if existing is None:
            return not_found("update_note", "note", inp.note_id)

        content = inp.content
        if inp.append_content:
            base = content if content is not None else existing["content"]
            content = f"{base}\n\n{inp.append_content}" if base else inp.append_content

        updated = await notes.update(user_id, inp.note_id, title=inp.title, content=content)
        if updated is None:
            return not_found("update_note", "note", inp.note_id)
        return success(
            "update_note", f'Updated note: "{updated["title"]}"',
            noteId=updated["id"], title=updated["title"],
        )

    async def delete_note(user_id: str, inp: DeleteNoteInput) -> ToolExecutionResult:
        existing = await notes.get(user_id, inp.note_id)
        if existing is None or not await notes.soft_delete(user_id, inp.note_id):
            return not_found("delete_note", "note", inp.note_id)
        return success("delete_note", f'Deleted note: "{existing["title"]}"', noteId=inp.note_id)

    return [
        Tool(
            name="create_note",
            description=(
                "Create a new note with a title and content. Use this when the user wants to "
                "save information or write something down and no existing note matches. "
                "Suggest 1-3 relevant tags from the user's available tags."
            ),
            executor=create_note,
            input_model=CreateNoteInput,
        ),
        Tool(
            name="update_note",
            description=(
                "Update an existing note by id: rename it, replace its content, or append to it. "
                "Prefer this over create_note when the user refers to a note they already have."
            ),
            executor=update_note,
            input_model=UpdateNoteInput,
        ),
        Tool(
            name="delete_note",
            description="Move an existing note to the trash by id.",
            executor=delete_note,
            input_model=DeleteNoteInput,
        ),
    ]

