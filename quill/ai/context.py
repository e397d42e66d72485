"""
Context builder — the grounding snapshot of a user's data for one invocation.

Retrieves concurrently:
  - The 20 most recently updated non-deleted notes (with a 100-char preview)
  - The 20 newest pending reminders
  - The 20 newest pending todos
  - All tag names
  - Active third-party integrations

and renders them as a <user_context> XML block for the system prompt.
"""

import asyncio
import logging

from ..config import settings
from ..memory.database import DatabaseManager
from ..memory.integrations import IntegrationStore
from ..memory.notes import NoteStore
from ..memory.reminders import ReminderStore
from ..memory.todos import TodoStore
from ..models import IntegrationSummary, NoteSummary, ReminderSummary, TodoSummary, UserContext
from .input_validator import sanitize_context_text
from .tools.todos import QUADRANT_LABELS

logger = logging.getLogger(__name__)


def _preview(content: str, length: int) -> str:
    return content[:length].strip()


class ContextBuilder:
    """Builds a UserContext. Read-only; store errors propagate to the caller."""

    def __init__(
        self,
        db: DatabaseManager,
        note_limit: int | None = None,
        reminder_limit: int | None = None,
        todo_limit: int | None = None,
        preview_chars: int | None = None,
    ) -> None:
        self._notes = NoteStore(db)
        self._reminders = ReminderStore(db)
        self._todos = TodoStore(db)
        self._integrations = IntegrationStore(db)
        self._note_limit = note_limit or settings.context_note_limit
        self._reminder_limit = reminder_limit or settings.context_reminder_limit
        self._todo_limit = todo_limit or settings.context_todo_limit
        self._preview_chars = preview_chars or settings.context_preview_chars

    async def build(self, user_id: str) -> UserContext:
        notes, reminders, todos, tags, integrations = await asyncio.gather(
            self._notes.list_active(user_id, limit=self._note_limit),
            self._reminders.list_pending(user_id, limit=self._reminder_limit),
            self._todos.list_pending(user_id, limit=self._todo_limit),
            self._notes.list_tags(user_id),
            self._integrations.list_active(user_id),
        )

        context = UserContext(
            notes=[
                NoteSummary(
                    id=n["id"],
                    title=n["title"],
                    preview=_preview(n["content"], self._preview_chars),
                    updated_at=n["updated_at"],
                )
                for n in notes
            ],
            reminders=[
                ReminderSummary(
                    id=r["id"], message=r["message"],
                    remind_at=r["remind_at"], status=r["status"],
                )
                for r in reminders
            ],
            todos=[
                TodoSummary(
                    id=t["id"], title=t["title"], description=t["description"],
                    priority=t["priority"], due_date=t["due_date"],
                )
                for t in todos
            ],
            tags=[t["name"] for t in tags],
            integrations=[IntegrationSummary(**i) for i in integrations],
        )
        logger.debug(
            "Context for user %s: %d notes, %d reminders, %d todos, %d tags, %d integrations",
            user_id, len(context.notes), len(context.reminders), len(context.todos),
            len(context.tags), len(context.integrations),
        )
        return context


def format_context(context: UserContext) -> str:
    """Render the snapshot as XML. All user-derived text is escaped."""
    esc = sanitize_context_text
    parts = ["<user_context>"]

    if context.notes:
        parts.append("  <notes>")
        for n in context.notes:
            parts.append(
                f"    <note id='{n.id}' updated_at='{n.updated_at}'>"
                f"{esc(n.title)}: {esc(n.preview)}</note>"
            )
        parts.append("  </notes>")
    else:
        parts.append("  <notes>none</notes>")

    if context.reminders:
        parts.append("  <reminders>")
        for r in context.reminders:
            when = r.remind_at or "unscheduled"
            parts.append(
                f"    <reminder id='{r.id}' remind_at='{when}' status='{r.status}'>"
                f"{esc(r.message)}</reminder>"
            )
        parts.append("  </reminders>")
    else:
        parts.append("  <reminders>none</reminders>")

    if context.todos:
        parts.append("  <todos>")
        for t in context.todos:
            due = f" due='{t.due_date}'" if t.due_date else ""
            detail = f": {esc(t.description)}" if t.description else ""
            quadrant = QUADRANT_LABELS.get(t.priority, t.priority)
            parts.append(
                f"    <todo id='{t.id}' priority='{t.priority}'{due}>"
                f"{esc(t.title)}{detail} [{quadrant}]</todo>"
            )
        parts.append("  </todos>")
    else:
        parts.append("  <todos>none</todos>")

    tags = ", ".join(esc(t) for t in context.tags) if context.tags else "none"
    parts.append(f"  <tags>{tags}</tags>")

    providers = ", ".join(i.provider for i in context.integrations) or "none"
    parts.append(f"  <integrations>{providers}</integrations>")

    parts.append("</user_context>")
    return "\n".join(parts)
