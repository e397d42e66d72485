"""
Pydantic v2 data models for quill.

Wire-facing models serialise with camelCase aliases (`toolResults`, `noteId`)
so HTTP responses and stored JSON match the public contract.
"""

from datetime import datetime, timezone
from email.utils import parseaddr
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utcnow() -> str:
    """UTC timestamp in ISO 8601, the single timestamp format stored in SQLite."""
    return datetime.now(timezone.utc).isoformat()


# --------------------------------------------------------------------------- #
# Tool results                                                                 #
# --------------------------------------------------------------------------- #

class ToolSuccess(BaseModel):
    success: Literal[True] = True
    action: str
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)


class ToolFailure(BaseModel):
    success: Literal[False] = False
    action: str
    error: str


ToolExecutionResult = Union[ToolSuccess, ToolFailure]

_tool_results_adapter = TypeAdapter(list[ToolExecutionResult])


def parse_tool_results(raw: Any) -> list[ToolExecutionResult]:
    """Rehydrate a stored list of tool results (JSON text or already-decoded list)."""
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)):
        return _tool_results_adapter.validate_json(raw)
    return _tool_results_adapter.validate_python(raw)


def dump_tool_results(results: list[ToolExecutionResult]) -> list[dict]:
    return [r.model_dump() for r in results]


class AgentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    tool_results: list[ToolExecutionResult] = Field(default_factory=list, alias="toolResults")

    @property
    def primary_result(self) -> Optional[ToolExecutionResult]:
        return self.tool_results[0] if self.tool_results else None

    def to_wire(self) -> dict:
        return {"message": self.message, "toolResults": dump_tool_results(self.tool_results)}


# --------------------------------------------------------------------------- #
# Grounding context                                                            #
# --------------------------------------------------------------------------- #

class NoteSummary(BaseModel):
    id: str
    title: str
    preview: str
    updated_at: str


class ReminderSummary(BaseModel):
    id: str
    message: str
    remind_at: Optional[str] = None
    status: str


class TodoSummary(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    priority: str
    due_date: Optional[str] = None


class IntegrationSummary(BaseModel):
    provider: str
    connected_account_id: str


class UserContext(BaseModel):
    notes: list[NoteSummary] = Field(default_factory=list)
    reminders: list[ReminderSummary] = Field(default_factory=list)
    todos: list[TodoSummary] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    integrations: list[IntegrationSummary] = Field(default_factory=list)

    def has_integration(self, provider: str) -> bool:
        return any(i.provider == provider for i in self.integrations)


# --------------------------------------------------------------------------- #
# Records                                                                      #
# --------------------------------------------------------------------------- #

class Conversation(BaseModel):
    id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class Message(BaseModel):
    id: str
    conversation_id: str
    role: Literal["user", "assistant"]
    content: str
    tool_results: Optional[list[ToolExecutionResult]] = None
    created_at: str

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "toolResults": dump_tool_results(self.tool_results) if self.tool_results else None,
            "createdAt": self.created_at,
        }


class IngestionLog(BaseModel):
    id: str
    user_id: Optional[str] = None
    from_email: str
    to_email: str
    subject: Optional[str] = None
    body: str
    ai_result: Optional[dict[str, Any]] = None
    action_type: Optional[str] = None
    status: Literal["pending", "processed", "failed"] = "pending"
    error_message: Optional[str] = None
    related_note_id: Optional[str] = None
    related_reminder_id: Optional[str] = None
    created_at: str

    @property
    def replay_input(self) -> str:
        """Rebuild the orchestrator input the original message produced."""
        prefix = f"{self.subject}\n\n" if self.subject else ""
        return f"{prefix}{self.body}"

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "fromEmail": self.from_email,
            "toEmail": self.to_email,
            "subject": self.subject,
            "body": self.body,
            "aiResult": self.ai_result,
            "actionType": self.action_type,
            "status": self.status,
            "errorMessage": self.error_message,
            "relatedNoteId": self.related_note_id,
            "relatedReminderId": self.related_reminder_id,
            "createdAt": self.created_at,
        }


class IngestionOutcome(BaseModel):
    """The overwritable part of an IngestionLog, derived from one orchestrator run."""

    ai_result: Optional[dict[str, Any]] = None
    action_type: Optional[str] = None
    status: Literal["processed", "failed"]
    error_message: Optional[str] = None
    related_note_id: Optional[str] = None
    related_reminder_id: Optional[str] = None

    @classmethod
    def from_response(
        cls, response: Optional[AgentResponse], error: Optional[str] = None
    ) -> "IngestionOutcome":
        primary = response.primary_result if response is not None else None
        ok = isinstance(primary, ToolSuccess)

        note_id = reminder_id = None
        if ok:
            note_id = primary.data.get("noteId")
            reminder_id = primary.data.get("reminderId")

        if error is None and not ok:
            if isinstance(primary, ToolFailure):
                error = primary.error
            elif response is not None:
                error = "No action was taken"

        return cls(
            ai_result=response.to_wire() if response is not None else None,
            action_type=primary.action if primary is not None else None,
            status="processed" if ok else "failed",
            error_message=None if ok else error,
            related_note_id=note_id,
            related_reminder_id=reminder_id,
        )


def _bare_address(value: object) -> str:
    """`"Jane <jane@example.com>"` → `jane@example.com`."""
    raw = str(value).strip()
    return parseaddr(raw)[1] or raw


class InboundEmail(BaseModel):
    """Metadata carried by an `email.received` event (the body is fetched separately)."""

    from_email: str
    to_email: str
    subject: Optional[str] = None
    email_id: str = ""

    @classmethod
    def from_event_data(cls, data: dict) -> "InboundEmail":
        sender = data.get("from") or ""
        recipient = data.get("to") or ""
        if isinstance(sender, list):
            sender = sender[0] if sender else ""
        if isinstance(recipient, list):
            recipient = recipient[0] if recipient else ""
        return cls(
            from_email=_bare_address(sender),
            to_email=_bare_address(recipient),
            subject=data.get("subject") or None,
            email_id=str(data.get("email_id") or ""),
        )
