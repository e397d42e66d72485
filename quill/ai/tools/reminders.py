"""
Reminder tool executors: create_reminder, update_reminder, complete_reminder,
cancel_reminder.

remind_at accepts any ISO 8601 datetime. A value without an offset is taken
to be wall-clock time in the invocation's timezone (passed through the
pydantic validation context as "tz"); everything is stored in UTC.
"""

from __future__ import annotations

import logging
import zoneinfo
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from ...memory.reminders import ReminderStore
from ...models import ToolExecutionResult
from .base import Tool, not_found, success

logger = logging.getLogger(__name__)

NotifyVia = Literal["email", "push", "both"]
ReminderStatus = Literal["pending", "sent", "cancelled", "completed"]


def normalize_remind_at(
    value: str, tz: zoneinfo.ZoneInfo | None = None, field: str = "remind_at"
) -> str:
    """Parse an ISO 8601 string and return it as a UTC ISO string. Raises ValueError."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValueError(f"{field} is not a valid ISO 8601 datetime: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz or timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def _remind_at_validator(value: Optional[str], info: ValidationInfo) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    tz = (info.context or {}).get("tz")
    return normalize_remind_at(value, tz)


class CreateReminderInput(BaseModel):
    message: str = Field(
        min_length=1, description="What the user wants to be reminded about"
    )
    remind_at: Optional[str] = Field(
        default=None,
        description="ISO 8601 datetime for when to send the reminder, or null if no time was given",
    )
    notify_via: NotifyVia = Field(
        default="both",
        description='"email", "push" or "both". Defaults to "both" if the user did not say.',
    )

    @field_validator("remind_at")
    @classmethod
    def _check_remind_at(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _remind_at_validator(v, info)


class UpdateReminderInput(BaseModel):
    reminder_id: str = Field(min_length=1, description="ID of the reminder, from the user context")
    message: Optional[str] = Field(default=None, min_length=1, description="New reminder text")
    remind_at: Optional[str] = Field(default=None, description="New ISO 8601 datetime")
    status: Optional[ReminderStatus] = Field(default=None, description="New status")
    notify_via: Optional[NotifyVia] = Field(default=None, description="New delivery channel")

    @field_validator("remind_at")
    @classmethod
    def _check_remind_at(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        return _remind_at_validator(v, info)

    def changes(self) -> dict:
        """Fields the caller actually set. remind_at may be cleared with null; the rest may not."""
        return {
            k: getattr(self, k)
            for k in self.model_fields_set - {"reminder_id"}
            if getattr(self, k) is not None or k == "remind_at"
        }

    @model_validator(mode="after")
    def _has_change(self) -> "UpdateReminderInput":
        if not self.changes():
            raise ValueError("one of message, remind_at, status or notify_via is required")
        return self


class ReminderIdInput(BaseModel):
    reminder_id: str = Field(min_length=1, description="ID of the reminder, from the user context")


def reminder_tools(reminders: ReminderStore) -> list[Tool]:
    async def create_reminder(user_id: str, inp: CreateReminderInput) -> ToolExecutionResult:
        reminder = await reminders.create(
            user_id, inp.message, remind_at=inp.remind_at, notify_via=inp.notify_via,
        )
        when = f" at {reminder['remind_at']}" if reminder["remind_at"] else ""
        logger.info("Created reminder %s for user %s", reminder["id"], user_id)
        return success(
            "create_reminder",
            f'Created reminder: "{reminder["message"]}"{when}',
            reminderId=reminder["id"],
            remindAt=reminder["remind_at"],
            notifyVia=reminder["notify_via"],
        )

    async def update_reminder(user_id: str, inp: UpdateReminderInput) -> ToolExecutionResult:
        updated = await reminders.update(user_id, inp.reminder_id, **inp.changes())
        if updated is None:
            return not_found("update_reminder", "reminder", inp.reminder_id)
        return success(
            "update_reminder", f'Updated reminder: "{updated["message"]}"',
            reminderId=updated["id"],
        )

    def _status_setter(action: str, status: str, verb: str):
        async def execute(user_id: str, inp: ReminderIdInput) -> ToolExecutionResult:
            updated = await reminders.set_status(user_id, inp.reminder_id, status)
            if updated is None:
                return not_found(action, "reminder", inp.reminder_id)
            return success(action, f'{verb} reminder: "{updated["message"]}"', reminderId=updated["id"])
        return execute

    return [
        Tool(
            name="create_reminder",
            description=(
                "Create a reminder to notify the user, optionally at a specific time. If the user "
                'mentions push notifications use notify_via "push"; if they mention email use '
                '"email"; otherwise leave the default "both".'
            ),
            executor=create_reminder,
            input_model=CreateReminderInput,
        ),
        Tool(
            name="update_reminder",
            description="Change an existing reminder's text, time, status or delivery channel by id.",
            executor=update_reminder,
            input_model=UpdateReminderInput,
        ),
        Tool(
            name="complete_reminder",
            description="Mark an existing reminder as done by id.",
            executor=_status_setter("complete_reminder", "completed", "Completed"),
            input_model=ReminderIdInput,
        ),
        Tool(
            name="cancel_reminder",
            description="Cancel an existing reminder by id so it is never sent.",
            executor=_status_setter("cancel_reminder", "cancelled", "Cancelled"),
            input_model=ReminderIdInput,
        ),
    ]
