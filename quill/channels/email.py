"""
Email ingest channel — Resend `email.received` webhooks and the ingestion log.

Webhook handling order:
  1. HMAC-SHA256 signature over the raw body (when a secret is configured)
  2. Event type filter (anything but email.received is a no-op)
  3. Sender allow-list
  4. User resolution: the recipient's local part as a user id, else the
     sender's address
  5. Body fetch from Resend (failure continues with an empty body)
  6. pending log → orchestrator → outcome overwrites the log
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..config import settings
from ..constants import EMAIL_RECEIVED_EVENT, ERROR_MESSAGES
from ..exceptions import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ProcessingError,
    QuillError,
    ValidationError,
)
from ..integrations.resend import EmailContent, ResendClient
from ..memory.database import DatabaseManager
from ..memory.ingestion_logs import IngestionLogStore
from ..models import AgentResponse, InboundEmail, IngestionLog, IngestionOutcome
from .base import AgentService

logger = logging.getLogger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, header: Optional[str], secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256; an optional `sha256=` prefix is accepted."""
    if not header:
        return False
    provided = header.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(provided.lower(), expected)


def recipient_local_part(address: str) -> Optional[str]:
    local, sep, _domain = address.partition("@")
    if not sep or not local.strip():
        return None
    return local.strip()


@dataclass
class WebhookOutcome:
    status: int
    body: dict[str, Any]


class EmailChannel:
    def __init__(
        self,
        db: DatabaseManager,
        agent: AgentService,
        resend: ResendClient | None = None,
        webhook_secret: str | None = None,
        allowed_senders: list[str] | None = None,
    ) -> None:
        self._db = db
        self._logs = IngestionLogStore(db)
        self._agent = agent
        self._resend = resend or ResendClient()
        self._secret = webhook_secret if webhook_secret is not None else settings.email_webhook_secret
        senders = allowed_senders if allowed_senders is not None else settings.email_allowed_senders
        self._allowed = {s.strip().lower() for s in senders if s.strip()}

    def is_sender_allowed(self, address: str) -> bool:
        return address.strip().lower() in self._allowed

    # ── Webhook ─────────────────────────────────────────────────────────────────

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Process one webhook delivery. Returns a 200 outcome or raises a
        QuillError subclass the HTTP layer maps to a status code.
        """
        if self._secret and not verify_signature(raw_body, signature, self._secret):
            logger.warning("Rejected email webhook with invalid signature")
            raise AuthenticationError(ERROR_MESSAGES["invalid_signature"])

        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(ERROR_MESSAGES["invalid_json"]) from e
        if not isinstance(payload, dict):
            raise ValidationError(ERROR_MESSAGES["invalid_json"])

        event_type = payload.get("type")
        if event_type != EMAIL_RECEIVED_EVENT:
            logger.info("Ignoring email webhook event %r", event_type)
            return WebhookOutcome(200, {"message": ERROR_MESSAGES["event_ignored"]})

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        email = InboundEmail.from_event_data(data)
        logger.info(
            "Inbound email from %s to %s (id=%s)", email.from_email, email.to_email, email.email_id,
        )

        if not self.is_sender_allowed(email.from_email):
            logger.warning("Email from non-allow-listed sender rejected: %s", email.from_email)
            raise ForbiddenError(ERROR_MESSAGES["sender_not_allowed"])

        local_part = recipient_local_part(email.to_email)
        if local_part is None:
            await self._record_rejection(email, None, ERROR_MESSAGES["invalid_recipient"])
            raise ValidationError(ERROR_MESSAGES["invalid_recipient"])

        user = await self._db.get_user(local_part) or await self._db.find_user_by_email(email.from_email)
        if user is None:
            await self._record_rejection(email, None, ERROR_MESSAGES["user_not_found"])
            raise NotFoundError(ERROR_MESSAGES["user_not_found"])

        content = await self._fetch_body(email.email_id)
        log = await self._logs.create_pending(
            user["id"], email.from_email, email.to_email, email.subject, content.body,
        )
        response = await self._run(log)
        return WebhookOutcome(200, {"success": True, **response.to_wire()})

    async def _fetch_body(self, email_id: str) -> EmailContent:
        try:
            return await self._resend.fetch_received(email_id)
        except QuillError as e:
            logger.error("Failed to fetch email %s from Resend: %s", email_id, e)
            return EmailContent()

    async def _record_rejection(self, email: InboundEmail, user_id: Optional[str], reason: str) -> None:
        log = await self._logs.create_pending(
            user_id, email.from_email, email.to_email, email.subject, "",
        )
        await self._logs.record_outcome(log.id, IngestionOutcome(status="failed", error_message=reason))

    async def _run(self, log: IngestionLog) -> AgentResponse:
        """Run the orchestrator for a log row and overwrite its outcome."""
        try:
            response = await self._agent.orchestrate(log.user_id, log.replay_input)
        except Exception as e:
            logger.error("Email processing failed for log %s: %s", log.id, e, exc_info=True)
            await self._logs.record_outcome(
                log.id, IngestionOutcome.from_response(None, error=ERROR_MESSAGES["processing_failed"]),
            )
            raise ProcessingError(ERROR_MESSAGES["processing_failed"]) from e

        outcome = IngestionOutcome.from_response(response)
        await self._logs.record_outcome(log.id, outcome)
        logger.info("Ingestion log %s %s (%s)", log.id, outcome.status, outcome.action_type)
        return response

    # ── Ingestion log ───────────────────────────────────────────────────────────

    async def list_logs(self, user_id: str, page: int = 1, limit: int = 20) -> dict[str, Any]:
        page = max(1, page)
        limit = min(max(1, limit), 100)
        items, total = await self._logs.list_for_user(user_id, limit=limit, offset=(page - 1) * limit)
        return {
            "items": [log.to_wire() for log in items],
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": (total + limit - 1) // limit,
        }

    async def get_log(self, user_id: str, log_id: str) -> IngestionLog:
        log = await self._logs.get(user_id, log_id)
        if log is None:
            raise NotFoundError(ERROR_MESSAGES["log_not_found"])
        return log

    async def delete_log(self, user_id: str, log_id: str) -> None:
        if not await self._logs.delete(user_id, log_id):
            raise NotFoundError(ERROR_MESSAGES["log_not_found"])

    async def reprocess(self, user_id: str, log_id: str) -> AgentResponse:
        """
        Re-run an owned log's original input and overwrite its outcome.
        Side effects of earlier runs are not undone.
        """
        log = await self.get_log(user_id, log_id)
        logger.info("Reprocessing ingestion log %s for user %s", log_id, user_id)
        return await self._run(log)
