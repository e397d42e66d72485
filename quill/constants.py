"""
Shared constants for quill.

Centralises values that are used across multiple modules to avoid duplication
and ensure consistency.
"""

# ── Standardised error messages ─────────────────────────────────────────────────
ERROR_MESSAGES = {
    "rate_limited": "Too many requests. Please wait a moment.",
    "unauthorized": "Unauthorized",
    "processing_failed": "Failed to process input",
    "internal": "Internal server error",
    "empty_message": "Message is required",
    "input_required": "Input is required",
    "message_too_long": "Your message is too long. Please shorten it.",
    "invalid_json": "Request body must be valid JSON",
    "conversation_not_found": "Conversation not found",
    "log_not_found": "Log not found",
    "invalid_signature": "Invalid signature",
    "sender_not_allowed": "Sender not authorized",
    "invalid_recipient": "Invalid email format",
    "user_not_found": "User not found",
    "event_ignored": "Event type not handled",
}


# ── Integrations ───────────────────────────────────────────────────────────────
CALENDAR_PROVIDER = "google-calendar"


# ── Inbound email ───────────────────────────────────────────────────────────────
EMAIL_RECEIVED_EVENT = "email.received"
SIGNATURE_HEADER = "svix-signature"


# ── HTTP headers ────────────────────────────────────────────────────────────────
CONVERSATION_ID_HEADER = "X-Conversation-Id"
