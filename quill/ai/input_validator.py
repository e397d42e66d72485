"""
Input validation and sanitization.

Guards against:
  - Empty or excessively long inputs
  - Prompt injection (crafted jailbreaks), flagged but not blocked
  - User-derived text smuggling markup into the grounding context
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

_ANY_TAG = re.compile(r"</?[a-zA-Z][^>]*>")

# Patterns that suggest prompt injection attacks
_PROMPT_INJECTION_PATTERNS = [
    re.compile(r"ignore.*previous.*instruction|disregard.*prompt|forget.*context", re.IGNORECASE),
    re.compile(r"system.*override|system.*prompt|root.*access", re.IGNORECASE),
    re.compile(r"role.*play.*as.*admin|pretend.*you.*are.*uncensored", re.IGNORECASE),
]

MAX_MESSAGE_LENGTH = 10_000  # chars


def validate_message_input(
    text: object, max_length: int = MAX_MESSAGE_LENGTH
) -> tuple[bool, Optional[str]]:
    """
    Validate free text headed for the orchestrator.
    Returns (valid, reason_if_invalid) where the reason is an ERROR_MESSAGES key.
    """
    if not isinstance(text, str) or not text.strip():
        return False, "input_required"

    if len(text) > max_length:
        return False, "message_too_long"

    for pattern in _PROMPT_INJECTION_PATTERNS:
        if pattern.search(text):
            logger.warning("Potential prompt injection detected in message: %s…", text[:100])
            break

    return True, None


def sanitize_context_text(text: str) -> str:
    """
    Escape XML-like tags in user-derived text (note titles, reminder messages,
    tag names) so it cannot open or close the context block it is embedded in.
    """
    found_tags = _ANY_TAG.findall(text)
    sanitized = text
    warned = False
    for tag in set(found_tags):
        escaped = tag.replace("<", "&lt;").replace(">", "&gt;")
        sanitized = sanitized.replace(tag, escaped)
        if not warned:
            logger.warning("Escaped potentially dangerous tag in context: %s", tag)
            warned = True
    return sanitized
