"""Direct process channel: one stateless, rate-limited invocation per request."""

import logging

from ..ai.input_validator import validate_message_input
from ..config import settings
from ..constants import ERROR_MESSAGES
from ..exceptions import ProcessingError, ValidationError
from ..models import AgentResponse
from ..utils.rate_limit import RateLimiter, RateLimitResult
from .base import AgentService, enforce_rate_limit

logger = logging.getLogger(__name__)


class ProcessChannel:
    def __init__(
        self,
        agent: AgentService,
        limiter: RateLimiter,
        limit: int | None = None,
        window_ms: int | None = None,
    ) -> None:
        self._agent = agent
        self._limiter = limiter
        self.limit = limit or settings.rate_limit_process
        self.window_ms = window_ms or settings.rate_limit_window_ms

    async def process(
        self, user_id: str, text: object, timezone: str | None = None
    ) -> tuple[AgentResponse, RateLimitResult]:
        """
        Validate, rate-limit (`ai:<user_id>`) and run one invocation.
        Input errors raise ValidationError before the quota is touched.
        """
        valid, reason = validate_message_input(text, settings.max_message_length)
        if not valid:
            raise ValidationError(ERROR_MESSAGES[reason])

        quota = enforce_rate_limit(self._limiter, f"ai:{user_id}", self.limit, self.window_ms)

        try:
            response = await self._agent.orchestrate(user_id, text.strip(), timezone)
        except Exception as e:
            logger.error("Process failed for user %s: %s", user_id, e, exc_info=True)
            raise ProcessingError(ERROR_MESSAGES["processing_failed"]) from e

        logger.info(
            "Processed input for user %s: %s",
            user_id, [(r.action, r.success) for r in response.tool_results],
        )
        return response, quota
