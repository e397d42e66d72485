"""
Resend receiving API — inbound email bodies.

Resend's email.received webhook only carries metadata; the text/html body is
fetched separately by email id.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from ..config import settings
from ..exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

_HTML_TAG = re.compile(r"<[^>]*>")


@dataclass
class EmailContent:
    text: Optional[str] = None
    html: Optional[str] = None

    @property
    def body(self) -> str:
        """Plain text if present, otherwise the HTML with tags stripped."""
        if self.text:
            return self.text
        if self.html:
            return _HTML_TAG.sub("", self.html)
        return ""


class ResendClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.resend_api_key
        self._base_url = (base_url or settings.resend_api_base_url).rstrip("/")
        self._timeout = timeout or settings.resend_timeout
        self._transport = transport

    async def fetch_received(self, email_id: str) -> EmailContent:
        """GET /emails/receiving/{id}. Raises ServiceUnavailableError on any failure."""
        if not self._api_key:
            raise ServiceUnavailableError("RESEND_API_KEY not configured")
        if not email_id:
            raise ServiceUnavailableError("Webhook carried no email_id")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/emails/receiving/{email_id}",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(f"Resend request failed: {e}") from e

        if response.status_code != 200:
            raise ServiceUnavailableError(
                f"Failed to fetch email from Resend: {response.status_code} - {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ServiceUnavailableError("Resend returned a non-JSON body") from e
        if not isinstance(data, dict):
            raise ServiceUnavailableError(f"Resend returned unexpected payload: {type(data).__name__}")
        return EmailContent(text=data.get("text") or None, html=data.get("html") or None)
