"""Transactional email provider client."""

import logging
from typing import Optional

import httpx

from cardmarket.api.http_retry import post_with_retry
from cardmarket.constants import HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class EmailClient:
    """Sends plain transactional emails through an HTTP email API."""

    def __init__(self, api_url: str, api_key: str, sender: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send_email(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        """Send one email. Returns the provider message id."""
        if not self.configured:
            raise RuntimeError("Email provider is not configured")

        payload = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "text": text,
        }
        if html:
            payload["html"] = html

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(transport=self._transport, timeout=HTTP_TIMEOUT_SECONDS) as client:
            response = await post_with_retry(client, self.api_url, json=payload, headers=headers)

        message_id = (response.json() or {}).get("id", "")
        logger.info(f"Email '{subject}' sent to {to} (id={message_id})")
        return message_id
