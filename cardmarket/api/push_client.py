"""Push notification provider client."""

import logging
from typing import Optional

import httpx

from cardmarket.api.http_retry import post_with_retry
from cardmarket.constants import HTTP_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class PushClient:
    """Delivers push notifications to a user's registered devices."""

    def __init__(self, api_url: str, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url
        self.api_key = api_key
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    async def send_push(self, user_id: str, title: str, body: str, data: Optional[dict] = None) -> None:
        if not self.configured:
            return

        payload = {
            "userId": user_id,
            "title": title,
            "body": body,
            "data": data or {},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(transport=self._transport, timeout=HTTP_TIMEOUT_SECONDS) as client:
            await post_with_retry(client, self.api_url, json=payload, headers=headers)
        logger.info(f"Push '{title}' sent to user {user_id}")
