"""Outbound provider clients."""

from cardmarket.api.email_client import EmailClient
from cardmarket.api.push_client import PushClient

__all__ = [
    "EmailClient",
    "PushClient",
]
