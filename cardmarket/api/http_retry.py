"""Retry helper for outbound provider calls."""

import asyncio
import logging

import httpx

from cardmarket.constants import HTTP_RETRY_ATTEMPTS, HTTP_RETRY_BASE_SECONDS

logger = logging.getLogger(__name__)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code == 429 or code >= 500
    return isinstance(exc, httpx.TransportError)


async def post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    attempts: int = HTTP_RETRY_ATTEMPTS,
    base_delay: float = HTTP_RETRY_BASE_SECONDS,
    sleep=asyncio.sleep,
    **kwargs,
) -> httpx.Response:
    """POST with exponential backoff (base_delay, 2x, 4x ...). 4xx other than 429 fail immediately."""
    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            response = await client.post(url, **kwargs)
            response.raise_for_status()
            return response
        except (httpx.HTTPStatusError, httpx.TransportError) as e:
            if attempt == attempts or not _is_retryable(e):
                raise
            logger.warning(f"POST {url} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay}s")
            await sleep(delay)
            delay *= 2
    raise RuntimeError("unreachable")
