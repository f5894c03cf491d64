"""HTTP helpers shared by the provider adapters."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

from crm_automation.core.config import settings
from crm_automation.core.exceptions import ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
MAX_ERROR_DETAIL_CHARS = 500


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS, connect=10.0)


def _backoff(attempt: int, base_delay: float, max_delay: float) -> float:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an idempotent HTTP request with exponential backoff retries.

    Only for reads: side-effecting provider calls must not go through here.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = _backoff(attempt, base_delay, max_delay)
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = _backoff(attempt, base_delay, max_delay)
            logger.warning("HTTP request returned %s, retrying", response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response


def error_detail(response: httpx.Response) -> str:
    """Raw provider error text, truncated for logs and log rows."""
    text = response.text or ""
    return text[:MAX_ERROR_DETAIL_CHARS]


def raise_for_provider(response: httpx.Response, provider: str, action: str) -> None:
    """Raise ProviderAuthError on 401 and ProviderError on any other non-2xx."""
    if response.is_success:
        return
    detail = error_detail(response)
    if response.status_code == 401:
        raise ProviderAuthError(provider, 401, detail, action=action)
    logger.warning(
        "%s %s failed with status %s: %s", provider, action, response.status_code, detail
    )
    raise ProviderError(provider, response.status_code, detail, action=action)
