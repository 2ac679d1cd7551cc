"""
Shared HTTP helpers with timeouts and bounded retries for platform APIs.
Retries transient failures (429, 5xx, connection errors) with exponential backoff;
the caller decides what a final non-2xx response means.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
MAX_BACKOFF = 30.0
RETRY_ON = (429, 500, 502, 503, 504)

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base: float = RETRY_BACKOFF_BASE, retry_after: Optional[str] = None) -> float:
    """Delay before retry number `attempt` (1-based). A numeric Retry-After header wins."""
    if retry_after:
        try:
            return min(max(float(retry_after), 0.0), MAX_BACKOFF)
        except ValueError:
            pass
    if attempt <= 0:
        return 0.0
    return min(base * (2 ** (attempt - 1)), MAX_BACKOFF)


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_retries: int = DEFAULT_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
    retry_on: tuple[int, ...] = RETRY_ON,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform one logical request, retrying up to max_retries times on retry_on statuses
    and on connection/timeout errors. Returns the last response; re-raises the last
    transport error when every attempt failed to connect.
    """
    for attempt in range(max_retries + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError) as e:
            if attempt >= max_retries:
                raise
            delay = backoff_delay(attempt + 1, backoff_base)
            logger.warning("HTTP %s %s attempt %s failed: %s; retrying in %.1fs", method, _path(url), attempt + 1, e, delay)
            await sleep(delay)
            continue

        if resp.status_code in retry_on and attempt < max_retries:
            delay = backoff_delay(attempt + 1, backoff_base, resp.headers.get("Retry-After"))
            logger.warning("HTTP %s %s -> %s; retry %s/%s in %.1fs", method, _path(url), resp.status_code, attempt + 1, max_retries, delay)
            await sleep(delay)
            continue
        return resp
    raise RuntimeError("unreachable")  # pragma: no cover


async def post_no_retry(
    client: httpx.AsyncClient,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """POST with a single attempt (token exchanges: authorization codes are single-use)."""
    return await client.post(url, **kwargs)


def _path(url: str) -> str:
    # Query strings can carry tokens and signatures; never log them
    return url.split("?", 1)[0]
