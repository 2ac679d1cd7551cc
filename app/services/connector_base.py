"""
Base class for platform connectors: handshake + paginated order fetch + aggregation rules.
Each platform (Shopee, Shopify, Nuvemshop, Olist Tiny) subclasses Connector.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.models import Platform
from app.services.credential_types import PlatformCredentials, parse_credentials
from app.services.errors import (
    HandshakeNotSupported,
    PaginationLimitExceeded,
    RateLimited,
    TokenExchangeFailed,
    UpstreamError,
)
from app.services.http_client import post_no_retry, request_with_retry
from app.services.rate_limit import RateLimiter, limiter_for

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationStart:
    auth_url: str
    credentials: PlatformCredentials  # pre-handshake blob persisted before the redirect


@dataclass
class Page:
    records: list
    next_cursor: Any = None  # None: the platform signalled there is nothing after this page


class Connector:
    """Platform strategy. Subclasses set the class attributes and implement the hooks below."""

    platform: Platform
    display_name: str = ""
    page_size: int = 100
    min_request_interval: float = 1.0  # seconds between requests per platform account
    supports_oauth: bool = True
    supports_manual_connect: bool = False

    def __init__(
        self,
        settings: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self._client = client
        self._limiter = limiter
        self._sleep = sleep

    # ---- handshake hooks ----

    async def begin_authorization(self, state: str, issued_at: int, fields: dict) -> AuthorizationStart:
        raise HandshakeNotSupported(f"{self.display_name} não usa OAuth. Conecte com o token da API.")

    async def complete_authorization(
        self,
        code: str,
        platform_identifier: Optional[str],
        credentials: PlatformCredentials,
        query_string: Optional[str] = None,
    ) -> PlatformCredentials:
        raise HandshakeNotSupported(f"{self.display_name} não usa OAuth. Conecte com o token da API.")

    def credentials_from_fields(self, fields: dict) -> PlatformCredentials:
        """Direct connect with static API credentials typed in by the merchant."""
        if not self.supports_manual_connect:
            raise HandshakeNotSupported(f"{self.display_name} exige conexão via OAuth.")
        return parse_credentials(self.platform, fields).require_connected()

    async def refresh_if_needed(self, credentials: PlatformCredentials) -> Optional[PlatformCredentials]:
        """Return refreshed credentials when the stored token is about to expire, else None."""
        return None

    # ---- fetch hooks ----

    async def fetch_orders(self, credentials: PlatformCredentials, since: datetime) -> list[dict]:
        raise NotImplementedError

    def rate_limit_key(self, credentials: PlatformCredentials) -> str:
        raise NotImplementedError

    # ---- aggregation rules ----

    def is_excluded(self, order: dict) -> bool:
        raise NotImplementedError

    def order_date(self, order: dict) -> Optional[str]:
        raise NotImplementedError

    def order_total(self, order: dict) -> Any:
        raise NotImplementedError

    # ---- shared plumbing ----

    @asynccontextmanager
    async def http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT) as client:
                yield client

    def limiter(self, credentials: PlatformCredentials) -> RateLimiter:
        if self._limiter is not None:
            return self._limiter
        return limiter_for(self.platform.value, self.rate_limit_key(credentials), self.min_request_interval)

    async def send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        *,
        limiter: Optional[RateLimiter] = None,
        retry: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """One platform call: wait for a rate-limit slot, retry transient failures, log the outcome."""
        if limiter is not None:
            await limiter.acquire()
        try:
            if retry:
                response = await request_with_retry(
                    client,
                    method,
                    url,
                    max_retries=self.settings.HTTP_MAX_RETRIES,
                    backoff_base=self.settings.RETRY_BACKOFF_BASE,
                    sleep=self._sleep,
                    **kwargs,
                )
            else:
                response = await post_no_retry(client, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("%s API %s %s failed: %s", self.display_name, method, url.split("?", 1)[0], e)
            raise UpstreamError(f"{self.display_name} indisponível: {type(e).__name__}") from e
        self._log_response(method, url, response)
        return response

    def raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 429:
            raise RateLimited(
                f"Limite de requisições da {self.display_name} excedido. Tente novamente em instantes.",
                upstream_status=429,
                body=response.text,
            )
        if response.status_code >= 400:
            raise UpstreamError(
                f"Erro na API {self.display_name}: {response.status_code}",
                upstream_status=response.status_code,
                body=response.text,
            )

    def parse_token_response(self, response: httpx.Response) -> dict:
        """Token endpoint payload. Non-2xx, a vendor `error` field or no access_token raise TokenExchangeFailed."""
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if response.status_code >= 400 or data.get("error") or not data.get("access_token"):
            vendor_message = (
                data.get("message")
                or data.get("error_description")
                or data.get("error")
                or f"HTTP {response.status_code}"
            )
            logger.error("%s token exchange failed: %s", self.display_name, vendor_message)
            raise TokenExchangeFailed(f"{self.display_name}: {vendor_message}")
        return data

    def json_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Resposta inválida da API {self.display_name}",
                upstream_status=response.status_code,
                body=response.text,
            ) from e

    async def paginate(
        self,
        fetch_page: Callable[[Any], Awaitable[Page]],
        first_cursor: Any = 1,
        max_pages: Optional[int] = None,
    ) -> tuple[list, int]:
        """
        Walk pages sequentially until an empty page, a short page, or an end signal.
        Returns (records, pages_fetched). More than max_pages pages raises PaginationLimitExceeded.
        """
        limit = max_pages if max_pages is not None else self.settings.SYNC_MAX_PAGES
        records: list = []
        cursor = first_cursor
        for page_number in range(1, limit + 1):
            page = await fetch_page(cursor)
            records.extend(page.records)
            logger.debug("%s page %s: got %s (total so far: %s)", self.display_name, page_number, len(page.records), len(records))
            if not page.records or len(page.records) < self.page_size or page.next_cursor is None:
                return records, page_number
            cursor = page.next_cursor
        logger.error("%s pagination stopped after %s pages without an end signal", self.display_name, limit)
        raise PaginationLimitExceeded(
            f"{self.display_name}: limite de {limit} páginas atingido sem fim da listagem",
        )

    def _log_response(self, method: str, url: str, response: httpx.Response) -> None:
        path = url.split("?", 1)[0]
        if response.status_code >= 400:
            logger.warning("%s API %s %s -> %s %s", self.display_name, method, path, response.status_code, (response.text or "")[:200])
        else:
            logger.info("%s API %s %s -> %s", self.display_name, method, path, response.status_code)
