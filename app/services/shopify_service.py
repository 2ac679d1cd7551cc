"""
Shopify Admin API connector - OAuth install flow and authenticated order fetch.
Uses the merchant's own custom app (client id/secret typed in on the integrations page).
Never expose access_token to frontend.
Supports cursor pagination (Link header) so we fetch all orders, not just first 250.
"""
import re
import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode, urlparse

from app.models import Platform
from app.services.connector_base import AuthorizationStart, Connector, Page
from app.services.credential_types import PlatformCredentials, ShopifyCredentials
from app.services.errors import IncompleteCredentials, InvalidState
from app.services.signing import verify_query_hmac

logger = logging.getLogger(__name__)


def normalize_shop_domain(shop_domain: str) -> str:
    """Normalize and validate shop domain to `{shop}.myshopify.com`"""
    if not shop_domain:
        raise ValueError("Shop domain is required")

    shop = shop_domain.lower().strip()
    shop = shop.replace("https://", "").replace("http://", "")
    shop = shop.rstrip("/")

    if not shop.endswith(".myshopify.com"):
        # If it's just the shop name, add .myshopify.com
        if "." not in shop:
            shop = f"{shop}.myshopify.com"
        else:
            raise ValueError(f"Invalid shop domain format: {shop_domain}. Must be 'shopname' or 'shopname.myshopify.com'")

    if not re.fullmatch(r"[a-z0-9][a-z0-9\-]*\.myshopify\.com", shop):
        raise ValueError(f"Invalid shop domain: {shop_domain}")
    return shop


def _parse_link_next(link_header: Optional[str]) -> Optional[str]:
    """Parse Link header; return URL for rel=next if present. Shopify uses cursor pagination."""
    if not link_header:
        return None
    # Format: <url>; rel="next", <url>; rel="previous"
    for part in link_header.split(","):
        part = part.strip()
        if re.search(r';\s*rel="?next"?', part, re.IGNORECASE):
            match = re.search(r"<([^>]+)>", part)
            if match:
                return match.group(1).strip()
    return None


def _base_url(store_host: str, api_version: str) -> str:
    return f"https://{store_host}/admin/api/{api_version}"


def _headers(access_token: str) -> dict:
    return {
        "X-Shopify-Access-Token": access_token,
        "Content-Type": "application/json",
    }


class ShopifyConnector(Connector):
    platform = Platform.SHOPIFY
    display_name = "Shopify"
    page_size = 250
    min_request_interval = 0.5
    supports_manual_connect = True

    async def begin_authorization(self, state: str, issued_at: int, fields: dict) -> AuthorizationStart:
        client_id = (fields.get("client_id") or "").strip()
        client_secret = (fields.get("client_secret") or "").strip()
        if not client_id or not client_secret or not fields.get("shop_domain"):
            raise IncompleteCredentials("Informe client_id, client_secret e shop_domain da sua app Shopify.")
        try:
            shop = normalize_shop_domain(fields["shop_domain"])
        except ValueError as e:
            raise IncompleteCredentials(str(e)) from e

        redirect_uri = self.settings.SHOPIFY_REDIRECT_URI
        parsed_redirect = urlparse(redirect_uri)
        if not parsed_redirect.scheme or not parsed_redirect.netloc:
            raise IncompleteCredentials(f"Invalid redirect_uri: {redirect_uri}")

        params = {
            "client_id": client_id,
            "scope": self.settings.SHOPIFY_SCOPES,
            "redirect_uri": redirect_uri,
            "state": state,
        }
        logger.info("Generated OAuth install URL for shop: %s", shop)
        return AuthorizationStart(
            auth_url=f"https://{shop}/admin/oauth/authorize?{urlencode(params)}",
            credentials=ShopifyCredentials(client_id=client_id, client_secret=client_secret, shop_domain=shop),
        )

    async def complete_authorization(
        self,
        code: str,
        platform_identifier: Optional[str],
        credentials: PlatformCredentials,
        query_string: Optional[str] = None,
    ) -> ShopifyCredentials:
        if not credentials.client_id or not credentials.client_secret or not credentials.shop_domain:
            raise IncompleteCredentials("Credenciais da app Shopify ausentes. Inicie a conexão novamente.")
        try:
            shop = normalize_shop_domain(platform_identifier or "")
        except ValueError as e:
            raise InvalidState(f"Loja inválida no retorno da Shopify: {e}") from e
        if shop != credentials.shop_domain:
            logger.warning("Shopify callback shop %s does not match stored %s", shop, credentials.shop_domain)
            raise InvalidState("A loja do retorno não corresponde à loja informada.")
        if query_string is not None and not verify_query_hmac(query_string, credentials.client_secret):
            raise InvalidState("Assinatura HMAC inválida no retorno da Shopify.")

        logger.info("Exchanging code for token for shop: %s", shop)
        async with self.http() as client:
            response = await self.send(
                client,
                "POST",
                f"https://{shop}/admin/oauth/access_token",
                retry=False,
                json={
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                    "code": code,
                },
            )
        data = self.parse_token_response(response)
        # Log success (but not the token itself)
        logger.info("Successfully exchanged code for token for shop: %s", shop)
        return credentials.model_copy(update={
            "access_token": data["access_token"],
            "store_url": shop,
            "scope": data.get("scope"),
        })

    def rate_limit_key(self, credentials: PlatformCredentials) -> str:
        return credentials.store_host

    async def fetch_orders(self, credentials: PlatformCredentials, since: datetime) -> list[dict]:
        """
        All orders created since `since`, any status.
        Stops when response has no rel=next or fewer than page_size items.
        """
        credentials.require_connected()
        limiter = self.limiter(credentials)
        headers = _headers(credentials.access_token)
        url = f"{_base_url(credentials.store_host, self.settings.SHOPIFY_API_VERSION)}/orders.json"
        first_params = {"status": "any", "created_at_min": since.isoformat(), "limit": self.page_size}

        async with self.http() as client:

            async def fetch_page(cursor: tuple) -> Page:
                page_url, params = cursor
                response = await self.send(client, "GET", page_url, limiter=limiter, params=params, headers=headers)
                self.raise_for_status(response)
                data = self.json_body(response)
                orders = data.get("orders") or [] if isinstance(data, dict) else []
                next_url = _parse_link_next(response.headers.get("link"))
                # page_info URL already has params; do not add extra
                return Page(orders, (next_url, None) if next_url else None)

            orders, pages = await self.paginate(fetch_page, first_cursor=(url, first_params))
        logger.info("Shopify orders: got %s order(s) across %s page(s)", len(orders), pages)
        return orders

    def is_excluded(self, order: dict) -> bool:
        return bool(order.get("cancelled_at")) or order.get("financial_status") == "voided"

    def order_date(self, order: dict) -> Optional[str]:
        # created_at carries the shop's UTC offset; the first 10 chars are the shop-local day
        created_at = order.get("created_at")
        if not created_at or not isinstance(created_at, str):
            return None
        return created_at[:10]

    def order_total(self, order: dict) -> Any:
        return order.get("total_price")
