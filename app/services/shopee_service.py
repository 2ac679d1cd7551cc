"""
Shopee Open Platform v2 connector.
Every call is signed with the partner key; shop-level calls also sign the access token and shop id.
Orders are listed in 15-day create_time windows (API limit), then fetched in detail batches of 50.
"""
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import httpx

from app.models import Platform
from app.services.connector_base import AuthorizationStart, Connector, Page
from app.services.credential_types import PlatformCredentials, ShopeeCredentials
from app.services.errors import IncompleteCredentials, TokenExchangeFailed, UpstreamError
from app.services.rate_limit import RateLimiter
from app.services.signing import shopee_base_string, sign

logger = logging.getLogger(__name__)

AUTH_PARTNER_PATH = "/api/v2/shop/auth_partner"
TOKEN_PATH = "/api/v2/auth/token/get"
REFRESH_PATH = "/api/v2/auth/access_token/get"
ORDER_LIST_PATH = "/api/v2/order/get_order_list"
ORDER_DETAIL_PATH = "/api/v2/order/get_order_detail"

TIME_WINDOW_SECONDS = 15 * 24 * 60 * 60
DETAIL_BATCH_SIZE = 50
REFRESH_MARGIN_SECONDS = 600
DETAIL_FIELDS = "total_amount,pay_time,order_status"
EXCLUDED_STATUSES = {"CANCELLED", "IN_CANCEL", "UNPAID"}


class ShopeeConnector(Connector):
    platform = Platform.SHOPEE
    display_name = "Shopee"
    page_size = 100
    min_request_interval = 0.15

    def __init__(self, *args, clock: Callable[[], float] = time.time, **kwargs):
        super().__init__(*args, **kwargs)
        self._clock = clock

    # ---- signing ----

    def _partner(self) -> tuple[int, str]:
        partner_id = self.settings.SHOPEE_PARTNER_ID
        partner_key = self.settings.SHOPEE_PARTNER_KEY
        if not partner_id or not partner_key:
            raise IncompleteCredentials("Integração Shopee não configurada (SHOPEE_PARTNER_ID / SHOPEE_PARTNER_KEY).")
        return partner_id, partner_key

    def _public_url(self, api_path: str, timestamp: int) -> str:
        partner_id, partner_key = self._partner()
        signature = sign(partner_key, shopee_base_string(partner_id, api_path, timestamp))
        query = urlencode({"partner_id": partner_id, "timestamp": timestamp, "sign": signature})
        return f"{self.settings.SHOPEE_HOST}{api_path}?{query}"

    def _shop_params(self, api_path: str, credentials: ShopeeCredentials, timestamp: int) -> dict:
        partner_id, partner_key = self._partner()
        base = shopee_base_string(partner_id, api_path, timestamp, credentials.access_token, credentials.shop_id)
        return {
            "partner_id": partner_id,
            "timestamp": timestamp,
            "sign": sign(partner_key, base),
            "access_token": credentials.access_token,
            "shop_id": credentials.shop_id,
        }

    # ---- handshake ----

    async def begin_authorization(self, state: str, issued_at: int, fields: dict) -> AuthorizationStart:
        partner_id, partner_key = self._partner()
        signature = sign(partner_key, shopee_base_string(partner_id, AUTH_PARTNER_PATH, issued_at))
        redirect = f"{self.settings.SHOPEE_REDIRECT_URL}?{urlencode({'state': state})}"
        query = urlencode({
            "partner_id": partner_id,
            "timestamp": issued_at,
            "sign": signature,
            "redirect": redirect,
        })
        return AuthorizationStart(
            auth_url=f"{self.settings.SHOPEE_HOST}{AUTH_PARTNER_PATH}?{query}",
            credentials=ShopeeCredentials(),
        )

    async def complete_authorization(
        self,
        code: str,
        platform_identifier: Optional[str],
        credentials: PlatformCredentials,
        query_string: Optional[str] = None,
    ) -> ShopeeCredentials:
        try:
            shop_id = int(str(platform_identifier).strip())
        except (TypeError, ValueError):
            raise TokenExchangeFailed("Shopee: shop_id ausente ou inválido no retorno da autorização")

        partner_id, _ = self._partner()
        timestamp = int(self._clock())
        async with self.http() as client:
            response = await self.send(
                client,
                "POST",
                self._public_url(TOKEN_PATH, timestamp),
                retry=False,
                json={"code": code, "shop_id": shop_id, "partner_id": partner_id},
            )
        data = self.parse_token_response(response)
        logger.info("Shopee token obtained for shop %s", shop_id)
        return ShopeeCredentials(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            shop_id=shop_id,
            expire_in=int(data.get("expire_in") or 0),
            obtained_at=timestamp,
        )

    async def refresh_if_needed(self, credentials: PlatformCredentials) -> Optional[ShopeeCredentials]:
        now = int(self._clock())
        if not credentials.expires_within(REFRESH_MARGIN_SECONDS, now=now):
            return None
        if not credentials.refresh_token:
            logger.warning("Shopee token for shop %s near expiry but no refresh_token stored", credentials.shop_id)
            return None

        logger.info("Refreshing Shopee access token for shop %s", credentials.shop_id)
        partner_id, _ = self._partner()
        async with self.http() as client:
            response = await self.send(
                client,
                "POST",
                self._public_url(REFRESH_PATH, now),
                retry=False,
                json={
                    "refresh_token": credentials.refresh_token,
                    "shop_id": credentials.shop_id,
                    "partner_id": partner_id,
                },
            )
        data = self.parse_token_response(response)
        return credentials.model_copy(update={
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token") or credentials.refresh_token,
            "expire_in": int(data.get("expire_in") or 0),
            "obtained_at": now,
        })

    # ---- fetch ----

    def rate_limit_key(self, credentials: PlatformCredentials) -> str:
        return str(credentials.shop_id)

    async def _shop_get(
        self,
        client: httpx.AsyncClient,
        limiter: RateLimiter,
        api_path: str,
        credentials: ShopeeCredentials,
        params: dict,
    ) -> dict:
        query = {**self._shop_params(api_path, credentials, int(self._clock())), **params}
        response = await self.send(
            client, "GET", f"{self.settings.SHOPEE_HOST}{api_path}", limiter=limiter, params=query
        )
        self.raise_for_status(response)
        data = self.json_body(response)
        if not isinstance(data, dict):
            raise UpstreamError("Resposta inválida da API Shopee", response.status_code, response.text)
        if data.get("error"):
            logger.error("Shopee %s error: %s %s", api_path, data.get("error"), data.get("message", ""))
            raise UpstreamError(
                f"Erro na API Shopee: {data.get('message') or data.get('error')}",
                upstream_status=response.status_code,
                body=response.text,
            )
        return data

    async def fetch_orders(self, credentials: PlatformCredentials, since: datetime) -> list[dict]:
        credentials.require_connected()
        limiter = self.limiter(credentials)
        now = int(self._clock())
        pages_left = self.settings.SYNC_MAX_PAGES
        order_sns: list[str] = []

        async with self.http() as client:
            window_start = int(since.timestamp())
            while window_start < now:
                window_end = min(window_start + TIME_WINDOW_SECONDS, now)

                async def fetch_page(cursor: str, time_from: int = window_start, time_to: int = window_end) -> Page:
                    data = await self._shop_get(client, limiter, ORDER_LIST_PATH, credentials, {
                        "time_range_field": "create_time",
                        "time_from": time_from,
                        "time_to": time_to,
                        "page_size": self.page_size,
                        "cursor": cursor,
                    })
                    body = data.get("response") or {}
                    sns = [o["order_sn"] for o in body.get("order_list") or [] if o.get("order_sn")]
                    return Page(sns, body.get("next_cursor") if body.get("more") else None)

                sns, pages_used = await self.paginate(fetch_page, first_cursor="", max_pages=pages_left)
                pages_left -= pages_used
                order_sns.extend(sns)
                window_start = window_end

            # Adjacent windows share their boundary second
            order_sns = list(dict.fromkeys(order_sns))
            logger.info("Shopee shop %s: %s order(s) listed since %s", credentials.shop_id, len(order_sns), since.date())

            orders: list[dict] = []
            for i in range(0, len(order_sns), DETAIL_BATCH_SIZE):
                batch = order_sns[i:i + DETAIL_BATCH_SIZE]
                data = await self._shop_get(client, limiter, ORDER_DETAIL_PATH, credentials, {
                    "order_sn_list": ",".join(batch),
                    "response_optional_fields": DETAIL_FIELDS,
                })
                orders.extend((data.get("response") or {}).get("order_list") or [])
        return orders

    # ---- aggregation rules ----

    def is_excluded(self, order: dict) -> bool:
        return str(order.get("order_status") or "").upper() in EXCLUDED_STATUSES

    def order_date(self, order: dict) -> Optional[str]:
        try:
            created = datetime.fromtimestamp(int(order.get("create_time")), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            return None
        return created.date().isoformat()

    def order_total(self, order: dict) -> Any:
        return order.get("total_amount")
