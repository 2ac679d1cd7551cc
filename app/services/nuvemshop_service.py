"""
Nuvemshop (Tiendanube) connector.
Auth header is `Authentication: bearer <token>` (not Authorization) and a User-Agent with contact is mandatory.
"""
import logging
from datetime import datetime
from typing import Any, Optional
from urllib.parse import urlencode

from app.models import Platform
from app.services.connector_base import AuthorizationStart, Connector, Page
from app.services.credential_types import NuvemshopCredentials, PlatformCredentials
from app.services.errors import IncompleteCredentials, TokenExchangeFailed

logger = logging.getLogger(__name__)

ORDER_FIELDS = "id,number,status,payment_status,total,currency,created_at"


class NuvemshopConnector(Connector):
    platform = Platform.NUVEMSHOP
    display_name = "Nuvemshop"
    page_size = 200
    min_request_interval = 1.1  # ~60 req/min
    supports_manual_connect = True

    def _app(self) -> tuple[str, str]:
        app_id = self.settings.NUVEMSHOP_APP_ID
        client_secret = self.settings.NUVEMSHOP_CLIENT_SECRET
        if not app_id or not client_secret:
            raise IncompleteCredentials("Integração Nuvemshop não configurada (NUVEMSHOP_APP_ID / NUVEMSHOP_CLIENT_SECRET).")
        return app_id, client_secret

    def _headers(self, access_token: str) -> dict:
        return {
            "Authentication": f"bearer {access_token}",
            "User-Agent": self.settings.NUVEMSHOP_USER_AGENT,
            "Content-Type": "application/json",
        }

    async def begin_authorization(self, state: str, issued_at: int, fields: dict) -> AuthorizationStart:
        app_id, _ = self._app()
        return AuthorizationStart(
            auth_url=f"{self.settings.NUVEMSHOP_AUTH_BASE}/{app_id}/authorize?{urlencode({'state': state})}",
            credentials=NuvemshopCredentials(),
        )

    async def complete_authorization(
        self,
        code: str,
        platform_identifier: Optional[str],
        credentials: PlatformCredentials,
        query_string: Optional[str] = None,
    ) -> NuvemshopCredentials:
        app_id, client_secret = self._app()
        async with self.http() as client:
            response = await self.send(
                client,
                "POST",
                self.settings.NUVEMSHOP_TOKEN_URL,
                retry=False,
                json={
                    "client_id": app_id,
                    "client_secret": client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                },
            )
        data = self.parse_token_response(response)
        # The token response names the store `user_id`
        store_id = data.get("user_id") or platform_identifier
        if not store_id:
            raise TokenExchangeFailed("Nuvemshop: resposta sem identificador da loja")
        logger.info("Nuvemshop token obtained for store %s", store_id)
        return NuvemshopCredentials(access_token=data["access_token"], store_id=store_id, scope=data.get("scope"))

    def rate_limit_key(self, credentials: PlatformCredentials) -> str:
        return str(credentials.store_id)

    async def fetch_orders(self, credentials: PlatformCredentials, since: datetime) -> list[dict]:
        credentials.require_connected()
        limiter = self.limiter(credentials)
        url = f"{self.settings.NUVEMSHOP_API_BASE}/{credentials.store_id}/orders"
        headers = self._headers(credentials.access_token)

        async with self.http() as client:

            async def fetch_page(page: int) -> Page:
                response = await self.send(
                    client,
                    "GET",
                    url,
                    limiter=limiter,
                    headers=headers,
                    params={
                        "created_at_min": since.isoformat(),
                        "per_page": self.page_size,
                        "page": page,
                        "fields": ORDER_FIELDS,
                    },
                )
                # Asking past the end answers 404 {"description": "Last page is N"}
                if response.status_code == 404 and "last page" in (response.text or "").lower():
                    return Page([], None)
                self.raise_for_status(response)
                orders = self.json_body(response)
                if not isinstance(orders, list):
                    orders = []
                return Page(orders, page + 1)

            orders, pages = await self.paginate(fetch_page, first_cursor=1)
        logger.info("Fetched %s orders from Nuvemshop store %s (%s page(s))", len(orders), credentials.store_id, pages)
        return orders

    def is_excluded(self, order: dict) -> bool:
        return order.get("status") == "cancelled" or order.get("payment_status") != "paid"

    def order_date(self, order: dict) -> Optional[str]:
        created_at = order.get("created_at")
        if not created_at or not isinstance(created_at, str):
            return None
        return created_at[:10]

    def order_total(self, order: dict) -> Any:
        return order.get("total")
