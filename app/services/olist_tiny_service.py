"""
Olist Tiny ERP connector (API v2).
No OAuth: the merchant pastes the API token generated in Tiny; every call sends it as a form field.
Errors come back as HTTP 200 with retorno.status == "Erro".
"""
import hashlib
import logging
from datetime import datetime
from typing import Any, Optional

from app.models import Platform
from app.services.connector_base import Connector, Page
from app.services.credential_types import PlatformCredentials
from app.services.errors import RateLimited, UpstreamError
from app.services.http_client import backoff_delay

logger = logging.getLogger(__name__)

NO_RECORDS_MARKER = "nenhum registro"
RATE_LIMIT_ERROR_CODE = "6"
CANCELLED_SITUATIONS = {"cancelado", "ecommerce_cancelado"}


class OlistTinyConnector(Connector):
    platform = Platform.OLIST_TINY
    display_name = "Olist Tiny"
    page_size = 100
    min_request_interval = 2.1  # 30 req/min
    supports_oauth = False
    supports_manual_connect = True

    def rate_limit_key(self, credentials: PlatformCredentials) -> str:
        return hashlib.sha256(credentials.api_token.encode("utf-8")).hexdigest()[:16]

    def _read_page(self, data: Any, page: int) -> Page:
        retorno = data.get("retorno") if isinstance(data, dict) else None
        if not isinstance(retorno, dict):
            raise UpstreamError("Resposta inválida da API Olist Tiny")

        if retorno.get("status") == "Erro":
            erros = [e.get("erro", "") for e in retorno.get("erros") or [] if isinstance(e, dict)]
            if any(NO_RECORDS_MARKER in str(erro).lower() for erro in erros):
                return Page([], None)
            if str(retorno.get("codigo_erro", "")) == RATE_LIMIT_ERROR_CODE:
                raise RateLimited("Limite de requisições da Olist Tiny excedido. Tente novamente em instantes.")
            logger.error("Tiny API retorno erro: %s", erros)
            raise UpstreamError(f"Erro na API Olist Tiny: {'; '.join(str(e) for e in erros) or 'desconhecido'}")

        items = retorno.get("pedidos") or []
        orders = [item.get("pedido", item) if isinstance(item, dict) else item for item in items]
        try:
            total_pages = int(retorno.get("numero_paginas"))
        except (TypeError, ValueError):
            total_pages = None
        if total_pages is not None and page >= total_pages:
            return Page(orders, None)
        return Page(orders, page + 1)

    async def fetch_orders(self, credentials: PlatformCredentials, since: datetime) -> list[dict]:
        credentials.require_connected()
        limiter = self.limiter(credentials)
        url = f"{self.settings.TINY_API_BASE}/pedidos.pesquisa.php"
        data_inicial = since.strftime("%d/%m/%Y")

        async with self.http() as client:

            async def fetch_page(page: int) -> Page:
                # codigo_erro 6 comes back as HTTP 200: back off and retry the same page
                max_retries = self.settings.HTTP_MAX_RETRIES
                for attempt in range(max_retries + 1):
                    response = await self.send(
                        client,
                        "POST",
                        url,
                        limiter=limiter,
                        data={
                            "token": credentials.api_token,
                            "formato": "JSON",
                            "dataInicial": data_inicial,
                            "pagina": str(page),
                        },
                    )
                    self.raise_for_status(response)
                    try:
                        return self._read_page(self.json_body(response), page)
                    except RateLimited:
                        if attempt >= max_retries:
                            raise
                        delay = backoff_delay(attempt + 1, self.settings.RETRY_BACKOFF_BASE)
                        logger.warning("Tiny API rate limited on page %s; retry %s/%s in %.1fs", page, attempt + 1, max_retries, delay)
                        await self._sleep(delay)
                raise RuntimeError("unreachable")  # pragma: no cover

            orders, pages = await self.paginate(fetch_page, first_cursor=1)
        logger.info("Fetched %s orders from Olist Tiny (%s page(s))", len(orders), pages)
        return orders

    def is_excluded(self, order: dict) -> bool:
        return str(order.get("situacao") or "").strip().lower() in CANCELLED_SITUATIONS

    def order_date(self, order: dict) -> Optional[str]:
        # data_pedido is DD/MM/YYYY
        try:
            return datetime.strptime(str(order.get("data_pedido") or "").strip(), "%d/%m/%Y").date().isoformat()
        except ValueError:
            return None

    def order_total(self, order: dict) -> Any:
        return order.get("totalPedido") or order.get("total_pedido")
