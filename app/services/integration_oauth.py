"""
Connect flows for marketplace integrations.

OAuth platforms go through two steps:
  1. authorize: build the platform consent URL with a signed state and store a pre-handshake row
     (is_active=False, sync_status=pending_oauth).
  2. callback: the platform redirects back with a code; the state identifies the user, the code is
     exchanged for tokens and the row becomes active/connected.
Platforms with static API tokens connect in one step with connect_with_credentials.
"""
import logging
import time
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models import Platform, SyncStatus
from app.services.connector_base import Connector
from app.services.connectors import get_connector
from app.services.credentials import get_integration, load_credentials, upsert_integration
from app.services.errors import (
    HandshakeNotSupported,
    IntegrationNotFound,
    InvalidState,
    SyncPipelineError,
    TokenExchangeFailed,
    Unauthorized,
)
from app.services.oauth_state import consume_state_nonce, decode_state, encode_state

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[..., Connector]


class IntegrationOAuthService:
    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        connector_factory: Optional[ConnectorFactory] = None,
    ):
        self.db = db
        self.settings = settings
        self.connector_factory = connector_factory or get_connector

    def _connector(self, platform: Platform) -> Connector:
        return self.connector_factory(platform, settings=self.settings)

    async def begin_authorization(
        self,
        user_id: Optional[str],
        platform: Union[Platform, str],
        fields: Optional[dict] = None,
    ) -> dict:
        """Returns {"auth_url": ...}. The caller redirects the browser there."""
        if not user_id:
            raise Unauthorized("Não autenticado")
        platform = Platform(platform)
        connector = self._connector(platform)
        if not connector.supports_oauth:
            raise HandshakeNotSupported(f"{connector.display_name} não usa OAuth. Conecte com o token da API.")

        issued_at = int(time.time())
        state = encode_state(user_id, platform, self.settings, issued_at=issued_at)
        start = await connector.begin_authorization(state, issued_at, fields or {})

        # Re-authorising replaces any previous tokens with the pre-handshake blob
        upsert_integration(
            self.db,
            user_id,
            platform,
            start.credentials,
            is_active=False,
            sync_status=SyncStatus.PENDING_OAUTH,
        )
        self.db.commit()
        logger.info("OAuth started for %s (user %s)", platform.value, user_id)
        return {"auth_url": start.auth_url}

    async def complete_authorization(
        self,
        platform: Union[Platform, str],
        code: Optional[str],
        platform_identifier: Optional[str],
        state: Optional[str],
        query_string: Optional[str] = None,
    ) -> dict:
        platform = Platform(platform)
        decoded = decode_state(state, self.settings)
        if decoded.platform != platform.value:
            logger.warning("OAuth state for %s used on %s callback", decoded.platform, platform.value)
            raise InvalidState("OAuth state does not belong to this platform")
        if not code:
            raise TokenExchangeFailed("Código de autorização ausente")

        integration = get_integration(self.db, decoded.user_id, platform)
        if integration is None:
            raise IntegrationNotFound(f"Integração {platform.value} não encontrada. Inicie a conexão novamente.")

        # Burn the nonce before talking to the platform: authorization codes are single-use too
        consume_state_nonce(self.db, decoded, self.settings)
        self.db.commit()

        connector = self._connector(platform)
        try:
            credentials = await connector.complete_authorization(
                code,
                platform_identifier,
                load_credentials(integration),
                query_string,
            )
        except SyncPipelineError as e:
            integration.sync_status = SyncStatus.ERROR.value
            integration.last_error = e.message
            self.db.commit()
            raise

        integration = upsert_integration(
            self.db,
            decoded.user_id,
            platform,
            credentials,
            is_active=True,
            sync_status=SyncStatus.CONNECTED,
        )
        integration.last_error = None
        self.db.commit()
        logger.info("OAuth completed for %s (user %s)", platform.value, decoded.user_id)
        return {"success": True}

    def connect_with_credentials(
        self,
        user_id: Optional[str],
        platform: Union[Platform, str],
        fields: dict,
    ) -> dict:
        """Store static API credentials (Shopify custom-app token, Nuvemshop token, Tiny API token)."""
        if not user_id:
            raise Unauthorized("Não autenticado")
        platform = Platform(platform)
        credentials = self._connector(platform).credentials_from_fields(fields or {})
        integration = upsert_integration(
            self.db,
            user_id,
            platform,
            credentials,
            is_active=True,
            sync_status=SyncStatus.CONNECTED,
        )
        integration.last_error = None
        self.db.commit()
        logger.info("Connected %s with API credentials (user %s)", platform.value, user_id)
        return {"success": True}
