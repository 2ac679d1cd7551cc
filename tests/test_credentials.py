"""
Credential vault and credential variant tests
"""
import json

import pytest

from app.models import Platform, SyncStatus, UserIntegration
from app.services.credential_types import (
    NuvemshopCredentials,
    OlistTinyCredentials,
    ShopeeCredentials,
    ShopifyCredentials,
    parse_credentials,
)
from app.services.credentials import (
    decrypt_token,
    encrypt_token,
    get_integration,
    load_credentials,
    upsert_integration,
)
from app.services.errors import IncompleteCredentials


class TestCredentialVariants:
    """Per-platform blob validation"""

    def test_platform_selects_model(self):
        assert isinstance(parse_credentials(Platform.SHOPEE, {}), ShopeeCredentials)
        assert isinstance(parse_credentials("shopify", {}), ShopifyCredentials)
        assert isinstance(parse_credentials("nuvemshop", {}), NuvemshopCredentials)
        assert isinstance(parse_credentials("olist_tiny", {}), OlistTinyCredentials)

    def test_pre_handshake_is_not_connected(self):
        creds = parse_credentials(Platform.SHOPIFY, {"client_id": "id", "client_secret": "s", "shop_domain": "demo.myshopify.com"})
        assert creds.is_connected() is False
        with pytest.raises(IncompleteCredentials):
            creds.require_connected()

    def test_shopee_connected(self):
        creds = parse_credentials(Platform.SHOPEE, {"access_token": "tok", "shop_id": "555", "expire_in": 14400, "obtained_at": 1000})
        assert creds.is_connected()
        assert creds.shop_id == 555
        assert creds.expires_at == 15400

    def test_shopee_expiry_window(self):
        creds = ShopeeCredentials(access_token="tok", shop_id=1, expire_in=14400, obtained_at=1000)
        assert creds.expires_within(600, now=15400 - 601) is False
        assert creds.expires_within(600, now=15400 - 600) is True

    def test_nuvemshop_store_id_coerced(self):
        creds = parse_credentials(Platform.NUVEMSHOP, {"access_token": "tok", "store_id": 123456})
        assert creds.store_id == "123456"
        assert creds.is_connected()

    def test_tiny_accepts_access_token_alias(self):
        creds = parse_credentials(Platform.OLIST_TINY, {"access_token": "tiny-token"})
        assert creds.api_token == "tiny-token"
        assert creds.is_connected()

    def test_invalid_field_type(self):
        with pytest.raises(IncompleteCredentials):
            parse_credentials(Platform.SHOPEE, {"shop_id": "not-a-number"})

    def test_shopify_store_host(self):
        creds = ShopifyCredentials(access_token="tok", store_url="https://Demo.myshopify.com/")
        assert creds.store_host == "demo.myshopify.com"

    def test_blob_drops_none(self):
        assert NuvemshopCredentials(access_token="tok").to_blob() == {"access_token": "tok"}


class TestVault:
    """Encrypted storage of credential blobs"""

    def test_encrypt_round_trip(self):
        encrypted = encrypt_token("secret-value")
        assert encrypted != "secret-value"
        assert decrypt_token(encrypted) == "secret-value"

    def test_upsert_creates_then_updates_single_row(self, db_session):
        first = upsert_integration(
            db_session, "user-1", Platform.NUVEMSHOP,
            NuvemshopCredentials(), is_active=False, sync_status=SyncStatus.PENDING_OAUTH,
        )
        db_session.commit()
        second = upsert_integration(
            db_session, "user-1", Platform.NUVEMSHOP,
            NuvemshopCredentials(access_token="tok", store_id="9"), is_active=True, sync_status=SyncStatus.CONNECTED,
        )
        db_session.commit()

        assert first.id == second.id
        assert db_session.query(UserIntegration).count() == 1
        assert second.is_active is True
        assert second.sync_status == "connected"
        assert load_credentials(second).access_token == "tok"

    def test_secrets_not_stored_in_clear(self, db_session):
        integration = upsert_integration(
            db_session, "user-1", Platform.OLIST_TINY,
            OlistTinyCredentials(api_token="very-secret-token"), is_active=True, sync_status=SyncStatus.CONNECTED,
        )
        db_session.commit()
        assert "very-secret-token" not in integration.credentials_encrypted
        assert json.loads(decrypt_token(integration.credentials_encrypted)) == {"api_token": "very-secret-token"}

    def test_none_credentials_keep_blob(self, db_session):
        upsert_integration(
            db_session, "user-1", Platform.OLIST_TINY,
            OlistTinyCredentials(api_token="tok"), is_active=True, sync_status=SyncStatus.CONNECTED,
        )
        integration = upsert_integration(
            db_session, "user-1", Platform.OLIST_TINY, None, is_active=False, sync_status=SyncStatus.ERROR,
        )
        assert load_credentials(integration).api_token == "tok"

    def test_absent_integration_is_none(self, db_session):
        assert get_integration(db_session, "nobody", Platform.SHOPEE) is None

    def test_unreadable_blob(self, db_session):
        integration = UserIntegration(user_id="user-1", platform="shopee", credentials_encrypted="garbage")
        with pytest.raises(IncompleteCredentials):
            load_credentials(integration)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
