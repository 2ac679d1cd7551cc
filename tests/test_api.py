"""
API tests: integration endpoints, error mapping and compliance webhooks
"""
import base64
import hashlib
import hmac
import json
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from app.auth import create_access_token
from app.config import Settings
from app.models import MetricDaily, Platform, WebhookEvent
from conftest import USER_ID, json_response

NUVEMSHOP_ORDERS = [
    {"id": 1, "created_at": "2026-01-01T10:00:00-0300", "total": "100.00", "status": "open", "payment_status": "paid"},
    {"id": 2, "created_at": "2026-01-02T10:00:00-0300", "total": "30.00", "status": "open", "payment_status": "paid"},
]


@pytest.fixture
def stub_platform(monkeypatch, make_connector):
    """Route every connector the API builds to a stubbed platform handler"""

    def _stub(handler):
        recorded = []

        def factory(platform, **kwargs):
            connector, requests = make_connector(platform, handler)
            recorded.append(requests)
            return connector

        monkeypatch.setattr("app.services.sync_engine.get_connector", factory)
        monkeypatch.setattr("app.services.integration_oauth.get_connector", factory)
        return recorded

    return _stub


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_api_root(self, client):
        assert client.get("/api").status_code == 200


class TestAuthentication:
    """Caller identity on protected endpoints"""

    def test_list_requires_token(self, client):
        response = client.get("/api/integrations")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_invalid_token(self, client):
        response = client.get("/api/integrations", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        token = create_access_token(USER_ID, expires_delta=timedelta(minutes=-5))
        response = client.post("/api/integrations/shopee/sync", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_authorize_requires_token(self, client):
        assert client.post("/api/integrations/nuvemshop/authorize").status_code == 401


class TestIntegrationEndpoints:
    def test_unknown_platform(self, client, auth_headers):
        response = client.post("/api/integrations/mercadolivre/authorize", headers=auth_headers)
        assert response.status_code == 400

    def test_authorize_nuvemshop(self, client, auth_headers):
        response = client.post("/api/integrations/nuvemshop/authorize", headers=auth_headers)
        assert response.status_code == 200
        auth_url = response.json()["auth_url"]
        assert "/4321/authorize?state=" in auth_url

        listing = client.get("/api/integrations", headers=auth_headers).json()["integrations"]
        assert len(listing) == 1
        assert listing[0]["platform"] == "nuvemshop"
        assert listing[0]["is_active"] is False
        assert listing[0]["sync_status"] == "pending_oauth"
        assert "credentials_encrypted" not in listing[0]

    def test_authorize_tiny_not_supported(self, client, auth_headers):
        response = client.post("/api/integrations/olist_tiny/authorize", headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "handshake_not_supported"

    def test_authorize_shopify_needs_app_fields(self, client, auth_headers):
        response = client.post("/api/integrations/shopify/authorize", headers=auth_headers, json={"client_id": "x"})
        assert response.status_code == 400
        assert response.json()["error"] == "incomplete_credentials"

    def test_callback_is_public_and_completes(self, client, auth_headers, stub_platform):
        stub_platform(lambda request: json_response({"access_token": "nuvem-token", "user_id": 123456}))
        auth_url = client.post("/api/integrations/nuvemshop/authorize", headers=auth_headers).json()["auth_url"]
        state = parse_qs(urlparse(auth_url).query)["state"][0]

        response = client.post("/api/integrations/nuvemshop/callback", json={"code": "code-1", "state": state})
        assert response.status_code == 200
        assert response.json() == {"success": True}

        listing = client.get("/api/integrations", headers=auth_headers).json()["integrations"]
        assert listing[0]["is_active"] is True
        assert listing[0]["sync_status"] == "connected"

    def test_callback_bad_state(self, client):
        response = client.post("/api/integrations/nuvemshop/callback", json={"code": "code-1", "state": "garbage"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"

    def test_callback_missing_code(self, client):
        response = client.post("/api/integrations/nuvemshop/callback", json={"state": "s"})
        assert response.status_code == 400

    def test_connect_tiny_and_sync(self, client, auth_headers, stub_platform, db_session):
        stub_platform(lambda request: json_response({"retorno": {
            "status": "OK",
            "numero_paginas": 1,
            "pedidos": [
                {"pedido": {"data_pedido": "01/01/2026", "totalPedido": "100.00", "situacao": "Aprovado"}},
                {"pedido": {"data_pedido": "01/01/2026", "totalPedido": "50.00", "situacao": "Cancelado"}},
            ],
        }}))
        response = client.post("/api/integrations/olist_tiny/connect", headers=auth_headers, json={"api_token": "tiny-token"})
        assert response.status_code == 200

        response = client.post("/api/integrations/olist_tiny/sync", headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["orders_processed"] == 2
        assert body["days_updated"] == 1

        row = db_session.query(MetricDaily).one()
        assert row.platform == "olist_tiny"
        assert row.vendas_quantidade == 1

        history = client.get("/api/integrations/olist_tiny/sync/history", headers=auth_headers).json()
        assert [job["status"] for job in history] == ["SUCCESS"]

    def test_sync_upstream_failure(self, client, auth_headers, stub_platform, connected_integration):
        connected_integration(Platform.NUVEMSHOP, {"access_token": "nuvem-token", "store_id": "1"})
        stub_platform(lambda request: json_response({"description": "Unauthorized"}, status_code=401))

        response = client.post("/api/integrations/nuvemshop/sync", headers=auth_headers)
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_error"

        listing = client.get("/api/integrations", headers=auth_headers).json()["integrations"]
        assert listing[0]["sync_status"] == "error"
        assert listing[0]["last_error"]

    def test_sync_not_connected(self, client, auth_headers):
        response = client.post("/api/integrations/shopee/sync", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "integration_not_found"

    def test_sync_nuvemshop_end_to_end(self, client, auth_headers, stub_platform, connected_integration, db_session):
        connected_integration(Platform.NUVEMSHOP, {"access_token": "nuvem-token", "store_id": "1"})
        stub_platform(lambda request: json_response(NUVEMSHOP_ORDERS))

        response = client.post("/api/integrations/nuvemshop/sync", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["days_updated"] == 2
        assert db_session.query(MetricDaily).count() == 2


class TestComplianceWebhooks:
    """Acknowledged and logged only when signed with the app secret"""

    body = json.dumps({"store_id": 123456, "customer": {"id": 1}}).encode()

    def test_nuvemshop_signed(self, client, db_session):
        signature = hmac.new(b"nuvem-client-secret", self.body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/webhooks/nuvemshop/compliance?type=customers_redact",
            content=self.body,
            headers={"x-linkedstore-hmac-sha256": signature, "Content-Type": "application/json"},
        )
        assert response.status_code == 200
        assert response.json() == {"success": True}
        event = db_session.query(WebhookEvent).one()
        assert event.topic == "customers_redact"
        assert event.store_id == "123456"

    def test_shopify_signed_base64(self, client):
        digest = hmac.new(b"shopify-app-secret", self.body, hashlib.sha256).digest()
        response = client.post(
            "/api/webhooks/shopify/compliance?type=store_redact",
            content=self.body,
            headers={"x-shopify-hmac-sha256": base64.b64encode(digest).decode()},
        )
        assert response.status_code == 200

    def test_bad_signature(self, client, db_session):
        response = client.post(
            "/api/webhooks/nuvemshop/compliance?type=store_redact",
            content=self.body,
            headers={"x-linkedstore-hmac-sha256": "00" * 32},
        )
        assert response.status_code == 401
        assert db_session.query(WebhookEvent).count() == 0

    def test_unknown_type_still_acknowledged(self, client, db_session):
        signature = hmac.new(b"nuvem-client-secret", self.body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/webhooks/nuvemshop/compliance?type=something_else",
            content=self.body,
            headers={"x-linkedstore-hmac-sha256": signature},
        )
        assert response.status_code == 200
        assert db_session.query(WebhookEvent).one().topic == "unknown"

    def test_invalid_json(self, client):
        body = b"{not json"
        signature = hmac.new(b"nuvem-client-secret", body, hashlib.sha256).hexdigest()
        response = client.post(
            "/api/webhooks/nuvemshop/compliance?type=store_redact",
            content=body,
            headers={"x-linkedstore-hmac-sha256": signature},
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("platform", ["shopee", "olist_tiny"])
    def test_platform_without_signed_webhooks(self, client, db_session, platform):
        response = client.post(f"/api/webhooks/{platform}/compliance?type=store_redact", content=self.body)
        assert response.status_code == 404
        assert response.json()["error"] == "webhook_not_supported"
        assert db_session.query(WebhookEvent).count() == 0

    def test_missing_app_secret_rejects(self, client, db_session, monkeypatch):
        monkeypatch.setattr("app.http.controllers.webhooks.settings", Settings(NUVEMSHOP_CLIENT_SECRET=""))
        response = client.post(
            "/api/webhooks/nuvemshop/compliance?type=store_redact",
            content=self.body,
            headers={"x-linkedstore-hmac-sha256": "anything"},
        )
        assert response.status_code == 401
        assert db_session.query(WebhookEvent).count() == 0

    def test_missing_signature_header(self, client):
        response = client.post("/api/webhooks/shopify/compliance?type=store_redact", content=self.body)
        assert response.status_code == 401


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
