"""
Shared fixtures: in-memory SQLite session, stubbed platform HTTP, FastAPI test client.
"""
import os

# Settings read the environment at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "DEV"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-0123456789ab"
os.environ["SHOPEE_PARTNER_ID"] = "2001887"
os.environ["SHOPEE_PARTNER_KEY"] = "test-partner-key"
os.environ["NUVEMSHOP_APP_ID"] = "4321"
os.environ["NUVEMSHOP_CLIENT_SECRET"] = "nuvem-client-secret"
os.environ["SHOPIFY_API_SECRET"] = "shopify-app-secret"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.auth import create_access_token
from app.config import Settings
from app.database import Base, get_db
from app.models import Platform, SyncStatus
from app.services.connectors import get_connector
from app.services.credential_types import parse_credentials
from app.services.credentials import upsert_integration
from app.services.rate_limit import RateLimiter

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

USER_ID = "user-1"


@pytest.fixture
def db_session():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def test_settings():
    return Settings(HTTP_MAX_RETRIES=2, RETRY_BACKOFF_BASE=1.0, SYNC_MAX_PAGES=10)


@pytest.fixture
def sleeps():
    """Records every backoff sleep instead of waiting"""
    return []


@pytest.fixture
def make_connector(test_settings, sleeps):
    """
    Build a connector whose HTTP goes to `handler` (an httpx.MockTransport handler).
    Returns (connector, requests) where requests collects every outgoing httpx.Request.
    """

    def _make(platform, handler, settings=None, **kwargs):
        requests = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        connector = get_connector(
            platform,
            settings=settings or test_settings,
            client=httpx.AsyncClient(transport=httpx.MockTransport(recording_handler)),
            limiter=RateLimiter(0),
            sleep=fake_sleep,
            **kwargs,
        )
        return connector, requests

    return _make


@pytest.fixture
def connected_integration(db_session):
    """Insert an active integration with the given credential blob"""

    def _create(platform, blob, user_id=USER_ID):
        integration = upsert_integration(
            db_session,
            user_id,
            platform,
            parse_credentials(platform, blob),
            is_active=True,
            sync_status=SyncStatus.CONNECTED,
        )
        db_session.commit()
        return integration

    return _create


@pytest.fixture
def client(db_session):
    """Create test client with database dependency override"""
    from main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token(USER_ID)}"}


def json_response(payload, status_code=200, headers=None) -> httpx.Response:
    return httpx.Response(status_code, json=payload, headers=headers)
