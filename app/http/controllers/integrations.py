"""
Marketplace integration endpoints: connect (OAuth or API token), sync and sync history.
The OAuth callback is public; the signed state carries the user identity.
Never expose access_token to frontend.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.auth import CurrentUser, get_current_user
from app.config import settings
from app.database import get_db
from app.http.requests.schemas import (
    AuthorizeRequest,
    AuthorizeResponse,
    CallbackRequest,
    ConnectRequest,
    IntegrationListResponse,
    IntegrationResponse,
    SuccessResponse,
    SyncJobResponse,
    SyncResponse,
)
from app.models import Platform
from app.services.credentials import list_integrations
from app.services.integration_oauth import IntegrationOAuthService
from app.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=IntegrationListResponse)
async def get_integrations(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Caller's integrations with connection and sync status (no credentials)."""
    return {
        "integrations": [
            IntegrationResponse(
                id=i.id,
                platform=i.platform,
                is_active=bool(i.is_active),
                sync_status=i.sync_status,
                last_sync_at=i.last_sync_at,
                last_error=i.last_error,
            )
            for i in list_integrations(db, current_user.id)
        ]
    }


@router.post("/{platform}/authorize", response_model=AuthorizeResponse)
async def authorize_integration(
    platform: Platform,
    request: Optional[AuthorizeRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Start OAuth: returns the platform consent URL the browser should open."""
    service = IntegrationOAuthService(db, settings)
    fields = request.model_dump(exclude_none=True) if request else {}
    return await service.begin_authorization(current_user.id, platform, fields)


@router.post("/{platform}/callback", response_model=SuccessResponse)
async def integration_callback(
    platform: Platform,
    request: CallbackRequest,
    db: Session = Depends(get_db),
):
    """Finish OAuth. Public: the frontend forwards the platform's redirect params here."""
    service = IntegrationOAuthService(db, settings)
    return await service.complete_authorization(
        platform,
        request.code,
        request.platform_identifier,
        request.state,
        request.query_string,
    )


@router.post("/{platform}/connect", response_model=SuccessResponse)
async def connect_integration(
    platform: Platform,
    request: ConnectRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Connect with static API credentials (Shopify custom app token, Nuvemshop token, Olist Tiny token)."""
    service = IntegrationOAuthService(db, settings)
    return service.connect_with_credentials(current_user.id, platform, request.model_dump(exclude_none=True))


@router.post("/{platform}/sync", response_model=SyncResponse)
async def sync_integration(
    platform: Platform,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Pull the lookback window of orders and rewrite the daily metrics for this platform."""
    engine = SyncEngine(db, settings)
    return await engine.run_sync(current_user.id, platform)


@router.get("/{platform}/sync/history", response_model=list[SyncJobResponse])
async def sync_history(
    platform: Platform,
    limit: int = Query(50, ge=1, le=200),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    engine = SyncEngine(db, settings)
    return engine.get_sync_history(current_user.id, platform, limit=limit)
