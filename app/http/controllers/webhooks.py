"""
Webhook routes. Compliance receivers are public (no JWT); every request must carry a valid app HMAC.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import Platform
from app.services.compliance import acknowledge_compliance_request, verify_compliance_signature

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{platform}/compliance")
async def compliance_webhook_receive(
    platform: Platform,
    request: Request,
    type: Optional[str] = Query(None, description="store_redact | customers_redact | customers_data_request"),
    db: Session = Depends(get_db),
):
    """
    LGPD/GDPR webhooks. Only aggregated daily totals are stored, so the request is
    acknowledged and logged. Answers {"success": true} once the signature checks out.
    """
    raw_body = await request.body()
    verify_compliance_signature(platform, raw_body, request.headers, settings)

    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except ValueError as e:
        logger.warning("%s compliance webhook: invalid JSON %s", platform.value, e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON")

    return acknowledge_compliance_request(db, platform, type, payload)
