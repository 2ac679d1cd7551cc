"""
LGPD/GDPR compliance webhooks (store redact, customers redact, customers data request).
Only aggregated daily totals are stored, never customer records, so every signed request
is acknowledged and logged without deleting anything. Platforms that do not sign their
compliance webhooks have no receiver here.
"""
import logging
from datetime import datetime, timezone
from typing import Mapping, Optional, Union

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models import Platform, WebhookEvent
from app.services.errors import Unauthorized, WebhookNotSupported
from app.services.signing import verify_body_hmac

logger = logging.getLogger(__name__)

COMPLIANCE_TOPICS = ("store_redact", "customers_redact", "customers_data_request")

# platform -> (signature header, digest encoding)
SIGNATURE_HEADERS = {
    Platform.NUVEMSHOP: ("x-linkedstore-hmac-sha256", "hex"),
    Platform.SHOPIFY: ("x-shopify-hmac-sha256", "base64"),
}


def _app_secret(platform: Platform, settings: Settings) -> str:
    if platform == Platform.NUVEMSHOP:
        return settings.NUVEMSHOP_CLIENT_SECRET
    if platform == Platform.SHOPIFY:
        return settings.SHOPIFY_API_SECRET
    return ""


def verify_compliance_signature(
    platform: Platform,
    body: bytes,
    headers: Mapping[str, str],
    settings: Settings = default_settings,
) -> None:
    """
    Raise WebhookNotSupported for platforms without signed compliance webhooks, and
    Unauthorized when the app secret is missing or the body signature does not match.
    """
    if platform not in SIGNATURE_HEADERS:
        raise WebhookNotSupported(f"No compliance webhook for {platform.value}")
    secret = _app_secret(platform, settings)
    if not secret:
        logger.error("%s compliance webhook rejected: app secret not configured", platform.value)
        raise Unauthorized("Webhook signature cannot be verified")
    header, encoding = SIGNATURE_HEADERS[platform]
    if not verify_body_hmac(body, headers.get(header), secret, encoding=encoding):
        logger.warning("%s compliance webhook: HMAC verification failed", platform.value)
        raise Unauthorized("Invalid webhook signature")


def _store_id(payload: dict) -> Optional[str]:
    for key in ("store_id", "shop_domain", "shop_id"):
        if payload.get(key):
            return str(payload[key])
    return None


def acknowledge_compliance_request(
    db: Session,
    platform: Union[Platform, str],
    topic: Optional[str],
    payload: Optional[dict],
) -> dict:
    platform = Platform(platform)
    topic = topic if topic in COMPLIANCE_TOPICS else "unknown"
    payload = payload if isinstance(payload, dict) else {}
    store_id = _store_id(payload)

    if topic == "unknown":
        logger.warning("%s compliance webhook with unknown type (store %s)", platform.value, store_id)
    else:
        # Nothing to erase or export: no customer-level data is kept
        logger.info("%s compliance webhook %s processed (store %s)", platform.value, topic, store_id)

    db.add(WebhookEvent(
        source=platform.value,
        store_id=store_id,
        topic=topic,
        processed_at=datetime.now(timezone.utc),
    ))
    db.commit()
    return {"success": True}
