"""
Request signing and signature verification primitives.
Shopee signs every call with HMAC-SHA256 over a canonical string; Shopify and
Nuvemshop sign their callbacks and webhooks with the app secret.
"""
import base64
import hashlib
import hmac
import logging
from typing import Optional, Union
from urllib.parse import parse_qs, quote_plus

logger = logging.getLogger(__name__)


def sign(secret: str, canonical_string: str) -> str:
    """HMAC-SHA256 hex digest. Pure: identical inputs always give the identical digest."""
    return hmac.new(
        secret.encode("utf-8"),
        canonical_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def shopee_base_string(
    partner_id: int,
    api_path: str,
    timestamp: int,
    access_token: Optional[str] = None,
    shop_id: Optional[int] = None,
) -> str:
    """
    Canonical string for Shopee v2.
    Public calls (auth_partner, token/get, access_token/get): {partner_id}{api_path}{timestamp}
    Shop calls (order APIs): {partner_id}{api_path}{timestamp}{access_token}{shop_id}
    """
    base = f"{partner_id}{api_path}{timestamp}"
    if access_token is not None and shop_id is not None:
        base = f"{base}{access_token}{shop_id}"
    return base


def verify_query_hmac(query_string: str, secret: str) -> bool:
    """Verify the `hmac` param of a Shopify OAuth callback query string (hex digest)."""
    if not query_string or not secret:
        logger.warning("HMAC verification skipped: missing query_string or secret")
        return False

    params = parse_qs(query_string, keep_blank_values=True)
    hmac_param = params.get("hmac", [None])[0]
    if not hmac_param:
        logger.warning("HMAC verification failed: no hmac parameter in query string")
        return False

    params.pop("hmac", None)
    params.pop("signature", None)

    query_parts = []
    for key, values in sorted(params.items()):
        for value in values:
            encoded_value = quote_plus(str(value)) if value else ""
            query_parts.append(f"{key}={encoded_value}")
    message = "&".join(query_parts)

    calculated = sign(secret, message)
    is_valid = hmac.compare_digest(calculated, hmac_param)
    if not is_valid:
        logger.warning("HMAC verification failed: calculated=%s..., received=%s...", calculated[:10], hmac_param[:10])
    return is_valid


def verify_body_hmac(body: Union[bytes, str], signature: Optional[str], secret: Optional[str], encoding: str = "hex") -> bool:
    """
    Verify a webhook body signature.
    encoding="hex" for Nuvemshop (x-linkedstore-hmac-sha256), "base64" for Shopify (X-Shopify-Hmac-Sha256).
    """
    if not secret or not signature or not body:
        return False
    raw = body.encode("utf-8") if isinstance(body, str) else body
    digest = hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).digest()
    if encoding == "base64":
        expected = base64.b64encode(digest).decode("utf-8")
    elif encoding == "hex":
        expected = digest.hex()
    else:
        raise ValueError(f"Unknown signature encoding: {encoding}")
    return hmac.compare_digest(expected, signature.strip())
