"""
OAuth state token: carries the caller's identity across the platform redirect.
The callback URL is public (no session), so the state is the only proof of who started the handshake.
Encoded as a signed, short-lived JWT; nonces are recorded on use so a state is accepted once.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from jose import jwt, JWTError
from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models import OAuthStateNonce, Platform
from app.services.errors import InvalidState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthState:
    user_id: str
    platform: str
    nonce: str
    issued_at: int


def encode_state(
    user_id: str,
    platform: Union[Platform, str],
    settings: Settings = default_settings,
    nonce: Optional[str] = None,
    issued_at: Optional[int] = None,
) -> str:
    """Build a state token for user_id. issued_at doubles as the Shopee signing timestamp."""
    platform_value = platform.value if isinstance(platform, Platform) else str(platform)
    iat = int(issued_at if issued_at is not None else time.time())
    claims = {
        "user_id": user_id,
        "platform": platform_value,
        "nonce": nonce or secrets.token_urlsafe(24),
        "iat": iat,
        "exp": iat + settings.OAUTH_STATE_TTL_SECONDS,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.AUTH_ALGORITHM)


def decode_state(state: Optional[str], settings: Settings = default_settings) -> OAuthState:
    """Decode and validate a state token. Anything that does not yield a user id raises InvalidState."""
    if not state or not isinstance(state, str):
        raise InvalidState("Missing OAuth state")
    try:
        claims = jwt.decode(
            state,
            settings.JWT_SECRET,
            algorithms=[settings.AUTH_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.warning("OAuth state rejected: %s", e)
        raise InvalidState("Invalid or expired OAuth state") from e

    user_id = claims.get("user_id")
    nonce = claims.get("nonce")
    if not user_id or not isinstance(user_id, str) or not nonce:
        raise InvalidState("OAuth state does not identify a user")
    return OAuthState(
        user_id=user_id,
        platform=str(claims.get("platform") or ""),
        nonce=str(nonce),
        issued_at=int(claims.get("iat") or 0),
    )


def consume_state_nonce(db: Session, state: OAuthState, settings: Settings = default_settings) -> None:
    """Record the state's nonce as used. A second callback with the same state raises InvalidState."""
    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.OAUTH_STATE_TTL_SECONDS)
    # Expired states are rejected by decode_state, so their nonces no longer need to be kept
    db.query(OAuthStateNonce).filter(OAuthStateNonce.consumed_at < cutoff).delete(synchronize_session=False)

    existing = db.query(OAuthStateNonce).filter(OAuthStateNonce.nonce == state.nonce).first()
    if existing:
        logger.warning("OAuth state replay rejected for user %s (%s)", state.user_id, state.platform)
        raise InvalidState("OAuth state was already used")

    db.add(OAuthStateNonce(
        nonce=state.nonce,
        user_id=state.user_id,
        platform=state.platform,
        consumed_at=now,
    ))
    db.flush()
