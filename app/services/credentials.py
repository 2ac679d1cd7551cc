"""
Credential vault: encryption/decryption and the one integration row per (user, platform).
"""
import json
import base64
import logging
from typing import Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Platform, SyncStatus, UserIntegration
from app.services.credential_types import PlatformCredentials, parse_credentials
from app.services.errors import IncompleteCredentials

logger = logging.getLogger(__name__)


def get_encryption_key() -> bytes:
    """Derive the Fernet key from ENCRYPTION_KEY"""
    key_str = settings.ENCRYPTION_KEY
    # Ensure key is 32 bytes for Fernet
    key_bytes = key_str.encode()[:32].ljust(32, b'0')
    return base64.urlsafe_b64encode(key_bytes)

def encrypt_token(token: str) -> str:
    """Encrypt a token"""
    f = Fernet(get_encryption_key())
    return f.encrypt(token.encode()).decode()

def decrypt_token(encrypted: str) -> str:
    """Decrypt a token"""
    f = Fernet(get_encryption_key())
    return f.decrypt(encrypted.encode()).decode()


def _platform_value(platform: Union[Platform, str]) -> str:
    return Platform(platform).value


def get_integration(db: Session, user_id: str, platform: Union[Platform, str]) -> Optional[UserIntegration]:
    """Return the integration row for (user, platform), or None when never connected."""
    return (
        db.query(UserIntegration)
        .filter(
            UserIntegration.user_id == user_id,
            UserIntegration.platform == _platform_value(platform),
        )
        .first()
    )


def list_integrations(db: Session, user_id: str) -> list[UserIntegration]:
    return (
        db.query(UserIntegration)
        .filter(UserIntegration.user_id == user_id)
        .order_by(UserIntegration.platform)
        .all()
    )


def store_credentials(integration: UserIntegration, credentials: PlatformCredentials) -> None:
    """Encrypt and attach a credential blob to the integration (caller commits)."""
    integration.credentials_encrypted = encrypt_token(json.dumps(credentials.to_blob()))


def load_credentials(integration: UserIntegration) -> PlatformCredentials:
    """Decrypt and validate the stored blob into the platform's credential model."""
    if not integration.credentials_encrypted:
        return parse_credentials(integration.platform, {})
    try:
        raw = decrypt_token(integration.credentials_encrypted)
        data = json.loads(raw)
    except (InvalidToken, ValueError) as e:
        logger.error("Stored credentials unreadable for integration %s: %s", integration.id, type(e).__name__)
        raise IncompleteCredentials("Credenciais armazenadas ilegíveis. Reconecte a integração.") from e
    if not isinstance(data, dict):
        raise IncompleteCredentials("Credenciais armazenadas em formato inválido. Reconecte a integração.")
    return parse_credentials(integration.platform, data)


def upsert_integration(
    db: Session,
    user_id: str,
    platform: Union[Platform, str],
    credentials: Optional[PlatformCredentials],
    is_active: bool,
    sync_status: SyncStatus,
) -> UserIntegration:
    """
    Insert or update the single integration row for (user, platform).
    credentials=None keeps whatever blob is stored. Flushes; the caller commits.
    """
    integration = get_integration(db, user_id, platform)
    if integration is None:
        integration = UserIntegration(user_id=user_id, platform=_platform_value(platform))
        db.add(integration)
        logger.info("Created %s integration for user %s", _platform_value(platform), user_id)
    if credentials is not None:
        store_credentials(integration, credentials)
    integration.is_active = is_active
    integration.sync_status = sync_status.value
    db.flush()
    return integration
