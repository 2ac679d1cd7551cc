"""
Per-platform credential blobs. Each platform has its own shape; the stored JSON is
validated into the matching model when loaded instead of being read ad hoc.
A blob is either pre-handshake (no access token) or connected (access token present).
"""
import time
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from app.models import Platform
from app.services.errors import IncompleteCredentials


class PlatformCredentials(BaseModel):
    model_config = ConfigDict(extra="ignore")

    platform: ClassVar[Platform]

    def is_connected(self) -> bool:
        raise NotImplementedError

    def require_connected(self) -> "PlatformCredentials":
        if not self.is_connected():
            raise IncompleteCredentials(
                f"Credenciais {self.platform.value} incompletas. Reconecte a integração."
            )
        return self

    def to_blob(self) -> dict:
        return self.model_dump(exclude_none=True)


class ShopeeCredentials(PlatformCredentials):
    platform: ClassVar[Platform] = Platform.SHOPEE

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    shop_id: Optional[int] = None
    expire_in: int = 0
    obtained_at: int = 0

    def is_connected(self) -> bool:
        return bool(self.access_token and self.shop_id)

    @property
    def expires_at(self) -> int:
        return self.obtained_at + self.expire_in

    def expires_within(self, seconds: int, now: Optional[int] = None) -> bool:
        now = int(now if now is not None else time.time())
        return now >= self.expires_at - seconds


class ShopifyCredentials(PlatformCredentials):
    platform: ClassVar[Platform] = Platform.SHOPIFY

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    shop_domain: Optional[str] = None
    access_token: Optional[str] = None
    store_url: Optional[str] = None
    scope: Optional[str] = None

    def is_connected(self) -> bool:
        return bool(self.access_token and (self.store_url or self.shop_domain))

    @property
    def store_host(self) -> str:
        host = (self.store_url or self.shop_domain or "").strip().lower()
        host = host.replace("https://", "").replace("http://", "")
        return host.rstrip("/")


class NuvemshopCredentials(PlatformCredentials):
    platform: ClassVar[Platform] = Platform.NUVEMSHOP

    access_token: Optional[str] = None
    store_id: Optional[str] = None
    scope: Optional[str] = None

    @field_validator("store_id", mode="before")
    @classmethod
    def store_id_as_string(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip()

    def is_connected(self) -> bool:
        return bool(self.access_token and self.store_id)


class OlistTinyCredentials(PlatformCredentials):
    platform: ClassVar[Platform] = Platform.OLIST_TINY

    api_token: Optional[str] = None
    store_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_access_token_alias(cls, data: Any):
        if isinstance(data, dict) and not data.get("api_token") and data.get("access_token"):
            data = {**data, "api_token": data["access_token"]}
        return data

    @field_validator("store_id", mode="before")
    @classmethod
    def store_id_as_string(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip()

    def is_connected(self) -> bool:
        return bool(self.api_token)


CREDENTIAL_TYPES = {
    Platform.SHOPEE: ShopeeCredentials,
    Platform.SHOPIFY: ShopifyCredentials,
    Platform.NUVEMSHOP: NuvemshopCredentials,
    Platform.OLIST_TINY: OlistTinyCredentials,
}


def parse_credentials(platform: Union[Platform, str], data: Optional[dict]) -> PlatformCredentials:
    """Validate a raw blob into the platform's credential model."""
    model = CREDENTIAL_TYPES[Platform(platform)]
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise IncompleteCredentials(f"Credenciais {Platform(platform).value} inválidas: {fields}") from e
