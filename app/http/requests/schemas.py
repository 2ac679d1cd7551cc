"""
Pydantic schemas for request/response validation (Http/Requests).
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime


# Integration Schemas
class AuthorizeRequest(BaseModel):
    """Shopify needs the merchant's own app credentials; other platforms send an empty body."""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    shop_domain: Optional[str] = None

    @field_validator("client_id", "client_secret", "shop_domain")
    @classmethod
    def strip_blank(cls, v):
        if v is None:
            return None
        v = v.strip()
        return v or None


class AuthorizeResponse(BaseModel):
    auth_url: str


class CallbackRequest(BaseModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    # Shopee shop_id, Shopify shop domain, Nuvemshop store id (platform-specific)
    shop_id: Optional[str] = None
    shop: Optional[str] = None
    store_id: Optional[str] = None
    # Raw callback query string; when present the Shopify hmac in it is verified
    query_string: Optional[str] = None

    @field_validator("shop_id", "store_id", mode="before")
    @classmethod
    def identifier_as_string(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip()

    @property
    def platform_identifier(self) -> Optional[str]:
        return self.shop_id or self.shop or self.store_id


class ConnectRequest(BaseModel):
    """Static API credentials. Shopify: access_token + store_url; Nuvemshop: access_token + store_id; Tiny: api_token."""
    access_token: Optional[str] = None
    api_token: Optional[str] = None
    store_url: Optional[str] = None
    store_id: Optional[str] = None

    @field_validator("store_id", mode="before")
    @classmethod
    def store_id_as_string(cls, v):
        if v is None or v == "":
            return None
        return str(v).strip()


class SuccessResponse(BaseModel):
    success: bool = True


class SyncResponse(BaseModel):
    orders_processed: int
    days_updated: int
    message: str


class IntegrationResponse(BaseModel):
    id: str
    platform: str
    is_active: bool
    sync_status: str
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None


class IntegrationListResponse(BaseModel):
    integrations: List[IntegrationResponse]


class SyncJobResponse(BaseModel):
    id: str
    status: str
    startedAt: Optional[str] = None
    completedAt: Optional[str] = None
    ordersProcessed: Optional[int] = None
    daysUpdated: Optional[int] = None
    errorMessage: Optional[str] = None
