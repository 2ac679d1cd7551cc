"""
SQLAlchemy models for integrations, sync history and the daily metrics series.
All model and enum definitions live here for simplicity and to avoid circular imports.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Date, ForeignKey, Numeric, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum
import uuid

# Enums
class Platform(str, enum.Enum):
    SHOPEE = "shopee"
    SHOPIFY = "shopify"
    NUVEMSHOP = "nuvemshop"
    OLIST_TINY = "olist_tiny"

class SyncStatus(str, enum.Enum):
    PENDING_OAUTH = "pending_oauth"
    CONNECTED = "connected"
    ERROR = "error"

class SyncJobStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

# Models
class UserIntegration(Base):
    __tablename__ = "user_integrations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column("user_id", String, nullable=False, index=True)
    platform = Column("platform", String, nullable=False, index=True)
    credentials_encrypted = Column("credentials_encrypted", String, nullable=True)
    is_active = Column("is_active", Boolean, default=False, nullable=False)
    sync_status = Column("sync_status", String, default=SyncStatus.PENDING_OAUTH.value, nullable=False)
    last_sync_at = Column("last_sync_at", DateTime(timezone=True), nullable=True)
    last_error = Column("last_error", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    sync_jobs = relationship("SyncJob", back_populates="integration", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("user_id", "platform", name="uq_user_integrations_user_platform"),)


class MetricDaily(Base):
    __tablename__ = "metrics_diarias"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column("user_id", String, nullable=False, index=True)
    data = Column("data", Date, nullable=False, index=True)
    platform = Column("platform", String, nullable=False, index=True)
    faturamento = Column("faturamento", Numeric(14, 2), default=0, nullable=False)
    vendas_quantidade = Column("vendas_quantidade", Integer, default=0, nullable=False)
    vendas_valor = Column("vendas_valor", Numeric(14, 2), default=0, nullable=False)
    created_at = Column("created_at", DateTime, server_default=func.now())
    updated_at = Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint("user_id", "data", "platform", name="uq_metrics_diarias_user_data_platform"),)


class OAuthStateNonce(Base):
    __tablename__ = "oauth_state_nonces"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    nonce = Column("nonce", String, unique=True, nullable=False, index=True)
    user_id = Column("user_id", String, nullable=False)
    platform = Column("platform", String, nullable=False)
    consumed_at = Column("consumed_at", DateTime(timezone=True), nullable=False)


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    integration_id = Column("integration_id", String, ForeignKey("user_integrations.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SQLEnum(SyncJobStatus), default=SyncJobStatus.RUNNING)
    started_at = Column("started_at", DateTime(timezone=True), nullable=True)
    finished_at = Column("finished_at", DateTime(timezone=True), nullable=True)
    orders_processed = Column("orders_processed", Integer, default=0)
    days_updated = Column("days_updated", Integer, default=0)
    error_message = Column("error_message", String, nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())

    integration = relationship("UserIntegration", back_populates="sync_jobs")


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    source = Column("source", String, nullable=False, index=True)
    store_id = Column("store_id", String, nullable=True, index=True)
    topic = Column("topic", String, nullable=False, index=True)
    processed_at = Column("processed_at", DateTime(timezone=True), nullable=True)
    created_at = Column("created_at", DateTime, server_default=func.now())
