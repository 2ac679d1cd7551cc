"""
Sync engine: one run pulls the lookback window of orders from a platform and rewrites the
user's daily metrics for it. A run either commits all of its metric writes or none of them.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.models import (
    Platform,
    SyncJob,
    SyncJobStatus,
    SyncStatus,
    UserIntegration,
)
from app.services.aggregator import aggregate_orders
from app.services.connector_base import Connector
from app.services.connectors import get_connector
from app.services.credentials import get_integration, load_credentials, store_credentials
from app.services.errors import IntegrationInactive, IntegrationNotFound, SyncPipelineError
from app.services.reconciler import mark_integration_synced, reconcile_daily_metrics

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs order syncs for one database session"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        connector_factory: Optional[Callable[..., Connector]] = None,
    ):
        self.db = db
        self.settings = settings
        self.connector_factory = connector_factory or get_connector

    async def run_sync(self, user_id: str, platform: Union[Platform, str]) -> dict:
        """
        Fetch, aggregate and reconcile one platform for one user.
        Returns {"orders_processed", "days_updated", "message"}; errors are re-raised after being recorded.
        """
        platform = Platform(platform)
        integration = get_integration(self.db, user_id, platform)
        if integration is None:
            raise IntegrationNotFound(f"Integração {platform.value} não encontrada")
        if not integration.is_active:
            raise IntegrationInactive(f"Integração {platform.value} inativa. Conclua a conexão antes de sincronizar.")

        sync_job = SyncJob(
            integration_id=integration.id,
            status=SyncJobStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        self.db.add(sync_job)
        self.db.commit()
        self.db.refresh(sync_job)
        integration_id, sync_job_id = integration.id, sync_job.id

        try:
            connector = self.connector_factory(platform, settings=self.settings)
            credentials = load_credentials(integration).require_connected()

            refreshed = await connector.refresh_if_needed(credentials)
            if refreshed is not None:
                # Persist right away: the old refresh token is no longer valid
                store_credentials(integration, refreshed)
                self.db.commit()
                credentials = refreshed

            since = datetime.now(timezone.utc) - timedelta(days=self.settings.SYNC_LOOKBACK_DAYS)
            orders = await connector.fetch_orders(credentials, since)
            buckets = aggregate_orders(orders, connector)
            days_updated = reconcile_daily_metrics(self.db, user_id, platform, buckets)

            mark_integration_synced(integration)
            sync_job.status = SyncJobStatus.SUCCESS
            sync_job.finished_at = datetime.now(timezone.utc)
            sync_job.orders_processed = len(orders)
            sync_job.days_updated = days_updated
            self.db.commit()
        except Exception as e:
            message = e.message if isinstance(e, SyncPipelineError) else f"Erro interno: {type(e).__name__}"
            if isinstance(e, SyncPipelineError):
                logger.error("%s sync failed for user %s: %s", platform.value, user_id, message)
            else:
                logger.exception("%s sync crashed for user %s", platform.value, user_id)
            self._record_failure(integration_id, sync_job_id, message)
            raise

        logger.info(
            "%s sync completed for user %s: %s orders, %s days",
            platform.value, user_id, len(orders), days_updated,
        )
        return {
            "orders_processed": len(orders),
            "days_updated": days_updated,
            "message": f"Sincronização concluída! {len(orders)} pedidos processados em {days_updated} dias.",
        }

    def _record_failure(self, integration_id: str, sync_job_id: str, message: str) -> None:
        # Drop every uncommitted metric write from this run; last_sync_at keeps its previous value
        self.db.rollback()
        integration = self.db.get(UserIntegration, integration_id)
        if integration is not None:
            integration.sync_status = SyncStatus.ERROR.value
            integration.last_error = message
        sync_job = self.db.get(SyncJob, sync_job_id)
        if sync_job is not None:
            sync_job.status = SyncJobStatus.FAILED
            sync_job.finished_at = datetime.now(timezone.utc)
            sync_job.error_message = message
        self.db.commit()

    def get_sync_history(self, user_id: str, platform: Union[Platform, str], limit: int = 50) -> list:
        """Get sync job history for a user's integration"""
        integration = get_integration(self.db, user_id, platform)
        if integration is None:
            raise IntegrationNotFound(f"Integração {Platform(platform).value} não encontrada")
        jobs = self.db.query(SyncJob).filter(
            SyncJob.integration_id == integration.id
        ).order_by(SyncJob.started_at.desc()).limit(limit).all()

        return [
            {
                "id": job.id,
                "status": job.status.value,
                "startedAt": job.started_at.isoformat() if job.started_at else None,
                "completedAt": job.finished_at.isoformat() if job.finished_at else None,
                "ordersProcessed": job.orders_processed,
                "daysUpdated": job.days_updated,
                "errorMessage": job.error_message,
            }
            for job in jobs
        ]
