"""
Write aggregated daily totals into metrics_diarias.
One row per (user, date, platform); a re-sync replaces the row's totals instead of adding to them.
On PostgreSQL and SQLite the write is a single INSERT .. ON CONFLICT DO UPDATE, so two runs racing
on the same day both succeed and the last one wins.
"""
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Mapping, Union

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from app.models import MetricDaily, Platform, SyncStatus, UserIntegration
from app.services.aggregator import DailyBucket

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}
METRIC_KEY = ("user_id", "data", "platform")
METRIC_TOTALS = ("faturamento", "vendas_quantidade", "vendas_valor")


def _metric_values(user_id: str, day: date, platform: str, bucket: DailyBucket) -> dict:
    return {
        "user_id": user_id,
        "data": day,
        "platform": platform,
        "faturamento": bucket.faturamento.quantize(CENTS),
        "vendas_quantidade": bucket.vendas_quantidade,
        "vendas_valor": bucket.vendas_valor.quantize(CENTS),
    }


def upsert_statement(dialect_name: str, values: dict):
    """INSERT .. ON CONFLICT (user_id, data, platform) DO UPDATE for dialects that support it."""
    stmt = UPSERT_INSERTS[dialect_name](MetricDaily).values(id=str(uuid.uuid4()), **values)
    updates = {name: stmt.excluded[name] for name in METRIC_TOTALS}
    updates["updated_at"] = func.now()
    return stmt.on_conflict_do_update(index_elements=list(METRIC_KEY), set_=updates)


def _upsert_metric(db: Session, values: dict) -> None:
    """Insert or update metrics_diarias row for (user, date, platform)."""
    dialect_name = db.get_bind().dialect.name
    if dialect_name in UPSERT_INSERTS:
        db.execute(upsert_statement(dialect_name, values))
        return

    row = db.query(MetricDaily).filter(
        MetricDaily.user_id == values["user_id"],
        MetricDaily.data == values["data"],
        MetricDaily.platform == values["platform"],
    ).first()
    if row:
        for name in METRIC_TOTALS:
            setattr(row, name, values[name])
    else:
        db.add(MetricDaily(**values))
    db.flush()


def reconcile_daily_metrics(
    db: Session,
    user_id: str,
    platform: Union[Platform, str],
    buckets: Mapping[str, DailyBucket],
) -> int:
    """Upsert every bucket. Returns the number of days written. The caller commits."""
    platform_value = Platform(platform).value
    for day_key in sorted(buckets):
        _upsert_metric(db, _metric_values(user_id, date.fromisoformat(day_key), platform_value, buckets[day_key]))
    logger.info("Reconciled %s day(s) of %s metrics for user %s", len(buckets), platform_value, user_id)
    return len(buckets)


def mark_integration_synced(integration: UserIntegration) -> None:
    integration.last_sync_at = datetime.now(timezone.utc)
    integration.sync_status = SyncStatus.CONNECTED.value
    integration.last_error = None
