"""
Reconciler tests: metrics_diarias upserts are idempotent and replace totals
"""
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from app.models import MetricDaily, Platform, UserIntegration
from app.services.aggregator import DailyBucket
from app.services.reconciler import mark_integration_synced, reconcile_daily_metrics, upsert_statement
from conftest import USER_ID


def _bucket(total: str, count: int) -> DailyBucket:
    amount = Decimal(total)
    return DailyBucket(faturamento=amount, vendas_quantidade=count, vendas_valor=amount)


def _rows(db):
    return {
        (row.data.isoformat(), row.platform): (Decimal(row.faturamento), row.vendas_quantidade, Decimal(row.vendas_valor))
        for row in db.query(MetricDaily).filter(MetricDaily.user_id == USER_ID).all()
    }


class TestReconcileDailyMetrics:
    """Upsert keyed by (user, date, platform)"""

    def test_inserts_rows(self, db_session):
        days = reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPIFY, {
            "2026-01-01": _bucket("100.00", 1),
            "2026-01-02": _bucket("30.00", 1),
        })
        db_session.commit()
        assert days == 2
        assert _rows(db_session) == {
            ("2026-01-01", "shopify"): (Decimal("100.00"), 1, Decimal("100.00")),
            ("2026-01-02", "shopify"): (Decimal("30.00"), 1, Decimal("30.00")),
        }

    def test_idempotent(self, db_session):
        buckets = {"2026-01-01": _bucket("100.00", 1), "2026-01-02": _bucket("30.00", 1)}
        reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPIFY, buckets)
        db_session.commit()
        once = _rows(db_session)

        reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPIFY, buckets)
        db_session.commit()
        assert _rows(db_session) == once
        assert db_session.query(MetricDaily).count() == 2

    def test_rerun_overwrites_not_increments(self, db_session):
        reconcile_daily_metrics(db_session, USER_ID, Platform.NUVEMSHOP, {"2026-01-01": _bucket("100.00", 2)})
        db_session.commit()
        reconcile_daily_metrics(db_session, USER_ID, Platform.NUVEMSHOP, {"2026-01-01": _bucket("80.00", 1)})
        db_session.commit()
        assert _rows(db_session) == {("2026-01-01", "nuvemshop"): (Decimal("80.00"), 1, Decimal("80.00"))}

    def test_platforms_kept_apart(self, db_session):
        reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPEE, {"2026-01-01": _bucket("10.00", 1)})
        reconcile_daily_metrics(db_session, USER_ID, Platform.OLIST_TINY, {"2026-01-01": _bucket("20.00", 1)})
        db_session.commit()
        assert len(_rows(db_session)) == 2

    def test_amounts_rounded_to_cents(self, db_session):
        reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPEE, {"2026-01-01": _bucket("10.006", 1)})
        db_session.commit()
        row = db_session.query(MetricDaily).one()
        assert Decimal(row.faturamento) == Decimal("10.01")
        assert row.data == date(2026, 1, 1)

    def test_empty_buckets(self, db_session):
        assert reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPEE, {}) == 0


class TestConcurrentWriters:
    """A row another run wrote between our read and write must not fail the upsert"""

    def test_single_statement_upsert(self, db_session):
        statements = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            statements.append(statement)

        bind = db_session.get_bind()
        event.listen(bind, "before_cursor_execute", capture)
        try:
            reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPIFY, {"2026-01-01": _bucket("10.00", 1)})
        finally:
            event.remove(bind, "before_cursor_execute", capture)

        assert len(statements) == 1
        assert statements[0].lstrip().upper().startswith("INSERT")
        assert "ON CONFLICT" in statements[0].upper()

    def test_row_from_other_run_is_overwritten(self, db_session):
        # Committed outside the ORM, as a concurrent run would
        db_session.execute(MetricDaily.__table__.insert().values(
            id="other-run", user_id=USER_ID, data=date(2026, 1, 1), platform="shopify",
            faturamento=Decimal("1.00"), vendas_quantidade=1, vendas_valor=Decimal("1.00"),
        ))
        db_session.commit()

        reconcile_daily_metrics(db_session, USER_ID, Platform.SHOPIFY, {"2026-01-01": _bucket("55.00", 3)})
        db_session.commit()

        assert _rows(db_session) == {("2026-01-01", "shopify"): (Decimal("55.00"), 3, Decimal("55.00"))}
        assert db_session.query(MetricDaily).one().id == "other-run"

    def test_postgresql_statement(self):
        stmt = upsert_statement("postgresql", {
            "user_id": USER_ID, "data": date(2026, 1, 1), "platform": "shopify",
            "faturamento": Decimal("1.00"), "vendas_quantidade": 1, "vendas_valor": Decimal("1.00"),
        })
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT (user_id, data, platform) DO UPDATE" in sql
        assert "vendas_quantidade = excluded.vendas_quantidade" in sql


class TestMarkIntegrationSynced:
    def test_promotes_status(self):
        integration = UserIntegration(user_id=USER_ID, platform="shopify", sync_status="error", last_error="boom")
        mark_integration_synced(integration)
        assert integration.sync_status == "connected"
        assert integration.last_error is None
        assert integration.last_sync_at is not None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
