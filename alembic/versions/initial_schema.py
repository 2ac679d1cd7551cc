"""initial schema: integrations, daily metrics, sync history, oauth nonces, webhook events

Revision ID: initial_schema
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa


revision = "initial_schema"
down_revision = None
branch_labels = None
depends_on = None

SYNC_JOB_STATUSES = ("RUNNING", "SUCCESS", "FAILED")


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute("""
            CREATE TABLE IF NOT EXISTS user_integrations (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                platform VARCHAR NOT NULL,
                credentials_encrypted VARCHAR,
                is_active BOOLEAN DEFAULT FALSE NOT NULL,
                sync_status VARCHAR DEFAULT 'pending_oauth' NOT NULL,
                last_sync_at TIMESTAMP WITH TIME ZONE,
                last_error VARCHAR,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT uq_user_integrations_user_platform UNIQUE (user_id, platform)
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_user_integrations_user_id ON user_integrations (user_id)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_user_integrations_platform ON user_integrations (platform)")

        op.execute("""
            CREATE TABLE IF NOT EXISTS metrics_diarias (
                id VARCHAR NOT NULL PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                data DATE NOT NULL,
                platform VARCHAR NOT NULL,
                faturamento NUMERIC(14, 2) DEFAULT 0 NOT NULL,
                vendas_quantidade INTEGER DEFAULT 0 NOT NULL,
                vendas_valor NUMERIC(14, 2) DEFAULT 0 NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CONSTRAINT uq_metrics_diarias_user_data_platform UNIQUE (user_id, data, platform)
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_metrics_diarias_user_id ON metrics_diarias (user_id)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_metrics_diarias_data ON metrics_diarias (data)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_metrics_diarias_platform ON metrics_diarias (platform)")

        op.execute("""
            CREATE TABLE IF NOT EXISTS oauth_state_nonces (
                id VARCHAR NOT NULL PRIMARY KEY,
                nonce VARCHAR NOT NULL UNIQUE,
                user_id VARCHAR NOT NULL,
                platform VARCHAR NOT NULL,
                consumed_at TIMESTAMP WITH TIME ZONE NOT NULL
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_oauth_state_nonces_nonce ON oauth_state_nonces (nonce)")

        op.execute("""
            DO $$ BEGIN
                CREATE TYPE syncjobstatus AS ENUM ('RUNNING', 'SUCCESS', 'FAILED');
            EXCEPTION WHEN duplicate_object THEN NULL;
            END $$;
        """)
        op.execute("""
            CREATE TABLE IF NOT EXISTS sync_jobs (
                id VARCHAR NOT NULL PRIMARY KEY,
                integration_id VARCHAR NOT NULL REFERENCES user_integrations(id) ON DELETE CASCADE,
                status syncjobstatus DEFAULT 'RUNNING',
                started_at TIMESTAMP WITH TIME ZONE,
                finished_at TIMESTAMP WITH TIME ZONE,
                orders_processed INTEGER DEFAULT 0,
                days_updated INTEGER DEFAULT 0,
                error_message VARCHAR,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_sync_jobs_integration_id ON sync_jobs (integration_id)")

        op.execute("""
            CREATE TABLE IF NOT EXISTS webhook_events (
                id VARCHAR NOT NULL PRIMARY KEY,
                source VARCHAR NOT NULL,
                store_id VARCHAR,
                topic VARCHAR NOT NULL,
                processed_at TIMESTAMP WITH TIME ZONE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_webhook_events_source ON webhook_events (source)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_webhook_events_store_id ON webhook_events (store_id)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_webhook_events_topic ON webhook_events (topic)")
    else:
        op.create_table(
            "user_integrations",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("platform", sa.String(), nullable=False),
            sa.Column("credentials_encrypted", sa.String(), nullable=True),
            sa.Column("is_active", sa.Boolean(), default=False, nullable=False),
            sa.Column("sync_status", sa.String(), default="pending_oauth", nullable=False),
            sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_error", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "platform", name="uq_user_integrations_user_platform"),
        )
        op.create_index("ix_user_integrations_user_id", "user_integrations", ["user_id"])
        op.create_index("ix_user_integrations_platform", "user_integrations", ["platform"])

        op.create_table(
            "metrics_diarias",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("data", sa.Date(), nullable=False),
            sa.Column("platform", sa.String(), nullable=False),
            sa.Column("faturamento", sa.Numeric(14, 2), default=0, nullable=False),
            sa.Column("vendas_quantidade", sa.Integer(), default=0, nullable=False),
            sa.Column("vendas_valor", sa.Numeric(14, 2), default=0, nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "data", "platform", name="uq_metrics_diarias_user_data_platform"),
        )
        op.create_index("ix_metrics_diarias_user_id", "metrics_diarias", ["user_id"])
        op.create_index("ix_metrics_diarias_data", "metrics_diarias", ["data"])
        op.create_index("ix_metrics_diarias_platform", "metrics_diarias", ["platform"])

        op.create_table(
            "oauth_state_nonces",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("nonce", sa.String(), nullable=False, unique=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("platform", sa.String(), nullable=False),
            sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_oauth_state_nonces_nonce", "oauth_state_nonces", ["nonce"])

        op.create_table(
            "sync_jobs",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("integration_id", sa.String(), sa.ForeignKey("user_integrations.id", ondelete="CASCADE"), nullable=False),
            sa.Column("status", sa.Enum(*SYNC_JOB_STATUSES, name="syncjobstatus"), default="RUNNING"),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("orders_processed", sa.Integer(), default=0),
            sa.Column("days_updated", sa.Integer(), default=0),
            sa.Column("error_message", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sync_jobs_integration_id", "sync_jobs", ["integration_id"])

        op.create_table(
            "webhook_events",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("store_id", sa.String(), nullable=True),
            sa.Column("topic", sa.String(), nullable=False),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
        op.create_index("ix_webhook_events_store_id", "webhook_events", ["store_id"])
        op.create_index("ix_webhook_events_topic", "webhook_events", ["topic"])


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("sync_jobs")
    op.drop_table("oauth_state_nonces")
    op.drop_table("metrics_diarias")
    op.drop_table("user_integrations")
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS syncjobstatus")
