"""Initial schema for validator snapshots, events, uptime and subscriptions.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Validator registry
    op.create_table(
        "validators",
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("identity_pubkey", sa.String(64), nullable=True),
        sa.Column("name", sa.String(256), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("vote_pubkey"),
    )

    # One row per (validator, epoch), last write wins
    op.create_table(
        "snapshots",
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("commission", sa.Numeric(6, 2), nullable=False),
        sa.Column("mev_state", sa.String(16), nullable=False),
        sa.Column("mev_commission", sa.Numeric(6, 2), nullable=True),
        sa.Column("delinquent", sa.Boolean(), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("vote_pubkey", "epoch"),
    )
    op.create_index("idx_snapshots_epoch", "snapshots", ["epoch"])

    # Append-only commission change ledger
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("epoch", sa.Integer(), nullable=False),
        sa.Column("metric_type", sa.String(16), nullable=False),
        sa.Column("classification", sa.String(16), nullable=False),
        sa.Column("from_value", sa.Numeric(6, 2), nullable=True),
        sa.Column("to_value", sa.Numeric(6, 2), nullable=True),
        sa.Column("delta", sa.Numeric(6, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_events_vote_epoch_metric", "events", ["vote_pubkey", "epoch", "metric_type"]
    )
    op.create_index("idx_events_classification_epoch", "events", ["classification", "epoch"])

    # Daily uptime counters
    op.create_table(
        "daily_uptime",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("total_checks", sa.Integer(), nullable=False),
        sa.Column("delinquent_checks", sa.Integer(), nullable=False),
        sa.Column("last_check_bucket", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("vote_pubkey", "day", name="uq_daily_uptime_vote_day"),
    )
    op.create_index("idx_daily_uptime_day", "daily_uptime", ["day"])

    op.create_table(
        "delinquency_alert_states",
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("state", sa.String(16), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("vote_pubkey"),
    )

    # Subscriptions
    op.create_table(
        "subscribers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("preference", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "entity_subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("vote_pubkey", sa.String(64), nullable=False),
        sa.Column("commission_alerts", sa.Boolean(), nullable=False),
        sa.Column("delinquency_alerts", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", "vote_pubkey", name="uq_entity_subscriptions_email_vote"),
    )
    op.create_index("idx_entity_subscriptions_vote", "entity_subscriptions", ["vote_pubkey"])


def downgrade() -> None:
    op.drop_index("idx_entity_subscriptions_vote", table_name="entity_subscriptions")
    op.drop_table("entity_subscriptions")
    op.drop_table("subscribers")
    op.drop_table("delinquency_alert_states")
    op.drop_index("idx_daily_uptime_day", table_name="daily_uptime")
    op.drop_table("daily_uptime")
    op.drop_index("idx_events_classification_epoch", table_name="events")
    op.drop_index("idx_events_vote_epoch_metric", table_name="events")
    op.drop_table("events")
    op.drop_index("idx_snapshots_epoch", table_name="snapshots")
    op.drop_table("snapshots")
    op.drop_table("validators")
