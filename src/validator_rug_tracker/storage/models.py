"""SQLAlchemy models for persistent storage.

This module defines the database schema for validator snapshots,
commission events, uptime counters, delinquency alert state and
notification subscriptions, plus a log of tick runs.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ValidatorModel(Base):
    """Descriptive registry of known validators."""

    __tablename__ = "validators"

    vote_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    identity_pubkey: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class SnapshotModel(Base):
    """Last-seen metric values for one validator in one epoch."""

    __tablename__ = "snapshots"

    vote_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    epoch: Mapped[int] = mapped_column(Integer, primary_key=True)

    commission: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    # enabled / disabled / unknown; mev_commission is set iff enabled.
    mev_state: Mapped[str] = mapped_column(String(16), nullable=False)
    mev_commission: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    delinquent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slot: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_snapshots_epoch", "epoch"),)


class EventModel(Base):
    """Append-only commission change event.

    For MEV events a NULL from/to value means MEV was disabled; delta is
    NULL for enable/disable transitions.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vote_pubkey: Mapped[str] = mapped_column(String(64), nullable=False)
    epoch: Mapped[int] = mapped_column(Integer, nullable=False)
    metric_type: Mapped[str] = mapped_column(String(16), nullable=False)
    classification: Mapped[str] = mapped_column(String(16), nullable=False)

    from_value: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    to_value: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    delta: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_events_vote_epoch_metric", "vote_pubkey", "epoch", "metric_type"),
        Index("idx_events_classification_epoch", "classification", "epoch"),
    )


class DailyUptimeModel(Base):
    """Per-validator, per-UTC-day delinquency check counters."""

    __tablename__ = "daily_uptime"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vote_pubkey: Mapped[str] = mapped_column(String(64), nullable=False)
    day: Mapped[date] = mapped_column(Date, nullable=False)

    total_checks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delinquent_checks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Time bucket of the last applied check; replays of the same bucket are no-ops.
    last_check_bucket: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("vote_pubkey", "day", name="uq_daily_uptime_vote_day"),
        Index("idx_daily_uptime_day", "day"),
    )


class DelinquencyAlertStateModel(Base):
    """Per-validator delinquency alert suppression state."""

    __tablename__ = "delinquency_alert_states"

    vote_pubkey: Mapped[str] = mapped_column(String(64), primary_key=True)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class SubscriberModel(Base):
    """Global (all validators) alert subscriber."""

    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    preference: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class EntitySubscriptionModel(Base):
    """Per-validator alert subscription."""

    __tablename__ = "entity_subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    vote_pubkey: Mapped[str] = mapped_column(String(64), nullable=False)
    commission_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    delinquency_alerts: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("email", "vote_pubkey", name="uq_entity_subscriptions_email_vote"),
        Index("idx_entity_subscriptions_vote", "vote_pubkey"),
    )


class JobRunModel(Base):
    """One execution of a periodic tick (snapshot or uptime)."""

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_name: Mapped[str] = mapped_column(String(50), nullable=False)
    # running / success / failed
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    epoch: Mapped[int | None] = mapped_column(Integer, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)

    metrics: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_job_runs_job_started", "job_name", "started_at"),)
