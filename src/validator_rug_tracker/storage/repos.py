"""Repository pattern implementations for data access.

This module provides clean data access abstractions for validators,
per-epoch snapshots, commission events, uptime counters, delinquency
alert state, notification subscriptions and tick run history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from validator_rug_tracker.detector.models import AlertState, Classification, MetricType
from validator_rug_tracker.ingestor.models import MevCommission, MevState
from validator_rug_tracker.storage.models import (
    DailyUptimeModel,
    DelinquencyAlertStateModel,
    EntitySubscriptionModel,
    EventModel,
    JobRunModel,
    SnapshotModel,
    SubscriberModel,
    ValidatorModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

PERCENT_QUANTUM = Decimal("0.01")


def _insert(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on read.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def uptime_percent(total_checks: int, delinquent_checks: int) -> Decimal:
    """Share of non-delinquent checks, rounded half-up to two decimals."""
    if total_checks <= 0:
        raise ValueError("uptime is undefined for zero checks")
    raw = Decimal(100) * Decimal(total_checks - delinquent_checks) / Decimal(total_checks)
    return raw.quantize(PERCENT_QUANTUM, rounding=ROUND_HALF_UP)


# ============================================================================
# Validators
# ============================================================================


@dataclass
class ValidatorDTO:
    """Data transfer object for validator registry rows."""

    vote_pubkey: str
    identity_pubkey: str | None = None
    name: str | None = None

    @classmethod
    def from_model(cls, model: ValidatorModel) -> ValidatorDTO:
        return cls(
            vote_pubkey=model.vote_pubkey,
            identity_pubkey=model.identity_pubkey,
            name=model.name,
        )


class ValidatorRepository:
    """Repository for the validator registry."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, vote_pubkey: str) -> ValidatorDTO | None:
        result = await self.session.execute(
            select(ValidatorModel)
            .where(ValidatorModel.vote_pubkey == vote_pubkey)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return ValidatorDTO.from_model(model) if model else None

    async def exists(self, vote_pubkey: str) -> bool:
        result = await self.session.execute(
            select(ValidatorModel.vote_pubkey).where(ValidatorModel.vote_pubkey == vote_pubkey)
        )
        return result.scalar_one_or_none() is not None

    async def upsert(self, dto: ValidatorDTO) -> None:
        """Insert or update a validator, keeping known descriptive fields.

        A missing identity or name in the new row never erases a stored one.
        """
        now = datetime.now(UTC)
        stmt = _insert(self.session, ValidatorModel).values(
            vote_pubkey=dto.vote_pubkey,
            identity_pubkey=dto.identity_pubkey,
            name=dto.name,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["vote_pubkey"],
            set_={
                "identity_pubkey": func.coalesce(stmt.excluded.identity_pubkey, ValidatorModel.identity_pubkey),
                "name": func.coalesce(stmt.excluded.name, ValidatorModel.name),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_names(self, vote_pubkeys: list[str] | None = None) -> dict[str, str]:
        stmt = select(ValidatorModel.vote_pubkey, ValidatorModel.name).where(ValidatorModel.name.is_not(None))
        if vote_pubkeys is not None:
            stmt = stmt.where(ValidatorModel.vote_pubkey.in_(vote_pubkeys))
        result = await self.session.execute(stmt)
        return {row.vote_pubkey: row.name for row in result}


# ============================================================================
# Snapshots
# ============================================================================


@dataclass
class SnapshotDTO:
    """Data transfer object for per-epoch snapshots."""

    vote_pubkey: str
    epoch: int
    commission: Decimal
    mev_commission: MevCommission
    delinquent: bool
    slot: int | None = None
    captured_at: datetime | None = None

    @classmethod
    def from_model(cls, model: SnapshotModel) -> SnapshotDTO:
        state = MevState(model.mev_state)
        mev = MevCommission.enabled(model.mev_commission) if state == MevState.ENABLED else MevCommission(state)
        return cls(
            vote_pubkey=model.vote_pubkey,
            epoch=model.epoch,
            commission=Decimal(model.commission),
            mev_commission=mev,
            delinquent=model.delinquent,
            slot=model.slot,
            captured_at=_utc(model.captured_at),
        )


class SnapshotRepository:
    """Repository for per-(validator, epoch) snapshots."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, vote_pubkey: str, epoch: int) -> SnapshotDTO | None:
        result = await self.session.execute(
            select(SnapshotModel)
            .execution_options(populate_existing=True)
            .where(SnapshotModel.vote_pubkey == vote_pubkey, SnapshotModel.epoch == epoch)
        )
        model = result.scalar_one_or_none()
        return SnapshotDTO.from_model(model) if model else None

    async def get_reference(self, vote_pubkey: str, *, before_epoch: int) -> SnapshotDTO | None:
        """Most recent snapshot strictly before ``before_epoch``."""
        result = await self.session.execute(
            select(SnapshotModel)
            .execution_options(populate_existing=True)
            .where(SnapshotModel.vote_pubkey == vote_pubkey, SnapshotModel.epoch < before_epoch)
            .order_by(SnapshotModel.epoch.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return SnapshotDTO.from_model(model) if model else None

    async def get_mev_reference(self, vote_pubkey: str, *, before_epoch: int) -> SnapshotDTO | None:
        """Most recent snapshot before ``before_epoch`` with an observed MEV value."""
        result = await self.session.execute(
            select(SnapshotModel)
            .execution_options(populate_existing=True)
            .where(
                SnapshotModel.vote_pubkey == vote_pubkey,
                SnapshotModel.epoch < before_epoch,
                SnapshotModel.mev_state != MevState.UNKNOWN.value,
            )
            .order_by(SnapshotModel.epoch.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return SnapshotDTO.from_model(model) if model else None

    async def upsert(self, dto: SnapshotDTO) -> None:
        """Insert or update the snapshot for (vote_pubkey, epoch).

        Commission, delinquency and an observed MEV value are overwritten by the
        newest reading. An UNKNOWN MEV reading keeps the stored MEV value, and a
        missing slot keeps the stored slot.
        """
        now = dto.captured_at or datetime.now(UTC)
        mev = dto.mev_commission
        stmt = _insert(self.session, SnapshotModel).values(
            vote_pubkey=dto.vote_pubkey,
            epoch=dto.epoch,
            commission=dto.commission,
            mev_state=mev.state.value,
            mev_commission=mev.value,
            delinquent=dto.delinquent,
            slot=dto.slot,
            captured_at=now,
        )
        set_: dict[str, Any] = {
            "commission": stmt.excluded.commission,
            "delinquent": stmt.excluded.delinquent,
            "slot": func.coalesce(stmt.excluded.slot, SnapshotModel.slot),
            "captured_at": stmt.excluded.captured_at,
        }
        if mev.is_observed:
            set_["mev_state"] = stmt.excluded.mev_state
            set_["mev_commission"] = stmt.excluded.mev_commission
        stmt = stmt.on_conflict_do_update(index_elements=["vote_pubkey", "epoch"], set_=set_)
        await self.session.execute(stmt)
        await self.session.flush()

    async def list_for_validator(self, vote_pubkey: str, *, limit: int = 100) -> list[SnapshotDTO]:
        result = await self.session.execute(
            select(SnapshotModel)
            .execution_options(populate_existing=True)
            .where(SnapshotModel.vote_pubkey == vote_pubkey)
            .order_by(SnapshotModel.epoch.desc())
            .limit(limit)
        )
        return [SnapshotDTO.from_model(m) for m in result.scalars().all()]

    async def latest_epoch(self) -> int | None:
        result = await self.session.execute(select(func.max(SnapshotModel.epoch)))
        return result.scalar_one_or_none()


# ============================================================================
# Events
# ============================================================================


@dataclass
class EventDTO:
    """Data transfer object for commission events.

    For MEV events ``None`` from/to values mean disabled.
    """

    vote_pubkey: str
    epoch: int
    metric_type: MetricType
    classification: Classification
    from_value: Decimal | None
    to_value: Decimal | None
    delta: Decimal | None
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: EventModel) -> EventDTO:
        return cls(
            id=model.id,
            vote_pubkey=model.vote_pubkey,
            epoch=model.epoch,
            metric_type=MetricType(model.metric_type),
            classification=Classification(model.classification),
            from_value=Decimal(model.from_value) if model.from_value is not None else None,
            to_value=Decimal(model.to_value) if model.to_value is not None else None,
            delta=Decimal(model.delta) if model.delta is not None else None,
            created_at=_utc(model.created_at),
        )


@dataclass
class EpochChangeView:
    """INFLATION and MEV representatives for one validator epoch, side by side."""

    vote_pubkey: str
    epoch: int
    inflation: EventDTO | None = None
    mev: EventDTO | None = None


def _nullable_eq(column: Any, value: Decimal | None) -> Any:
    return column.is_(None) if value is None else column == value


class EventRepository:
    """Append-only event ledger with a deduplicating read view."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(
        self,
        *,
        vote_pubkey: str,
        epoch: int,
        metric_type: MetricType,
        from_value: Decimal | None,
        to_value: Decimal | None,
    ) -> bool:
        """Check the idempotency key (vote_pubkey, epoch, metric, from, to)."""
        result = await self.session.execute(
            select(EventModel.id)
            .where(
                EventModel.vote_pubkey == vote_pubkey,
                EventModel.epoch == epoch,
                EventModel.metric_type == metric_type.value,
                _nullable_eq(EventModel.from_value, from_value),
                _nullable_eq(EventModel.to_value, to_value),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def insert(self, dto: EventDTO) -> EventDTO:
        model = EventModel(
            vote_pubkey=dto.vote_pubkey,
            epoch=dto.epoch,
            metric_type=dto.metric_type.value,
            classification=dto.classification.value,
            from_value=dto.from_value,
            to_value=dto.to_value,
            delta=dto.delta,
            created_at=dto.created_at or datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return EventDTO.from_model(model)

    def _latest_stmt(self, *filters: Any) -> Any:
        rank = (
            func.row_number()
            .over(
                partition_by=(EventModel.vote_pubkey, EventModel.epoch, EventModel.metric_type),
                order_by=(EventModel.created_at.desc(), EventModel.id.desc()),
            )
            .label("rank")
        )
        ranked = select(EventModel.id, rank).where(*filters).subquery()
        return (
            select(EventModel)
            .join(ranked, ranked.c.id == EventModel.id)
            .where(ranked.c.rank == 1)
        )

    async def list_latest(
        self,
        *,
        vote_pubkey: str | None = None,
        min_epoch: int | None = None,
        max_epoch: int | None = None,
        classification: Classification | None = None,
    ) -> list[EventDTO]:
        """Deduplicated view: the newest row per (vote_pubkey, epoch, metric)."""
        filters: list[Any] = []
        if vote_pubkey is not None:
            filters.append(EventModel.vote_pubkey == vote_pubkey)
        if min_epoch is not None:
            filters.append(EventModel.epoch >= min_epoch)
        if max_epoch is not None:
            filters.append(EventModel.epoch <= max_epoch)
        if classification is not None:
            filters.append(EventModel.classification == classification.value)
        stmt = self._latest_stmt(*filters).order_by(EventModel.epoch.desc(), EventModel.vote_pubkey)
        result = await self.session.execute(stmt)
        return [EventDTO.from_model(m) for m in result.scalars().all()]

    async def list_for_validator(self, vote_pubkey: str) -> list[EpochChangeView]:
        """Per-epoch history for one validator, newest epoch first."""
        views: dict[int, EpochChangeView] = {}
        for event in await self.list_latest(vote_pubkey=vote_pubkey):
            view = views.setdefault(event.epoch, EpochChangeView(vote_pubkey=vote_pubkey, epoch=event.epoch))
            if event.metric_type == MetricType.INFLATION:
                view.inflation = event
            else:
                view.mev = event
        return [views[epoch] for epoch in sorted(views, reverse=True)]

    async def list_by_classification(
        self,
        classification: Classification,
        *,
        min_epoch: int | None = None,
        max_epoch: int | None = None,
    ) -> list[EventDTO]:
        """Raw (not deduplicated) events of one classification."""
        stmt = select(EventModel).where(EventModel.classification == classification.value)
        if min_epoch is not None:
            stmt = stmt.where(EventModel.epoch >= min_epoch)
        if max_epoch is not None:
            stmt = stmt.where(EventModel.epoch <= max_epoch)
        result = await self.session.execute(stmt.order_by(EventModel.epoch, EventModel.id))
        return [EventDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(EventModel))
        return int(result.scalar_one())


# ============================================================================
# Uptime
# ============================================================================


@dataclass
class DailyUptimeDTO:
    """Data transfer object for daily uptime rows."""

    vote_pubkey: str
    day: date
    total_checks: int
    delinquent_checks: int

    @property
    def uptime_percent(self) -> Decimal:
        return uptime_percent(self.total_checks, self.delinquent_checks)

    @classmethod
    def from_model(cls, model: DailyUptimeModel) -> DailyUptimeDTO:
        return cls(
            vote_pubkey=model.vote_pubkey,
            day=model.day,
            total_checks=model.total_checks,
            delinquent_checks=model.delinquent_checks,
        )


@dataclass
class UptimeSummaryDTO:
    """Uptime summed over a window of days."""

    vote_pubkey: str
    days: int
    total_checks: int
    delinquent_checks: int

    @property
    def uptime_percent(self) -> Decimal:
        return uptime_percent(self.total_checks, self.delinquent_checks)


class DailyUptimeRepository:
    """Repository for per-(validator, day) check counters."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record_check(
        self,
        vote_pubkey: str,
        *,
        day: date,
        delinquent: bool,
        bucket: int,
    ) -> bool:
        """Atomically count one check.

        The increment happens in the database and only when ``bucket`` is newer
        than the last applied bucket, so replaying a tick is a no-op.

        Returns:
            True if the check was counted.
        """
        delinquent_inc = 1 if delinquent else 0
        stmt = _insert(self.session, DailyUptimeModel).values(
            vote_pubkey=vote_pubkey,
            day=day,
            total_checks=1,
            delinquent_checks=delinquent_inc,
            last_check_bucket=bucket,
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["vote_pubkey", "day"],
            set_={
                "total_checks": DailyUptimeModel.total_checks + 1,
                "delinquent_checks": DailyUptimeModel.delinquent_checks + delinquent_inc,
                "last_check_bucket": stmt.excluded.last_check_bucket,
                "updated_at": stmt.excluded.updated_at,
            },
            where=DailyUptimeModel.last_check_bucket < stmt.excluded.last_check_bucket,
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def get(self, vote_pubkey: str, day: date) -> DailyUptimeDTO | None:
        result = await self.session.execute(
            select(DailyUptimeModel)
            .execution_options(populate_existing=True)
            .where(
                DailyUptimeModel.vote_pubkey == vote_pubkey,
                DailyUptimeModel.day == day,
                DailyUptimeModel.total_checks > 0,
            )
        )
        model = result.scalar_one_or_none()
        return DailyUptimeDTO.from_model(model) if model else None

    async def list_for_validator(self, vote_pubkey: str, *, since: date) -> list[DailyUptimeDTO]:
        result = await self.session.execute(
            select(DailyUptimeModel)
            .execution_options(populate_existing=True)
            .where(
                DailyUptimeModel.vote_pubkey == vote_pubkey,
                DailyUptimeModel.day >= since,
                DailyUptimeModel.total_checks > 0,
            )
            .order_by(DailyUptimeModel.day)
        )
        return [DailyUptimeDTO.from_model(m) for m in result.scalars().all()]

    async def summarize(
        self,
        *,
        since: date,
        vote_pubkeys: list[str] | None = None,
    ) -> list[UptimeSummaryDTO]:
        stmt = (
            select(
                DailyUptimeModel.vote_pubkey,
                func.count(DailyUptimeModel.id).label("days"),
                func.sum(DailyUptimeModel.total_checks).label("total_checks"),
                func.sum(DailyUptimeModel.delinquent_checks).label("delinquent_checks"),
            )
            .where(DailyUptimeModel.day >= since, DailyUptimeModel.total_checks > 0)
            .group_by(DailyUptimeModel.vote_pubkey)
            .order_by(DailyUptimeModel.vote_pubkey)
        )
        if vote_pubkeys is not None:
            stmt = stmt.where(DailyUptimeModel.vote_pubkey.in_(vote_pubkeys))
        result = await self.session.execute(stmt)
        return [
            UptimeSummaryDTO(
                vote_pubkey=row.vote_pubkey,
                days=int(row.days),
                total_checks=int(row.total_checks),
                delinquent_checks=int(row.delinquent_checks),
            )
            for row in result
        ]


# ============================================================================
# Delinquency alert state
# ============================================================================


class DelinquencyAlertStateRepository:
    """Compare-and-set persistence for delinquency alert state."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, vote_pubkey: str) -> AlertState:
        result = await self.session.execute(
            select(DelinquencyAlertStateModel.state).where(DelinquencyAlertStateModel.vote_pubkey == vote_pubkey)
        )
        state = result.scalar_one_or_none()
        return AlertState(state) if state else AlertState.CLEAR

    async def ensure(self, vote_pubkey: str) -> None:
        """Create a CLEAR row if none exists."""
        stmt = _insert(self.session, DelinquencyAlertStateModel).values(
            vote_pubkey=vote_pubkey,
            state=AlertState.CLEAR.value,
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["vote_pubkey"])
        await self.session.execute(stmt)

    async def compare_and_set(self, vote_pubkey: str, *, expected: AlertState, new: AlertState) -> bool:
        """Move from ``expected`` to ``new``; False if another writer got there first."""
        await self.ensure(vote_pubkey)
        result = await self.session.execute(
            update(DelinquencyAlertStateModel)
            .where(
                DelinquencyAlertStateModel.vote_pubkey == vote_pubkey,
                DelinquencyAlertStateModel.state == expected.value,
            )
            .values(state=new.value, updated_at=datetime.now(UTC))
        )
        await self.session.flush()
        return result.rowcount == 1


# ============================================================================
# Subscriptions
# ============================================================================


@dataclass
class SubscriberDTO:
    """Data transfer object for global subscribers."""

    email: str
    preference: str | None = None

    @classmethod
    def from_model(cls, model: SubscriberModel) -> SubscriberDTO:
        return cls(email=model.email, preference=model.preference)


class SubscriberRepository:
    """Repository for global subscribers."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, email: str, preference: str | None) -> SubscriberDTO:
        now = datetime.now(UTC)
        email = email.strip().lower()
        stmt = _insert(self.session, SubscriberModel).values(
            email=email, preference=preference, created_at=now, updated_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["email"],
            set_={"preference": stmt.excluded.preference, "updated_at": stmt.excluded.updated_at},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return SubscriberDTO(email=email, preference=preference)

    async def get(self, email: str) -> SubscriberDTO | None:
        result = await self.session.execute(
            select(SubscriberModel)
            .execution_options(populate_existing=True)
            .where(SubscriberModel.email == email.strip().lower())
        )
        model = result.scalar_one_or_none()
        return SubscriberDTO.from_model(model) if model else None

    async def delete(self, email: str) -> bool:
        result = await self.session.execute(
            delete(SubscriberModel).where(SubscriberModel.email == email.strip().lower())
        )
        return bool(result.rowcount)

    async def list_all(self) -> list[SubscriberDTO]:
        result = await self.session.execute(
            select(SubscriberModel).execution_options(populate_existing=True).order_by(SubscriberModel.id)
        )
        return [SubscriberDTO.from_model(m) for m in result.scalars().all()]


@dataclass
class EntitySubscriptionDTO:
    """Data transfer object for per-validator subscriptions."""

    email: str
    vote_pubkey: str
    commission_alerts: bool = True
    delinquency_alerts: bool = True

    @classmethod
    def from_model(cls, model: EntitySubscriptionModel) -> EntitySubscriptionDTO:
        return cls(
            email=model.email,
            vote_pubkey=model.vote_pubkey,
            commission_alerts=model.commission_alerts,
            delinquency_alerts=model.delinquency_alerts,
        )


class EntitySubscriptionRepository:
    """Repository for per-validator subscriptions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: EntitySubscriptionDTO) -> EntitySubscriptionDTO:
        if not (dto.commission_alerts or dto.delinquency_alerts):
            raise ValueError("At least one alert type must be enabled")
        now = datetime.now(UTC)
        email = dto.email.strip().lower()
        stmt = _insert(self.session, EntitySubscriptionModel).values(
            email=email,
            vote_pubkey=dto.vote_pubkey,
            commission_alerts=dto.commission_alerts,
            delinquency_alerts=dto.delinquency_alerts,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["email", "vote_pubkey"],
            set_={
                "commission_alerts": stmt.excluded.commission_alerts,
                "delinquency_alerts": stmt.excluded.delinquency_alerts,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return EntitySubscriptionDTO(
            email=email,
            vote_pubkey=dto.vote_pubkey,
            commission_alerts=dto.commission_alerts,
            delinquency_alerts=dto.delinquency_alerts,
        )

    async def get(self, email: str, vote_pubkey: str) -> EntitySubscriptionDTO | None:
        result = await self.session.execute(
            select(EntitySubscriptionModel)
            .execution_options(populate_existing=True)
            .where(
                EntitySubscriptionModel.email == email.strip().lower(),
                EntitySubscriptionModel.vote_pubkey == vote_pubkey,
            )
        )
        model = result.scalar_one_or_none()
        return EntitySubscriptionDTO.from_model(model) if model else None

    async def delete(self, email: str, vote_pubkey: str) -> bool:
        result = await self.session.execute(
            delete(EntitySubscriptionModel).where(
                EntitySubscriptionModel.email == email.strip().lower(),
                EntitySubscriptionModel.vote_pubkey == vote_pubkey,
            )
        )
        return bool(result.rowcount)

    async def list_for_validator(self, vote_pubkey: str) -> list[EntitySubscriptionDTO]:
        result = await self.session.execute(
            select(EntitySubscriptionModel)
            .execution_options(populate_existing=True)
            .where(EntitySubscriptionModel.vote_pubkey == vote_pubkey)
            .order_by(EntitySubscriptionModel.id)
        )
        return [EntitySubscriptionDTO.from_model(m) for m in result.scalars().all()]


# ============================================================================
# Job runs
# ============================================================================


class JobStatus(str, Enum):
    """Lifecycle of one recorded tick run."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class JobRunDTO:
    """Data transfer object for tick run records."""

    id: int
    job_name: str
    status: JobStatus
    started_at: datetime
    epoch: int | None = None
    completed_at: datetime | None = None
    duration_seconds: Decimal | None = None
    metrics: dict[str, Any] | None = None
    error_message: str | None = None

    @classmethod
    def from_model(cls, model: JobRunModel) -> JobRunDTO:
        return cls(
            id=model.id,
            job_name=model.job_name,
            status=JobStatus(model.status),
            started_at=_utc(model.started_at),
            epoch=model.epoch,
            completed_at=_utc(model.completed_at) if model.completed_at else None,
            duration_seconds=Decimal(model.duration_seconds) if model.duration_seconds is not None else None,
            metrics=model.metrics,
            error_message=model.error_message,
        )


class JobRunRepository:
    """Start/finish bookkeeping for snapshot and uptime ticks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def start(self, job_name: str, *, started_at: datetime | None = None) -> JobRunDTO:
        model = JobRunModel(
            job_name=job_name,
            status=JobStatus.RUNNING.value,
            started_at=started_at or datetime.now(UTC),
        )
        self.session.add(model)
        await self.session.flush()
        return JobRunDTO.from_model(model)

    async def finish(
        self,
        run_id: int,
        status: JobStatus,
        *,
        epoch: int | None = None,
        metrics: dict[str, Any] | None = None,
        error_message: str | None = None,
        completed_at: datetime | None = None,
    ) -> JobRunDTO | None:
        """Close a run. Returns None if ``run_id`` is unknown."""
        model = await self.session.get(JobRunModel, run_id)
        if model is None:
            logger.warning("Job run %d not found, cannot mark %s", run_id, status.value)
            return None
        completed = completed_at or datetime.now(UTC)
        elapsed = Decimal(str((completed - _utc(model.started_at)).total_seconds()))
        model.status = status.value
        model.epoch = epoch
        model.metrics = metrics
        model.error_message = error_message
        model.completed_at = completed
        model.duration_seconds = elapsed.quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
        await self.session.flush()
        return JobRunDTO.from_model(model)

    async def latest(self, job_name: str) -> JobRunDTO | None:
        result = await self.session.execute(
            select(JobRunModel)
            .where(JobRunModel.job_name == job_name)
            .order_by(JobRunModel.started_at.desc(), JobRunModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return JobRunDTO.from_model(model) if model else None

    async def list_recent(self, job_name: str, *, limit: int = 20) -> list[JobRunDTO]:
        result = await self.session.execute(
            select(JobRunModel)
            .where(JobRunModel.job_name == job_name)
            .order_by(JobRunModel.started_at.desc(), JobRunModel.id.desc())
            .limit(limit)
        )
        return [JobRunDTO.from_model(m) for m in result.scalars().all()]

    async def prune(self, job_name: str, *, before: datetime) -> int:
        """Delete finished runs started before ``before``."""
        result = await self.session.execute(
            delete(JobRunModel).where(
                JobRunModel.job_name == job_name,
                JobRunModel.started_at < before,
                JobRunModel.status != JobStatus.RUNNING.value,
            )
        )
        return int(result.rowcount or 0)
