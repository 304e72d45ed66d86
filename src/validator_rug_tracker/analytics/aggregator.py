"""Per-epoch offender statistics over the event ledger.

All figures are recomputed from the ledger on every call; nothing here is
stored. Only the newest event per (validator, epoch, metric) counts.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from validator_rug_tracker.detector.models import Classification, MetricType
from validator_rug_tracker.storage.repos import EventDTO, EventRepository

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_EPOCH_FLOOR = datetime.min.replace(tzinfo=UTC)


@dataclass(frozen=True)
class EpochOffenderRow:
    """Offender counts for one epoch.

    ``commission_entities`` and ``mev_entities`` each include validators that
    had both kinds of event; ``both_types`` is their intersection.
    """

    epoch: int
    unique_entities: int = 0
    commission_entities: int = 0
    mev_entities: int = 0
    both_types: int = 0

    @property
    def commission_only(self) -> int:
        return self.commission_entities - self.both_types

    @property
    def mev_only(self) -> int:
        return self.mev_entities - self.both_types


@dataclass(frozen=True)
class OffenderStats:
    """All-time figures across every recorded epoch."""

    total_epochs_tracked: int = 0
    peak_per_epoch: int = 0
    avg_per_epoch: Decimal = Decimal("0.00")
    repeat_offenders: int = 0
    total_distinct_offenders: int = 0


@dataclass(frozen=True)
class EpochAggregate:
    classification: Classification
    rows: list[EpochOffenderRow]
    stats: OffenderStats


def latest_per_epoch(events: Iterable[EventDTO]) -> list[EventDTO]:
    """Keep the newest event per (vote_pubkey, epoch, metric_type)."""
    latest: dict[tuple[str, int, MetricType], EventDTO] = {}
    for event in events:
        key = (event.vote_pubkey, event.epoch, event.metric_type)
        current = latest.get(key)
        if current is None or _recency(event) > _recency(current):
            latest[key] = event
    return list(latest.values())


def _recency(event: EventDTO) -> tuple[datetime, int]:
    return (event.created_at or _EPOCH_FLOOR, event.id or 0)


def _members_by_epoch(events: Iterable[EventDTO]) -> dict[int, dict[MetricType, set[str]]]:
    members: dict[int, dict[MetricType, set[str]]] = defaultdict(lambda: defaultdict(set))
    for event in events:
        members[event.epoch][event.metric_type].add(event.vote_pubkey)
    return members


def _row(epoch: int, by_metric: dict[MetricType, set[str]] | None) -> EpochOffenderRow:
    if not by_metric:
        return EpochOffenderRow(epoch=epoch)
    inflation = by_metric.get(MetricType.INFLATION, set())
    mev = by_metric.get(MetricType.MEV, set())
    return EpochOffenderRow(
        epoch=epoch,
        unique_entities=len(inflation | mev),
        commission_entities=len(inflation),
        mev_entities=len(mev),
        both_types=len(inflation & mev),
    )


class EpochAggregator:
    """Builds gap-filled per-epoch rows and all-time offender statistics."""

    def __init__(self, classification: Classification = Classification.RUG) -> None:
        self.classification = classification

    def aggregate(
        self,
        events: Iterable[EventDTO],
        *,
        min_epoch: int,
        max_epoch: int,
    ) -> EpochAggregate:
        """Aggregate the full event history of one classification.

        Args:
            events: Every event of ``self.classification`` (all history; the
                window only limits which rows are returned).
            min_epoch: First epoch of the returned rows (inclusive).
            max_epoch: Last epoch of the returned rows (inclusive).
        """
        if min_epoch > max_epoch:
            raise ValueError(f"min_epoch {min_epoch} is after max_epoch {max_epoch}")

        deduped = latest_per_epoch(e for e in events if e.classification == self.classification)
        members = _members_by_epoch(deduped)

        rows = [_row(epoch, members.get(epoch)) for epoch in range(min_epoch, max_epoch + 1)]
        return EpochAggregate(classification=self.classification, rows=rows, stats=self._stats(members))

    def _stats(self, members: dict[int, dict[MetricType, set[str]]]) -> OffenderStats:
        if not members:
            return OffenderStats()

        epochs_by_entity: dict[str, set[int]] = defaultdict(set)
        peak = 0
        for epoch, by_metric in members.items():
            union: set[str] = set().union(*by_metric.values())
            peak = max(peak, len(union))
            for vote_pubkey in union:
                epochs_by_entity[vote_pubkey].add(epoch)

        total_epochs = max(members) - min(members) + 1
        distinct = len(epochs_by_entity)
        avg = (Decimal(distinct) / Decimal(total_epochs)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return OffenderStats(
            total_epochs_tracked=total_epochs,
            peak_per_epoch=peak,
            avg_per_epoch=avg,
            repeat_offenders=sum(1 for epochs in epochs_by_entity.values() if len(epochs) > 1),
            total_distinct_offenders=distinct,
        )

    async def load(
        self,
        session: AsyncSession,
        *,
        min_epoch: int,
        max_epoch: int,
    ) -> EpochAggregate:
        """Read the ledger and aggregate it."""
        events = await EventRepository(session).list_by_classification(self.classification)
        logger.debug("Aggregating %d %s events", len(events), self.classification.value)
        return self.aggregate(events, min_epoch=min_epoch, max_epoch=max_epoch)
