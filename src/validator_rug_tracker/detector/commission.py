"""Commission change detection against the previous epoch's snapshot."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from validator_rug_tracker.detector.classifier import ClassifierConfig, classify_inflation, classify_mev
from validator_rug_tracker.detector.models import CommissionChange
from validator_rug_tracker.storage.repos import (
    EventDTO,
    EventRepository,
    SnapshotDTO,
    SnapshotRepository,
    ValidatorDTO,
    ValidatorRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from validator_rug_tracker.ingestor.models import ValidatorReading

logger = logging.getLogger(__name__)


class CommissionChangeDetector:
    """Compares a fresh reading with the validator's most recent prior epoch.

    For each validator, inside the caller's transaction:

    1. Look up the reference snapshot (latest epoch strictly before the
       current one; for MEV, the latest one with an observed MEV value).
    2. Classify INFLATION and MEV transitions independently.
    3. Insert each change unless an identical event already exists.
    4. Upsert the current epoch's snapshot.

    Replaying the same reading is a no-op for the ledger.

    Example:
        ```python
        detector = CommissionChangeDetector(ClassifierConfig())
        async with db.get_async_session() as session:
            new_events = await detector.process(session, reading, epoch=812)
        ```
    """

    def __init__(self, config: ClassifierConfig | None = None) -> None:
        self.config = config or ClassifierConfig()

    async def detect(
        self,
        session: AsyncSession,
        reading: ValidatorReading,
        *,
        epoch: int,
    ) -> list[CommissionChange]:
        """Classify a reading without writing anything."""
        snapshots = SnapshotRepository(session)
        changes: list[CommissionChange] = []

        reference = await snapshots.get_reference(reading.vote_pubkey, before_epoch=epoch)
        if reference is None:
            return changes

        inflation = classify_inflation(
            reading.vote_pubkey, epoch, reference.commission, reading.commission, self.config
        )
        if inflation is not None:
            changes.append(inflation)

        mev_reference = reference
        if not reference.mev_commission.is_observed:
            mev_reference = await snapshots.get_mev_reference(reading.vote_pubkey, before_epoch=epoch)
        if mev_reference is not None:
            mev = classify_mev(
                reading.vote_pubkey,
                epoch,
                mev_reference.mev_commission,
                reading.mev_commission,
                self.config,
            )
            if mev is not None:
                changes.append(mev)

        return changes

    async def process(
        self,
        session: AsyncSession,
        reading: ValidatorReading,
        *,
        epoch: int,
        slot: int | None = None,
    ) -> list[EventDTO]:
        """Detect, record and snapshot one reading.

        Returns:
            Events created by this call (already-recorded changes are omitted).
        """
        await ValidatorRepository(session).upsert(
            ValidatorDTO(
                vote_pubkey=reading.vote_pubkey,
                identity_pubkey=reading.identity_pubkey,
                name=reading.name,
            )
        )

        events = EventRepository(session)
        created: list[EventDTO] = []
        for change in await self.detect(session, reading, epoch=epoch):
            if await events.exists(
                vote_pubkey=change.vote_pubkey,
                epoch=change.epoch,
                metric_type=change.metric_type,
                from_value=change.from_value,
                to_value=change.to_value,
            ):
                logger.debug(
                    "Event already recorded: validator=%s epoch=%d metric=%s",
                    change.vote_pubkey,
                    change.epoch,
                    change.metric_type.value,
                )
                continue
            event = await events.insert(
                EventDTO(
                    vote_pubkey=change.vote_pubkey,
                    epoch=change.epoch,
                    metric_type=change.metric_type,
                    classification=change.classification,
                    from_value=change.from_value,
                    to_value=change.to_value,
                    delta=change.delta,
                )
            )
            logger.info(
                "%s %s change: validator=%s epoch=%d %s -> %s",
                event.classification.value,
                event.metric_type.value,
                event.vote_pubkey,
                event.epoch,
                event.from_value if event.from_value is not None else "disabled",
                event.to_value if event.to_value is not None else "disabled",
            )
            created.append(event)

        await SnapshotRepository(session).upsert(
            SnapshotDTO(
                vote_pubkey=reading.vote_pubkey,
                epoch=epoch,
                commission=reading.commission,
                mev_commission=reading.mev_commission,
                delinquent=reading.delinquent,
                slot=slot,
            )
        )
        return created
