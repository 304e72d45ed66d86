"""Uptime accumulation and reporting."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

from validator_rug_tracker.storage.repos import (
    DailyUptimeDTO,
    DailyUptimeRepository,
    UptimeSummaryDTO,
    uptime_percent,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from validator_rug_tracker.ingestor.models import ValidatorReading

logger = logging.getLogger(__name__)

__all__ = ["UptimeLedger", "uptime_percent"]


def utc_today(now: datetime | None = None) -> date:
    return (now or datetime.now(UTC)).astimezone(UTC).date()


class UptimeLedger:
    """Counts delinquency checks per validator per UTC day."""

    async def record(
        self,
        session: AsyncSession,
        reading: ValidatorReading,
        *,
        bucket: int,
        now: datetime | None = None,
    ) -> bool:
        """Count one check for ``reading``.

        Returns:
            False if this bucket was already counted for the validator today.
        """
        counted = await DailyUptimeRepository(session).record_check(
            reading.vote_pubkey,
            day=utc_today(now),
            delinquent=reading.delinquent,
            bucket=bucket,
        )
        if not counted:
            logger.debug("Uptime check for %s bucket %d already counted", reading.vote_pubkey, bucket)
        return counted

    async def history(
        self,
        session: AsyncSession,
        vote_pubkey: str,
        *,
        days: int,
        today: date | None = None,
    ) -> list[DailyUptimeDTO]:
        since = (today or utc_today()) - timedelta(days=days - 1)
        return await DailyUptimeRepository(session).list_for_validator(vote_pubkey, since=since)

    async def summary(
        self,
        session: AsyncSession,
        *,
        days: int,
        vote_pubkeys: list[str] | None = None,
        today: date | None = None,
    ) -> list[UptimeSummaryDTO]:
        since = (today or utc_today()) - timedelta(days=days - 1)
        return await DailyUptimeRepository(session).summarize(since=since, vote_pubkeys=vote_pubkeys)
