"""Delinquency alert suppression.

Each validator is CLEAR or ALERTED. Only the CLEAR -> ALERTED edge alerts,
so one delinquency episode produces one alert no matter how many checks
observe it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from validator_rug_tracker.detector.models import AlertState, DelinquencyAlert
from validator_rug_tracker.storage.repos import DelinquencyAlertStateRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from validator_rug_tracker.ingestor.models import ValidatorReading

logger = logging.getLogger(__name__)

# (state, delinquent) -> (next state, emit alert)
TRANSITIONS: dict[tuple[AlertState, bool], tuple[AlertState, bool]] = {
    (AlertState.CLEAR, True): (AlertState.ALERTED, True),
    (AlertState.ALERTED, True): (AlertState.ALERTED, False),
    (AlertState.ALERTED, False): (AlertState.CLEAR, False),
    (AlertState.CLEAR, False): (AlertState.CLEAR, False),
}


def next_state(state: AlertState, delinquent: bool) -> tuple[AlertState, bool]:
    """Return the next state and whether to alert."""
    return TRANSITIONS[(state, delinquent)]


class DelinquencyAlertStateMachine:
    """Persists alert state with compare-and-set transitions."""

    async def observe(
        self,
        session: AsyncSession,
        reading: ValidatorReading,
        *,
        epoch: int,
    ) -> DelinquencyAlert | None:
        """Apply one delinquency observation.

        Returns:
            A DelinquencyAlert when the validator just became delinquent,
            otherwise None. If a concurrent writer applied the same transition
            first, no alert is returned.
        """
        repo = DelinquencyAlertStateRepository(session)
        current = await repo.get(reading.vote_pubkey)
        new, emit = next_state(current, reading.delinquent)
        if new == current:
            return None

        if not await repo.compare_and_set(reading.vote_pubkey, expected=current, new=new):
            logger.debug("Lost delinquency state race for %s", reading.vote_pubkey)
            return None

        if new == AlertState.CLEAR:
            logger.info("Validator %s recovered from delinquency", reading.vote_pubkey)
        if not emit:
            return None

        logger.info("Validator %s became delinquent at epoch %d", reading.vote_pubkey, epoch)
        return DelinquencyAlert(vote_pubkey=reading.vote_pubkey, epoch=epoch, name=reading.name)
