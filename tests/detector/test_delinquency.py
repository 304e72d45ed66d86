"""Tests for delinquency alert suppression."""

from decimal import Decimal

import pytest

from validator_rug_tracker.detector.delinquency import DelinquencyAlertStateMachine, next_state
from validator_rug_tracker.detector.models import AlertState
from validator_rug_tracker.ingestor.models import MevCommission, ValidatorReading
from validator_rug_tracker.storage.repos import DelinquencyAlertStateRepository

VOTE = "Vote111111111111111111111111111111111111111"


def create_reading(delinquent: bool, *, vote_pubkey: str = VOTE) -> ValidatorReading:
    """Create a ValidatorReading for testing."""
    return ValidatorReading(
        vote_pubkey=vote_pubkey,
        commission=Decimal("5"),
        mev_commission=MevCommission.unknown(),
        delinquent=delinquent,
        name="Test Validator",
    )


class TestNextState:
    """Tests for the pure transition table."""

    @pytest.mark.parametrize(
        ("state", "delinquent", "expected"),
        [
            (AlertState.CLEAR, True, (AlertState.ALERTED, True)),
            (AlertState.ALERTED, True, (AlertState.ALERTED, False)),
            (AlertState.ALERTED, False, (AlertState.CLEAR, False)),
            (AlertState.CLEAR, False, (AlertState.CLEAR, False)),
        ],
    )
    def test_transitions(self, state, delinquent, expected):
        assert next_state(state, delinquent) == expected


class TestDelinquencyAlertStateMachine:
    """Tests for the persisted state machine."""

    @pytest.mark.asyncio
    async def test_one_alert_per_episode(self, async_session):
        """[T, T, T, F, T] produces exactly two alerts."""
        machine = DelinquencyAlertStateMachine()
        alerts = []
        for delinquent in [True, True, True, False, True]:
            alert = await machine.observe(async_session, create_reading(delinquent), epoch=812)
            if alert is not None:
                alerts.append(alert)

        assert len(alerts) == 2
        assert all(a.vote_pubkey == VOTE for a in alerts)
        assert alerts[0].name == "Test Validator"

    @pytest.mark.asyncio
    async def test_healthy_validator_never_alerts(self, async_session):
        machine = DelinquencyAlertStateMachine()
        for _ in range(3):
            assert await machine.observe(async_session, create_reading(False), epoch=812) is None

        assert await DelinquencyAlertStateRepository(async_session).get(VOTE) == AlertState.CLEAR

    @pytest.mark.asyncio
    async def test_state_persisted(self, async_session):
        machine = DelinquencyAlertStateMachine()
        await machine.observe(async_session, create_reading(True), epoch=812)

        assert await DelinquencyAlertStateRepository(async_session).get(VOTE) == AlertState.ALERTED

    @pytest.mark.asyncio
    async def test_lost_compare_and_set_emits_nothing(self, async_session):
        """If another writer already moved the state, this observer stays silent."""
        repo = DelinquencyAlertStateRepository(async_session)
        await repo.ensure(VOTE)
        assert await repo.compare_and_set(VOTE, expected=AlertState.CLEAR, new=AlertState.ALERTED)

        # A stale writer that still believes the state is CLEAR loses.
        assert not await repo.compare_and_set(VOTE, expected=AlertState.CLEAR, new=AlertState.ALERTED)
