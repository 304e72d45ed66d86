"""Tests for alert formatting."""

from decimal import Decimal

import pytest

from validator_rug_tracker.alerter.formatter import (
    DECREASE,
    MEV_DISABLED,
    MEV_ENABLED,
    AlertFormatter,
    format_delta,
    format_percent,
    select_variant,
    truncate_pubkey,
)
from validator_rug_tracker.detector.models import (
    Classification,
    DelinquencyAlert,
    EventKind,
    MetricType,
)
from validator_rug_tracker.storage.repos import EventDTO

VOTE = "Vote111111111111111111111111111111111111111"


def create_event(
    *,
    metric_type: MetricType = MetricType.INFLATION,
    classification: Classification = Classification.RUG,
    from_value: Decimal | None = Decimal("5"),
    to_value: Decimal | None = Decimal("100"),
) -> EventDTO:
    """Create an EventDTO for testing."""
    delta = to_value - from_value if from_value is not None and to_value is not None else None
    return EventDTO(
        vote_pubkey=VOTE,
        epoch=812,
        metric_type=metric_type,
        classification=classification,
        from_value=from_value,
        to_value=to_value,
        delta=delta,
    )


@pytest.fixture
def formatter() -> AlertFormatter:
    return AlertFormatter("https://rugalert.example.com/")


class TestHelpers:
    """Tests for value formatting helpers."""

    def test_format_percent(self):
        assert format_percent(Decimal("5.00")) == "5%"
        assert format_percent(Decimal("7.5")) == "7.5%"
        assert format_percent(None) == "MEV Disabled"

    def test_format_delta(self):
        assert format_delta(Decimal("95")) == "+95pp"
        assert format_delta(Decimal("-3")) == "-3pp"

    def test_truncate_pubkey(self):
        assert truncate_pubkey(VOTE) == "Vote...1111"
        assert truncate_pubkey("short") == "short"

    def test_select_variant(self):
        assert select_variant(create_event(metric_type=MetricType.MEV, to_value=None)) is MEV_DISABLED
        assert select_variant(create_event(metric_type=MetricType.MEV, from_value=None)) is MEV_ENABLED
        decrease = create_event(
            classification=Classification.INFO, from_value=Decimal("10"), to_value=Decimal("5")
        )
        assert select_variant(decrease) is DECREASE


class TestCommissionAlerts:
    """Tests for commission change rendering."""

    def test_mev_and_inflation_rug_differ_by_label(self, formatter):
        inflation = formatter.format_commission_change(create_event(), "Pumpkin")
        mev = formatter.format_commission_change(create_event(metric_type=MetricType.MEV), "Pumpkin")

        assert select_variant(create_event()) is select_variant(create_event(metric_type=MetricType.MEV))
        assert "Inflation Commission" in inflation.subject
        assert "MEV Commission" in mev.subject
        assert "MEV Commission: 5% → 100%" in mev.text

    def test_rug(self, formatter):
        alert = formatter.format_commission_change(create_event(), name="Pumpkin")

        assert alert.kind == EventKind.COMMISSION_CHANGE
        assert alert.classification == Classification.RUG
        assert alert.subject == "🚨 Pumpkin Raised Inflation Commission"
        assert alert.badge == "RUG DETECTED"
        assert "Inflation Commission: 5% → 100% (+95pp)" in alert.text
        assert f"https://rugalert.example.com/validator/{VOTE}" in alert.text
        assert alert.html.startswith("<!DOCTYPE html>")

    def test_rug_goes_to_discord(self, formatter):
        alert = formatter.format_commission_change(create_event())

        assert alert.discord_content is not None
        assert alert.discord_content.startswith("🚨 RUG DETECTED!")

    @pytest.mark.parametrize("classification", [Classification.CAUTION, Classification.INFO])
    def test_non_rug_not_sent_to_discord(self, formatter, classification):
        event = create_event(classification=classification, to_value=Decimal("12"))

        assert formatter.format_commission_change(event).discord_content is None

    def test_name_falls_back_to_pubkey(self, formatter):
        alert = formatter.format_commission_change(create_event(classification=Classification.CAUTION))

        assert VOTE in alert.subject

    def test_mev_disabled(self, formatter):
        event = create_event(
            metric_type=MetricType.MEV,
            classification=Classification.INFO,
            from_value=Decimal("10"),
            to_value=None,
        )

        alert = formatter.format_commission_change(event, name="Pumpkin")

        assert alert.subject == "⚠️ Pumpkin Disabled MEV Rewards"
        assert "MEV Commission: 10% → MEV Disabled" in alert.text
        assert "pp)" not in alert.text

    def test_decrease(self, formatter):
        event = create_event(
            classification=Classification.INFO, from_value=Decimal("10"), to_value=Decimal("5")
        )

        alert = formatter.format_commission_change(event, name="Pumpkin")

        assert alert.subject == "✅ Pumpkin Lowered Inflation Commission"
        assert "(-5pp)" in alert.text


class TestDelinquencyAlerts:
    """Tests for delinquency rendering."""

    def test_delinquency(self, formatter):
        alert = formatter.format_delinquency(DelinquencyAlert(vote_pubkey=VOTE, epoch=812, name="Pumpkin"))

        assert alert.kind == EventKind.DELINQUENCY
        assert alert.subject == "🚨 [DELINQUENT] Pumpkin"
        assert alert.classification is None
        assert alert.discord_content is None
        assert "Epoch: 812" in alert.text


class TestPersonalize:
    """Tests for per-recipient unsubscribe footers."""

    def test_unsubscribe_footer(self, formatter):
        alert = formatter.format_commission_change(create_event())

        text, body_html = formatter.personalize(alert, "a+b@example.com")

        assert text.endswith("https://rugalert.example.com/unsubscribe?email=a%2Bb%40example.com")
        assert "unsubscribe?email=a%2Bb%40example.com" in body_html
        assert body_html.endswith("</body></html>")
