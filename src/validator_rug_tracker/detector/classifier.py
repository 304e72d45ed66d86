"""Commission change severity rules.

Classification is a pure function of the reference value, the current value
and the configured thresholds. Rules are evaluated in order; the first match
wins:

1. ``to == max_commission and from < max_commission`` -> RUG
2. ``delta >= rug_threshold`` -> RUG
3. ``caution_threshold <= delta < rug_threshold`` -> CAUTION
4. any other non-zero delta -> INFO

A zero delta is not a change. MEV enable/disable transitions are always INFO.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from validator_rug_tracker.detector.models import Classification, CommissionChange, MetricType
from validator_rug_tracker.ingestor.models import MevCommission, MevState

if TYPE_CHECKING:
    from validator_rug_tracker.config import ClassifierSettings

DEFAULT_RUG_THRESHOLD = Decimal("50")
DEFAULT_CAUTION_THRESHOLD = Decimal("5")
DEFAULT_MAX_COMMISSION = Decimal("100")


@dataclass(frozen=True)
class ClassifierConfig:
    """Thresholds in percentage points."""

    rug_threshold: Decimal = DEFAULT_RUG_THRESHOLD
    caution_threshold: Decimal = DEFAULT_CAUTION_THRESHOLD
    max_commission: Decimal = DEFAULT_MAX_COMMISSION
    mev_max_commission_is_rug: bool = True

    @classmethod
    def from_settings(cls, settings: ClassifierSettings) -> ClassifierConfig:
        return cls(
            rug_threshold=settings.rug_threshold,
            caution_threshold=settings.caution_threshold,
            max_commission=settings.max_commission,
            mev_max_commission_is_rug=settings.mev_max_commission_is_rug,
        )


_Rule = Callable[[Decimal, Decimal, ClassifierConfig, bool], bool]


def _hits_max_commission(from_value: Decimal, to_value: Decimal, config: ClassifierConfig, max_rule: bool) -> bool:
    return max_rule and to_value == config.max_commission and from_value < config.max_commission


def _rug_jump(from_value: Decimal, to_value: Decimal, config: ClassifierConfig, max_rule: bool) -> bool:
    return to_value - from_value >= config.rug_threshold


def _caution_jump(from_value: Decimal, to_value: Decimal, config: ClassifierConfig, max_rule: bool) -> bool:
    return config.caution_threshold <= to_value - from_value < config.rug_threshold


def _any_change(from_value: Decimal, to_value: Decimal, config: ClassifierConfig, max_rule: bool) -> bool:
    return to_value != from_value


RULES: tuple[tuple[_Rule, Classification], ...] = (
    (_hits_max_commission, Classification.RUG),
    (_rug_jump, Classification.RUG),
    (_caution_jump, Classification.CAUTION),
    (_any_change, Classification.INFO),
)


def classify_delta(
    from_value: Decimal,
    to_value: Decimal,
    config: ClassifierConfig | None = None,
    *,
    apply_max_rule: bool = True,
) -> Classification | None:
    """Classify a numeric transition.

    Returns:
        The severity, or None when the value did not change.
    """
    config = config or ClassifierConfig()
    for rule, classification in RULES:
        if rule(from_value, to_value, config, apply_max_rule):
            return classification
    return None


def classify_inflation(
    vote_pubkey: str,
    epoch: int,
    reference: Decimal,
    current: Decimal,
    config: ClassifierConfig | None = None,
) -> CommissionChange | None:
    classification = classify_delta(reference, current, config)
    if classification is None:
        return None
    return CommissionChange(
        vote_pubkey=vote_pubkey,
        epoch=epoch,
        metric_type=MetricType.INFLATION,
        classification=classification,
        from_value=reference,
        to_value=current,
        delta=current - reference,
    )


def classify_mev(
    vote_pubkey: str,
    epoch: int,
    reference: MevCommission,
    current: MevCommission,
    config: ClassifierConfig | None = None,
) -> CommissionChange | None:
    """Classify an MEV transition.

    UNKNOWN on either side never produces a change. Enable/disable toggles
    are INFO with no numeric delta.
    """
    config = config or ClassifierConfig()
    if not reference.is_observed or not current.is_observed:
        return None
    if reference.state == MevState.DISABLED and current.state == MevState.DISABLED:
        return None

    if reference.value is not None and current.value is not None:
        classification = classify_delta(
            reference.value,
            current.value,
            config,
            apply_max_rule=config.mev_max_commission_is_rug,
        )
        if classification is None:
            return None
        return CommissionChange(
            vote_pubkey=vote_pubkey,
            epoch=epoch,
            metric_type=MetricType.MEV,
            classification=classification,
            from_value=reference.value,
            to_value=current.value,
            delta=current.value - reference.value,
        )

    return CommissionChange(
        vote_pubkey=vote_pubkey,
        epoch=epoch,
        metric_type=MetricType.MEV,
        classification=Classification.INFO,
        from_value=reference.value,
        to_value=current.value,
        delta=None,
    )
