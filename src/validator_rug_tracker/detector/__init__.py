"""Change detection layer - commission classification and delinquency alert state."""

from validator_rug_tracker.detector.classifier import (
    ClassifierConfig,
    classify_delta,
    classify_inflation,
    classify_mev,
)
from validator_rug_tracker.detector.models import (
    AlertState,
    Classification,
    CommissionChange,
    DelinquencyAlert,
    EventKind,
    MetricType,
)

__all__ = [
    "AlertState",
    "Classification",
    "ClassifierConfig",
    "CommissionChange",
    "DelinquencyAlert",
    "EventKind",
    "MetricType",
    "classify_delta",
    "classify_inflation",
    "classify_mev",
]
