"""Data models for the detector module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum


class MetricType(str, Enum):
    """Commission stream a change applies to."""

    INFLATION = "INFLATION"
    MEV = "MEV"


class Classification(str, Enum):
    """Severity tier of a commission change."""

    RUG = "RUG"
    CAUTION = "CAUTION"
    INFO = "INFO"


class EventKind(str, Enum):
    """What a notification is about."""

    COMMISSION_CHANGE = "commission_change"
    DELINQUENCY = "delinquency"


class AlertState(str, Enum):
    """Delinquency alert suppression state."""

    CLEAR = "CLEAR"
    ALERTED = "ALERTED"


@dataclass(frozen=True)
class CommissionChange:
    """A classified transition between two observed commission values.

    ``None`` for ``from_value``/``to_value`` means MEV disabled; ``delta`` is
    ``None`` when the transition is an enable/disable toggle.
    """

    vote_pubkey: str
    epoch: int
    metric_type: MetricType
    classification: Classification
    from_value: Decimal | None
    to_value: Decimal | None
    delta: Decimal | None

    @property
    def is_mev_disabled(self) -> bool:
        return self.metric_type == MetricType.MEV and self.to_value is None

    @property
    def is_mev_enabled(self) -> bool:
        return self.metric_type == MetricType.MEV and self.from_value is None

    @property
    def is_decrease(self) -> bool:
        return self.delta is not None and self.delta < 0


@dataclass(frozen=True)
class DelinquencyAlert:
    """Emitted once when a validator enters a delinquency episode."""

    vote_pubkey: str
    epoch: int
    name: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
