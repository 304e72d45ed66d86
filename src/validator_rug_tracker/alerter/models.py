"""Data models for the alerter module."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from validator_rug_tracker.detector.models import Classification, EventKind

logger = logging.getLogger(__name__)


class GlobalPreference(str, Enum):
    """Which severities a global subscriber receives."""

    RUGS_ONLY = "rugs_only"
    RUGS_AND_CAUTIONS = "rugs_and_cautions"
    ALL = "all"

    @classmethod
    def parse(cls, value: str | None) -> GlobalPreference:
        """Parse a stored preference; missing or unrecognised means rugs_only."""
        if not value:
            return cls.RUGS_ONLY
        try:
            return cls(value)
        except ValueError:
            logger.warning("Unknown subscriber preference %r, treating as rugs_only", value)
            return cls.RUGS_ONLY

    def accepts(self, classification: Classification) -> bool:
        return classification in _ACCEPTED[self]


_ACCEPTED: dict[GlobalPreference, frozenset[Classification]] = {
    GlobalPreference.RUGS_ONLY: frozenset({Classification.RUG}),
    GlobalPreference.RUGS_AND_CAUTIONS: frozenset({Classification.RUG, Classification.CAUTION}),
    GlobalPreference.ALL: frozenset(Classification),
}


@dataclass(frozen=True)
class FormattedAlert:
    """A rendered notification ready for delivery."""

    kind: EventKind
    vote_pubkey: str
    subject: str
    badge: str
    text: str
    html: str
    classification: Classification | None = None
    discord_content: str | None = None


@dataclass
class DispatchResult:
    """Outcome of delivering one alert to its recipients."""

    success_count: int = 0
    failure_count: int = 0
    failed_recipients: list[str] = field(default_factory=list)
    discord_sent: bool | None = None

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0 and self.discord_sent is not False

    @property
    def attempted(self) -> int:
        return self.success_count + self.failure_count
