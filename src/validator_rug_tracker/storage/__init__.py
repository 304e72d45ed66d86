"""Storage layer - Database schemas and repositories."""

from validator_rug_tracker.storage.database import DatabaseManager
from validator_rug_tracker.storage.models import (
    Base,
    DailyUptimeModel,
    DelinquencyAlertStateModel,
    EntitySubscriptionModel,
    EventModel,
    JobRunModel,
    SnapshotModel,
    SubscriberModel,
    ValidatorModel,
)
from validator_rug_tracker.storage.repos import (
    DailyUptimeDTO,
    DailyUptimeRepository,
    DelinquencyAlertStateRepository,
    EntitySubscriptionDTO,
    EntitySubscriptionRepository,
    EpochChangeView,
    EventDTO,
    EventRepository,
    JobRunDTO,
    JobRunRepository,
    JobStatus,
    SnapshotDTO,
    SnapshotRepository,
    SubscriberDTO,
    SubscriberRepository,
    UptimeSummaryDTO,
    ValidatorDTO,
    ValidatorRepository,
)

__all__ = [
    "Base",
    "DailyUptimeDTO",
    "DailyUptimeModel",
    "DailyUptimeRepository",
    "DatabaseManager",
    "DelinquencyAlertStateModel",
    "DelinquencyAlertStateRepository",
    "EntitySubscriptionDTO",
    "EntitySubscriptionModel",
    "EntitySubscriptionRepository",
    "EpochChangeView",
    "EventDTO",
    "EventModel",
    "EventRepository",
    "JobRunDTO",
    "JobRunModel",
    "JobRunRepository",
    "JobStatus",
    "SnapshotDTO",
    "SnapshotModel",
    "SnapshotRepository",
    "SubscriberDTO",
    "SubscriberModel",
    "SubscriberRepository",
    "UptimeSummaryDTO",
    "ValidatorDTO",
    "ValidatorModel",
    "ValidatorRepository",
]
