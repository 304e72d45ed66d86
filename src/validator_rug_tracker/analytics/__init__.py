"""Analytics layer - per-epoch offender statistics, uptime and tick health."""

from validator_rug_tracker.analytics.aggregator import (
    EpochAggregate,
    EpochAggregator,
    EpochOffenderRow,
    OffenderStats,
    latest_per_epoch,
)
from validator_rug_tracker.analytics.health import HealthStatus, JobHealth, evaluate_job, overall_status
from validator_rug_tracker.analytics.uptime import UptimeLedger, uptime_percent

__all__ = [
    "EpochAggregate",
    "EpochAggregator",
    "EpochOffenderRow",
    "HealthStatus",
    "JobHealth",
    "OffenderStats",
    "UptimeLedger",
    "evaluate_job",
    "latest_per_epoch",
    "overall_status",
    "uptime_percent",
]
