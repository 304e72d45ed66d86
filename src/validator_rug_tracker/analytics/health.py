"""Tick freshness checks over the job run history.

A tick is healthy when its last run succeeded within a third of an
interval past its schedule, and stale once two intervals pass without a
run or when the last run failed. Anything in between is unknown.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from validator_rug_tracker.storage.repos import JobRunDTO, JobStatus


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    STALE = "stale"
    UNKNOWN = "unknown"


@dataclass
class JobHealth:
    """Freshness verdict for one tick."""

    job_name: str
    status: HealthStatus
    interval_seconds: int
    minutes_ago: int | None = None
    last_run: JobRunDTO | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        run = self.last_run
        return {
            "status": self.status.value,
            "interval_seconds": self.interval_seconds,
            "minutes_ago": self.minutes_ago,
            "last_run": None
            if run is None
            else {
                "id": run.id,
                "status": run.status.value,
                "started_at": run.started_at.isoformat(),
                "completed_at": run.completed_at.isoformat() if run.completed_at else None,
                "epoch": run.epoch,
                "duration_seconds": str(run.duration_seconds) if run.duration_seconds is not None else None,
                "metrics": run.metrics,
                "error_message": run.error_message,
            },
            "warnings": self.warnings,
        }


def evaluate_job(
    job_name: str,
    last_run: JobRunDTO | None,
    *,
    interval_seconds: int,
    now: datetime | None = None,
) -> JobHealth:
    """Classify a tick from its most recent run."""
    health = JobHealth(job_name=job_name, status=HealthStatus.UNKNOWN, interval_seconds=interval_seconds)
    if last_run is None:
        health.status = HealthStatus.STALE
        health.warnings.append("No job runs recorded")
        return health

    current = now or datetime.now(UTC)
    reference = last_run.completed_at or last_run.started_at
    age_seconds = max(0.0, (current - reference).total_seconds())
    health.last_run = last_run
    health.minutes_ago = int(age_seconds // 60)

    healthy_within = interval_seconds * 4 / 3
    stale_after = interval_seconds * 2
    running_timeout = interval_seconds * 2 / 3

    if age_seconds > stale_after:
        health.warnings.append(
            f"Job hasn't run in {health.minutes_ago} minutes (expected every {interval_seconds // 60 or 1} min)"
        )
    if last_run.status == JobStatus.FAILED:
        health.warnings.append("Last job run FAILED - check error_message")
    if last_run.status == JobStatus.RUNNING and age_seconds > running_timeout:
        health.warnings.append(f"Job has been running for {health.minutes_ago} minutes (possible timeout)")

    if last_run.status == JobStatus.SUCCESS and age_seconds < healthy_within:
        health.status = HealthStatus.HEALTHY
    elif last_run.status == JobStatus.FAILED or age_seconds > stale_after:
        health.status = HealthStatus.STALE
    return health


def overall_status(jobs: list[JobHealth]) -> HealthStatus:
    if any(job.status == HealthStatus.STALE for job in jobs):
        return HealthStatus.STALE
    if jobs and all(job.status == HealthStatus.HEALTHY for job in jobs):
        return HealthStatus.HEALTHY
    return HealthStatus.UNKNOWN
