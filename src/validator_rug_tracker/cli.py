"""Command line entry point.

Commands print JSON to stdout so they can be piped or run from cron.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict
from decimal import Decimal
from typing import Any, Literal

import typer
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from validator_rug_tracker import __version__
from validator_rug_tracker.alerter.models import GlobalPreference
from validator_rug_tracker.analytics.aggregator import EpochAggregator
from validator_rug_tracker.analytics.health import HealthStatus, JobHealth, evaluate_job, overall_status
from validator_rug_tracker.analytics.uptime import UptimeLedger
from validator_rug_tracker.config import Settings, get_settings
from validator_rug_tracker.detector.models import Classification
from validator_rug_tracker.ingestor.chain import ChainSourceError
from validator_rug_tracker.pipeline import SNAPSHOT_TICK, UPTIME_TICK, Pipeline, TickResult
from validator_rug_tracker.storage.database import DatabaseManager
from validator_rug_tracker.storage.repos import (
    EntitySubscriptionDTO,
    EntitySubscriptionRepository,
    EventRepository,
    JobRunRepository,
    SnapshotRepository,
    SubscriberRepository,
)

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="validator-rug-tracker",
    help="Validator Rug Tracker - commission, MEV and delinquency monitoring for Solana validators",
    add_completion=False,
)


def _load_settings() -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        typer.echo(f"Invalid configuration: {e}", err=True)
        raise typer.Exit(2) from e
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=_json_default))


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@asynccontextmanager
async def _session(settings: Settings) -> AsyncIterator[AsyncSession]:
    db = DatabaseManager.from_settings(settings)
    try:
        async with db.get_async_session() as session:
            yield session
    finally:
        await db.dispose_async()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit", is_eager=True),
) -> None:
    """Track commission rugs, MEV changes and delinquency of Solana validators."""
    if version:
        typer.echo(__version__)
        raise typer.Exit(0)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


# ============================================================================
# Pipeline commands
# ============================================================================


@app.command()
def run(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log alerts instead of sending them"),
) -> None:
    """Run the snapshot and uptime loops until interrupted."""
    settings = _load_settings()
    try:
        settings.validate_requirements(command="run")
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(2) from e
    logger.info("Settings: %s", settings.redacted_summary())

    pipeline = Pipeline(settings, dry_run=dry_run or None)
    try:
        asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


def _one_shot(
    command: Literal["snapshot", "uptime-check"],
    dry_run: bool,
    tick: Callable[[Pipeline], Awaitable[TickResult]],
) -> None:
    settings = _load_settings()
    try:
        settings.validate_requirements(command=command)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(2) from e

    async def go() -> TickResult:
        pipeline = Pipeline(settings, dry_run=dry_run or None)
        await pipeline.start(background=False)
        try:
            return await tick(pipeline)
        finally:
            await pipeline.stop()

    try:
        result = asyncio.run(go())
    except ChainSourceError as e:
        logger.error("%s tick aborted: %s", command, e)
        raise typer.Exit(1) from e
    _emit(result.to_dict())


@app.command()
def snapshot(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log alerts instead of sending them"),
) -> None:
    """Run one commission snapshot tick."""
    _one_shot("snapshot", dry_run, lambda p: p.run_snapshot_tick())


@app.command("uptime-check")
def uptime_check(
    dry_run: bool = typer.Option(False, "--dry-run", help="Log alerts instead of sending them"),
) -> None:
    """Run one delinquency/uptime tick."""
    _one_shot("uptime-check", dry_run, lambda p: p.run_uptime_tick())


@app.command("init-db")
def init_db() -> None:
    """Create all tables directly (use Alembic for managed deployments)."""
    settings = _load_settings()

    async def go() -> None:
        db = DatabaseManager.from_settings(settings)
        try:
            await db.init_schema_async()
        finally:
            await db.dispose_async()

    asyncio.run(go())
    _emit({"status": "ok"})


# ============================================================================
# Read commands
# ============================================================================


@app.command("rugs-per-epoch")
def rugs_per_epoch(
    epochs: int | None = typer.Option(None, "--epochs", "-n", min=1, max=1000, help="Number of epochs to show"),
    classification: Classification = typer.Option(
        Classification.RUG, "--classification", help="Severity to count"
    ),
) -> None:
    """Unique offending validators per epoch plus all-time statistics."""
    settings = _load_settings()
    window = epochs or settings.pipeline.epoch_window

    async def go() -> dict[str, Any]:
        async with _session(settings) as session:
            latest = await SnapshotRepository(session).latest_epoch()
            if latest is None:
                return {"rows": [], "stats": None}
            aggregate = await EpochAggregator(classification).load(
                session, min_epoch=max(0, latest - window + 1), max_epoch=latest
            )
        return {
            "classification": aggregate.classification.value,
            "rows": [
                {**asdict(row), "commission_only": row.commission_only, "mev_only": row.mev_only}
                for row in aggregate.rows
            ],
            "stats": asdict(aggregate.stats),
        }

    _emit(asyncio.run(go()))


@app.command()
def uptime(
    vote_pubkey: str | None = typer.Argument(None, help="Validator vote pubkey (all validators if omitted)"),
    days: int | None = typer.Option(None, "--days", "-d", min=1, max=365, help="Lookback in days"),
) -> None:
    """Uptime percentage over the last N UTC days."""
    settings = _load_settings()
    window = days or settings.uptime.summary_days
    ledger = UptimeLedger()

    async def go() -> Any:
        async with _session(settings) as session:
            if vote_pubkey is not None:
                rows = await ledger.history(session, vote_pubkey, days=window)
                return [
                    {
                        "day": r.day,
                        "total_checks": r.total_checks,
                        "delinquent_checks": r.delinquent_checks,
                        "uptime_percent": r.uptime_percent,
                    }
                    for r in rows
                ]
            summaries = await ledger.summary(session, days=window)
            return [
                {
                    "vote_pubkey": s.vote_pubkey,
                    "days": s.days,
                    "total_checks": s.total_checks,
                    "delinquent_checks": s.delinquent_checks,
                    "uptime_percent": s.uptime_percent,
                }
                for s in summaries
            ]

    _emit(asyncio.run(go()))


@app.command()
def health() -> None:
    """Freshness of the snapshot and uptime ticks. Exits 1 when stale."""
    settings = _load_settings()
    intervals = {
        SNAPSHOT_TICK: settings.pipeline.snapshot_interval_seconds,
        UPTIME_TICK: settings.uptime.check_interval_seconds,
    }

    async def go() -> tuple[list[JobHealth], int | None]:
        async with _session(settings) as session:
            jobs = JobRunRepository(session)
            checks = [
                evaluate_job(name, await jobs.latest(name), interval_seconds=interval)
                for name, interval in intervals.items()
            ]
            latest_epoch = await SnapshotRepository(session).latest_epoch()
        return checks, latest_epoch

    checks, latest_epoch = asyncio.run(go())
    status = overall_status(checks)
    _emit(
        {
            "status": status.value,
            "jobs": {check.job_name: check.to_dict() for check in checks},
            "last_snapshot_epoch": latest_epoch,
        }
    )
    if status == HealthStatus.STALE:
        raise typer.Exit(1)


@app.command()
def history(vote_pubkey: str = typer.Argument(..., help="Validator vote pubkey")) -> None:
    """Recorded commission and MEV changes for one validator, newest first."""
    settings = _load_settings()

    async def go() -> list[dict[str, Any]]:
        async with _session(settings) as session:
            views = await EventRepository(session).list_for_validator(vote_pubkey)
        return [
            {
                "epoch": v.epoch,
                "inflation": asdict(v.inflation) if v.inflation else None,
                "mev": asdict(v.mev) if v.mev else None,
            }
            for v in views
        ]

    _emit(asyncio.run(go()))


# ============================================================================
# Subscription commands
# ============================================================================


@app.command()
def subscribe(
    email: str = typer.Argument(..., help="Subscriber email"),
    preference: GlobalPreference = typer.Option(
        GlobalPreference.RUGS_ONLY, "--preference", "-p", help="Which severities to receive"
    ),
) -> None:
    """Subscribe to (or update) global commission alerts."""
    settings = _load_settings()

    async def go() -> dict[str, Any]:
        async with _session(settings) as session:
            dto = await SubscriberRepository(session).upsert(email, preference.value)
        return asdict(dto)

    _emit(asyncio.run(go()))


@app.command()
def unsubscribe(email: str = typer.Argument(..., help="Subscriber email")) -> None:
    """Remove a global subscriber."""
    settings = _load_settings()

    async def go() -> bool:
        async with _session(settings) as session:
            return await SubscriberRepository(session).delete(email)

    _emit({"email": email.strip().lower(), "removed": asyncio.run(go())})


@app.command("validator-subscribe")
def validator_subscribe(
    email: str = typer.Argument(..., help="Subscriber email"),
    vote_pubkey: str = typer.Argument(..., help="Validator vote pubkey"),
    commission: bool = typer.Option(True, "--commission/--no-commission", help="Commission and MEV alerts"),
    delinquency: bool = typer.Option(True, "--delinquency/--no-delinquency", help="Delinquency alerts"),
) -> None:
    """Subscribe to alerts for one validator."""
    settings = _load_settings()
    dto = EntitySubscriptionDTO(
        email=email,
        vote_pubkey=vote_pubkey,
        commission_alerts=commission,
        delinquency_alerts=delinquency,
    )

    async def go() -> EntitySubscriptionDTO:
        async with _session(settings) as session:
            return await EntitySubscriptionRepository(session).upsert(dto)

    try:
        saved = asyncio.run(go())
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(2) from e
    _emit(asdict(saved))


@app.command("validator-unsubscribe")
def validator_unsubscribe(
    email: str = typer.Argument(..., help="Subscriber email"),
    vote_pubkey: str = typer.Argument(..., help="Validator vote pubkey"),
) -> None:
    """Remove a per-validator subscription."""
    settings = _load_settings()

    async def go() -> bool:
        async with _session(settings) as session:
            return await EntitySubscriptionRepository(session).delete(email, vote_pubkey)

    _emit({"email": email.strip().lower(), "vote_pubkey": vote_pubkey, "removed": asyncio.run(go())})


if __name__ == "__main__":
    app()
