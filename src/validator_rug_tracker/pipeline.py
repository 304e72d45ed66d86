"""Main pipeline orchestrator for the Validator Rug Tracker.

This module provides the Pipeline class that wires the chain source, the
detectors, the uptime ledger and the alerter together, and runs the two
periodic ticks: the commission snapshot tick and the delinquency/uptime tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
from redis.asyncio import Redis

from validator_rug_tracker.alerter.channels import DiscordChannel, ResendEmailChannel
from validator_rug_tracker.alerter.dispatcher import AlertDispatcher
from validator_rug_tracker.alerter.formatter import AlertFormatter
from validator_rug_tracker.alerter.recipients import RecipientResolver
from validator_rug_tracker.analytics.uptime import UptimeLedger
from validator_rug_tracker.config import Settings, get_settings
from validator_rug_tracker.detector.classifier import ClassifierConfig
from validator_rug_tracker.detector.commission import CommissionChangeDetector
from validator_rug_tracker.detector.delinquency import DelinquencyAlertStateMachine
from validator_rug_tracker.detector.models import EventKind
from validator_rug_tracker.ingestor.chain import ChainStateSource, JitoClient, SolanaRpcClient
from validator_rug_tracker.storage.database import DatabaseManager
from validator_rug_tracker.storage.locks import TickLock, time_bucket
from validator_rug_tracker.storage.repos import JobRunRepository, JobStatus

if TYPE_CHECKING:
    from validator_rug_tracker.alerter.models import FormattedAlert
    from validator_rug_tracker.ingestor.models import ChainState, ValidatorReading

logger = logging.getLogger(__name__)

SNAPSHOT_TICK = "snapshot"
UPTIME_TICK = "uptime"

_Delivery = tuple["FormattedAlert", list[str]]


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    ticks_completed: int = 0
    ticks_failed: int = 0
    events_created: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None


@dataclass
class TickResult:
    """Outcome of one tick.

    ``entities_skipped`` counts readings rejected by validation;
    ``entities_failed`` counts validators whose processing raised.
    """

    name: str
    epoch: int | None = None
    locked_out: bool = False
    entities_processed: int = 0
    entities_skipped: int = 0
    entities_failed: int = 0
    events_created: int = 0
    alerts_dispatched: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.name,
            "epoch": self.epoch,
            "locked_out": self.locked_out,
            "entities_processed": self.entities_processed,
            "entities_skipped": self.entities_skipped,
            "entities_failed": self.entities_failed,
            "events_created": self.events_created,
            "alerts_dispatched": self.alerts_dispatched,
        }


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Chain State → Commission Detector → Event Ledger → Recipients → Dispatcher
        Chain State → Uptime Ledger + Delinquency State Machine → Dispatcher

    Each validator is processed in its own session and transaction by a
    worker bounded by ``PIPELINE_WORKER_CONCURRENCY``. Alerts go out only
    after that transaction commits.

    Example:
        ```python
        from validator_rug_tracker.config import get_settings
        from validator_rug_tracker.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db_manager: DatabaseManager | None = None,
        redis: Redis | None = None,
        chain_source: ChainStateSource | None = None,
        dispatcher: AlertDispatcher | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alerts instead of sending them. Overrides settings.dry_run.
            db_manager: Pre-built database manager; created from settings otherwise.
            redis: Pre-built Redis client used for tick locks.
            chain_source: Pre-built chain state source.
            dispatcher: Pre-built alert dispatcher.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._db_manager = db_manager
        self._redis = redis
        self._chain_source = chain_source
        self._dispatcher = dispatcher
        self._http: httpx.AsyncClient | None = None
        self._owns_db = db_manager is None
        self._owns_redis = redis is None

        self._formatter = AlertFormatter(self._settings.email.base_url)
        self._detector = CommissionChangeDetector(ClassifierConfig.from_settings(self._settings.classifier))
        self._delinquency = DelinquencyAlertStateMachine()
        self._uptime = UptimeLedger()
        self._resolver = RecipientResolver()

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._snapshot_task: asyncio.Task[None] | None = None
        self._uptime_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self, *, background: bool = True) -> None:
        """Start the pipeline.

        Args:
            background: Start the periodic tick loops. One-shot callers pass
                False and invoke the tick methods directly.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            if background:
                self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Build every collaborator that was not injected."""
        settings = self._settings

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager.from_settings(settings)

        if self._redis is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._chain_source is None or self._dispatcher is None:
            self._http = httpx.AsyncClient(timeout=settings.rpc.timeout_seconds)

        if self._chain_source is None:
            logger.debug("Initializing chain state source...")
            rpc = SolanaRpcClient(settings.rpc.url, self._http, max_retries=settings.rpc.max_retries)
            jito = JitoClient(settings.rpc.jito_api_url, self._http, max_retries=settings.rpc.max_retries)
            self._chain_source = ChainStateSource(rpc, jito)

        if self._dispatcher is None:
            logger.debug("Initializing alert dispatcher...")
            email_channel: ResendEmailChannel | None = None
            discord_channel: DiscordChannel | None = None
            if settings.email.enabled and settings.email.resend_api_key and settings.email.from_address:
                email_channel = ResendEmailChannel(
                    settings.email.resend_api_key.get_secret_value(),
                    settings.email.from_address,
                    self._http,
                    api_url=settings.email.api_url,
                )
                logger.info("Email channel enabled")
            if settings.discord.enabled and settings.discord.webhook_url:
                discord_channel = DiscordChannel(settings.discord.webhook_url.get_secret_value(), self._http)
                logger.info("Discord channel enabled")
            if email_channel is None and discord_channel is None:
                logger.warning("No alert channels configured")
            self._dispatcher = AlertDispatcher(
                self._formatter,
                email=email_channel,
                discord=discord_channel,
                dry_run=self._dry_run,
                send_timeout_seconds=settings.email.timeout_seconds,
            )

    def _start_background_services(self) -> None:
        logger.debug("Starting snapshot loop...")
        self._snapshot_task = asyncio.create_task(
            self._run_periodic(
                SNAPSHOT_TICK,
                self._settings.pipeline.snapshot_interval_seconds,
                self.run_snapshot_tick,
            )
        )
        logger.debug("Starting uptime loop...")
        self._uptime_task = asyncio.create_task(
            self._run_periodic(
                UPTIME_TICK,
                self._settings.uptime.check_interval_seconds,
                self.run_uptime_tick,
            )
        )

    async def _stop_background_services(self) -> None:
        if self._snapshot_task:
            self._snapshot_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._snapshot_task
            self._snapshot_task = None

        if self._uptime_task:
            self._uptime_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._uptime_task
            self._uptime_task = None

    async def _cleanup(self) -> None:
        """Clean up resources created by this pipeline."""
        if self._http:
            await self._http.aclose()
            self._http = None

        if self._owns_db and self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._owns_redis and self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _run_periodic(
        self,
        name: str,
        interval: int,
        tick: Callable[[], Awaitable[TickResult]],
    ) -> None:
        if not self._stop_event:
            return

        while not self._stop_event.is_set():
            try:
                try:
                    await tick()
                    self._stats.ticks_completed += 1
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    self._stats.ticks_failed += 1
                    self._stats.errors += 1
                    self._stats.last_error = str(e)
                    logger.error("%s tick failed: %s", name, e)

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass
            except asyncio.CancelledError:
                break

    def _hold(self, name: str, interval: int, bucket: int) -> AbstractAsyncContextManager[bool]:
        if self._redis is None:
            return contextlib.nullcontext(True)
        return TickLock(self._redis).hold(name, bucket, ttl_seconds=interval * 2)

    async def _run_tick(
        self,
        name: str,
        interval: int,
        now: float | None,
        body: Callable[[TickResult, int], Awaitable[None]],
    ) -> TickResult:
        """Claim the tick's bucket, record the run and execute ``body``.

        A failed run is recorded as such and releases the bucket so the
        tick can be retried before the next interval.
        """
        db_manager, _, _ = self._require_components()
        bucket = time_bucket(interval, now)
        result = TickResult(name=name)

        async with self._hold(name, interval, bucket) as acquired:
            if not acquired:
                result.locked_out = True
                return result

            async with db_manager.get_async_session() as session:
                run = await JobRunRepository(session).start(name)

            try:
                await body(result, bucket)
            except Exception as e:
                async with db_manager.get_async_session() as session:
                    await JobRunRepository(session).finish(
                        run.id,
                        JobStatus.FAILED,
                        epoch=result.epoch,
                        metrics=result.to_dict(),
                        error_message=str(e),
                    )
                raise

            async with db_manager.get_async_session() as session:
                jobs = JobRunRepository(session)
                await jobs.finish(run.id, JobStatus.SUCCESS, epoch=result.epoch, metrics=result.to_dict())
                retention = timedelta(days=self._settings.pipeline.job_run_retention_days)
                pruned = await jobs.prune(name, before=datetime.now(UTC) - retention)
                if pruned:
                    logger.debug("Pruned %d old %s job runs", pruned, name)

        self._stats.last_tick_at = datetime.now(UTC)
        return result

    def _require_components(self) -> tuple[DatabaseManager, ChainStateSource, AlertDispatcher]:
        if self._db_manager is None or self._chain_source is None or self._dispatcher is None:
            raise RuntimeError("Pipeline components are not initialized; call start() first")
        return self._db_manager, self._chain_source, self._dispatcher

    async def _fan_out(
        self,
        state: ChainState,
        result: TickResult,
        worker: Callable[[ValidatorReading, ChainState], Awaitable[list[_Delivery]]],
    ) -> None:
        semaphore = asyncio.Semaphore(self._settings.pipeline.worker_concurrency)

        async def run_one(reading: ValidatorReading) -> None:
            async with semaphore:
                try:
                    deliveries = await worker(reading, state)
                except Exception as e:
                    result.entities_failed += 1
                    self._stats.errors += 1
                    logger.warning("Failed to process validator %s: %s", reading.vote_pubkey, e)
                    return
                result.entities_processed += 1
                for alert, recipients in deliveries:
                    await self._deliver(alert, recipients)
                    result.alerts_dispatched += 1

        await asyncio.gather(*(run_one(reading) for reading in state.readings))

    async def _deliver(self, alert: FormattedAlert, recipients: list[str]) -> None:
        _, _, dispatcher = self._require_components()
        dispatch_result = await dispatcher.dispatch(alert, recipients)
        if dispatch_result.success_count or dispatch_result.discord_sent:
            self._stats.alerts_sent += 1

    async def run_snapshot_tick(self, *, now: float | None = None) -> TickResult:
        """Fetch chain state, record commission changes and alert on them.

        Raises:
            ChainSourceUnavailableError: If the RPC stays unreachable after retries.
        """
        _, chain_source, _ = self._require_components()

        async def body(result: TickResult, bucket: int) -> None:
            state = await chain_source.fetch_state()
            result.epoch = state.epoch
            result.entities_skipped = state.rejected

            async def worker(reading: ValidatorReading, chain_state: ChainState) -> list[_Delivery]:
                return await self._process_snapshot_entity(reading, chain_state, result)

            await self._fan_out(state, result, worker)
            logger.info(
                "Snapshot tick complete: epoch=%d, processed=%d, skipped=%d, failed=%d, events=%d, alerts=%d",
                state.epoch,
                result.entities_processed,
                result.entities_skipped,
                result.entities_failed,
                result.events_created,
                result.alerts_dispatched,
            )

        return await self._run_tick(SNAPSHOT_TICK, self._settings.pipeline.snapshot_interval_seconds, now, body)

    async def _process_snapshot_entity(
        self,
        reading: ValidatorReading,
        state: ChainState,
        result: TickResult,
    ) -> list[_Delivery]:
        db_manager, _, _ = self._require_components()
        deliveries: list[_Delivery] = []
        async with db_manager.get_async_session() as session:
            events = await self._detector.process(session, reading, epoch=state.epoch, slot=state.slot)
            for event in events:
                recipients = await self._resolver.resolve(
                    session,
                    kind=EventKind.COMMISSION_CHANGE,
                    vote_pubkey=event.vote_pubkey,
                    classification=event.classification,
                )
                deliveries.append((self._formatter.format_commission_change(event, reading.name), recipients))
        result.events_created += len(deliveries)
        self._stats.events_created += len(deliveries)
        return deliveries

    async def run_uptime_tick(self, *, now: float | None = None) -> TickResult:
        """Count one uptime check per validator and alert on new delinquency."""
        _, chain_source, _ = self._require_components()

        async def body(result: TickResult, bucket: int) -> None:
            state = await chain_source.fetch_state()
            result.epoch = state.epoch
            result.entities_skipped = state.rejected

            async def worker(reading: ValidatorReading, chain_state: ChainState) -> list[_Delivery]:
                return await self._process_uptime_entity(reading, chain_state, bucket)

            await self._fan_out(state, result, worker)
            logger.info(
                "Uptime tick complete: epoch=%d, processed=%d, skipped=%d, failed=%d, alerts=%d",
                state.epoch,
                result.entities_processed,
                result.entities_skipped,
                result.entities_failed,
                result.alerts_dispatched,
            )

        return await self._run_tick(UPTIME_TICK, self._settings.uptime.check_interval_seconds, now, body)

    async def _process_uptime_entity(
        self,
        reading: ValidatorReading,
        state: ChainState,
        bucket: int,
    ) -> list[_Delivery]:
        db_manager, _, _ = self._require_components()
        deliveries: list[_Delivery] = []
        async with db_manager.get_async_session() as session:
            await self._uptime.record(session, reading, bucket=bucket)
            alert = await self._delinquency.observe(session, reading, epoch=state.epoch)
            if alert is not None:
                recipients = await self._resolver.resolve(
                    session,
                    kind=EventKind.DELINQUENCY,
                    vote_pubkey=alert.vote_pubkey,
                )
                deliveries.append((self._formatter.format_delinquency(alert), recipients))
        return deliveries

    async def run(self) -> None:
        """Start the pipeline and run until interrupted."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
