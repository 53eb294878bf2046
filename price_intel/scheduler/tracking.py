"""
Tracking scheduler.

Runs one asyncio task per active ``TrackingJob``. On every tick the job asks
its ``ObservationSource`` for each competitor's current price, concurrently
and with a bounded timeout and retry budget per fetch. Successful
observations are paired with the previous observation of the same
competitor and handed to a ``TickHandler``, which is awaited before the job
schedules its next tick.

Invariants:
    - At most one non-stopped job per product, also under concurrent starts.
    - Ticks of one job never overlap; overrun deadlines are skipped.
    - A failed competitor fetch never aborts the tick.

Example:
    >>> scheduler = TrackingScheduler(source, on_tick=service.handle_tick)
    >>> job_id = await scheduler.start("sku-1", ["acme", "globex"], 15)
    >>> await scheduler.stop(job_id)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional

from pydantic import ValidationError

from price_intel.config.settings import Settings, get_settings
from price_intel.models.schemas import (
    FetchErrorKind,
    FetchResult,
    JobState,
    Observation,
    TrackingJob,
    TrackingStats,
    utc_now,
)
from price_intel.scheduler.ticker import CancellationToken, Ticker
from price_intel.sources.base import ObservationSource
from price_intel.storage.repository import IntelligenceRepository
from price_intel.utils.logger import LogContext, get_logger
from price_intel.utils.retry import (
    DuplicateJobError,
    ErrorHandler,
    InvalidInputError,
    JobNotFoundError,
    SourceError,
    SourceTimeoutError,
    SourceUnavailableError,
    async_retry,
)

logger = get_logger(__name__)


@dataclass
class TickOutcome:
    """Everything one tick produced, handed to the TickHandler."""

    job: TrackingJob
    observations: list[Observation] = field(default_factory=list)
    priors: dict[str, Optional[Observation]] = field(default_factory=dict)
    failures: list[FetchResult] = field(default_factory=list)


TickHandler = Callable[[TickOutcome], Awaitable[None]]


@dataclass
class _JobRuntime:
    job: TrackingJob
    ticker: Ticker
    token: CancellationToken = field(default_factory=CancellationToken)
    task: Optional[asyncio.Task] = None


class TrackingScheduler:
    """
    Manages recurring competitor sampling jobs.

    The scheduler is an explicit object; call ``shutdown()`` (or use it as
    an async context manager) to stop every job deterministically.
    """

    def __init__(
        self,
        source: ObservationSource,
        settings: Optional[Settings] = None,
        on_tick: Optional[TickHandler] = None,
        repository: Optional[IntelligenceRepository] = None,
    ):
        self.source = source
        self.settings = settings or get_settings()
        self.on_tick = on_tick
        self.repository = repository

        self._jobs: dict[str, _JobRuntime] = {}
        self._registry_lock = asyncio.Lock()
        self._last_observations: dict[tuple[str, str], Observation] = {}
        self._observation_lock = asyncio.Lock()

    async def __aenter__(self) -> "TrackingScheduler":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    async def start(
        self,
        product_id: str,
        competitors: Iterable[str],
        interval_minutes: Optional[float] = None,
    ) -> str:
        """
        Start tracking a product.

        Returns:
            The new job id.

        Raises:
            DuplicateJobError: The product already has a non-stopped job.
            InvalidInputError: Empty competitor set or non-positive interval.
        """
        if interval_minutes is None:
            interval_minutes = self.settings.default_interval_minutes
        if interval_minutes <= 0:
            raise InvalidInputError(f"interval_minutes must be positive, got {interval_minutes}")

        try:
            job = TrackingJob(
                product_id=product_id,
                competitors=list(competitors),
                interval_minutes=interval_minutes,
            )
        except ValidationError as e:
            raise InvalidInputError(f"Invalid tracking job: {e}") from e

        async with self._registry_lock:
            existing = self._active_runtime_for(product_id)
            if existing is not None:
                raise DuplicateJobError(product_id, existing.job.id)

            job.state = JobState.RUNNING
            runtime = _JobRuntime(job=job, ticker=Ticker(job.interval_seconds))
            self._jobs[job.id] = runtime
            runtime.task = asyncio.create_task(
                self._run_job(runtime), name=f"tracking-{job.id}"
            )

        await self._persist(job)
        logger.info(
            "Tracking job started",
            job_id=job.id,
            product_id=product_id,
            competitors=job.competitors,
            interval_minutes=interval_minutes,
        )
        return job.id

    async def stop(self, job_id: str, wait: bool = True) -> TrackingJob:
        """
        Stop a job cooperatively. The in-flight tick, if any, completes.

        Raises:
            JobNotFoundError: Unknown or already stopped job.
        """
        async with self._registry_lock:
            runtime = self._jobs.get(job_id)
            if runtime is None or runtime.job.state == JobState.STOPPED:
                raise JobNotFoundError(job_id)
            runtime.job.state = JobState.STOPPED
            runtime.job.next_run = None
            runtime.token.cancel()

        logger.info("Tracking job stopped", job_id=job_id, product_id=runtime.job.product_id)

        task = runtime.task
        if wait and task is not None and task is not asyncio.current_task():
            await task
        await self._persist(runtime.job)
        return runtime.job.model_copy(deep=True)

    async def shutdown(self) -> None:
        """Stop every active job and wait for their tasks."""
        async with self._registry_lock:
            active = [r for r in self._jobs.values() if r.job.state != JobState.STOPPED]
            for runtime in active:
                runtime.job.state = JobState.STOPPED
                runtime.job.next_run = None
                runtime.token.cancel()

        tasks = [r.task for r in active if r.task is not None]
        if tasks:
            await asyncio.gather(*tasks)
        for runtime in active:
            await self._persist(runtime.job)
        logger.info("Tracking scheduler shut down", stopped_jobs=len(active))

    # =========================================================================
    # Job updates
    # =========================================================================

    async def update_interval(self, job_id: str, interval_minutes: float) -> TrackingJob:
        if interval_minutes <= 0:
            raise InvalidInputError(f"interval_minutes must be positive, got {interval_minutes}")
        async with self._registry_lock:
            runtime = self._require_active(job_id)
            runtime.job.interval_minutes = interval_minutes
            runtime.ticker.reschedule(runtime.job.interval_seconds)
            runtime.job.next_run = self._next_run_time(runtime)

        logger.info("Tracking interval updated", job_id=job_id, interval_minutes=interval_minutes)
        await self._persist(runtime.job)
        return runtime.job.model_copy(deep=True)

    async def add_competitors(self, job_id: str, competitors: Iterable[str]) -> TrackingJob:
        async with self._registry_lock:
            runtime = self._require_active(job_id)
            for name in competitors:
                name = name.strip()
                if name and name not in runtime.job.competitors:
                    runtime.job.competitors.append(name)

        logger.info("Competitors added", job_id=job_id, competitors=runtime.job.competitors)
        await self._persist(runtime.job)
        return runtime.job.model_copy(deep=True)

    async def remove_competitors(self, job_id: str, competitors: Iterable[str]) -> TrackingJob:
        """
        Remove competitors from a job.

        Raises:
            InvalidInputError: Removal would leave the job with no competitors.
        """
        removed = {c.strip() for c in competitors}
        async with self._registry_lock:
            runtime = self._require_active(job_id)
            remaining = [c for c in runtime.job.competitors if c not in removed]
            if not remaining:
                raise InvalidInputError("A tracking job needs at least one competitor")
            runtime.job.competitors = remaining

        logger.info("Competitors removed", job_id=job_id, competitors=runtime.job.competitors)
        await self._persist(runtime.job)
        return runtime.job.model_copy(deep=True)

    # =========================================================================
    # Status
    # =========================================================================

    async def get_job(self, job_id: str) -> Optional[TrackingJob]:
        async with self._registry_lock:
            runtime = self._jobs.get(job_id)
            return runtime.job.model_copy(deep=True) if runtime else None

    async def active_jobs(self) -> list[TrackingJob]:
        async with self._registry_lock:
            return [
                r.job.model_copy(deep=True)
                for r in self._jobs.values()
                if r.job.state != JobState.STOPPED
            ]

    async def job_for_product(self, product_id: str) -> Optional[TrackingJob]:
        """Most recent job (active or not) for a product."""
        async with self._registry_lock:
            jobs = [r.job for r in self._jobs.values() if r.job.product_id == product_id]
            if not jobs:
                return None
            jobs.sort(key=lambda j: (j.state != JobState.STOPPED, j.created_at))
            return jobs[-1].model_copy(deep=True)

    async def stats(self) -> TrackingStats:
        async with self._registry_lock:
            active = [r.job for r in self._jobs.values() if r.job.state != JobState.STOPPED]
            next_runs = [j.next_run for j in active if j.next_run is not None]
            return TrackingStats(
                active_jobs=len(active),
                total_errors=sum(r.job.error_count for r in self._jobs.values()),
                next_run_time=min(next_runs) if next_runs else None,
            )

    async def last_observation(self, product_id: str, competitor: str) -> Optional[Observation]:
        async with self._observation_lock:
            return self._last_observations.get((product_id, competitor))

    async def prime(self, observations: Iterable[Observation]) -> None:
        """Seed the last-observation map, e.g. from persisted history."""
        async with self._observation_lock:
            for observation in observations:
                key = (observation.product_id, observation.competitor)
                current = self._last_observations.get(key)
                if current is None or observation.timestamp >= current.timestamp:
                    self._last_observations[key] = observation

    # =========================================================================
    # Internals
    # =========================================================================

    def _active_runtime_for(self, product_id: str) -> Optional[_JobRuntime]:
        for runtime in self._jobs.values():
            if runtime.job.product_id == product_id and runtime.job.state != JobState.STOPPED:
                return runtime
        return None

    def _require_active(self, job_id: str) -> _JobRuntime:
        runtime = self._jobs.get(job_id)
        if runtime is None or runtime.job.state == JobState.STOPPED:
            raise JobNotFoundError(job_id)
        return runtime

    @staticmethod
    def _next_run_time(runtime: _JobRuntime) -> Optional[datetime]:
        remaining = runtime.ticker.seconds_until_next()
        if remaining is None:
            return None
        return utc_now() + timedelta(seconds=remaining)

    async def _persist(self, job: TrackingJob) -> None:
        if self.repository is not None:
            await self.repository.save_job(job)

    async def _run_job(self, runtime: _JobRuntime) -> None:
        job = runtime.job
        with LogContext(job_id=job.id, product_id=job.product_id):
            runtime.ticker.start()
            try:
                while await runtime.ticker.wait(runtime.token):
                    runtime.ticker.mark_tick()
                    await self._run_tick(runtime)
                    if runtime.token.cancelled:
                        break

                    skipped = runtime.ticker.advance()
                    if skipped:
                        job.skipped_ticks += skipped
                        logger.warning(
                            "Tick overran its interval, skipping missed ticks",
                            skipped=skipped,
                            total_skipped=job.skipped_ticks,
                        )
                    job.next_run = self._next_run_time(runtime)
                    await self._persist(job)
                job.next_run = None
                await self._persist(job)
            finally:
                job.state = JobState.STOPPED
                job.next_run = None

    async def _run_tick(self, runtime: _JobRuntime) -> None:
        job = runtime.job
        job.last_run = utc_now()
        job.tick_count += 1
        competitors = list(job.competitors)

        results = await asyncio.gather(
            *(self._fetch(job.product_id, competitor) for competitor in competitors)
        )
        observations = [r.observation for r in results if r.ok]
        failures = [r for r in results if not r.ok]

        if failures:
            job.error_count += len(failures)
            last = failures[-1]
            job.last_error = f"{last.competitor}: {last.error_kind} {last.message or ''}".strip()

        if observations:
            job.consecutive_failures = 0
        else:
            job.consecutive_failures += 1

        priors: dict[str, Optional[Observation]] = {}
        async with self._observation_lock:
            for observation in observations:
                key = (observation.product_id, observation.competitor)
                priors[observation.competitor] = self._last_observations.get(key)
                self._last_observations[key] = observation

        logger.debug(
            "Tick completed",
            tick=job.tick_count,
            observations=len(observations),
            failures=len(failures),
        )

        if observations and self.on_tick is not None:
            outcome = TickOutcome(
                job=job.model_copy(deep=True),
                observations=observations,
                priors=priors,
                failures=failures,
            )
            try:
                await self.on_tick(outcome)
            except Exception as e:
                job.last_error = f"tick handler: {e}"
                logger.error(
                    "Tick handler failed",
                    error=str(e),
                    category=ErrorHandler.categorize_error(e),
                )

        if job.consecutive_failures >= self.settings.max_consecutive_failures:
            logger.error(
                "Stopping job after repeated failed ticks",
                consecutive_failures=job.consecutive_failures,
                last_error=job.last_error,
            )
            job.state = JobState.STOPPED
            runtime.token.cancel()

    async def _fetch(self, product_id: str, competitor: str) -> FetchResult:
        """Fetch one competitor with timeout and retry; never raises."""
        fetch = async_retry(
            max_attempts=self.settings.fetch_max_attempts,
            initial_wait=self.settings.fetch_retry_wait_seconds,
            exceptions=(SourceError, asyncio.TimeoutError),
        )(self._fetch_once)

        try:
            return await fetch(product_id, competitor)
        except (SourceTimeoutError, asyncio.TimeoutError) as e:
            kind, message = FetchErrorKind.TIMEOUT, str(e) or "fetch timed out"
        except SourceError as e:
            kind, message = FetchErrorKind.UNAVAILABLE, str(e)
        except Exception as e:
            kind, message = FetchErrorKind.UNAVAILABLE, str(e)
            logger.error(
                "Unexpected source error",
                competitor=competitor,
                error=str(e),
                category=ErrorHandler.categorize_error(e),
            )

        logger.warning(
            "Competitor fetch failed, skipping",
            competitor=competitor,
            kind=kind.value,
            error=message,
        )
        return FetchResult.failure(product_id, competitor, kind, message)

    async def _fetch_once(self, product_id: str, competitor: str) -> FetchResult:
        result = await asyncio.wait_for(
            self.source.fetch(product_id, competitor),
            timeout=self.settings.fetch_timeout_seconds,
        )
        if result.ok:
            return result
        if result.error_kind == FetchErrorKind.TIMEOUT:
            raise SourceTimeoutError(result.message or "source timed out", product_id, competitor)
        raise SourceUnavailableError(result.message or "source unavailable", product_id, competitor)


__all__ = ["TrackingScheduler", "TickHandler", "TickOutcome"]
