# fleet_telemetry/services/scheduler.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from fleet_telemetry.core.config import Settings, settings
from fleet_telemetry.schemas.jobs import JobRunReport, JobStatus, SchedulerStatus
from fleet_telemetry.schemas.timeline import UPDATE_SOURCE_MANUAL
from fleet_telemetry.services.archival import ArchivalJob, archival_job
from fleet_telemetry.services.hours_ticker import HoursAccrualTicker, hours_ticker
from fleet_telemetry.services.rollup import RollupJob, rollup_job

logger = logging.getLogger("fleet.scheduler")


async def run_periodic(
    name: str,
    run: Callable[[], Awaitable[object]],
    interval_seconds: int,
) -> None:
    interval_seconds = max(int(interval_seconds), 1)
    logger.info("%s loop enabled (interval_seconds=%s)", name, interval_seconds)
    while True:
        try:
            await run()
        except Exception:
            logger.exception("%s run failed", name)
        try:
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            logger.info("%s loop cancelled", name)
            raise


class JobScheduler:
    """Owns the background loops of the three periodic jobs."""

    def __init__(
        self,
        settings: Settings = settings,
        ticker: HoursAccrualTicker = hours_ticker,
        archival: ArchivalJob = archival_job,
        rollup: RollupJob = rollup_job,
    ) -> None:
        self.settings = settings
        self.ticker = ticker
        self.archival = archival
        self.rollup = rollup
        self._tasks: Dict[str, asyncio.Task] = {}

    def intervals(self) -> Dict[str, int]:
        return {
            self.ticker.name: self.settings.HOURS_TICK_SECONDS,
            self.archival.name: self.settings.ARCHIVE_INTERVAL_MINUTES * 60,
            self.rollup.name: self.settings.ROLLUP_INTERVAL_MINUTES * 60,
        }

    def _job(self, name: str):
        jobs = {
            self.ticker.name: self.ticker,
            self.archival.name: self.archival,
            self.rollup.name: self.rollup,
        }
        if name not in jobs:
            raise KeyError(name)
        return jobs[name]

    def start(self) -> None:
        if self._tasks:
            return
        for name, interval in self.intervals().items():
            job = self._job(name)
            self._tasks[name] = asyncio.create_task(
                run_periodic(name, job.run_once, interval),
                name=f"fleet-{name}",
            )

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def trigger(self, name: str, now: Optional[datetime] = None) -> JobRunReport:
        """Run one job right now; a run already in flight makes it a no-op."""
        job = self._job(name)
        logger.info("Manual trigger of %s", name)
        if job is self.archival:
            return await self.archival.run_once(now=now, source=UPDATE_SOURCE_MANUAL)
        return await job.run_once(now=now)

    def status(self) -> SchedulerStatus:
        jobs = []
        for name, interval in self.intervals().items():
            job = self._job(name)
            task = self._tasks.get(name)
            jobs.append(
                JobStatus(
                    job=name,
                    running=job.running,
                    interval_seconds=interval,
                    loop_active=task is not None and not task.done(),
                    last_run=job.last_report,
                )
            )
        return SchedulerStatus(enabled=self.settings.SCHEDULER_ENABLED, jobs=jobs)


scheduler = JobScheduler()
