from __future__ import annotations

from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..core.logging import get_logger
from ..core.settings import get_settings
from ..services.imports import ImportService
from ..services.orchestrator import LifecycleOrchestrator


logger = get_logger(__name__)
settings = get_settings()


class SchedulerManager:
    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        imports: Optional[ImportService] = None,
    ) -> None:
        self.scheduler = AsyncIOScheduler(timezone=settings.scheduler.timezone)
        self.orchestrator = orchestrator
        self.imports = imports or ImportService()
        self._configure_jobs()

    def _log_job_plan(self) -> None:
        jobs = self.scheduler.get_jobs()
        if not jobs:
            logger.warning("Scheduler has no jobs configured.")
            return
        for job in jobs:
            logger.info(
                "Scheduler job configured: id=%s next_run_time=%s trigger=%s",
                job.id,
                job.next_run_time,
                job.trigger,
            )

    def _configure_jobs(self) -> None:
        trigger = IntervalTrigger(
            seconds=settings.scheduler.maintenance_interval_seconds,
            timezone=settings.scheduler.timezone,
        )
        self.scheduler.add_job(
            self.run_maintenance,
            trigger=trigger,
            id="lifecycle_maintenance",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        if not self.scheduler.running:
            logger.info(
                "Starting scheduler with maintenance every %ss (%s)",
                settings.scheduler.maintenance_interval_seconds,
                settings.scheduler.timezone,
            )
            self.scheduler.start()
            self._log_job_plan()

    def shutdown(self) -> None:
        if self.scheduler.running:
            logger.info("Shutting down scheduler")
            self.scheduler.shutdown(wait=False)

    def run_maintenance(self) -> None:
        stale_after = timedelta(seconds=settings.enrichment.stale_after_seconds)
        steps = (
            ("import timeout sweep", self.imports.sweep_timeouts),
            ("stale enrichment sweep", lambda: self.orchestrator.fail_stale_processing(stale_after)),
            ("pending re-delivery", lambda: self.orchestrator.redeliver_pending(stale_after)),
        )
        for name, step in steps:
            try:
                step()
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Scheduled %s failed: %s", name, exc)
