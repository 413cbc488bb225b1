"""Twice-daily sweep that runs a digest for every connected user."""

from __future__ import annotations

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.models import ScheduleReport
from gmail_digest.pipeline.orchestrator import DigestOrchestrator
from gmail_digest.storage.store import DigestStore

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "gmail-digest-sweep"


class DigestScheduler:
    """Runs DigestOrchestrator.run_digest for each active connection, one at a time."""

    def __init__(
        self,
        store: DigestStore,
        orchestrator: DigestOrchestrator,
        settings: GmailDigestSettings | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._settings = settings or GmailDigestSettings()

    def run_all(self) -> ScheduleReport:
        """Run every active user's digest; one user's failure never stops the sweep."""
        logger.info("Running scheduled email digest")
        report = ScheduleReport()

        for connection in self._store.list_active_connections():
            report.users_total += 1
            try:
                self._orchestrator.run_digest(connection.user_id)
                report.users_succeeded += 1
                logger.info("Scheduled digest completed for user: %s", connection.user_id)
            except Exception as e:
                report.users_failed += 1
                report.failed_user_ids.append(connection.user_id)
                logger.error("Scheduled digest failed for user %s: %s", connection.user_id, e)

        logger.info(
            "Scheduled sweep done: %d succeeded, %d failed",
            report.users_succeeded,
            report.users_failed,
        )
        return report

    def trigger(self) -> CronTrigger:
        """Cron trigger for the configured fixed times (default 08:00 and 20:00)."""
        return CronTrigger(
            hour=self._settings.schedule_hours,
            minute=self._settings.schedule_minute,
            timezone=self._settings.schedule_timezone,
        )

    def build_scheduler(self) -> BlockingScheduler:
        scheduler = BlockingScheduler(timezone=self._settings.schedule_timezone)
        scheduler.add_job(
            self.run_all,
            self.trigger(),
            id=SWEEP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        return scheduler

    def start(self) -> None:
        """Block, running the sweep on schedule until interrupted."""
        scheduler = self.build_scheduler()
        logger.info(
            "Digest scheduler started (hours=%s minute=%s tz=%s)",
            self._settings.schedule_hours,
            self._settings.schedule_minute,
            self._settings.schedule_timezone,
        )
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Digest scheduler stopped")
