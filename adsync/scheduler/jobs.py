"""ADSYNC — Scheduler Jobs.

APScheduler cron jobs: yesterday's performance daily, the account hierarchy
weekly. Job failures are logged here and never reach the scheduler.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from adsync.config import Settings
from adsync.core.logging import get_logger
from adsync.sync.orchestrator import SyncOrchestrator, SyncReport

logger = get_logger("scheduler")

DAILY_PERFORMANCE_JOB = "daily_performance"
WEEKLY_HIERARCHY_JOB = "weekly_hierarchy"


async def run_guarded(
    name: str, run: Callable[[], Awaitable[SyncReport]], timeout_seconds: float
) -> Optional[SyncReport]:
    """Run one sync with a timeout, swallowing and logging any failure."""
    logger.info(f"Scheduled {name} starting...")
    try:
        report = await asyncio.wait_for(run(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(f"Scheduled {name} timed out after {timeout_seconds}s")
        return None
    except Exception as e:
        logger.error(f"Scheduled {name} failed: {e}", exc_info=True)
        return None
    logger.info(
        f"Scheduled {name} complete. Accounts: {report.accounts_synced}/"
        f"{report.accounts_total}, failures: {len(report.failures)}"
    )
    return report


class SyncScheduler:
    """Cron-style triggers bound to orchestrator entry points."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        settings: Settings,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.orchestrator = orchestrator
        self.enabled = settings.scheduler_enabled
        self.timezone = settings.scheduler_timezone
        self.timeout_seconds = settings.sync_run_timeout_seconds
        self.crons = {
            DAILY_PERFORMANCE_JOB: settings.daily_job_cron,
            WEEKLY_HIERARCHY_JOB: settings.hierarchy_job_cron,
        }
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)

    # ── Jobs ──

    async def daily_performance_job(self) -> Optional[SyncReport]:
        return await run_guarded(
            "daily performance sync",
            self.orchestrator.sync_yesterday_performance_data,
            self.timeout_seconds,
        )

    async def weekly_hierarchy_job(self) -> Optional[SyncReport]:
        return await run_guarded(
            "weekly hierarchy sync",
            self.orchestrator.sync_account_hierarchy,
            self.timeout_seconds,
        )

    def triggers(self) -> Dict[str, CronTrigger]:
        return {
            job_id: CronTrigger.from_crontab(expr, timezone=self.timezone)
            for job_id, expr in self.crons.items()
        }

    def next_fire_times(self, now: datetime) -> Dict[str, Optional[datetime]]:
        """When each job would next run, relative to ``now`` (tz-aware)."""
        return {
            job_id: trigger.get_next_fire_time(None, now)
            for job_id, trigger in self.triggers().items()
        }

    def register(self) -> None:
        callbacks = {
            DAILY_PERFORMANCE_JOB: self.daily_performance_job,
            WEEKLY_HIERARCHY_JOB: self.weekly_hierarchy_job,
        }
        for job_id, trigger in self.triggers().items():
            self.scheduler.add_job(
                callbacks[job_id],
                trigger,
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=3600,
            )

    def start(self) -> None:
        """Configure and start the scheduler."""
        if not self.enabled:
            logger.info("Scheduler disabled via config")
            return
        self.register()
        self.scheduler.start()
        logger.info(
            f"Scheduler started. Performance: '{self.crons[DAILY_PERFORMANCE_JOB]}', "
            f"hierarchy: '{self.crons[WEEKLY_HIERARCHY_JOB]}' ({self.timezone})"
        )

    def stop(self) -> None:
        """Shutdown the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
