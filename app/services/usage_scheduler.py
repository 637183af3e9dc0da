"""
Scheduled resets for AI usage counters.

Four independent APScheduler jobs run on the application's event loop:

- daily reset at every UTC midnight
- weekly reset at every UTC Monday midnight
- monthly reset immediately, then every 30 days (approximation, not calendar aware)
- restriction cleanup immediately, then hourly (also prunes old usage events)

Database work runs in a worker thread so resets do not block request handling.
A failing run is logged and the job keeps its schedule.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.services.usage_reset_service import UsageResetService
from app.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Late runs (event loop busy, process suspended) still fire within this window
MISFIRE_GRACE_SECONDS = 5 * 60


def _cleanup(service: UsageResetService) -> None:
    service.cleanup_expired_restrictions()
    service.prune_usage_events()


JOB_ACTIONS: Dict[str, Callable[[UsageResetService], object]] = {
    'daily_reset': UsageResetService.reset_daily_counters,
    'weekly_reset': UsageResetService.reset_weekly_counters,
    'monthly_reset': UsageResetService.reset_monthly_counters,
    'restriction_cleanup': _cleanup,
}


def build_job_triggers() -> Dict[str, tuple]:
    """Trigger and first run time (None: let the trigger decide) for each job"""
    now = utcnow()
    return {
        'daily_reset': (CronTrigger(hour=0, minute=0, timezone="UTC"), None),
        'weekly_reset': (CronTrigger(day_of_week="mon", hour=0, minute=0, timezone="UTC"), None),
        'monthly_reset': (IntervalTrigger(days=30, timezone="UTC"), now),
        'restriction_cleanup': (IntervalTrigger(hours=1, timezone="UTC"), now),
    }


class UsageResetScheduler:
    """Owns the APScheduler instance and job handles for the usage reset jobs"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal,
                 clock: Optional[Callable[[], datetime]] = None):
        self.session_factory = session_factory
        self.clock = clock or utcnow
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._last_results: Dict[str, dict] = {}

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Schedule every job on the running event loop"""
        if self.is_running:
            logger.warning("Usage reset scheduler already running")
            return

        logger.info("Initializing usage reset jobs...")
        self._scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={'coalesce': True, 'max_instances': 1, 'misfire_grace_time': MISFIRE_GRACE_SECONDS},
        )
        for name, (trigger, first_run) in build_job_triggers().items():
            job_options = {'next_run_time': first_run} if first_run else {}
            self._scheduler.add_job(
                self.run_job, trigger, args=[name], id=name, name=name,
                replace_existing=True, **job_options
            )
        self._scheduler.start()

        for job in self._scheduler.get_jobs():
            logger.info(f"{job.id} scheduled for {job.next_run_time.isoformat()} ({job.trigger})")
        logger.info("All usage reset jobs initialized")

    async def stop(self) -> None:
        """Shut the scheduler down and drop its jobs"""
        if self._scheduler is None:
            return

        logger.info("Stopping usage reset jobs...")
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("All usage reset jobs stopped")

    async def run_job(self, name: str) -> bool:
        """Run one job in a worker thread; never raises for job failures"""
        return await asyncio.to_thread(self._execute, name)

    def _execute(self, name: str) -> bool:
        action = JOB_ACTIONS[name]
        db = self.session_factory()
        started_at = self.now()
        try:
            logger.info(f"Running scheduled {name}...")
            action(UsageResetService(db, clock=self.clock))
            self._last_results[name] = {'ran_at': started_at, 'success': True}
            return True
        except Exception as e:
            logger.error(f"Error in scheduled {name}: {str(e)}")
            self._last_results[name] = {'ran_at': started_at, 'success': False, 'error': str(e)}
            return False
        finally:
            db.close()

    def get_status(self) -> dict:
        jobs = self._scheduler.get_jobs() if self._scheduler is not None else []
        return {
            'initialized': self._scheduler is not None,
            'active_jobs': len(jobs),
            'jobs': [job.id for job in jobs],
            'next_runs': {
                job.id: job.next_run_time.isoformat()
                for job in jobs if job.next_run_time is not None
            },
            'last_runs': {
                name: {**result, 'ran_at': result['ran_at'].isoformat()}
                for name, result in self._last_results.items()
            },
            'monthly_note': 'Every 30 days (simplified)'
        }
