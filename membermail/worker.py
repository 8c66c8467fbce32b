"""Background scheduler running the lifecycle scan and queue drains."""

import logging
from typing import Any, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler

from membermail.config import get_settings
from membermail.database.database import SessionLocal
from membermail.integrations.scheduler import ApScheduler
from membermail.models.constants import HOOK_LIFECYCLE_SCAN, HOOK_PROCESS_QUEUE

logger = logging.getLogger(__name__)


class SchedulerService:
    """Owns the APScheduler instance and runs hooks in fresh DB sessions."""

    def __init__(self, settings=None, session_factory=SessionLocal, scheduler=None):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.adapter = ApScheduler(self.scheduler, self.run_hook)

    def run_hook(self, hook_id: str, args: Sequence[Any] = ()) -> bool:
        """Dispatch one hook with its own session."""
        from membermail.services import build_services

        db = self.session_factory()
        try:
            services = build_services(db, self.adapter, settings=self.settings)
            handled = services.hooks.dispatch(hook_id, list(args))
            if not handled:
                logger.warning(f"No handler registered for scheduled hook {hook_id}")
            return handled
        except Exception as e:
            logger.error(f"Scheduled hook {hook_id} failed: {type(e).__name__}: {str(e)}")
            return False
        finally:
            db.close()

    def start(self) -> None:
        self.adapter.schedule_recurring(self.settings.scan_interval_seconds, HOOK_LIFECYCLE_SCAN)
        # Drain anything left over from a previous process.
        if not self.adapter.is_scheduled(HOOK_PROCESS_QUEUE):
            self.adapter.schedule_once(0, HOOK_PROCESS_QUEUE)
        self.scheduler.start()
        logger.info(f"Scheduler started: lifecycle scan every {self.settings.scan_interval_seconds}s")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")


_scheduler_service: Optional[SchedulerService] = None


def get_scheduler_service() -> SchedulerService:
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service
