"""APScheduler adapter exposing the hook scheduling interface.

Every hook id maps to exactly one APScheduler job with the same id, so
scheduling a hook again replaces the pending run instead of stacking one.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence

from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class ApScheduler:
    """Schedules hook runs on an APScheduler instance.

    Args:
        scheduler: Any APScheduler 3.x scheduler (started or not)
        runner: Called as `runner(hook_id, args)` when a job fires
    """

    def __init__(self, scheduler, runner: Callable[[str, Sequence[Any]], Any]):
        self.scheduler = scheduler
        self.runner = runner

    def schedule_once(self, delay_seconds: int, hook_id: str, args: Optional[Sequence[Any]] = None) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=max(0, int(delay_seconds)))
        self.scheduler.add_job(
            self.runner,
            DateTrigger(run_date=run_date),
            args=[hook_id, list(args or [])],
            id=hook_id,
            name=f"Run {hook_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug(f"Scheduled {hook_id} in {delay_seconds}s")

    def schedule_recurring(self, interval_seconds: int, hook_id: str) -> None:
        self.scheduler.add_job(
            self.runner,
            IntervalTrigger(seconds=int(interval_seconds)),
            args=[hook_id, []],
            id=hook_id,
            name=f"Run {hook_id} every {interval_seconds}s",
            replace_existing=True,
            coalesce=True,
        )
        logger.debug(f"Scheduled {hook_id} every {interval_seconds}s")

    def is_scheduled(self, hook_id: str) -> bool:
        return self.scheduler.get_job(hook_id) is not None

    def unschedule(self, hook_id: str) -> bool:
        try:
            self.scheduler.remove_job(hook_id)
            return True
        except JobLookupError:
            return False
