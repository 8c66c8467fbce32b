"""Durable FIFO job queue with an hourly send cap.

Jobs are persisted as one list in the key/value store. A drain runs through
the scheduler under `HOOK_PROCESS_QUEUE`; at most `MAX_PER_HOUR` jobs are
dispatched per rolling window and the remainder waits for the next drain.

Delivery is at-least-once: a crash between dispatch and saving the shortened
list replays those jobs. Producers that need once-only semantics gate on
their own per-user flags.
"""

import logging
from typing import Any, List, Sequence

from membermail.engine.hooks import normalize_hook_id
from membermail.models.constants import (
    HOOK_PROCESS_QUEUE,
    MAX_PER_HOUR,
    QUEUE_OPTION_KEY,
    QUEUE_RETRY_DELAY_SECONDS,
    RATE_OPTION_KEY,
)
from membermail.models.log_entry import LogType
from membermail.models.queue_job import QueueJob, RateWindow

logger = logging.getLogger(__name__)


class DeliveryQueue:
    """Rate-limited queue of deferred hook invocations."""

    def __init__(
        self,
        store,
        scheduler,
        hooks,
        event_log,
        clock,
        max_per_hour: int = MAX_PER_HOUR,
        queue_key: str = QUEUE_OPTION_KEY,
        rate_key: str = RATE_OPTION_KEY,
    ):
        self.store = store
        self.scheduler = scheduler
        self.hooks = hooks
        self.event_log = event_log
        self.clock = clock
        self.max_per_hour = max_per_hour
        self.queue_key = queue_key
        self.rate_key = rate_key

    # ------------------------------------------------------------------ state

    def pending(self) -> List[QueueJob]:
        """Jobs still waiting, oldest first."""
        raw = self.store.get(self.queue_key, [])
        if not isinstance(raw, list):
            return []
        jobs = []
        for item in raw:
            try:
                jobs.append(QueueJob.model_validate(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed queue entry: {type(e).__name__}: {str(e)}")
        return jobs

    def _save(self, jobs: Sequence[QueueJob]) -> None:
        if jobs:
            self.store.set(self.queue_key, [job.model_dump() for job in jobs])
        else:
            self.store.delete(self.queue_key)

    def rate_window(self) -> RateWindow:
        """Current window, reset when missing or older than an hour."""
        now = self.clock.now()
        raw = self.store.get(self.rate_key)
        window = None
        if isinstance(raw, dict):
            try:
                window = RateWindow.model_validate(raw)
            except ValueError:
                window = None
        if window is None or window.is_stale(now):
            window = RateWindow(window_start=now, count=0)
            self.store.set(self.rate_key, window.model_dump())
        return window

    def clear(self) -> None:
        self.store.delete(self.queue_key)
        self.store.delete(self.rate_key)

    # --------------------------------------------------------------- producer

    def enqueue(self, hook_id: str, args: Sequence[Any] = ()) -> bool:
        """Append a job and make sure a drain is scheduled.

        Returns:
            False when the hook id is empty after normalization
        """
        key = normalize_hook_id(hook_id)
        if not key:
            self.event_log.add("Rejected queue job with an empty hook id.", LogType.QUEUE, {"hook": str(hook_id)})
            return False

        job = QueueJob(hook_id=key, args=list(args), enqueued_at=self.clock.now())
        jobs = self.pending()
        jobs.append(job)
        self._save(jobs)

        self.event_log.add(
            f'Queued "{key}" job.',
            LogType.QUEUE,
            {"hook": key, "args": list(args), "queue_size": len(jobs)},
        )
        self._ensure_drain_scheduled()
        return True

    def _ensure_drain_scheduled(self) -> None:
        if not self.scheduler.is_scheduled(HOOK_PROCESS_QUEUE):
            self.scheduler.schedule_once(QUEUE_RETRY_DELAY_SECONDS, HOOK_PROCESS_QUEUE)

    # --------------------------------------------------------------- consumer

    def process(self) -> int:
        """Dispatch queued jobs within the hourly allowance.

        Returns:
            Number of jobs dispatched to a handler
        """
        jobs = self.pending()
        if not jobs:
            self.store.delete(self.queue_key)
            return 0

        now = self.clock.now()
        window = self.rate_window()
        allowed = self.max_per_hour - window.count
        if allowed <= 0:
            delay = window.next_opening(now, QUEUE_RETRY_DELAY_SECONDS)
            self.scheduler.schedule_once(delay, HOOK_PROCESS_QUEUE)
            self.event_log.add(
                "Hourly send limit reached; queue drain deferred.",
                LogType.QUEUE,
                {"remaining": len(jobs), "retry_in": delay},
            )
            return 0

        dispatched = 0
        remaining: List[QueueJob] = []
        for index, job in enumerate(jobs):
            if dispatched >= allowed:
                remaining.extend(jobs[index:])
                break
            if self._dispatch(job):
                dispatched += 1

        self._save(remaining)
        window.count += dispatched
        self.store.set(self.rate_key, window.model_dump())

        if remaining:
            # Remaining jobs only exist once the allowance is used up.
            self.scheduler.schedule_once(window.next_opening(now, QUEUE_RETRY_DELAY_SECONDS), HOOK_PROCESS_QUEUE)

        self.event_log.add(
            f"Processed {dispatched} queued job(s).",
            LogType.QUEUE,
            {"dispatched": dispatched, "remaining": len(remaining), "window_count": window.count},
        )
        return dispatched

    def _dispatch(self, job: QueueJob) -> bool:
        """Run one job. False means it was dropped without reaching a handler."""
        handler = self.hooks.resolve(job.hook_id)
        if handler is None:
            self.event_log.add(
                f'Dropped job for unregistered hook "{job.hook_id}".',
                LogType.QUEUE,
                {"hook": job.hook_id, "status": "dropped"},
            )
            return False
        try:
            handler(*job.args)
        except Exception as e:
            logger.exception(f"Queue handler {job.hook_id} raised")
            self.event_log.add(
                f'Queued "{job.hook_id}" job failed: {type(e).__name__}.',
                LogType.FAILED,
                {"hook": job.hook_id, "args": job.args, "status": "error"},
            )
        return True
