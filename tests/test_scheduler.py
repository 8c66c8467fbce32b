"""Tests for the APScheduler adapter and the scheduler service."""

from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from membermail.integrations.scheduler import ApScheduler
from membermail.models.constants import HOOK_LIFECYCLE_SCAN, HOOK_PROCESS_QUEUE
from membermail.worker import SchedulerService


class TestApScheduler:
    """Adapter over a real (not started) scheduler."""

    def test_schedule_and_unschedule(self):
        adapter = ApScheduler(BackgroundScheduler(timezone="UTC"), lambda hook_id, args: None)
        assert adapter.is_scheduled("process_email_queue") is False

        adapter.schedule_once(60, "process_email_queue")
        assert adapter.is_scheduled("process_email_queue") is True

        assert adapter.unschedule("process_email_queue") is True
        assert adapter.is_scheduled("process_email_queue") is False
        assert adapter.unschedule("process_email_queue") is False

    def test_schedule_once_uses_hook_id_as_job_id(self):
        scheduler = MagicMock()
        runner = MagicMock()
        ApScheduler(scheduler, runner).schedule_once(30, "send_comeback", [5, 40])

        call = scheduler.add_job.call_args
        assert call.args[0] is runner
        assert isinstance(call.args[1], DateTrigger)
        assert call.kwargs["args"] == ["send_comeback", [5, 40]]
        assert call.kwargs["id"] == "send_comeback"
        assert call.kwargs["replace_existing"] is True

    def test_schedule_recurring(self):
        scheduler = MagicMock()
        ApScheduler(scheduler, MagicMock()).schedule_recurring(3600, "lifecycle_scan")

        call = scheduler.add_job.call_args
        assert isinstance(call.args[1], IntervalTrigger)
        assert call.kwargs["id"] == "lifecycle_scan"
        assert call.kwargs["args"] == ["lifecycle_scan", []]


class TestSchedulerService:
    """Hook execution in fresh sessions."""

    @pytest.fixture
    def service(self, db_engine, settings):
        factory = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
        return SchedulerService(settings=settings, session_factory=factory, scheduler=MagicMock())

    def test_run_registered_hook(self, service):
        assert service.run_hook(HOOK_PROCESS_QUEUE, []) is True
        assert service.run_hook(HOOK_LIFECYCLE_SCAN, []) is True

    def test_run_unknown_hook(self, service):
        assert service.run_hook("no_such_hook", []) is False

    def test_handler_error_is_contained(self, service):
        with patch("membermail.services.build_services", side_effect=RuntimeError("db down")):
            assert service.run_hook(HOOK_PROCESS_QUEUE, []) is False

    def test_start_schedules_scan_and_drain(self, service, settings):
        service.scheduler.get_job.return_value = None
        service.start()

        job_ids = [call.kwargs["id"] for call in service.scheduler.add_job.call_args_list]
        assert job_ids == [HOOK_LIFECYCLE_SCAN, HOOK_PROCESS_QUEUE]
        service.scheduler.start.assert_called_once()

    def test_start_keeps_pending_drain(self, service):
        service.scheduler.get_job.return_value = object()
        service.start()

        job_ids = [call.kwargs["id"] for call in service.scheduler.add_job.call_args_list]
        assert job_ids == [HOOK_LIFECYCLE_SCAN]
