"""Tests for the APScheduler tick service."""
from __future__ import annotations

from unittest.mock import MagicMock, patch

from netgauge.scheduler import TICK_SECONDS, SchedulerService


class TestSchedulerService:
    def test_start_registers_single_tick_job(self):
        service = SchedulerService(MagicMock())

        with patch.object(service.scheduler, "start") as start:
            service.start()
            service.start()

        start.assert_called_once()
        jobs = service.scheduler.get_jobs()
        assert [job.id for job in jobs] == ["speedtest-tick"]
        assert jobs[0].trigger.interval.total_seconds() == TICK_SECONDS
        assert service.started is True

    def test_tick_delegates_to_controller(self):
        controller = MagicMock()
        service = SchedulerService(controller)

        service._tick()

        controller.tick.assert_called_once_with()

    def test_tick_errors_are_logged_not_raised(self, caplog):
        controller = MagicMock()
        controller.tick.side_effect = RuntimeError("boom")
        service = SchedulerService(controller)

        service._tick()

        assert "Speedtest tick failed" in caplog.text

    def test_shutdown_only_when_started(self):
        service = SchedulerService(MagicMock())

        with patch.object(service.scheduler, "shutdown") as shutdown:
            service.shutdown()

        shutdown.assert_not_called()
