"""Background scheduler driving the speedtest controller."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .speedtest.controller import SpeedtestController

LOGGER = logging.getLogger(__name__)

TICK_SECONDS = 1


class SchedulerService:
    """Calls ``SpeedtestController.tick`` once per second.

    The controller decides whether a run is due; this service only provides
    the cadence.
    """

    def __init__(self, controller: SpeedtestController) -> None:
        self.controller = controller
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.started = False

    def start(self) -> None:
        if self.started:
            LOGGER.warning("Scheduler already started, ignoring duplicate start request")
            return

        try:
            self.scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(seconds=TICK_SECONDS),
                id="speedtest-tick",
                max_instances=1,
                coalesce=True,
            )
            self.scheduler.start()
            self.started = True
            LOGGER.info("Scheduler started (tick every %ss)", TICK_SECONDS)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Failed to start scheduler: %s", exc, exc_info=True)
            LOGGER.error("Scheduled speedtests will not run; manual runs still work")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False

    def _tick(self) -> None:
        try:
            self.controller.tick()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Speedtest tick failed: %s", exc)
