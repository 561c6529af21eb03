"""Application bootstrap helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from .config import AppConfig, load_config
from .exporter import HistoryExporter
from .logging_setup import configure_logging
from .scheduler import SchedulerService
from .speedtest.controller import SpeedtestController
from .speedtest.resolver import RunnerResolver
from .speedtest.state import StateStore
from .web.app import create_web_app

__version__ = "0.1.0"


class ApplicationContext:
    """Holds shared singletons for the service."""

    def __init__(self, config: AppConfig, log_level: Optional[str] = None):
        self.config = config
        configure_logging(config, log_level)
        self.resolver = RunnerResolver(config)
        self.controller = SpeedtestController(
            config.speedtest,
            self.resolver,
            store=StateStore(config.state_path),
        )
        self.exporter = HistoryExporter(self.controller)
        self.scheduler = SchedulerService(self.controller)
        self.web_app = create_web_app(
            config=config,
            controller=self.controller,
            exporter=self.exporter,
        )

    def start(self) -> None:
        self.controller.start()
        self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self.controller.shutdown()


def bootstrap(config_path: Optional[str] = None, log_level: Optional[str] = None) -> ApplicationContext:
    """Load configuration and wire dependencies."""

    config_file = Path(config_path).resolve() if config_path else None
    config = load_config(str(config_file)) if config_file else load_config()
    return ApplicationContext(config, log_level)
