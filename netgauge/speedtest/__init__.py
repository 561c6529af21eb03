"""Speedtest execution and scheduling."""

from .controller import SpeedtestController
from .models import HistoryEntry, Progress, RunnerInfo, RunResult
from .resolver import RunnerResolver
from .state import StateStore

__all__ = [
    "HistoryEntry",
    "Progress",
    "RunResult",
    "RunnerInfo",
    "RunnerResolver",
    "SpeedtestController",
    "StateStore",
]
