"""Exceptions raised while executing a speedtest runner."""

from __future__ import annotations

from typing import Optional

NO_RUNNER_MESSAGE = "No speedtest runner found (speedtest-cli / speedtest (Ookla) / librespeed-cli)"


class SpeedtestError(RuntimeError):
    """Base class for failures of a single speedtest attempt."""


class RunnerNotFoundError(SpeedtestError):
    def __init__(self, message: str = NO_RUNNER_MESSAGE):
        super().__init__(message)


class RunnerSpawnError(SpeedtestError):
    """The executable could not be launched."""


class RunnerTimeoutError(SpeedtestError):
    """The executable was killed after the configured timeout."""


class RunnerExitError(SpeedtestError):
    def __init__(self, message: str, exit_code: Optional[int], rate_limited: bool = False, output: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.rate_limited = rate_limited
        self.output = output


class RunnerOutputError(SpeedtestError):
    """Output could not be interpreted as a result."""

    def __init__(self, message: str, head: str = "", tail: str = ""):
        super().__init__(message)
        self.head = head
        self.tail = tail


class RateLimitError(SpeedtestError):
    def __init__(self, message: str, code: int = 173, retry_after_ms: int = 0):
        super().__init__(message)
        self.code = code
        self.retry_after_ms = retry_after_ms
