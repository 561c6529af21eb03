"""Shared dataclasses for speedtest runs."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

RUNNER_OOKLA = "ookla"
RUNNER_SPEEDTEST_CLI = "speedtest-cli"
RUNNER_LIBRESPEED = "librespeed-cli"

STAGE_STARTING = "starting"
STAGE_PING = "ping"
STAGE_DOWNLOAD = "download"
STAGE_UPLOAD = "upload"
STAGE_RATE_LIMITED = "rate_limited"
STAGE_DONE = "done"
STAGE_ERROR = "error"

METRIC_FIELDS = ("ping_ms", "jitter_ms", "down_mbps", "up_mbps")


def to_num(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class RunnerInfo:
    kind: str
    binary: str


@dataclass(frozen=True)
class RunResult:
    runner: str
    ping_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    down_mbps: Optional[float] = None
    up_mbps: Optional[float] = None
    note: Optional[str] = None
    primary_exit: Optional[int] = None
    primary_rate_limited: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Progress:
    """Live view of an in-flight run, updated in place."""

    ts: int
    stage: str = STAGE_STARTING
    ping_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    down_mbps: Optional[float] = None
    up_mbps: Optional[float] = None

    def apply(self, update: Dict[str, Any], ts: int) -> None:
        # Observed values are only ever replaced by newer observations
        stage = update.get("stage")
        if stage:
            self.stage = stage
        for name in METRIC_FIELDS:
            value = to_num(update.get(name))
            if value is not None:
                setattr(self, name, value)
        self.ts = ts

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HistoryEntry:
    ts: int
    runner: str
    ping_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    down_mbps: Optional[float] = None
    up_mbps: Optional[float] = None
    note: str = ""

    @classmethod
    def from_result(cls, ts: int, result: RunResult) -> "HistoryEntry":
        return cls(
            ts=ts,
            runner=result.runner,
            ping_ms=result.ping_ms,
            jitter_ms=result.jitter_ms,
            down_mbps=result.down_mbps,
            up_mbps=result.up_mbps,
            note=result.note or "",
        )

    @classmethod
    def from_dict(cls, raw: Any) -> Optional["HistoryEntry"]:
        if not isinstance(raw, dict):
            return None
        ts = to_num(raw.get("ts"))
        if ts is None or ts <= 0:
            return None
        return cls(
            ts=int(ts),
            runner=str(raw.get("runner") or ""),
            ping_ms=to_num(raw.get("ping_ms")),
            jitter_ms=to_num(raw.get("jitter_ms")),
            down_mbps=to_num(raw.get("down_mbps")),
            up_mbps=to_num(raw.get("up_mbps")),
            note=str(raw.get("note") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PersistedState:
    interval_min: Optional[int] = None
    rate_limit_until: int = 0
    rate_limit_count: int = 0
    max_down_mbps: float = 0
    max_up_mbps: float = 0
    history: List[HistoryEntry] = field(default_factory=list)
