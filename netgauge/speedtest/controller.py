"""Speedtest scheduling and run-state controller.

The controller owns every piece of mutable speedtest state: the running
flag, live progress, last result and error, the rate-limit window, gauge
hints and the 24h history. Collaborators only use ``tick``, ``run_now``,
``set_interval_min`` and ``snapshot``; runs execute one at a time on a
single worker thread.
"""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from ..config import SpeedtestConfig
from .errors import RateLimitError, SpeedtestError
from .models import (
    STAGE_DONE,
    STAGE_ERROR,
    STAGE_RATE_LIMITED,
    HistoryEntry,
    PersistedState,
    Progress,
    RunResult,
    RunnerInfo,
    to_num,
)
from .ratelimit import RateLimitPolicy, format_minutes
from .resolver import RunnerResolver
from .runner import run_speedtest
from .state import StateStore

LOGGER = logging.getLogger(__name__)

HISTORY_WINDOW_MS = 24 * 60 * 60 * 1000
HISTORY_MAX_ENTRIES = 5000
MAX_INTERVAL_MIN = 24 * 60

GAUGE_STEPS = (25, 50, 75, 100, 150, 200, 250, 300, 400, 500, 750, 1000, 1500, 2000, 3000, 5000)
DEFAULT_MAX_DOWN_MBPS = 250
DEFAULT_MAX_UP_MBPS = 50


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp_interval(value: Any) -> int:
    number = to_num(value)
    if number is None:
        return 0
    return max(0, min(MAX_INTERVAL_MIN, math.floor(number)))


def nice_gauge_max_bucket(mbps: Any, fallback: float) -> int:
    """Smallest gauge step that fits ``mbps`` (``fallback`` when unknown)."""

    value = to_num(mbps)
    target = value if value is not None and value > 0 else fallback
    for step in GAUGE_STEPS:
        if target <= step:
            return step
    return int(math.ceil(target / 1000) * 1000)


class SpeedtestController:
    def __init__(
        self,
        config: SpeedtestConfig,
        resolver: RunnerResolver,
        store: Optional[StateStore] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config
        self.resolver = resolver
        self.store = store
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="speedtest")
        self._clock = clock
        self._lock = threading.RLock()

        loaded = store.load() if store else None
        if loaded is None:
            loaded = PersistedState()
        interval = loaded.interval_min if loaded.interval_min is not None else config.interval_min

        self._interval_min = clamp_interval(interval)
        self._rate_limit = RateLimitPolicy(count=loaded.rate_limit_count, until_ms=loaded.rate_limit_until)
        self._max_down = loaded.max_down_mbps
        self._max_up = loaded.max_up_mbps
        self._history: List[HistoryEntry] = list(loaded.history)

        self._running = False
        self._resolving = False
        self._progress: Optional[Progress] = None
        self._last: Optional[Dict[str, Any]] = None
        self._last_error: Optional[str] = None
        self._runner_name: Optional[str] = None
        self._next_run_ts = 0
        self._schedule_next(self._clock())

    # -- public operations -------------------------------------------------

    def start(self) -> None:
        """Kick off the run-on-start measurement when scheduling is enabled."""

        now = self._clock()
        with self._lock:
            if not (self.config.run_on_start and self._interval_min > 0):
                return
            if self._rate_limit.is_active(now):
                self._defer_until(self._rate_limit.until_ms)
                LOGGER.info(
                    "Skipping startup speedtest, rate limited for %s",
                    format_minutes(self._rate_limit.remaining_ms(now)),
                )
                return
            self._schedule_next(now)
        self._start_run()

    def tick(self) -> None:
        if self.resolver.resolved is None:
            self._resolve_in_background()

        now = self._clock()
        with self._lock:
            if not self._interval_min:
                return
            if self._rate_limit.is_active(now):
                self._defer_until(self._rate_limit.until_ms)
                return
            if not self._next_run_ts:
                self._schedule_next(now)
            due = now >= self._next_run_ts and not self._running
            if due:
                self._schedule_next(now)

        if due:
            LOGGER.info("Starting scheduled speedtest (interval %s min)", self._interval_min)
            self._start_run()

    def run_now(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            if self._refuse_rate_limited(now):
                return self._snapshot_locked(now)
            already_running = self._running

        if not already_running:
            self._start_run()
        return self.snapshot()

    def run_blocking(self) -> Dict[str, Any]:
        """Run one measurement and wait for it (used by ``main.py --once``)."""

        now = self._clock()
        with self._lock:
            if self._refuse_rate_limited(now):
                return self._snapshot_locked(now)

        future = self._start_run()
        if future is not None:
            future.result()
        return self.snapshot()

    def set_interval_min(self, minutes: Any) -> Dict[str, Any]:
        with self._lock:
            self._interval_min = clamp_interval(minutes)
            self._persist()
            self._schedule_next(self._clock())
            LOGGER.info("Speedtest interval set to %s min", self._interval_min)
            return self._snapshot_locked(self._clock())

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self._snapshot_locked(self._clock())

    def history(self) -> List[HistoryEntry]:
        with self._lock:
            self._prune_history(self._clock())
            return list(self._history)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # -- run execution -----------------------------------------------------

    def _start_run(self) -> Optional[Future]:
        with self._lock:
            if self._running:
                return None
            self._running = True
            self._last_error = None
            self._progress = Progress(ts=self._clock())

        try:
            return self._executor.submit(self._do_run)
        except RuntimeError as exc:
            LOGGER.error("Could not schedule speedtest run: %s", exc)
            with self._lock:
                self._running = False
                self._last_error = str(exc)
            return None

    def _do_run(self) -> None:
        try:
            runner = self._ensure_runner()
            result = run_speedtest(self.resolver, runner, self.config, self._on_progress)
        except RateLimitError as exc:
            self._record_rate_limit(exc)
        except SpeedtestError as exc:
            self._record_failure(str(exc))
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Unexpected speedtest failure")
            self._record_failure(str(exc))
        else:
            self._record_success(result)
        finally:
            with self._lock:
                self._running = False

    def _ensure_runner(self) -> Optional[RunnerInfo]:
        runner = self.resolver.resolve()
        if runner is not None:
            with self._lock:
                if self._runner_name is None:
                    self._runner_name = runner.kind
        return runner

    def _resolve_in_background(self) -> None:
        with self._lock:
            if self._resolving or self._running:
                return
            self._resolving = True

        def resolve() -> None:
            try:
                self._ensure_runner()
            finally:
                with self._lock:
                    self._resolving = False

        try:
            self._executor.submit(resolve)
        except RuntimeError:
            with self._lock:
                self._resolving = False

    def _on_progress(self, update: Dict[str, Any]) -> None:
        with self._lock:
            if self._progress is None:
                self._progress = Progress(ts=self._clock(), stage="running")
            self._progress.apply(update, self._clock())

    def _record_success(self, result: RunResult) -> None:
        now = self._clock()
        with self._lock:
            if result.primary_rate_limited:
                backoff = self._rate_limit.register_hit(now)
                self._defer_until(self._rate_limit.until_ms)
                self._last_error = f"rate_limited: retry in {format_minutes(backoff)} (fallback used)"
                LOGGER.warning("Primary runner rate limited, backing off for %s", format_minutes(backoff))
            elif self._rate_limit.reset():
                LOGGER.info("Rate limit window cleared")

            final = self._merge_progress(result)
            self._max_down = nice_gauge_max_bucket(final.down_mbps, DEFAULT_MAX_DOWN_MBPS)
            self._max_up = nice_gauge_max_bucket(final.up_mbps, DEFAULT_MAX_UP_MBPS)
            self._last = {"ts": now, **final.to_dict()}
            self._runner_name = final.runner
            self._prune_history(now)
            self._history.append(HistoryEntry.from_result(now, final))
            self._prune_history(now)

            if self._progress is not None:
                stage = STAGE_RATE_LIMITED if result.primary_rate_limited else STAGE_DONE
                self._progress.apply({"stage": stage, **final.to_dict()}, now)

            self._persist()

        LOGGER.info(
            "Stored %s speedtest (ping %s ms / down %.2f Mbps / up %.2f Mbps)",
            final.runner,
            final.ping_ms,
            final.down_mbps or 0,
            final.up_mbps or 0,
        )

    def _record_rate_limit(self, exc: RateLimitError) -> None:
        now = self._clock()
        with self._lock:
            backoff = self._rate_limit.register_hit(now, exc.retry_after_ms)
            self._defer_until(self._rate_limit.until_ms)
            self._last_error = f"rate_limited: retry in {format_minutes(backoff)}"
            if self._progress is not None:
                self._progress.apply({"stage": STAGE_RATE_LIMITED}, now)
            self._persist()
        LOGGER.warning("Speedtest rate limited (hit %s): %s", self._rate_limit.count, exc)

    def _record_failure(self, message: str) -> None:
        now = self._clock()
        with self._lock:
            self._last_error = message
            if self._progress is not None:
                self._progress.apply({"stage": STAGE_ERROR}, now)
        LOGGER.warning("Speedtest failed: %s", message)

    def _merge_progress(self, result: RunResult) -> RunResult:
        # Some CLIs report latency only through progress events
        progress = self._progress
        if progress is None:
            return result
        return dataclasses.replace(
            result,
            ping_ms=result.ping_ms if result.ping_ms is not None else progress.ping_ms,
            jitter_ms=result.jitter_ms if result.jitter_ms is not None else progress.jitter_ms,
            down_mbps=result.down_mbps if result.down_mbps is not None else progress.down_mbps,
            up_mbps=result.up_mbps if result.up_mbps is not None else progress.up_mbps,
        )

    # -- helpers (call with the lock held) ---------------------------------

    def _schedule_next(self, from_ts: int) -> None:
        self._next_run_ts = from_ts + self._interval_min * 60 * 1000 if self._interval_min else 0
        if self._interval_min and self._rate_limit.is_active(from_ts):
            self._defer_until(self._rate_limit.until_ms)

    def _refuse_rate_limited(self, now: int) -> bool:
        if not self._rate_limit.is_active(now):
            return False
        self._last_error = f"rate_limited: retry in {format_minutes(self._rate_limit.remaining_ms(now))}"
        self._defer_until(self._rate_limit.until_ms)
        return True

    def _defer_until(self, until_ms: int) -> None:
        if not self._next_run_ts or self._next_run_ts < until_ms:
            self._next_run_ts = until_ms

    def _prune_history(self, now: int) -> None:
        cutoff = now - HISTORY_WINDOW_MS
        self._history = [entry for entry in self._history if entry.ts > 0 and entry.ts >= cutoff]
        if len(self._history) > HISTORY_MAX_ENTRIES:
            self._history = self._history[-HISTORY_MAX_ENTRIES:]

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(
            PersistedState(
                interval_min=self._interval_min,
                rate_limit_until=self._rate_limit.until_ms,
                rate_limit_count=self._rate_limit.count,
                max_down_mbps=self._max_down,
                max_up_mbps=self._max_up,
                history=list(self._history),
            )
        )

    def _snapshot_locked(self, now: int) -> Dict[str, Any]:
        self._prune_history(now)
        return {
            "runner": self._runner_name,
            "running": self._running,
            "interval_min": self._interval_min,
            "next_run_ts": self._next_run_ts,
            "last": dict(self._last) if self._last else None,
            "last_error": self._last_error,
            "progress": self._progress.to_dict() if self._running and self._progress else None,
            "max_down_mbps": self._max_down,
            "max_up_mbps": self._max_up,
            "history_24h": [entry.to_dict() for entry in self._history],
        }

    @property
    def rate_limit(self) -> RateLimitPolicy:
        return self._rate_limit
