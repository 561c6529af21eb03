"""Detect upstream rate limiting and compute backoff windows."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

OOKLA_RATE_LIMIT_EXIT_CODE = 173

RATE_LIMIT_PHRASES = ("limit reached", "too many requests", "rate limit", "429")

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
BACKOFF_STEPS_MS = (30 * MINUTE_MS, HOUR_MS, 2 * HOUR_MS, 4 * HOUR_MS, 6 * HOUR_MS)


def is_rate_limited_text(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in RATE_LIMIT_PHRASES)


def is_rate_limited(exit_code: Optional[int], text: Optional[str]) -> bool:
    return exit_code == OOKLA_RATE_LIMIT_EXIT_CODE or is_rate_limited_text(text)


def compute_backoff_ms(count: int) -> int:
    """Backoff for the ``count``-th consecutive hit (1-based)."""

    hits = max(1, int(count or 1))
    return BACKOFF_STEPS_MS[min(len(BACKOFF_STEPS_MS), hits) - 1]


def format_minutes(ms: float) -> str:
    return f"{math.ceil(max(0, ms or 0) / MINUTE_MS)}m"


@dataclass
class RateLimitPolicy:
    count: int = 0
    until_ms: int = 0

    def is_active(self, now_ms: int) -> bool:
        return bool(self.until_ms) and now_ms < self.until_ms

    def remaining_ms(self, now_ms: int) -> int:
        return max(0, self.until_ms - now_ms) if self.until_ms else 0

    def register_hit(self, now_ms: int, retry_after_ms: int = 0) -> int:
        self.count = max(1, self.count + 1)
        backoff = retry_after_ms or compute_backoff_ms(self.count)
        self.until_ms = now_ms + backoff
        return backoff

    def reset(self) -> bool:
        """Clear the window; returns whether anything changed."""

        changed = bool(self.count or self.until_ms)
        self.count = 0
        self.until_ms = 0
        return changed
