"""JSON file persistence for the speedtest controller."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

from .models import HistoryEntry, PersistedState, to_num

LOGGER = logging.getLogger(__name__)


class StateStore:
    """Reads and writes the controller state file.

    Writes are best effort: a failure is logged and reported through the
    return value, never raised, so a read-only or full disk cannot break a
    measurement.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[PersistedState]:
        if not self.path.exists():
            LOGGER.debug("State file not found at %s, using defaults", self.path)
            return None

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return None

        if not isinstance(raw, dict):
            LOGGER.warning("Ignoring state file %s: expected a JSON object", self.path)
            return None

        interval = to_num(raw.get("interval_min"))
        history = raw.get("history") if isinstance(raw.get("history"), list) else []
        entries = [entry for entry in map(HistoryEntry.from_dict, history) if entry is not None]

        return PersistedState(
            interval_min=int(interval) if interval is not None else None,
            rate_limit_until=int(to_num(raw.get("rate_limit_until")) or 0),
            rate_limit_count=int(to_num(raw.get("rate_limit_count")) or 0),
            max_down_mbps=to_num(raw.get("max_down_mbps")) or 0,
            max_up_mbps=to_num(raw.get("max_up_mbps")) or 0,
            history=entries,
        )

    def save(self, state: PersistedState) -> bool:
        document = {
            "interval_min": state.interval_min,
            "saved_at": int(time.time() * 1000),
            "rate_limit_until": state.rate_limit_until,
            "rate_limit_count": state.rate_limit_count,
            "max_down_mbps": state.max_down_mbps,
            "max_up_mbps": state.max_up_mbps,
            "history": [entry.to_dict() for entry in state.history],
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(document, handle, indent=2)
                os.replace(temp_name, self.path)
            except BaseException:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                raise
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Failed to persist speedtest state to %s: %s", self.path, exc)
            return False
        return True
