"""CSV export of the 24h speedtest history."""

from __future__ import annotations

import csv
import io
from datetime import datetime, timezone

from .speedtest.controller import SpeedtestController
from .speedtest.models import HistoryEntry


class HistoryExporter:
    def __init__(self, controller: SpeedtestController):
        self.controller = controller

    def build_csv(self) -> io.StringIO:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(self._header())

        for entry in self.controller.history():
            writer.writerow(self._row_for_entry(entry))

        buffer.seek(0)
        return buffer

    def _header(self) -> list:
        return [
            "timestamp",
            "runner",
            "ping_ms",
            "jitter_ms",
            "download_mbps",
            "upload_mbps",
            "note",
        ]

    @staticmethod
    def _row_for_entry(entry: HistoryEntry) -> list:
        timestamp = datetime.fromtimestamp(entry.ts / 1000, tz=timezone.utc)
        cells = [entry.ping_ms, entry.jitter_ms, entry.down_mbps, entry.up_mbps]
        return [
            timestamp.isoformat(timespec="seconds"),
            entry.runner,
            *("" if value is None else round(value, 3) for value in cells),
            entry.note,
        ]
