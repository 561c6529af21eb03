"""Map each runner family's JSON output onto ``RunResult``."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from .models import (
    RUNNER_LIBRESPEED,
    RUNNER_OOKLA,
    RUNNER_SPEEDTEST_CLI,
    STAGE_DOWNLOAD,
    STAGE_PING,
    STAGE_UPLOAD,
    RunResult,
    to_num,
)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_WHITESPACE_RE = re.compile(r"\s+")
_DOWNLOAD_RE = re.compile(r"\bDownload\s*:\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z/]+)?\b", re.IGNORECASE)
_UPLOAD_RE = re.compile(r"\bUpload\s*:\s*([0-9]+(?:\.[0-9]+)?)\s*([A-Za-z/]+)?\b", re.IGNORECASE)
_IDLE_LATENCY_RE = re.compile(r"\bIdle\s+Latency\s*:\s*([0-9]+(?:\.[0-9]+)?)\s*ms\b", re.IGNORECASE)
_LATENCY_RE = re.compile(r"\bLatency\s*:\s*([0-9]+(?:\.[0-9]+)?)\s*ms\b", re.IGNORECASE)
_JITTER_RE = re.compile(r"\bjitter[:\s]*([0-9]+(?:\.[0-9]+)?)\s*ms\b", re.IGNORECASE)

# unit -> multiplier to Mbps
_UNIT_FACTORS = {
    "bps": 1 / 1_000_000,
    "kbps": 1 / 1_000,
    "mbps": 1.0,
    "gbps": 1_000.0,
    "b/s": 8 / 1_000_000,
    "kb/s": 8 / 1_000,
    "mb/s": 8.0,
    "gb/s": 8_000.0,
    "kibps": 1024 / 1_000_000,
    "mibps": 1024 * 1024 / 1_000_000,
    "gibps": 1024 * 1024 * 1024 / 1_000_000,
}


def _first(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")


def bps_to_mbps(value: Any) -> Optional[float]:
    number = to_num(value)
    return None if number is None else number / 1_000_000


def speed_to_mbps(value: Any, unit: Optional[str]) -> Optional[float]:
    number = to_num(value)
    if number is None:
        return None
    factor = _UNIT_FACTORS.get((unit or "").strip().lower())
    return number if factor is None else number * factor


def ookla_ping_ms(data: Any) -> Optional[float]:
    if not isinstance(data, dict):
        return None
    ping = data.get("ping")
    if ping is None:
        return to_num(data.get("latency"))
    if isinstance(ping, dict):
        return to_num(_first(ping, "latency", "latency_ms", "latencyMs"))
    return to_num(ping)


def ookla_jitter_ms(data: Any) -> Optional[float]:
    if not isinstance(data, dict):
        return None
    ping = data.get("ping")
    if isinstance(ping, dict):
        return to_num(_first(ping, "jitter", "jitter_ms", "jitterMs"))
    return to_num(data.get("jitter"))


def section_to_mbps(section: Any) -> Optional[float]:
    """Convert an Ookla ``download``/``upload`` section to Mbps."""

    if not isinstance(section, dict):
        return None

    bandwidth = to_num(_first(section, "bandwidth", "bandwidth_bytes", "bandwidthBytes"))
    if bandwidth is not None:
        return bandwidth * 8 / 1_000_000

    bits = to_num(_first(section, "bandwidth_bps", "bps"))
    if bits is not None:
        return bits / 1_000_000

    total_bytes = to_num(section.get("bytes"))
    elapsed_ms = to_num(section.get("elapsed"))
    if total_bytes is not None and elapsed_ms is not None and elapsed_ms > 0:
        return total_bytes / (elapsed_ms / 1000) * 8 / 1_000_000

    return None


def normalize_ookla(data: Dict[str, Any]) -> RunResult:
    return RunResult(
        runner=RUNNER_OOKLA,
        ping_ms=ookla_ping_ms(data),
        jitter_ms=ookla_jitter_ms(data),
        down_mbps=section_to_mbps(data.get("download")),
        up_mbps=section_to_mbps(data.get("upload")),
    )


def normalize_speedtest_cli(data: Dict[str, Any]) -> RunResult:
    return RunResult(
        runner=RUNNER_SPEEDTEST_CLI,
        ping_ms=to_num(data.get("ping")),
        jitter_ms=None,
        down_mbps=bps_to_mbps(data.get("download")),
        up_mbps=bps_to_mbps(data.get("upload")),
    )


def normalize_librespeed(data: Dict[str, Any]) -> RunResult:
    return RunResult(
        runner=RUNNER_LIBRESPEED,
        ping_ms=to_num(_first(data, "ping", "latency")),
        jitter_ms=to_num(data.get("jitter")),
        down_mbps=to_num(_first(data, "download", "download_mbps")),
        up_mbps=to_num(_first(data, "upload", "upload_mbps")),
    )


NORMALIZERS = {
    RUNNER_OOKLA: normalize_ookla,
    RUNNER_SPEEDTEST_CLI: normalize_speedtest_cli,
    RUNNER_LIBRESPEED: normalize_librespeed,
}


def normalize(kind: str, data: Any) -> RunResult:
    if not isinstance(data, dict):
        data = {}
    return NORMALIZERS[kind](data)


def parse_progress_text(raw: str) -> Optional[Dict[str, Any]]:
    """Parse a human-readable Ookla progress line such as ``Download: 93.2 Mbps``."""

    line = _WHITESPACE_RE.sub(" ", strip_ansi(raw)).strip()
    if not line:
        return None

    update: Dict[str, Any] = {}

    match = _DOWNLOAD_RE.search(line)
    if match:
        update["stage"] = STAGE_DOWNLOAD
        mbps = speed_to_mbps(match.group(1), match.group(2) or "Mbps")
        if mbps is not None:
            update["down_mbps"] = mbps

    match = _UPLOAD_RE.search(line)
    if match:
        update["stage"] = STAGE_UPLOAD
        mbps = speed_to_mbps(match.group(1), match.group(2) or "Mbps")
        if mbps is not None:
            update["up_mbps"] = mbps

    latency = _IDLE_LATENCY_RE.search(line) or _LATENCY_RE.search(line)
    if latency:
        update.setdefault("stage", STAGE_PING)
        ping = to_num(latency.group(1))
        if ping is not None:
            update["ping_ms"] = ping
        jitter = _JITTER_RE.search(line)
        if jitter:
            value = to_num(jitter.group(1))
            if value is not None:
                update["jitter_ms"] = value

    return update or None


def parse_progress_event(event: Any) -> List[Dict[str, Any]]:
    """Turn one ``--progress`` JSON event into partial updates."""

    if not isinstance(event, dict):
        return []

    updates: List[Dict[str, Any]] = []
    if event.get("type") == "ping" or event.get("ping") or event.get("latency"):
        updates.append(
            {"stage": STAGE_PING, "ping_ms": ookla_ping_ms(event), "jitter_ms": ookla_jitter_ms(event)}
        )
    if event.get("type") == "download" and event.get("download"):
        updates.append({"stage": STAGE_DOWNLOAD, "down_mbps": section_to_mbps(event["download"])})
    if event.get("type") == "upload" and event.get("upload"):
        updates.append({"stage": STAGE_UPLOAD, "up_mbps": section_to_mbps(event["upload"])})
    return updates


def parse_progress_line(raw: str) -> List[Dict[str, Any]]:
    line = strip_ansi(raw).strip()
    if not line:
        return []

    if line[0] in "{[":
        try:
            event = json.loads(line)
        except ValueError:
            pass
        else:
            return parse_progress_event(event)

    update = parse_progress_text(line)
    return [update] if update else []
