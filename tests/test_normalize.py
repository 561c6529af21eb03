"""Tests for mapping runner output onto RunResult and parsing progress."""
from __future__ import annotations

import json

import pytest

from netgauge.speedtest.normalize import (
    normalize,
    parse_progress_line,
    section_to_mbps,
    speed_to_mbps,
)


class TestOokla:
    def test_bandwidth_bytes_per_second(self):
        result = normalize(
            "ookla",
            {
                "ping": {"latency": 12.5, "jitter": 1.5},
                "download": {"bandwidth": 12_500_000},
                "upload": {"bandwidth": 2_500_000},
            },
        )

        assert result.runner == "ookla"
        assert result.ping_ms == 12.5
        assert result.jitter_ms == 1.5
        assert result.down_mbps == pytest.approx(100.0)
        assert result.up_mbps == pytest.approx(20.0)

    def test_flat_latency_fields(self):
        result = normalize("ookla", {"latency": 8, "jitter": 0.4})

        assert result.ping_ms == 8
        assert result.jitter_ms == 0.4
        assert result.down_mbps is None

    def test_numeric_ping(self):
        assert normalize("ookla", {"ping": "7.5"}).ping_ms == 7.5

    def test_bits_per_second_fallback(self):
        assert section_to_mbps({"bandwidth_bps": 50_000_000}) == pytest.approx(50.0)

    def test_bytes_elapsed_fallback(self):
        # 12.5 MB in 1000 ms -> 100 Mbps
        assert section_to_mbps({"bytes": 12_500_000, "elapsed": 1000}) == pytest.approx(100.0)

    def test_zero_elapsed_is_unknown(self):
        assert section_to_mbps({"bytes": 10, "elapsed": 0}) is None

    def test_not_a_section(self):
        assert section_to_mbps(42) is None


class TestSpeedtestCli:
    def test_bits_per_second(self):
        result = normalize("speedtest-cli", {"ping": 15.2, "download": 812_000_000, "upload": 55_300_000})

        assert result.runner == "speedtest-cli"
        assert result.ping_ms == 15.2
        assert result.jitter_ms is None
        assert result.down_mbps == pytest.approx(812.0)
        assert result.up_mbps == pytest.approx(55.3)

    def test_non_finite_values_dropped(self):
        result = normalize("speedtest-cli", {"ping": "n/a", "download": float("nan"), "upload": None})

        assert result.ping_ms is None
        assert result.down_mbps is None
        assert result.up_mbps is None


class TestLibrespeed:
    def test_flat_fields(self):
        result = normalize("librespeed-cli", {"ping": 9.1, "jitter": 2.2, "download": 300.5, "upload": 40.2})

        assert (result.ping_ms, result.jitter_ms, result.down_mbps, result.up_mbps) == (9.1, 2.2, 300.5, 40.2)

    def test_legacy_field_names(self):
        result = normalize("librespeed-cli", {"latency": 4, "download_mbps": 10, "upload_mbps": 2})

        assert (result.ping_ms, result.down_mbps, result.up_mbps) == (4, 10, 2)

    def test_non_dict_payload(self):
        assert normalize("librespeed-cli", ["x"]).down_mbps is None


class TestProgressLines:
    def test_download_text(self):
        assert parse_progress_line("    Download:   123.4 Mbps (data used: 10 MB)") == [
            {"stage": "download", "down_mbps": 123.4}
        ]

    def test_upload_with_ansi_codes(self):
        assert parse_progress_line("\x1b[32mUpload:\x1b[0m 12.5 Mbps") == [{"stage": "upload", "up_mbps": 12.5}]

    def test_idle_latency_with_jitter(self):
        updates = parse_progress_line("Idle Latency:    12.30 ms   (jitter: 1.20ms, low: 11.0ms, high: 14.0ms)")

        assert updates == [{"stage": "ping", "ping_ms": 12.3, "jitter_ms": 1.2}]

    def test_unit_conversion(self):
        assert parse_progress_line("Download: 1.5 Gbps") == [{"stage": "download", "down_mbps": 1500.0}]
        assert speed_to_mbps(10, "MB/s") == 80
        assert speed_to_mbps(500, "kbps") == 0.5
        assert speed_to_mbps(3, "furlongs") == 3

    def test_json_ping_event(self):
        line = json.dumps({"type": "ping", "ping": {"latency": 10.1, "jitter": 0.7, "progress": 0.4}})

        assert parse_progress_line(line) == [{"stage": "ping", "ping_ms": 10.1, "jitter_ms": 0.7}]

    def test_json_download_event(self):
        line = json.dumps({"type": "download", "download": {"bandwidth": 1_250_000, "progress": 0.2}})

        updates = parse_progress_line(line)

        assert updates == [{"stage": "download", "down_mbps": pytest.approx(10.0)}]

    def test_json_without_progress_fields(self):
        assert parse_progress_line(json.dumps({"type": "testStart"})) == []

    def test_noise_lines(self):
        assert parse_progress_line("") == []
        assert parse_progress_line("   Speedtest by Ookla") == []
        assert parse_progress_line("{broken json") == []
