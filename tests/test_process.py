"""Tests for the process runner, using the running interpreter as the child."""
from __future__ import annotations

import sys
import time

import pytest

from netgauge.speedtest.process import ProcessResult, run_command

pytestmark = pytest.mark.subprocess


def python(code: str):
    return sys.executable, ["-c", code]


class TestRunCommand:
    def test_captures_both_streams(self):
        cmd, args = python("import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)")

        result = run_command(cmd, args, timeout=20)

        assert result.exit_code == 3
        assert result.stdout == "out\n"
        assert result.stderr == "err\n"
        assert not result.killed
        assert not result.spawn_error

    def test_lines_streamed_in_order(self):
        cmd, args = python("import sys\nfor i in range(3):\n    print('line', i, flush=True)")
        seen = []

        result = run_command(cmd, args, timeout=20, on_line=seen.append)

        assert result.exit_code == 0
        assert seen == ["line 0", "line 1", "line 2"]

    def test_callback_errors_do_not_abort_run(self):
        cmd, args = python("print('a'); print('b')")

        def explode(_line):
            raise ValueError("boom")

        result = run_command(cmd, args, timeout=20, on_line=explode)

        assert result.exit_code == 0
        assert result.stdout == "a\nb\n"

    def test_timeout_kills_child(self):
        cmd, args = python("import time; print('started', flush=True); time.sleep(60)")
        started = time.monotonic()

        result = run_command(cmd, args, timeout=2)

        assert result.killed
        assert not result.spawn_error
        assert result.exit_code != 0
        assert "started" in result.stdout
        assert time.monotonic() - started < 15

    def test_missing_executable(self):
        result = run_command("/nonexistent/netgauge-speedtest-binary", ["--version"], timeout=5)

        assert result.spawn_error
        assert result.exit_code == 127
        assert result.stderr
        assert not result.killed


class TestProcessResult:
    def test_combined_output_prefers_stderr(self):
        assert ProcessResult(1, " out ", " err ").combined_output == "err"
        assert ProcessResult(1, " out ", "").combined_output == "out"
