"""Run an external command with a hard timeout while streaming its output."""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Callable, Optional, Sequence, Tuple

LOGGER = logging.getLogger(__name__)

SPAWN_ERROR_EXIT_CODE = 127
# Time allowed for the pipes to drain once the child has been killed
KILL_GRACE_S = 2.0
POLL_INTERVAL_S = 0.25

LineCallback = Callable[[str], None]


@dataclass(frozen=True)
class ProcessResult:
    exit_code: Optional[int]
    stdout: str
    stderr: str
    killed: bool = False
    spawn_error: bool = False

    @property
    def combined_output(self) -> str:
        return (self.stderr or self.stdout or "").strip()


def _pump(stream: IO[str], name: str, sink: "queue.Queue[Tuple[str, Optional[str]]]") -> None:
    try:
        for line in iter(stream.readline, ""):
            sink.put((name, line))
    except (OSError, ValueError) as exc:
        LOGGER.debug("Stopped reading %s: %s", name, exc)
    finally:
        sink.put((name, None))


def run_command(
    cmd: str,
    args: Sequence[str] = (),
    timeout: float = 120.0,
    on_line: Optional[LineCallback] = None,
) -> ProcessResult:
    """Run ``cmd`` with ``args`` and return its outcome as data.

    Output lines from both streams are handed to ``on_line`` on the calling
    thread, in the order they were read. A child still running after
    ``timeout`` seconds is killed and reported with ``killed=True``; a child
    that cannot be started is reported with ``spawn_error=True``.
    """

    command = [cmd, *args]
    LOGGER.debug("Running command: %s", " ".join(command))
    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except (OSError, ValueError) as exc:
        LOGGER.debug("Failed to spawn %s: %s", cmd, exc)
        return ProcessResult(
            exit_code=SPAWN_ERROR_EXIT_CODE,
            stdout="",
            stderr=str(exc),
            spawn_error=True,
        )

    lines: "queue.Queue[Tuple[str, Optional[str]]]" = queue.Queue()
    readers = [
        threading.Thread(target=_pump, args=(process.stdout, "stdout", lines), daemon=True),
        threading.Thread(target=_pump, args=(process.stderr, "stderr", lines), daemon=True),
    ]
    for reader in readers:
        reader.start()

    captured: dict = {"stdout": [], "stderr": []}
    open_streams = len(readers)
    killed = False
    deadline = time.monotonic() + timeout

    while open_streams:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            if killed:
                LOGGER.warning("Output of %s still open after kill, abandoning readers", cmd)
                break
            LOGGER.warning("Command %s exceeded %.1fs timeout, killing it", cmd, timeout)
            process.kill()
            killed = True
            deadline = time.monotonic() + KILL_GRACE_S
            continue

        try:
            name, line = lines.get(timeout=min(remaining, POLL_INTERVAL_S))
        except queue.Empty:
            continue

        if line is None:
            open_streams -= 1
            continue

        captured[name].append(line)
        if on_line is not None:
            try:
                on_line(line.rstrip("\r\n"))
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Output callback failed for %s", cmd)

    try:
        exit_code: Optional[int] = process.wait(timeout=max(0.0, deadline - time.monotonic()) + KILL_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        killed = True
        exit_code = process.wait()

    return ProcessResult(
        exit_code=exit_code,
        stdout="".join(captured["stdout"]),
        stderr="".join(captured["stderr"]),
        killed=killed,
    )


