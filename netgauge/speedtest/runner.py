"""Execute a resolved speedtest runner and normalize what it prints."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import SpeedtestConfig
from .errors import (
    RateLimitError,
    RunnerExitError,
    RunnerNotFoundError,
    RunnerOutputError,
    RunnerSpawnError,
    RunnerTimeoutError,
    SpeedtestError,
)
from .models import RUNNER_LIBRESPEED, RUNNER_OOKLA, RUNNER_SPEEDTEST_CLI, RunnerInfo, RunResult
from .normalize import normalize, parse_progress_line
from .process import ProcessResult, run_command
from .ratelimit import OOKLA_RATE_LIMIT_EXIT_CODE, is_rate_limited
from .resolver import RunnerResolver
from .salvage import ParseOutcome, parse_json_output, score_candidate

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]

OOKLA_ARGS = ["--accept-license", "--accept-gdpr", "-f", "json", "--progress", "yes"]
RUNNER_ARGS = {
    RUNNER_SPEEDTEST_CLI: ["--secure", "--json"],
    RUNNER_LIBRESPEED: ["--json"],
}
# score_candidate() value above which stdout alone is trusted as the final result
FINAL_RESULT_SCORE = 8
ERROR_EXCERPT_CHARS = 240


def build_args(runner: RunnerInfo, config: SpeedtestConfig) -> List[str]:
    if runner.kind != RUNNER_OOKLA:
        return list(RUNNER_ARGS[runner.kind])
    args = list(OOKLA_ARGS)
    if config.server_id:
        args += ["--server-id", str(config.server_id)]
    args += list(config.extra_args)
    return args


def _looks_final(outcome: ParseOutcome) -> bool:
    value = outcome.value
    if not outcome.ok or not isinstance(value, dict):
        return False
    return (
        value.get("type") == "result"
        or bool(value.get("ping") and value.get("download") and value.get("upload"))
        or score_candidate(value) >= FINAL_RESULT_SCORE
    )


def _parse_output(runner: RunnerInfo, result: ProcessResult) -> Any:
    outcome = parse_json_output(result.stdout)
    if runner.kind == RUNNER_OOKLA and not _looks_final(outcome):
        # Some builds print the final document on stderr next to the progress lines
        combined = parse_json_output(f"{result.stdout}\n{result.stderr}")
        if combined.ok:
            outcome = combined

    if not outcome.ok:
        message = f"{runner.kind} {outcome.error}: {outcome.message} (len={outcome.length})"
        if runner.kind != RUNNER_OOKLA:
            message += f" stderr={result.stderr.strip()[:200]}"
        raise RunnerOutputError(message, head=outcome.head, tail=outcome.tail)

    if outcome.salvaged:
        LOGGER.debug("Salvaged %s result from noisy output", runner.kind)
    return outcome.value


def execute_runner(
    runner: RunnerInfo,
    config: SpeedtestConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> RunResult:
    """Run one attempt with ``runner``; failures raise ``SpeedtestError`` subclasses."""

    on_line = None
    if runner.kind == RUNNER_OOKLA and on_progress is not None:

        def on_line(line: str) -> None:
            for update in parse_progress_line(line):
                on_progress(update)

    LOGGER.info("Starting %s speedtest (%s)", runner.kind, runner.binary)
    result = run_command(runner.binary, build_args(runner, config), timeout=config.timeout_s, on_line=on_line)

    if result.killed:
        raise RunnerTimeoutError(f"{runner.kind} timeout after {config.timeout_ms}ms")
    if result.spawn_error:
        raise RunnerSpawnError(f"{runner.kind} spawn failed: {result.stderr}")
    if result.exit_code != 0:
        output = result.combined_output
        rate_limited = is_rate_limited(result.exit_code, output)
        raise RunnerExitError(
            f"{runner.kind} exit {result.exit_code}: {output[-ERROR_EXCERPT_CHARS:]}",
            exit_code=result.exit_code,
            rate_limited=rate_limited,
            output=output,
        )

    return normalize(runner.kind, _parse_output(runner, result))


def run_speedtest(
    resolver: RunnerResolver,
    runner: Optional[RunnerInfo],
    config: SpeedtestConfig,
    on_progress: Optional[ProgressCallback] = None,
) -> RunResult:
    """Run ``runner``, falling back once to another installed family on failure.

    A rate-limited primary whose fallback succeeds returns the fallback result
    with ``primary_rate_limited`` set. Without a usable fallback, a rate-limited
    primary raises ``RateLimitError`` and every other failure re-raises the
    primary's error. Timeouts are never retried.
    """

    if runner is None:
        raise RunnerNotFoundError()

    try:
        return execute_runner(runner, config, on_progress)
    except RunnerTimeoutError:
        raise
    except SpeedtestError as primary_error:
        rate_limited = isinstance(primary_error, RunnerExitError) and primary_error.rate_limited
        fallback = resolver.find_fallback(runner.kind)
        if fallback is not None:
            LOGGER.warning("%s failed (%s), falling back to %s", runner.kind, primary_error, fallback.kind)
            try:
                result = execute_runner(fallback, config, on_progress)
            except SpeedtestError as fallback_error:
                LOGGER.warning("Fallback %s failed as well: %s", fallback.kind, fallback_error)
            else:
                return _tag_fallback(result, runner, primary_error, rate_limited)

        if isinstance(primary_error, RunnerExitError) and rate_limited:
            raise RateLimitError(
                f"rate_limited: {primary_error.output[:ERROR_EXCERPT_CHARS] or 'Limit reached'}",
                code=primary_error.exit_code or OOKLA_RATE_LIMIT_EXIT_CODE,
            ) from primary_error
        raise primary_error


def _tag_fallback(
    result: RunResult, primary: RunnerInfo, error: SpeedtestError, rate_limited: bool
) -> RunResult:
    note = f"{primary.kind}_rate_limited_fallback" if rate_limited else f"{primary.kind}_failed_fallback"
    return dataclasses.replace(
        result,
        note=note,
        primary_exit=error.exit_code if isinstance(error, RunnerExitError) else None,
        primary_rate_limited=rate_limited,
    )
