"""Configuration loading helpers for the netgauge collector."""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml


@dataclass
class PathsConfig:
    data_dir: Path
    logs_dir: Path
    bin_dir: Path


@dataclass
class OoklaConfig:
    auto_download: bool = False
    binary_name: str = "speedtest"
    urls: Dict[str, str] = field(default_factory=dict)


@dataclass
class SpeedtestConfig:
    binary: Optional[str] = None
    timeout_ms: int = 120_000
    interval_min: int = 0
    state_file: Optional[str] = None
    run_on_start: bool = True
    server_id: Optional[str] = None
    extra_args: List[str] = field(default_factory=list)

    @property
    def timeout_s(self) -> float:
        return max(1, int(self.timeout_ms)) / 1000


@dataclass
class WebConfig:
    host: str = "0.0.0.0"
    port: int = 3012
    reverse_proxy_headers: bool = False


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class AppConfig:
    root_dir: Path
    paths: PathsConfig
    ookla: OoklaConfig
    speedtest: SpeedtestConfig
    web: WebConfig
    logging: LoggingConfig

    @property
    def ookla_platform_key(self) -> str:
        system = platform.system().lower()
        machine = platform.machine().lower()
        # Normalize machine architecture names
        if machine in ("amd64", "x86_64"):
            machine = "x86_64"
        elif machine in ("arm64", "aarch64"):
            machine = "aarch64"
        return f"{system}_{machine}"

    @property
    def state_path(self) -> Path:
        if self.speedtest.state_file:
            return (self.root_dir / self.speedtest.state_file).resolve()
        return self.paths.data_dir / "speedtest-state.json"


def _as_path(base: Path, maybe_path: Optional[str]) -> Path:
    if not maybe_path:
        raise ValueError("Path configuration entries cannot be empty")
    path = (base / maybe_path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _env_flag(raw: str) -> bool:
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_int(environ: Mapping[str, str], name: str) -> int:
    raw = environ[name].strip()
    try:
        return int(float(raw))
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from exc


def apply_env_overrides(data: dict, environ: Mapping[str, str]) -> dict:
    """Overlay the SPEEDTEST_* style environment variables onto raw config data."""

    speedtest = dict(data.get("speedtest") or {})
    web = dict(data.get("web") or {})
    logging_data = dict(data.get("logging") or {})

    binary = environ.get("SPEEDTEST_BIN", "").strip()
    if binary:
        speedtest["binary"] = binary
    if environ.get("SPEEDTEST_TIMEOUT_MS", "").strip():
        speedtest["timeout_ms"] = _env_int(environ, "SPEEDTEST_TIMEOUT_MS")
    if environ.get("SPEEDTEST_INTERVAL_MIN", "").strip():
        speedtest["interval_min"] = _env_int(environ, "SPEEDTEST_INTERVAL_MIN")
    if environ.get("SPEEDTEST_STATE_FILE", "").strip():
        speedtest["state_file"] = environ["SPEEDTEST_STATE_FILE"].strip()
    if environ.get("SPEEDTEST_RUN_ON_START", "").strip():
        speedtest["run_on_start"] = _env_flag(environ["SPEEDTEST_RUN_ON_START"])
    if environ.get("PORT", "").strip():
        web["port"] = _env_int(environ, "PORT")
    if environ.get("LOG_LEVEL", "").strip():
        logging_data["level"] = environ["LOG_LEVEL"].strip()

    merged = dict(data)
    merged["speedtest"] = speedtest
    merged["web"] = web
    merged["logging"] = logging_data
    return merged


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load application configuration from a YAML file and the environment.

    An explicit ``path`` must exist. Without one, ``config.yaml`` in the
    working directory is used when present and defaults apply otherwise.
    """

    root_dir = Path(path).resolve().parent if path else Path.cwd()
    source_path = Path(path) if path else root_dir / "config.yaml"
    if path and not source_path.exists():
        raise FileNotFoundError(f"Missing configuration file at {source_path}")

    data: dict = {}
    if source_path.exists():
        with source_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}

    data = apply_env_overrides(data, os.environ if environ is None else environ)

    paths_data = data.get("paths", {}) or {}
    paths = PathsConfig(
        data_dir=_as_path(root_dir, paths_data.get("data_dir", "data")),
        logs_dir=_as_path(root_dir, paths_data.get("logs_dir", "logs")),
        bin_dir=_as_path(root_dir, paths_data.get("bin_dir", "bin")),
    )

    config = AppConfig(
        root_dir=root_dir,
        paths=paths,
        ookla=OoklaConfig(**(data.get("ookla") or {})),
        speedtest=SpeedtestConfig(**data["speedtest"]),
        web=WebConfig(**data["web"]),
        logging=LoggingConfig(**data["logging"]),
    )

    return config
