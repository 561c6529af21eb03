"""Locate a speedtest executable (override, bundled Ookla, or installed CLIs)."""

from __future__ import annotations

import logging
import os
import platform
import shutil
import tarfile
import tempfile
import threading
import zipfile
from pathlib import Path
from typing import List, Optional

import requests

from ..config import AppConfig
from .models import RUNNER_LIBRESPEED, RUNNER_OOKLA, RUNNER_SPEEDTEST_CLI, RunnerInfo
from .process import run_command

LOGGER = logging.getLogger(__name__)

VERSION_PROBE_TIMEOUT_S = 5.0
DOWNLOAD_TIMEOUT_S = 120


def _is_windows() -> bool:
    return platform.system().lower().startswith("win")


def bundled_arch_dirs(machine: Optional[str] = None) -> List[str]:
    """Directory names under ``bin/`` that may hold a binary for this CPU."""

    arch = (machine or platform.machine()).lower()
    if arch in ("x86_64", "amd64"):
        return ["x86-64"]
    if arch in ("i386", "i686", "x86"):
        return ["i386"]
    if arch in ("aarch64", "arm64"):
        return ["aarch64"]
    if arch.startswith("arm"):
        return ["armhf", "armel"]
    return [arch]


def is_executable(path: Path) -> bool:
    if _is_windows():
        return path.exists()
    return path.is_file() and os.access(path, os.X_OK)


class RunnerResolver:
    """Decides which runner family to use and remembers the answer."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._lock = threading.Lock()
        self._resolved: Optional[RunnerInfo] = None

    @property
    def resolved(self) -> Optional[RunnerInfo]:
        return self._resolved

    def resolve(self) -> Optional[RunnerInfo]:
        with self._lock:
            if self._resolved is None:
                self._resolved = self._detect()
                if self._resolved:
                    LOGGER.info("Using %s runner at %s", self._resolved.kind, self._resolved.binary)
                else:
                    LOGGER.debug("No speedtest runner available yet")
            return self._resolved

    def _detect(self) -> Optional[RunnerInfo]:
        override = (self.config.speedtest.binary or "").strip()
        if override:
            return RunnerInfo(RUNNER_OOKLA, override)

        bundled = self.bundled_binary()
        if bundled is not None:
            return RunnerInfo(RUNNER_OOKLA, str(bundled))

        if self._which("speedtest") and not self._is_python_speedtest("speedtest"):
            return RunnerInfo(RUNNER_OOKLA, "speedtest")

        if self._which("speedtest-cli"):
            return RunnerInfo(RUNNER_SPEEDTEST_CLI, "speedtest-cli")

        if self._which("librespeed-cli"):
            return RunnerInfo(RUNNER_LIBRESPEED, "librespeed-cli")

        return None

    def find_fallback(self, failed_kind: str) -> Optional[RunnerInfo]:
        """Another runner family installed on the host, if any."""

        if failed_kind != RUNNER_SPEEDTEST_CLI:
            if self._which("speedtest-cli"):
                return RunnerInfo(RUNNER_SPEEDTEST_CLI, "speedtest-cli")
            if self._which("speedtest") and self._is_python_speedtest("speedtest"):
                return RunnerInfo(RUNNER_SPEEDTEST_CLI, "speedtest")

        if failed_kind != RUNNER_LIBRESPEED and self._which("librespeed-cli"):
            return RunnerInfo(RUNNER_LIBRESPEED, "librespeed-cli")

        return None

    def bundled_candidates(self) -> List[Path]:
        base = self.config.paths.bin_dir
        if _is_windows():
            return [base / "win" / f"{self.config.ookla.binary_name}.exe"]
        return [base / arch / self.config.ookla.binary_name for arch in bundled_arch_dirs()]

    def bundled_binary(self) -> Optional[Path]:
        candidates = self.bundled_candidates()
        for path in candidates:
            if self._usable(path):
                return path

        if self.config.ookla.auto_download:
            try:
                return install_ookla_binary(self.config, candidates[0])
            except (requests.RequestException, OSError, RuntimeError, ValueError) as exc:
                LOGGER.warning("Could not download bundled Ookla CLI: %s", exc)
        return None

    @staticmethod
    def _usable(path: Path) -> bool:
        if not path.exists():
            return False
        if is_executable(path):
            return True
        try:
            path.chmod(0o755)
        except OSError as exc:
            LOGGER.debug("chmod failed for %s: %s", path, exc)
            return False
        return is_executable(path)

    def _which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def _is_python_speedtest(self, binary: str) -> bool:
        probe = run_command(binary, ["--version"], timeout=VERSION_PROBE_TIMEOUT_S)
        version = (probe.stdout or probe.stderr or "").lower()
        return "speedtest-cli" in version


def install_ookla_binary(config: AppConfig, destination: Path) -> Path:
    """Download the Ookla CLI for this platform into ``destination``."""

    platform_key = config.ookla_platform_key
    url = config.ookla.urls.get(platform_key)
    if not url:
        raise ValueError(
            f"No Ookla download URL configured for platform {platform_key}. "
            f"Configured platforms: {list(config.ookla.urls.keys())}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _download_ookla_artifact(url)
    try:
        _install_ookla_artifact(temp_path, url, destination)
    finally:
        if temp_path.exists():
            temp_path.unlink()

    destination.chmod(0o755)
    LOGGER.info("Installed Ookla CLI at %s", destination)
    return destination


def _download_ookla_artifact(url: str) -> Path:
    LOGGER.info("Downloading Ookla CLI from %s", url)
    response = requests.get(url, timeout=DOWNLOAD_TIMEOUT_S)
    response.raise_for_status()

    with tempfile.NamedTemporaryFile(delete=False) as temp_file:
        temp_file.write(response.content)
        return Path(temp_file.name)


def _install_ookla_artifact(temp_path: Path, url: str, destination: Path) -> None:
    if url.endswith(".exe"):
        shutil.move(str(temp_path), destination)
        return

    if url.endswith(".zip"):
        with zipfile.ZipFile(temp_path, "r") as archive:
            member = next((m for m in archive.namelist() if m.endswith("speedtest.exe")), None)
            if not member:
                raise RuntimeError("zip archive did not contain speedtest.exe binary")
            destination.write_bytes(archive.read(member))
        return

    if url.endswith((".tgz", ".tar.gz")):
        with tarfile.open(temp_path, "r:gz") as archive:
            member = next(
                (m for m in archive.getmembers() if m.isfile() and Path(m.name).name == "speedtest"),
                None,
            )
            if member is None:
                raise RuntimeError("tarball did not contain speedtest binary")
            extracted = archive.extractfile(member)
            if extracted is None:
                raise RuntimeError("could not read speedtest binary from tarball")
            destination.write_bytes(extracted.read())
        return

    raise RuntimeError(f"Unknown Ookla download artifact: {url}")
