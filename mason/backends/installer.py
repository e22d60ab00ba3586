"""
Artifact Installer

Installs a finished app bundle and launches it. SimctlInstaller drives the
booted iOS simulator through `xcrun simctl`.
"""

from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from mason.errors import InstallationFailed, LaunchFailed

logger = logging.getLogger(__name__)


class ArtifactInstaller(ABC):
    """Installs and launches a built bundle."""

    @abstractmethod
    def install(self, bundle_path: Path, bundle_id: str) -> None:
        """Raises InstallationFailed on error."""

    @abstractmethod
    def launch(self, bundle_id: str) -> None:
        """Raises LaunchFailed on error."""


class SimctlInstaller(ArtifactInstaller):
    def __init__(self, device: str = "booted", xcrun: str = "/usr/bin/xcrun", timeout: int = 120):
        self.device = device
        self.xcrun = xcrun
        self.timeout = timeout

    def _simctl(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = [self.xcrun, "simctl"] + args
        logger.debug(f"Command: {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)

    def install(self, bundle_path: Path, bundle_id: str) -> None:
        try:
            result = self._simctl(["install", self.device, str(bundle_path)])
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InstallationFailed(str(e)) from e

        if result.returncode != 0:
            raise InstallationFailed(result.stderr.strip() or f"Failed to install {bundle_id} to simulator")

        logger.info(f"Successfully installed {bundle_id} to simulator")

    def launch(self, bundle_id: str) -> None:
        try:
            result = self._simctl(["launch", self.device, bundle_id])
        except (OSError, subprocess.TimeoutExpired) as e:
            raise LaunchFailed(str(e)) from e

        if result.returncode != 0:
            raise LaunchFailed(result.stderr.strip() or f"Failed to launch {bundle_id} in simulator")

        logger.info(f"Successfully launched {bundle_id} in simulator")
