"""
App Bundle Creation

Turns the linked executable into a signed <App>.app bundle:
- moves the binary into the bundle and marks it executable
- writes Info.plist from the app configuration
- signs the bundle with an ad-hoc codesign identity
"""

from __future__ import annotations

import logging
import os
import plistlib
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Optional

from mason.config import AppConfig
from mason.errors import SigningFailed

logger = logging.getLogger(__name__)

CODESIGN = "/usr/bin/codesign"


def info_plist(app: AppConfig) -> Dict[str, Any]:
    """Info.plist contents for the app bundle."""
    info = app.plist.info_plist
    plist: Dict[str, Any] = {
        "CFBundleDevelopmentRegion": "en",
        "CFBundleExecutable": app.app_name,
        "CFBundleIdentifier": app.bundle_id,
        "CFBundleInfoDictionaryVersion": "6.0",
        "CFBundleName": app.app_name,
        "CFBundlePackageType": "APPL",
        "CFBundleShortVersionString": app.plist.version,
        "CFBundleVersion": app.plist.build_number,
        "MinimumOSVersion": app.deployment_target,
        "DTPlatformName": "iphonesimulator",
        "DTPlatformVersion": app.deployment_target,
        "DTSDKName": f"iphonesimulator{app.deployment_target}",
        "UIRequiredDeviceCapabilities": list(info.required_device_capabilities),
        "UISupportedInterfaceOrientations": list(info.supported_orientations),
    }

    if info.launch_screen:
        plist["UILaunchScreen"] = {}

    plist.update(info.custom_entries)
    return plist


class AppBundler:
    """Creates, and optionally signs, the app bundle for a linked binary."""

    def __init__(self, sign: bool = True, codesign: str = CODESIGN):
        self.sign = sign
        self.codesign = codesign

    def create_bundle(self, binary_path: Path, app: AppConfig, resources_dir: Optional[Path] = None) -> Path:
        """
        Move binary_path into <build>/<App>.app and write Info.plist.

        The contents of resources_dir, when it exists, are copied into the
        bundle root.

        Returns:
            Path to the bundle directory
        """
        bundle_path = binary_path.parent / f"{app.app_name}.app"
        if bundle_path.exists():
            shutil.rmtree(bundle_path)
        bundle_path.mkdir(parents=True)

        executable = bundle_path / app.app_name
        shutil.move(str(binary_path), str(executable))
        os.chmod(executable, 0o755)

        if resources_dir is not None and resources_dir.is_dir():
            self.copy_resources(resources_dir, bundle_path)

        with open(bundle_path / "Info.plist", "wb") as f:
            plistlib.dump(info_plist(app), f, fmt=plistlib.FMT_XML)

        if self.sign:
            self.sign_bundle(bundle_path)

        logger.info(f"Bundle created: {bundle_path}")
        return bundle_path

    def copy_resources(self, resources_dir: Path, bundle_path: Path) -> None:
        for item in sorted(resources_dir.iterdir()):
            if item.name.startswith("."):
                continue
            target = bundle_path / item.name
            if item.is_dir():
                shutil.copytree(item, target, dirs_exist_ok=True)
            else:
                shutil.copy2(item, target)
            logger.debug(f"Copied resource {item.name}")

    def sign_bundle(self, bundle_path: Path) -> None:
        cmd = [
            self.codesign,
            "--force",
            "--sign", "-",
            "--preserve-metadata=identifier,entitlements,flags",
            "--generate-entitlement-der",
            str(bundle_path),
        ]
        logger.debug(f"Command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise SigningFailed(str(e)) from e

        if result.returncode != 0:
            raise SigningFailed((result.stdout + result.stderr).strip() or "Unknown error")
