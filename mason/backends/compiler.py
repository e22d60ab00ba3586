"""
Compiler Backend

Narrow interface to the toolchain used by the scheduler:
- compile: build one module into its output directory
- link: link module object files and program sources into an executable

SwiftcBackend runs /usr/bin/swiftc as a subprocess. Tests substitute an
in-memory backend.
"""

from __future__ import annotations

import json
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_SWIFTC = "/usr/bin/swiftc"
DEFAULT_SDK_PATH = (
    "/Applications/Xcode.app/Contents/Developer/Platforms/iPhoneSimulator.platform"
    "/Developer/SDKs/iPhoneSimulator.sdk"
)
TOOLCHAIN_LIB = "/Applications/Xcode.app/Contents/Developer/Toolchains/XcodeDefault.xctoolchain/usr/lib/swift"
SIMULATOR_LIB = f"{TOOLCHAIN_LIB}/iphonesimulator"

OUTPUT_FILE_MAP = "output-file-map.json"

# Placeholder substituted with the module name in argument templates
MODULE_PLACEHOLDER = "{module}"


@dataclass
class CompileResult:
    """Outcome of one compiler or linker invocation."""
    success: bool
    return_code: int = 0
    output: str = ""


def module_artifacts(module_name: str) -> List[str]:
    """Artifacts a module compile produces, relative to the build root."""
    return [
        f"{module_name}/{module_name}.d",
        f"{module_name}/{module_name}.h",
        f"{module_name}/{module_name}.swiftmodule",
        f"{module_name}/{module_name}.emit-module.d",
        f"{module_name}/{module_name}.o",
        f"{module_name}/module.swiftdeps",
    ]


def object_file(build_dir: Path, module_name: str) -> Path:
    return build_dir / module_name / f"{module_name}.o"


def target_triple(arch: str, deployment_target: str) -> str:
    return f"{arch}-apple-ios{deployment_target}-simulator"


def module_argument_template(
    sdk_path: str,
    arch: str,
    deployment_target: str,
    swift_version: str,
) -> List[str]:
    """Per-module swiftc arguments; '{module}' is replaced with the module name."""
    return [
        "-sdk", sdk_path,
        "-target", target_triple(arch, deployment_target),
        "-emit-module",
        "-emit-module-path", ".",
        "-emit-dependencies",
        "-emit-objc-header",
        "-emit-objc-header-path", f"{MODULE_PLACEHOLDER}.h",
        "-module-name", MODULE_PLACEHOLDER,
        "-output-file-map", OUTPUT_FILE_MAP,
        "-parse-as-library",
        "-c",
        "-swift-version", str(swift_version),
        "-whole-module-optimization",
    ]


def link_argument_template(sdk_path: str, arch: str, deployment_target: str, swift_version: str) -> List[str]:
    """Arguments for the final executable link."""
    return [
        "-sdk", sdk_path,
        "-target", target_triple(arch, deployment_target),
        "-emit-executable",
        "-L", SIMULATOR_LIB,
        "-L", TOOLCHAIN_LIB,
        "-Xlinker", "-rpath", "-Xlinker", "@executable_path/Frameworks",
        "-Xlinker", "-rpath", "-Xlinker", SIMULATOR_LIB,
        "-F", f"{sdk_path}/System/Library/Frameworks",
        "-framework", "SwiftUI",
        "-framework", "Foundation",
        "-framework", "UIKit",
        "-framework", "CoreGraphics",
        "-framework", "CoreServices",
        "-swift-version", str(swift_version),
        "-Xlinker", "-no_objc_category_merging",
    ]


def expand_template(template: Sequence[str], module_name: str) -> List[str]:
    return [arg.replace(MODULE_PLACEHOLDER, module_name) for arg in template]


class CompilerBackend(ABC):
    """Toolchain collaborator used by module builds and the final link."""

    @abstractmethod
    def compile(
        self,
        module_name: str,
        source_files: Sequence[Path],
        include_dirs: Sequence[Path],
        compiler_args: Sequence[str],
        output_dir: Path,
    ) -> CompileResult:
        """Compile one module, producing module_artifacts() under output_dir."""

    @abstractmethod
    def link(
        self,
        object_files: Sequence[Path],
        main_sources: Sequence[Path],
        compiler_args: Sequence[str],
        output_path: Path,
    ) -> CompileResult:
        """Link object files and program sources into output_path."""


class SwiftcBackend(CompilerBackend):
    """Runs swiftc for module compiles and the final link."""

    def __init__(self, swiftc: str = DEFAULT_SWIFTC, timeout: Optional[int] = None):
        self.swiftc = swiftc
        self.timeout = timeout

    def _run(self, cmd: List[str], cwd: Optional[Path] = None) -> CompileResult:
        logger.debug(f"Executing compiler command:\n{' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(cwd) if cwd else None,
            )
        except subprocess.TimeoutExpired:
            return CompileResult(success=False, return_code=-1, output=f"Timed out after {self.timeout} seconds")
        except OSError as e:
            return CompileResult(success=False, return_code=-1, output=str(e))

        output = (result.stdout or "") + (result.stderr or "")
        if output:
            logger.debug(f"Compiler output:\n{output}")

        return CompileResult(success=result.returncode == 0, return_code=result.returncode, output=output)

    def write_output_file_map(self, module_name: str, output_dir: Path) -> Path:
        file_map = {
            "": {
                "object": f"{module_name}.o",
                "swift-dependencies": "module.swiftdeps",
            }
        }
        path = output_dir / OUTPUT_FILE_MAP
        path.write_text(json.dumps(file_map, indent=2), encoding="utf-8")
        return path

    def compile(
        self,
        module_name: str,
        source_files: Sequence[Path],
        include_dirs: Sequence[Path],
        compiler_args: Sequence[str],
        output_dir: Path,
    ) -> CompileResult:
        self.write_output_file_map(module_name, output_dir)

        cmd = [self.swiftc] + list(compiler_args)
        # Include paths are already part of compiler_args so they count in the fingerprint
        for include_dir in include_dirs:
            if str(include_dir) not in compiler_args:
                cmd += ["-I", str(include_dir)]
        cmd += [str(p) for p in source_files]

        return self._run(cmd, cwd=output_dir)

    def link(
        self,
        object_files: Sequence[Path],
        main_sources: Sequence[Path],
        compiler_args: Sequence[str],
        output_path: Path,
    ) -> CompileResult:
        cmd = [self.swiftc] + list(compiler_args) + ["-o", str(output_path)]
        cmd += [str(p) for p in object_files]
        cmd += [str(p) for p in main_sources]

        return self._run(cmd)
