"""
Module Build Operation

One unit of scheduled work: build a single module, or restore it from the
module cache when its fingerprint is unchanged.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from mason.backends.compiler import CompilerBackend, expand_template, module_artifacts
from mason.cache.fingerprints import ModuleKey, compute_module_key
from mason.cache.store import ModuleCache
from mason.config import BuildSettings
from mason.errors import CompilationFailed
from mason.pipeline.tracking import BuildTimer

logger = logging.getLogger(__name__)

SOURCES_DIR = "Sources"


class ModuleStatus(Enum):
    """Outcome of a module build."""
    PENDING = "pending"
    BUILT = "built"
    CACHED = "cached"
    FAILED = "failed"


@dataclass
class ModuleBuildResult:
    """Result of one ModuleBuildOperation."""
    module_name: str
    status: ModuleStatus = ModuleStatus.PENDING
    key: Optional[ModuleKey] = None
    duration_seconds: float = 0.0
    error: str = ""


class ModuleHashes:
    """Thread-safe record of each built module's fingerprint digest."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hashes: Dict[str, str] = {}

    def record(self, module_name: str, digest: str) -> None:
        with self._lock:
            self._hashes[module_name] = digest

    def get(self, module_name: str) -> Optional[str]:
        with self._lock:
            return self._hashes.get(module_name)

    def for_modules(self, module_names: Sequence[str]) -> Dict[str, str]:
        """Recorded hashes of the given modules; unbuilt modules are omitted."""
        with self._lock:
            return {name: self._hashes[name] for name in module_names if name in self._hashes}

    def clear(self) -> None:
        with self._lock:
            self._hashes.clear()


def find_source_files(directory: Path, suffix: str = ".swift", module_name: Optional[str] = None) -> List[Path]:
    """
    Enumerate source files under directory, skipping hidden files and dirs.

    Raises:
        CompilationFailed: if no source files are found
    """
    logger.info(f"Finding source files in directory: {directory}")

    sources: List[Path] = []
    if directory.is_dir():
        for path in directory.rglob(f"*{suffix}"):
            relative = path.relative_to(directory)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.is_file():
                sources.append(path)

    logger.debug(f"Found source files: {[str(p) for p in sources]}")

    if not sources:
        raise CompilationFailed(module_name or directory.name, f"No source files found in {directory}")

    return sorted(sources)


class ModuleBuildOperation:
    """
    Builds one module into <build_dir>/<module>.

    The fingerprint covers the module's sources, the recorded hashes of its
    direct dependencies and the full compiler argument list (including the
    -I paths of those dependencies).
    """

    def __init__(
        self,
        module_name: str,
        dependencies: Sequence[str],
        settings: BuildSettings,
        backend: CompilerBackend,
        cache: Optional[ModuleCache],
        hashes: ModuleHashes,
        timer: Optional[BuildTimer] = None,
    ):
        self.module_name = module_name
        self.dependencies = list(dependencies)
        self.settings = settings
        self.backend = backend
        self.cache = cache
        self.hashes = hashes
        self.timer = timer

    @property
    def module_source_dir(self) -> Path:
        return self.settings.source_dir / self.module_name / SOURCES_DIR

    @property
    def module_build_dir(self) -> Path:
        return self.settings.build_dir / self.module_name

    def include_dirs(self) -> List[Path]:
        return [self.settings.build_dir / dependency for dependency in self.dependencies]

    def compiler_args(self) -> List[str]:
        args = expand_template(self.settings.module_args, self.module_name)
        for include_dir in self.include_dirs():
            args += ["-I", str(include_dir)]
        return args

    def execute(self) -> ModuleBuildResult:
        phase = f"Module: {self.module_name}"
        if self.timer:
            self.timer.start(phase)
        try:
            return self.build()
        finally:
            if self.timer:
                self.timer.end(phase)

    def build(self) -> ModuleBuildResult:
        """
        Build or restore the module.

        Raises:
            CompilationFailed: no sources, or the backend reported failure
        """
        started = time.perf_counter()
        result = ModuleBuildResult(module_name=self.module_name)

        logger.info(f"Building module at path: {self.module_source_dir}")
        self.module_build_dir.mkdir(parents=True, exist_ok=True)

        sources = find_source_files(self.module_source_dir, self.settings.source_suffix, self.module_name)
        args = self.compiler_args()

        dependency_hashes = self.hashes.for_modules(self.dependencies)
        missing = [dep for dep in self.dependencies if dep not in dependency_hashes]
        if missing:
            logger.debug(f"No recorded hash for dependencies of {self.module_name}: {missing}")

        cache = self.cache
        if cache is not None:
            key = cache.compute_key(self.module_name, sources, dependency_hashes, args)
        else:
            key = compute_module_key(self.module_name, sources, dependency_hashes, args)
        result.key = key

        # Clean builds skip the lookup but still refresh the cache entry
        if cache is not None and self.settings.use_cache and cache.has_cached_module(key):
            logger.info(f"Using cached version of module {self.module_name}")
            cache.restore_module(key, self.settings.build_dir)
            self.hashes.record(self.module_name, key.digest)
            result.status = ModuleStatus.CACHED
            result.duration_seconds = time.perf_counter() - started
            return result

        compiled = self.backend.compile(
            self.module_name,
            sources,
            self.include_dirs(),
            args,
            self.module_build_dir,
        )

        if not compiled.success:
            logger.error(f"Module {self.module_name} failed with code {compiled.return_code}")
            if compiled.output:
                logger.error(f"Error output: {compiled.output[:500]}")
            raise CompilationFailed(self.module_name, compiled.output or f"Failed to build module {self.module_name}")

        if cache is not None:
            cache.cache_module(key, self.settings.build_dir, module_artifacts(self.module_name))

        self.hashes.record(self.module_name, key.digest)
        result.status = ModuleStatus.BUILT
        result.duration_seconds = time.perf_counter() - started
        logger.info(f"Module {self.module_name} built successfully")
        return result
