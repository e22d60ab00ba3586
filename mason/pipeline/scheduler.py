"""
Build Scheduler

Level-synchronized parallel build of a module graph:
- Dependency-first build order over the whole graph
- Modules partitioned into levels; each level built concurrently
- Join barrier between levels; the first failure stops later levels
- Module cache consulted and updated per module
- Final link, then bundling and installation collaborators

Usage:
    from mason.config import load_project
    from mason.backends.compiler import SwiftcBackend
    from mason.pipeline.scheduler import BuildScheduler

    project = load_project(Path("MyApp"))
    scheduler = BuildScheduler(project.graph, project.settings(), SwiftcBackend(), app=project.app)
    report = scheduler.build_app()
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tqdm import tqdm

from mason.backends.bundle import AppBundler
from mason.backends.compiler import CompilerBackend, object_file
from mason.backends.installer import ArtifactInstaller
from mason.cache.store import ModuleCache
from mason.config import AppConfig, BuildSettings, LevelStrategy
from mason.errors import CompilationFailed, ConfigError
from mason.graph import DependencyGraph
from mason.pipeline.operation import (
    ModuleBuildOperation,
    ModuleBuildResult,
    ModuleHashes,
    ModuleStatus,
    find_source_files,
)
from mason.pipeline.tracking import BuildTimer, LevelStatistics, ParallelBuildTracker

logger = logging.getLogger(__name__)

# Program sources linked into the final binary live here, under the source dir
MAIN_SOURCES_DIR = "Sources"


@dataclass
class BuildReport:
    """Result of a build_app or build_single_module run."""
    build_id: str
    started_at: str
    target: Optional[str] = None
    completed_at: Optional[str] = None
    duration_seconds: float = 0.0
    status: str = "pending"

    total_modules: int = 0
    modules_built: int = 0
    modules_cached: int = 0
    modules_failed: int = 0

    module_results: Dict[str, ModuleBuildResult] = field(default_factory=dict)
    levels: Dict[int, List[str]] = field(default_factory=dict)
    level_statistics: List[LevelStatistics] = field(default_factory=list)

    binary_path: Optional[Path] = None
    bundle_path: Optional[Path] = None

    errors: List[str] = field(default_factory=list)

    def record(self, result: ModuleBuildResult) -> None:
        self.module_results[result.module_name] = result
        if result.status == ModuleStatus.BUILT:
            self.modules_built += 1
        elif result.status == ModuleStatus.CACHED:
            self.modules_cached += 1
        elif result.status == ModuleStatus.FAILED:
            self.modules_failed += 1
            self.errors.append(f"Module {result.module_name} failed: {result.error}")


class BuildScheduler:
    """
    Orchestrates module builds for one project.

    The dependency graph is treated as read-only for the lifetime of the
    scheduler and is shared by every concurrent build task.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        settings: BuildSettings,
        backend: CompilerBackend,
        cache: Optional[ModuleCache] = None,
        app: Optional[AppConfig] = None,
        bundler: Optional[AppBundler] = None,
        installer: Optional[ArtifactInstaller] = None,
        timer: Optional[BuildTimer] = None,
    ):
        self.graph = graph
        self.settings = settings
        self.backend = backend
        self.cache = cache if cache is not None else ModuleCache(settings.cache_dir)
        self.app = app
        self.bundler = bundler
        self.installer = installer
        self.timer = timer or BuildTimer()

        self.hashes = ModuleHashes()
        self.report: Optional[BuildReport] = None

    @property
    def use_cache(self) -> bool:
        return self.settings.use_cache

    def compute_build_order(self) -> List[str]:
        """Dependency-first order covering every module in the graph."""
        order: List[str] = []
        seen: Set[str] = set()
        for name in self.graph.modules:
            for module in self.graph.resolve_dependencies(name):
                if module not in seen:
                    seen.add(module)
                    order.append(module)
        return order

    def _depths(self, modules: Iterable[str]) -> Dict[str, int]:
        depths: Dict[str, int] = {}
        for name in modules:
            if name in depths:
                continue
            for module in self.graph.resolve_dependencies(name):
                if module not in depths:
                    deps = self.graph.dependencies_of(module)
                    depths[module] = 1 + max((depths[d] for d in deps), default=0)
        return depths

    def compute_levels(
        self,
        modules: Iterable[str],
        strategy: Optional[LevelStrategy] = None,
    ) -> Dict[int, Set[str]]:
        """
        Partition modules into scheduling levels.

        DEPENDENCY_COUNT places a module at the size of its resolved
        dependency list (itself included). DEPTH places it one above its
        deepest dependency. Either way modules without dependencies land on
        level 1 and a module is always above everything it depends on.
        """
        strategy = strategy or self.settings.level_strategy
        modules = list(modules)
        levels: Dict[int, Set[str]] = {}

        if strategy == LevelStrategy.DEPENDENCY_COUNT:
            for name in modules:
                level = len(self.graph.resolve_dependencies(name))
                levels.setdefault(level, set()).add(name)
        else:
            depths = self._depths(modules)
            for name in modules:
                levels.setdefault(depths[name], set()).add(name)

        return levels

    def _operation(self, module_name: str) -> ModuleBuildOperation:
        return ModuleBuildOperation(
            module_name=module_name,
            dependencies=self.graph.dependencies_of(module_name),
            settings=self.settings,
            backend=self.backend,
            cache=self.cache,
            hashes=self.hashes,
            timer=self.timer,
        )

    def build_module(self, module_name: str) -> ModuleBuildResult:
        """Build (or restore from cache) a single module."""
        return self._operation(module_name).execute()

    def _build_tracked(self, module_name: str, tracker: ParallelBuildTracker) -> ModuleBuildResult:
        tracker.module_started(module_name)
        try:
            return self.build_module(module_name)
        finally:
            tracker.module_finished(module_name)

    def build_levels_in_order(
        self,
        levels: Dict[int, Set[str]],
        report: Optional[BuildReport] = None,
    ) -> List[ModuleBuildResult]:
        """
        Build levels in ascending order, each level concurrently.

        Every task of a level runs to completion before the next level
        starts. If any task failed, the first failure observed is raised
        unchanged after the level finishes and the other failures are logged.
        """
        tracker = ParallelBuildTracker()
        results: List[ModuleBuildResult] = []

        logger.info("Parallel build plan:")
        for level in sorted(levels):
            logger.info(f"Level {level}: {', '.join(sorted(levels[level]))}")

        for level in tqdm(sorted(levels), desc="Building levels", unit="level", disable=not self.settings.show_progress):
            modules = sorted(levels[level])
            if not modules:
                continue

            logger.info(f"Building level {level} modules in parallel: {', '.join(modules)}")
            failures: List[Tuple[str, Exception]] = []

            with ThreadPoolExecutor(max_workers=min(self.settings.max_workers, len(modules))) as executor:
                futures = {
                    executor.submit(self._build_tracked, name, tracker): name
                    for name in modules
                }

                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        result = future.result()
                    except Exception as e:
                        failures.append((name, e))
                        result = ModuleBuildResult(module_name=name, status=ModuleStatus.FAILED, error=str(e))

                    results.append(result)
                    if report is not None:
                        report.record(result)

            stats = tracker.level_statistics(level)
            if report is not None:
                report.level_statistics.append(stats)

            if failures:
                for name, error in failures[1:]:
                    logger.error(f"Module {name} also failed in level {level}: {error}")
                raise failures[0][1]

        tracker.final_statistics()
        return results

    def prepare_directories(self) -> None:
        """Remove and recreate the build directory."""
        if self.settings.build_dir.exists():
            shutil.rmtree(self.settings.build_dir)
        self.settings.build_dir.mkdir(parents=True, exist_ok=True)

    def link_and_emit(self) -> Path:
        """
        Link every module's object file with the program sources.

        Returns:
            Path to the linked executable

        Raises:
            CompilationFailed: missing object file or link failure
        """
        app_name = self.settings.app_name
        build_dir = self.settings.build_dir
        main_sources = find_source_files(
            self.settings.source_dir / MAIN_SOURCES_DIR, self.settings.source_suffix, app_name
        )

        args = list(self.settings.link_args)
        object_files: List[Path] = []
        for module_name in self.compute_build_order():
            args += ["-I", str(build_dir / module_name)]
            path = object_file(build_dir, module_name)
            if not path.is_file():
                raise CompilationFailed(app_name, f"Object file not found at path: {path}")
            object_files.append(path)

        output_path = build_dir / app_name
        logger.info(f"Compiling {app_name}")

        result = self.backend.link(object_files, main_sources, args, output_path)
        if not result.success:
            raise CompilationFailed(app_name, result.output or "Link failed")

        return output_path

    def _new_report(self, target: Optional[str] = None) -> BuildReport:
        now = datetime.now()
        report = BuildReport(
            build_id=f"build_{now.strftime('%Y%m%d_%H%M%S')}",
            started_at=now.isoformat(),
            target=target,
        )
        self.report = report
        return report

    def _finish_report(self, report: BuildReport, status: str) -> None:
        report.status = status
        report.completed_at = datetime.now().isoformat()
        started = datetime.fromisoformat(report.started_at)
        completed = datetime.fromisoformat(report.completed_at)
        report.duration_seconds = (completed - started).total_seconds()

        logger.info(
            f"Build {report.build_id} completed: {report.status} "
            f"({report.modules_built} built, {report.modules_cached} cached, "
            f"{report.modules_failed} failed)"
        )

    def build_app(self) -> BuildReport:
        """
        Build every module, link the app, then bundle and install it.

        Raises:
            MasonError: the first failure observed; later levels are not started
        """
        self.timer.reset()
        self.hashes.clear()
        report = self._new_report()

        try:
            with self.timer.phase("Total Build"):
                with self.timer.phase("Prepare Directories"):
                    self.prepare_directories()

                with self.timer.phase("Module Compilation"):
                    order = self.compute_build_order()
                    levels = self.compute_levels(order)
                    report.total_modules = len(order)
                    report.levels = {level: sorted(mods) for level, mods in sorted(levels.items())}
                    self.build_levels_in_order(levels, report)

                with self.timer.phase("Final Link"):
                    report.binary_path = self.link_and_emit()

                if self.bundler is not None and self.app is not None:
                    with self.timer.phase("Bundle Creation"):
                        report.bundle_path = self.bundler.create_bundle(
                            report.binary_path,
                            self.app,
                            self.settings.source_dir / self.app.resources_dir,
                        )

                if self.installer is not None and self.app is not None and report.bundle_path is not None:
                    with self.timer.phase("Installation"):
                        self.installer.install(report.bundle_path, self.app.bundle_id)
                        self.installer.launch(self.app.bundle_id)
        except Exception as e:
            report.errors.append(f"Build aborted: {e}")
            self._finish_report(report, "failed")
            raise

        self._finish_report(report, "success")
        self.timer.summarize()
        return report

    def build_single_module(self, target: str) -> BuildReport:
        """
        Build `target` and its transitive dependencies only.

        Dependencies are built level by level; the target itself is built
        last, on its own.

        Raises:
            ConfigError: if target is not in the graph
            MasonError: the first failure observed
        """
        if target not in self.graph:
            raise ConfigError(f"Module '{target}' not found in dependency graph")

        self.timer.reset()
        self.hashes.clear()
        report = self._new_report(target)

        try:
            with self.timer.phase("Module Build"):
                with self.timer.phase("Prepare Directories"):
                    self.prepare_directories()

                with self.timer.phase("Dependency Resolution"):
                    dependencies = [m for m in self.graph.resolve_dependencies(target) if m != target]
                    logger.debug(f"Dependencies for {target}: {dependencies}")
                    levels = self.compute_levels(dependencies)
                    report.total_modules = len(dependencies) + 1
                    report.levels = {level: sorted(mods) for level, mods in sorted(levels.items())}

                with self.timer.phase("Dependencies Compilation"):
                    self.build_levels_in_order(levels, report)

                with self.timer.phase("Target Module"):
                    try:
                        result = self.build_module(target)
                    except Exception as e:
                        report.record(ModuleBuildResult(module_name=target, status=ModuleStatus.FAILED, error=str(e)))
                        raise
                    report.record(result)
        except Exception as e:
            report.errors.append(f"Build aborted: {e}")
            self._finish_report(report, "failed")
            raise

        self._finish_report(report, "success")
        self.timer.summarize()
        return report
