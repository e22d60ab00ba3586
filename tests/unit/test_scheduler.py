"""
Unit tests for BuildScheduler and ModuleBuildOperation.

Builds run against on-disk project trees with FakeCompilerBackend standing in
for swiftc.
"""

import plistlib

import pytest

from mason.backends.bundle import AppBundler
from mason.cache.store import ModuleCache
from mason.config import AppConfig, LevelStrategy
from mason.errors import CompilationFailed, ConfigError, CyclicDependency
from mason.graph import DependencyGraph
from mason.pipeline.operation import ModuleHashes, ModuleStatus, find_source_files
from mason.pipeline.scheduler import BuildScheduler
from tests.conftest import DIAMOND, FakeCompilerBackend, FakeInstaller, TimedCompilerBackend, make_settings


def make_scheduler(source, backend, modules=None, **kwargs):
    settings_overrides = kwargs.pop("settings", {})
    graph = DependencyGraph.from_mapping(DIAMOND if modules is None else modules)
    return BuildScheduler(graph, make_settings(source, **settings_overrides), backend, **kwargs)


def statuses(report):
    return {name: result.status for name, result in report.module_results.items()}


class TestBuildOrder:
    """Tests for compute_build_order and compute_levels."""

    def test_build_order_covers_graph(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        order = scheduler.compute_build_order()
        assert sorted(order) == sorted(DIAMOND)
        for module in order:
            for dependency in DIAMOND[module]:
                assert order.index(dependency) < order.index(module)

    def test_build_order_multiple_roots(self, tmp_path, backend):
        modules = {"Tool": ["Core"], "Core": [], "Standalone": []}
        scheduler = make_scheduler(tmp_path, backend, modules)
        order = scheduler.compute_build_order()
        assert sorted(order) == ["Core", "Standalone", "Tool"]
        assert order.index("Core") < order.index("Tool")

    def test_build_order_cycle(self, tmp_path, backend):
        scheduler = make_scheduler(tmp_path, backend, {"X": ["Y"], "Y": ["X"]})
        with pytest.raises(CyclicDependency):
            scheduler.compute_build_order()

    def test_depth_levels(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        levels = scheduler.compute_levels(scheduler.compute_build_order(), LevelStrategy.DEPTH)
        assert levels == {1: {"Core"}, 2: {"A", "B"}, 3: {"App"}}

    def test_count_levels(self, diamond_project, backend):
        """Dependency-count levels use the size of the resolved closure."""
        scheduler = make_scheduler(diamond_project, backend)
        levels = scheduler.compute_levels(scheduler.compute_build_order(), LevelStrategy.DEPENDENCY_COUNT)
        assert levels == {1: {"Core"}, 2: {"A", "B"}, 4: {"App"}}

    def test_default_strategy_from_settings(self, diamond_project, backend):
        scheduler = make_scheduler(
            diamond_project, backend, settings={"level_strategy": LevelStrategy.DEPENDENCY_COUNT}
        )
        assert 4 in scheduler.compute_levels(scheduler.compute_build_order())

    @pytest.mark.parametrize("strategy", list(LevelStrategy))
    def test_levels_are_total_and_ordered(self, tmp_path, backend, strategy):
        """Every module lands on exactly one level above all its dependencies."""
        modules = {
            "Core": [],
            "Net": ["Core"],
            "Store": ["Core"],
            "Sync": ["Net", "Store"],
            "UI": ["Core"],
            "Feature": ["Sync", "UI"],
            "Extra": [],
        }
        scheduler = make_scheduler(tmp_path, backend, modules)
        levels = scheduler.compute_levels(scheduler.compute_build_order(), strategy)

        placed = [module for members in levels.values() for module in members]
        assert sorted(placed) == sorted(modules)

        level_of = {module: level for level, members in levels.items() for module in members}
        for module, dependencies in modules.items():
            for dependency in dependencies:
                assert level_of[dependency] < level_of[module]
        assert level_of["Core"] == 1
        assert level_of["Extra"] == 1

    def test_levels_of_subset(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        assert scheduler.compute_levels(["Core", "A"]) == {1: {"Core"}, 2: {"A"}}


class TestBuildApp:
    """Tests for full builds."""

    def test_clean_build(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        report = scheduler.build_app()

        assert report.status == "success"
        assert sorted(backend.compiled) == sorted(DIAMOND)
        assert report.modules_built == 4
        assert report.modules_cached == 0
        assert report.levels == {1: ["Core"], 2: ["A", "B"], 3: ["App"]}
        assert report.binary_path == scheduler.settings.build_dir / "Demo"
        assert report.binary_path.is_file()
        assert len(report.level_statistics) == 3

    def test_dependencies_compile_before_dependants(self, diamond_project, backend):
        make_scheduler(diamond_project, backend).build_app()
        compiled = backend.compiled
        assert compiled.index("Core") < compiled.index("A")
        assert compiled.index("Core") < compiled.index("B")
        assert compiled.index("App") == 3

    def test_include_paths_for_dependencies(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        scheduler.build_app()
        args = backend.compile_args["App"]
        assert str(scheduler.settings.build_dir / "A") in args
        assert str(scheduler.settings.build_dir / "B") in args
        assert "{module}" not in " ".join(args)
        assert args[:2] == ["-module-name", "App"]

    def test_second_build_uses_cache(self, diamond_project):
        """An unchanged rebuild restores every module without compiling."""
        make_scheduler(diamond_project, FakeCompilerBackend()).build_app()

        backend = FakeCompilerBackend()
        scheduler = make_scheduler(diamond_project, backend)
        report = scheduler.build_app()

        assert backend.compiled == []
        assert report.modules_cached == 4
        assert set(statuses(report).values()) == {ModuleStatus.CACHED}
        assert (scheduler.settings.build_dir / "App" / "App.o").is_file()
        assert len(backend.linked) == 1

    def test_restored_artifacts_match(self, diamond_project):
        first = make_scheduler(diamond_project, FakeCompilerBackend())
        first.build_app()
        core_object = first.settings.build_dir / "Core" / "Core.o"
        compiled_bytes = core_object.read_bytes()

        make_scheduler(diamond_project, FakeCompilerBackend()).build_app()

        assert core_object.read_bytes() == compiled_bytes

    def test_upstream_change_invalidates_dependants(self, make_project):
        """Editing Core rebuilds everything that depends on it, nothing else."""
        modules = dict(DIAMOND, Util=[])
        source = make_project(modules)
        make_scheduler(source, FakeCompilerBackend(), modules).build_app()

        (source / "Core" / "Sources" / "Core.swift").write_text("public struct Core { let x = 1 }\n")

        backend = FakeCompilerBackend()
        report = make_scheduler(source, backend, modules).build_app()

        assert sorted(backend.compiled) == ["A", "App", "B", "Core"]
        assert statuses(report)["Util"] == ModuleStatus.CACHED

    def test_leaf_change_keeps_dependencies_cached(self, diamond_project):
        make_scheduler(diamond_project, FakeCompilerBackend()).build_app()
        (diamond_project / "A" / "Sources" / "A.swift").write_text("public struct A { let y = 2 }\n")

        backend = FakeCompilerBackend()
        make_scheduler(diamond_project, backend).build_app()

        assert sorted(backend.compiled) == ["A", "App"]

    def test_use_cache_false(self, diamond_project):
        """A clean build compiles everything but still refreshes the cache."""
        make_scheduler(diamond_project, FakeCompilerBackend()).build_app()

        clean_backend = FakeCompilerBackend()
        make_scheduler(diamond_project, clean_backend, settings={"use_cache": False}).build_app()
        assert sorted(clean_backend.compiled) == sorted(DIAMOND)

        backend = FakeCompilerBackend()
        make_scheduler(diamond_project, backend).build_app()
        assert backend.compiled == []

    def test_failure_stops_later_levels(self, diamond_project):
        """Siblings in the failing level finish; later levels never start."""
        backend = FakeCompilerBackend(fail_modules=["A"])
        scheduler = make_scheduler(diamond_project, backend)

        with pytest.raises(CompilationFailed) as exc_info:
            scheduler.build_app()

        assert exc_info.value.module_name == "A"
        assert "B" in backend.compiled
        assert "App" not in backend.compiled
        assert backend.linked == []

        report = scheduler.report
        assert report.status == "failed"
        assert report.modules_failed == 1
        assert statuses(report)["B"] == ModuleStatus.BUILT
        assert any("Build aborted" in error for error in report.errors)

    def test_failed_module_not_cached(self, diamond_project):
        scheduler = make_scheduler(diamond_project, FakeCompilerBackend(fail_modules=["A"]))
        with pytest.raises(CompilationFailed):
            scheduler.build_app()

        names = [entry.key.name for entry in ModuleCache(scheduler.settings.cache_dir).entries()]
        assert sorted(names) == ["B", "Core"]

    def test_multiple_failures_raise_one(self, diamond_project):
        backend = FakeCompilerBackend(fail_modules=["A", "B"])
        scheduler = make_scheduler(diamond_project, backend)
        with pytest.raises(CompilationFailed) as exc_info:
            scheduler.build_app()
        assert exc_info.value.module_name in ("A", "B")
        assert scheduler.report.modules_failed == 2

    def test_link_failure(self, diamond_project):
        scheduler = make_scheduler(diamond_project, FakeCompilerBackend(fail_link=True))
        with pytest.raises(CompilationFailed) as exc_info:
            scheduler.build_app()
        assert exc_info.value.module_name == "Demo"
        assert "symbol(s) not found" in str(exc_info.value)

    def test_missing_main_sources(self, make_project, backend):
        source = make_project(with_main=False)
        with pytest.raises(CompilationFailed, match="No source files found"):
            make_scheduler(source, backend).build_app()

    def test_bundle_and_install(self, diamond_project, backend):
        app = AppConfig(app_name="Demo", bundle_id="com.example.demo", modules=list(DIAMOND))
        installer = FakeInstaller()
        scheduler = make_scheduler(
            diamond_project, backend, app=app, bundler=AppBundler(sign=False), installer=installer
        )

        report = scheduler.build_app()

        assert report.bundle_path == scheduler.settings.build_dir / "Demo.app"
        assert (report.bundle_path / "Demo").is_file()
        with open(report.bundle_path / "Info.plist", "rb") as f:
            assert plistlib.load(f)["CFBundleIdentifier"] == "com.example.demo"
        assert installer.installed == [(report.bundle_path, "com.example.demo")]
        assert installer.launched == ["com.example.demo"]

    def test_timer_phases(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        scheduler.build_app()
        phases = {phase for phase, _ in scheduler.timer.measurements()}
        assert {"Total Build", "Prepare Directories", "Module Compilation", "Final Link"} <= phases
        assert "Module: Core" in phases

    def test_bundle_includes_resources(self, diamond_project, backend):
        (diamond_project / "Resources" / "Assets").mkdir(parents=True)
        (diamond_project / "Resources" / "Assets" / "icon.png").write_bytes(b"\x89PNG")
        (diamond_project / "Resources" / "Localizable.strings").write_text('"hi" = "hi";\n')
        app = AppConfig(app_name="Demo", bundle_id="com.example.demo", modules=list(DIAMOND))
        scheduler = make_scheduler(diamond_project, backend, app=app, bundler=AppBundler(sign=False))

        report = scheduler.build_app()

        assert (report.bundle_path / "Assets" / "icon.png").read_bytes() == b"\x89PNG"
        assert (report.bundle_path / "Localizable.strings").is_file()


class TestLevelBarrier:
    """Tests for concurrency within a level and the barrier between levels."""

    def test_siblings_run_concurrently(self, diamond_project):
        """A and B only get past the rendezvous if both compile at once."""
        backend = TimedCompilerBackend(rendezvous=["A", "B"])
        report = make_scheduler(diamond_project, backend).build_app()

        assert backend.started["A"] < backend.finished["B"]
        assert backend.started["B"] < backend.finished["A"]
        assert report.level_statistics[1].level == 2
        assert report.level_statistics[1].max_concurrent == 2

    def test_next_level_waits_for_whole_level(self, diamond_project):
        """No module starts before every module of the level below has finished."""
        backend = TimedCompilerBackend(rendezvous=["A", "B"], hold=0.1)
        make_scheduler(diamond_project, backend).build_app()

        assert backend.started["A"] >= backend.finished["Core"]
        assert backend.started["B"] >= backend.finished["Core"]
        assert backend.started["App"] >= max(backend.finished["A"], backend.finished["B"])

    def test_single_worker_runs_level_sequentially(self, diamond_project):
        backend = TimedCompilerBackend()
        report = make_scheduler(diamond_project, backend, settings={"max_workers": 1}).build_app()

        assert all(stats.max_concurrent == 1 for stats in report.level_statistics)
        first, second = sorted(["A", "B"], key=lambda name: backend.started[name])
        assert backend.started[second] >= backend.finished[first]


class TestBuildSingleModule:
    """Tests for build_single_module."""

    def test_builds_only_closure(self, diamond_project, backend):
        report = make_scheduler(diamond_project, backend).build_single_module("A")

        assert sorted(backend.compiled) == ["A", "Core"]
        assert backend.compiled[-1] == "A"
        assert backend.linked == []
        assert report.target == "A"
        assert report.total_modules == 2
        assert report.modules_built == 2

    def test_unknown_target(self, diamond_project, backend):
        with pytest.raises(ConfigError):
            make_scheduler(diamond_project, backend).build_single_module("Nope")

    def test_target_failure_recorded(self, diamond_project):
        scheduler = make_scheduler(diamond_project, FakeCompilerBackend(fail_modules=["A"]))
        with pytest.raises(CompilationFailed):
            scheduler.build_single_module("A")
        assert statuses(scheduler.report)["A"] == ModuleStatus.FAILED
        assert statuses(scheduler.report)["Core"] == ModuleStatus.BUILT

    def test_uses_cache(self, diamond_project):
        make_scheduler(diamond_project, FakeCompilerBackend()).build_app()
        backend = FakeCompilerBackend()
        report = make_scheduler(diamond_project, backend).build_single_module("App")
        assert backend.compiled == []
        assert report.modules_cached == 4


class TestLinkAndEmit:
    """Tests for the final link."""

    def test_missing_object_file(self, diamond_project, backend):
        scheduler = make_scheduler(diamond_project, backend)
        scheduler.prepare_directories()
        with pytest.raises(CompilationFailed, match="Object file not found"):
            scheduler.link_and_emit()
        assert backend.linked == []


class TestModuleOperation:
    """Tests for single-module build helpers."""

    def test_no_sources(self, make_project, backend):
        source = make_project()
        (source / "Core" / "Sources" / "Core.swift").unlink()
        scheduler = make_scheduler(source, backend)

        with pytest.raises(CompilationFailed) as exc_info:
            scheduler.build_module("Core")

        assert exc_info.value.module_name == "Core"
        assert backend.compiled == []

    def test_find_source_files_skips_hidden(self, tmp_path):
        (tmp_path / "Nested").mkdir()
        (tmp_path / ".hidden").mkdir()
        (tmp_path / "Main.swift").write_text("")
        (tmp_path / "Nested" / "Inner.swift").write_text("")
        (tmp_path / ".hidden" / "Secret.swift").write_text("")
        (tmp_path / ".Dot.swift").write_text("")
        (tmp_path / "notes.txt").write_text("")

        found = find_source_files(tmp_path)

        assert found == sorted([tmp_path / "Main.swift", tmp_path / "Nested" / "Inner.swift"])

    def test_module_hashes(self):
        hashes = ModuleHashes()
        hashes.record("Core", "abc")
        assert hashes.get("Core") == "abc"
        assert hashes.for_modules(["Core", "Missing"]) == {"Core": "abc"}
        hashes.clear()
        assert hashes.get("Core") is None
