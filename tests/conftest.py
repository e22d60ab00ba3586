"""
Mason Test Configuration and Fixtures

Provides an in-memory compiler backend and on-disk project factories so the
scheduler can be exercised without a toolchain.
"""

import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest
import yaml

from mason.backends.compiler import CompileResult, CompilerBackend, module_artifacts
from mason.backends.installer import ArtifactInstaller
from mason.config import ENV_VAR_ALIASES, BuildSettings


class FakeCompilerBackend(CompilerBackend):
    """
    Compiler backend that writes placeholder artifacts.

    Every artifact embeds the module's source text so a restored artifact can
    be compared byte for byte with a freshly compiled one.
    """

    def __init__(self, fail_modules: Optional[Sequence[str]] = None, fail_link: bool = False):
        self.fail_modules = set(fail_modules or [])
        self.fail_link = fail_link
        self.compiled: List[str] = []
        self.compile_args: Dict[str, List[str]] = {}
        self.linked: List[Path] = []
        self._lock = threading.Lock()

    def compile(self, module_name, source_files, include_dirs, compiler_args, output_dir):
        with self._lock:
            self.compiled.append(module_name)
            self.compile_args[module_name] = list(compiler_args)

        if module_name in self.fail_modules:
            return CompileResult(success=False, return_code=1, output=f"error: {module_name} is broken")

        body = "".join(Path(p).read_text(encoding="utf-8") for p in source_files)
        build_root = Path(output_dir).parent
        for artifact in module_artifacts(module_name):
            path = build_root / artifact
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"{artifact}\n{body}", encoding="utf-8")

        return CompileResult(success=True)

    def link(self, object_files, main_sources, compiler_args, output_path):
        with self._lock:
            self.linked.append(Path(output_path))

        if self.fail_link:
            return CompileResult(success=False, return_code=1, output="ld: symbol(s) not found")

        Path(output_path).write_text("\n".join(str(p) for p in object_files), encoding="utf-8")
        return CompileResult(success=True)


class TimedCompilerBackend(FakeCompilerBackend):
    """
    FakeCompilerBackend that records start and end times of every compile.

    Modules listed in rendezvous wait for each other on a barrier, so their
    compiles only complete if they run at the same time.
    """

    def __init__(self, rendezvous: Sequence[str] = (), hold: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.rendezvous = set(rendezvous)
        self.barrier = threading.Barrier(len(self.rendezvous), timeout=5) if self.rendezvous else None
        self.hold = hold
        self.started: Dict[str, float] = {}
        self.finished: Dict[str, float] = {}

    def compile(self, module_name, source_files, include_dirs, compiler_args, output_dir):
        with self._lock:
            self.started[module_name] = time.perf_counter()

        if module_name in self.rendezvous:
            self.barrier.wait()
            time.sleep(self.hold)

        result = super().compile(module_name, source_files, include_dirs, compiler_args, output_dir)
        with self._lock:
            self.finished[module_name] = time.perf_counter()
        return result


class FakeInstaller(ArtifactInstaller):
    """Records install and launch calls."""

    def __init__(self):
        self.installed: List[tuple] = []
        self.launched: List[str] = []

    def install(self, bundle_path, bundle_id):
        self.installed.append((Path(bundle_path), bundle_id))

    def launch(self, bundle_id):
        self.launched.append(bundle_id)


DIAMOND = {
    "Core": [],
    "A": ["Core"],
    "B": ["Core"],
    "App": ["A", "B"],
}


def write_project(
    root: Path,
    modules: Dict[str, List[str]],
    app_name: str = "Demo",
    with_main: bool = True,
    build: Optional[dict] = None,
    extra_app: Optional[dict] = None,
) -> Path:
    """Write app.yml, module.yml files and one source file per module."""
    root.mkdir(parents=True, exist_ok=True)

    app = {
        "app-name": app_name,
        "bundle-id": f"com.example.{app_name.lower()}",
        "modules": list(modules),
    }
    if build:
        app["build"] = build
    if extra_app:
        app.update(extra_app)
    (root / "app.yml").write_text(yaml.safe_dump(app, sort_keys=False), encoding="utf-8")

    for name, dependencies in modules.items():
        module_dir = root / name
        (module_dir / "Sources").mkdir(parents=True, exist_ok=True)
        (module_dir / "module.yml").write_text(
            yaml.safe_dump({"module-name": name, "dependencies": list(dependencies)}, sort_keys=False),
            encoding="utf-8",
        )
        (module_dir / "Sources" / f"{name}.swift").write_text(
            f"public struct {name} {{}}\n", encoding="utf-8"
        )

    if with_main:
        (root / "Sources").mkdir(exist_ok=True)
        (root / "Sources" / "main.swift").write_text("print(\"hello\")\n", encoding="utf-8")

    return root


def make_settings(source_dir: Path, **overrides) -> BuildSettings:
    values = dict(
        source_dir=source_dir,
        build_dir=source_dir / ".build",
        cache_dir=source_dir / ".cache",
        module_args=["-module-name", "{module}", "-c"],
        link_args=["-emit-executable"],
        max_workers=4,
        app_name="Demo",
    )
    values.update(overrides)
    return BuildSettings(**values)


@pytest.fixture(autouse=True)
def clean_mason_env(monkeypatch):
    """Keep MASON_* variables from the developer's shell out of tests."""
    for names in ENV_VAR_ALIASES.values():
        for name in names:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_project(tmp_path):
    """Factory writing a project tree under tmp_path."""

    def _make(modules: Dict[str, List[str]] = None, name: str = "project", **kwargs) -> Path:
        return write_project(tmp_path / name, DIAMOND if modules is None else modules, **kwargs)

    return _make


@pytest.fixture
def diamond_project(make_project):
    return make_project(DIAMOND)


@pytest.fixture
def backend():
    return FakeCompilerBackend()
