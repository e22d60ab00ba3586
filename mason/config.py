"""
Project Configuration

Loads a Mason project from disk:
1. app.yml at the project root (app metadata and root module list)
2. <module>/module.yml for every module reachable from app.yml
3. Environment overrides (MASON_* variables)

Both YAML documents are validated against the schemas in mason.schemas.

Environment Variable Aliases (checked in order, first valid value wins):
- Build dir: MASON_BUILD_DIR
- Cache dir: MASON_CACHE_DIR
- Workers: MASON_MAX_WORKERS, MASON_JOBS
- SDK: MASON_SDK_PATH, SDKROOT
- Levels: MASON_LEVEL_STRATEGY

Usage:
    from mason.config import load_project

    project = load_project(Path("MyApp"))
    settings = project.settings(use_cache=True)
"""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from mason.backends.compiler import (
    DEFAULT_SDK_PATH,
    link_argument_template,
    module_argument_template,
)
from mason.errors import ConfigError
from mason.graph import DependencyGraph
from mason.schemas import APP_VALIDATOR, MODULE_VALIDATOR, schema_errors

logger = logging.getLogger(__name__)

APP_CONFIG_FILE = "app.yml"
MODULE_CONFIG_FILE = "module.yml"
BUILD_DIR_NAME = ".build"
CACHE_DIR_NAME = ".cache"

ENV_VAR_ALIASES = {
    "build_dir": ["MASON_BUILD_DIR"],
    "cache_dir": ["MASON_CACHE_DIR"],
    "max_workers": ["MASON_MAX_WORKERS", "MASON_JOBS"],
    "sdk_path": ["MASON_SDK_PATH", "SDKROOT"],
    "level_strategy": ["MASON_LEVEL_STRATEGY"],
}


class LevelStrategy(Enum):
    """How modules are assigned to scheduling levels."""
    DEPTH = "depth"  # longest dependency chain below the module, plus one
    DEPENDENCY_COUNT = "count"  # number of modules in the resolved closure


def default_max_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


def simulator_arch() -> str:
    return "arm64" if platform.machine() in ("arm64", "aarch64") else "x86_64"


def _get_env_with_aliases(alias_key: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return the first non-empty environment value for a setting."""
    env = os.environ if environ is None else environ
    for var_name in ENV_VAR_ALIASES.get(alias_key, []):
        value = env.get(var_name)
        if value and value.strip():
            return value.strip()
    return None


@dataclass
class InfoPlistConfig:
    launch_screen: bool = True
    required_device_capabilities: List[str] = field(default_factory=lambda: ["arm64"])
    supported_orientations: List[str] = field(
        default_factory=lambda: ["UIInterfaceOrientationPortrait"]
    )
    custom_entries: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlistConfig:
    version: str = "1.0"
    build_number: str = "1"
    info_plist: InfoPlistConfig = field(default_factory=InfoPlistConfig)


@dataclass
class AppConfig:
    """Parsed app.yml."""
    app_name: str
    bundle_id: str
    modules: List[str]
    resources_dir: str = "Resources"
    deployment_target: str = "17.0"
    swift_version: str = "5"
    plist: PlistConfig = field(default_factory=PlistConfig)
    build: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModuleConfig:
    """Parsed <module>/module.yml."""
    module_name: str
    dependencies: List[str] = field(default_factory=list)


@dataclass
class BuildSettings:
    """Everything the scheduler needs besides the graph and collaborators."""
    source_dir: Path
    build_dir: Path
    cache_dir: Path
    module_args: List[str] = field(default_factory=list)
    link_args: List[str] = field(default_factory=list)
    use_cache: bool = True
    max_workers: int = field(default_factory=default_max_workers)
    level_strategy: LevelStrategy = LevelStrategy.DEPTH
    source_suffix: str = ".swift"
    app_name: str = "App"
    show_progress: bool = False

    def __post_init__(self) -> None:
        self.source_dir = Path(self.source_dir).resolve()
        self.build_dir = Path(self.build_dir).resolve()
        self.cache_dir = Path(self.cache_dir).resolve()
        if self.max_workers < 1:
            raise ConfigError(f"max_workers must be at least 1, got {self.max_workers}")


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return data if data is not None else {}


def parse_app_config(data: Dict[str, Any], source: str = APP_CONFIG_FILE) -> AppConfig:
    errors = schema_errors(APP_VALIDATOR, data)
    if errors:
        raise ConfigError(f"Schema validation failed for {source}:\n" + "\n".join(errors))

    plist_data = data.get("plist") or {}
    info_data = plist_data.get("info-plist") or {}
    defaults = InfoPlistConfig()
    info = InfoPlistConfig(
        launch_screen=info_data.get("launch-screen", defaults.launch_screen),
        required_device_capabilities=info_data.get(
            "required-device-capabilities", defaults.required_device_capabilities
        ),
        supported_orientations=info_data.get("supported-orientations", defaults.supported_orientations),
        custom_entries=info_data.get("custom-entries", {}),
    )

    return AppConfig(
        app_name=data["app-name"],
        bundle_id=data["bundle-id"],
        modules=list(data["modules"]),
        resources_dir=data.get("resources-dir", "Resources"),
        deployment_target=str(data.get("deployment-target", "17.0")),
        swift_version=str(data.get("swift-version", "5")),
        plist=PlistConfig(
            version=str(plist_data.get("version", "1.0")),
            build_number=str(plist_data.get("build-number", "1")),
            info_plist=info,
        ),
        build=dict(data.get("build") or {}),
    )


def parse_module_config(data: Dict[str, Any], source: str = MODULE_CONFIG_FILE) -> ModuleConfig:
    errors = schema_errors(MODULE_VALIDATOR, data)
    if errors:
        raise ConfigError(f"Schema validation failed for {source}:\n" + "\n".join(errors))
    return ModuleConfig(module_name=data["module-name"], dependencies=list(data.get("dependencies") or []))


@dataclass
class ProjectConfig:
    """A loaded project: app config, module configs and the dependency graph."""
    source_dir: Path
    app: AppConfig
    modules: Dict[str, ModuleConfig]
    graph: DependencyGraph

    def settings(
        self,
        use_cache: bool = True,
        max_workers: Optional[int] = None,
        level_strategy: Optional[LevelStrategy] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> BuildSettings:
        """
        Resolve build settings.

        Precedence: explicit arguments, then MASON_* environment variables,
        then the `build` section of app.yml, then defaults.
        """
        build_section = self.app.build

        build_dir = _get_env_with_aliases("build_dir", environ) or str(self.source_dir / BUILD_DIR_NAME)
        cache_dir = (
            _get_env_with_aliases("cache_dir", environ)
            or build_section.get("cache-dir")
            or str(self.source_dir / CACHE_DIR_NAME)
        )
        if not Path(cache_dir).is_absolute():
            cache_dir = str(self.source_dir / cache_dir)

        if max_workers is None:
            env_workers = _get_env_with_aliases("max_workers", environ)
            if env_workers is not None:
                try:
                    max_workers = int(env_workers)
                except ValueError as e:
                    raise ConfigError(f"Invalid worker count: {env_workers}") from e
            else:
                max_workers = build_section.get("max-workers") or default_max_workers()

        if level_strategy is None:
            raw = _get_env_with_aliases("level_strategy", environ) or build_section.get("level-strategy", "depth")
            try:
                level_strategy = LevelStrategy(raw)
            except ValueError as e:
                raise ConfigError(f"Unknown level strategy: {raw}") from e

        sdk_path = _get_env_with_aliases("sdk_path", environ) or DEFAULT_SDK_PATH
        arch = simulator_arch()

        return BuildSettings(
            source_dir=self.source_dir,
            build_dir=Path(build_dir),
            cache_dir=Path(cache_dir),
            module_args=module_argument_template(sdk_path, arch, self.app.deployment_target, self.app.swift_version),
            link_args=link_argument_template(sdk_path, arch, self.app.deployment_target, self.app.swift_version),
            use_cache=use_cache,
            max_workers=max_workers,
            level_strategy=level_strategy,
            app_name=self.app.app_name,
        )


def load_app_config(source_dir: Path) -> AppConfig:
    path = Path(source_dir) / APP_CONFIG_FILE
    return parse_app_config(_read_yaml(path), source=str(path))


def load_project(source_dir: Path) -> ProjectConfig:
    """
    Load app.yml and every reachable module.yml into a ProjectConfig.

    Modules are discovered transitively starting from app.yml's module list.

    Raises:
        ConfigError: missing files, invalid YAML or schema violations
    """
    source_dir = Path(source_dir).resolve()
    if not source_dir.is_dir():
        raise ConfigError(f"The specified source directory does not exist: {source_dir}")

    app = load_app_config(source_dir)
    graph = DependencyGraph()
    modules: Dict[str, ModuleConfig] = {}

    pending = list(app.modules)
    while pending:
        name = pending.pop(0)
        if name in modules:
            continue

        path = source_dir / name / MODULE_CONFIG_FILE
        module = parse_module_config(_read_yaml(path), source=str(path))
        if module.module_name != name:
            logger.warning(f"{path} declares module-name {module.module_name}, expected {name}")

        logger.debug(f"Processing module: {name}")
        logger.debug(f"Dependencies: {module.dependencies}")

        modules[name] = module
        graph.add_module(name, module.dependencies)
        pending.extend(dep for dep in module.dependencies if dep not in modules)

    logger.debug(f"Complete dependency graph: {graph.adjacency}")
    return ProjectConfig(source_dir=source_dir, app=app, modules=modules, graph=graph)
