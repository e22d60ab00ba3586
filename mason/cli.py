#!/usr/bin/env python3
"""
Mason command line

Usage:
    # Build the whole app and install it to the booted simulator
    mason build --source MyApp

    # Build one module and its dependencies
    mason build --source MyApp --module Networking

    # Ignore the module cache
    mason build --source MyApp --clean

    # Show build order and levels
    mason graph MyApp --levels

    # Remove build output / old cache entries
    mason clean MyApp
    mason cache clean MyApp --max-age-days 7
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from mason import __version__
from mason.backends.bundle import AppBundler
from mason.backends.compiler import SwiftcBackend
from mason.backends.installer import SimctlInstaller
from mason.cache.store import DEFAULT_MAX_AGE, ModuleCache
from mason.config import LevelStrategy, load_project
from mason.errors import MasonError
from mason.pipeline.scheduler import BuildReport, BuildScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Build products removed from module directories by `mason clean`
STRAY_SUFFIXES = (".swiftmodule", ".o")


def print_report(report: BuildReport) -> None:
    print("\n" + "=" * 60)
    print("BUILD SUMMARY")
    print("=" * 60)
    print(f"Build ID: {report.build_id}")
    if report.target:
        print(f"Target: {report.target}")
    print(f"Status: {report.status.upper()}")
    print(f"Duration: {report.duration_seconds:.2f}s")
    print("\nModules:")
    print(f"  Built: {report.modules_built}")
    print(f"  Cached: {report.modules_cached}")
    print(f"  Failed: {report.modules_failed}")

    if report.module_results:
        print("\nModule Details:")
        for name, result in report.module_results.items():
            print(f"  {name}: {result.status.value} ({result.duration_seconds:.2f}s)")

    if report.bundle_path:
        print(f"\nBundle: {report.bundle_path}")
    elif report.binary_path:
        print(f"\nBinary: {report.binary_path}")

    if report.errors:
        print("\nErrors:")
        for error in report.errors:
            print(f"  - {error}")

    print("=" * 60)


def cmd_build(args: argparse.Namespace) -> int:
    project = load_project(args.source)
    logger.debug(f"App Name: {project.app.app_name}")
    logger.debug(f"Modules: {project.app.modules}")

    if args.clean:
        logger.info("Performing clean build - module cache will be ignored")

    strategy = LevelStrategy(args.level_strategy) if args.level_strategy else None
    settings = project.settings(use_cache=not args.clean, max_workers=args.workers, level_strategy=strategy)
    settings.show_progress = args.progress

    project.graph.validate_graph()

    scheduler = BuildScheduler(
        project.graph,
        settings,
        SwiftcBackend(),
        app=project.app,
        bundler=AppBundler(sign=not args.no_sign),
        installer=None if args.no_install else SimctlInstaller(),
    )

    logger.info("Starting build process...")
    try:
        if args.module:
            logger.info(f"Building single module: {args.module}")
            report = scheduler.build_single_module(args.module)
            logger.info(f"Module '{args.module}' built successfully!")
        else:
            report = scheduler.build_app()
            logger.info("App built successfully!")
    except MasonError:
        if scheduler.report is not None:
            print_report(scheduler.report)
        raise

    print_report(report)
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    target = Path(args.target)
    logger.info(f"Cleaning build artifacts from {target}")

    project = load_project(target)

    build_dir = project.settings().build_dir
    if build_dir.exists():
        shutil.rmtree(build_dir)
        logger.debug(f"Removed {build_dir}")
    else:
        logger.debug(f"Directory already clean: {build_dir}")

    for module_name in project.modules:
        module_dir = project.source_dir / module_name
        if not module_dir.is_dir():
            continue
        for item in module_dir.iterdir():
            if item.name.endswith(STRAY_SUFFIXES):
                if item.is_dir():
                    shutil.rmtree(item)
                else:
                    item.unlink()
                logger.debug(f"Removed {item}")

    logger.info("Clean completed")
    return 0


def _cache_for(source: Path) -> ModuleCache:
    project = load_project(source)
    return ModuleCache(project.settings().cache_dir)


def cmd_cache_clean(args: argparse.Namespace) -> int:
    cache = _cache_for(args.target)
    max_age = args.max_age_days * 24 * 60 * 60 if args.max_age_days is not None else DEFAULT_MAX_AGE
    removed = cache.clean_cache(max_age)
    print(f"Removed {len(removed)} cache entries from {cache.cache_dir}")
    for name in removed:
        print(f"  - {name}")
    return 0


def cmd_cache_list(args: argparse.Namespace) -> int:
    cache = _cache_for(args.target)
    entries = cache.entries()

    print(f"\nCache: {cache.cache_dir}")
    print("=" * 60)
    for cached in entries:
        print(f"  {cached.key.cache_dir_name}  {cached.timestamp.isoformat(timespec='seconds')}  "
              f"({len(cached.artifacts)} artifacts)")
    print(f"\n{len(entries)} entries")
    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    project = load_project(args.target)
    missing = project.graph.validate_graph()

    strategy = LevelStrategy(args.level_strategy) if args.level_strategy else None
    scheduler = BuildScheduler(project.graph, project.settings(level_strategy=strategy), SwiftcBackend())
    order = scheduler.compute_build_order()

    print("\nBuild Order:")
    print("=" * 60)
    for name in order:
        deps = project.graph.dependencies_of(name)
        print(f"  {name}")
        print(f"    Depends on: {', '.join(deps) if deps else 'none'}")

    if args.levels:
        print("\nLevels:")
        for level, modules in sorted(scheduler.compute_levels(order).items()):
            print(f"  {level}: {', '.join(sorted(modules))}")

    if missing:
        print("\nMissing dependencies:")
        for module, dependency in missing:
            print(f"  - {module} -> {dependency}")

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mason",
        description="A build system for iOS apps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", parents=[common], help="Build the app (or one module) and install it to the simulator")
    build.add_argument("-s", "--source", type=Path, required=True, help="The source directory containing the project")
    build.add_argument("-m", "--module", help="The name of the module to build (optional)")
    build.add_argument("--clean", action="store_true", help="Force a clean build ignoring the module cache")
    build.add_argument("--workers", type=int, help="Max parallel module builds per level")
    build.add_argument("--level-strategy", choices=[s.value for s in LevelStrategy], help="How modules are grouped into levels")
    build.add_argument("--no-install", action="store_true", help="Skip simulator install and launch")
    build.add_argument("--no-sign", action="store_true", help="Skip code-signing the app bundle")
    build.add_argument("--progress", action="store_true", help="Show a progress bar over build levels")
    build.set_defaults(func=cmd_build)

    clean = subparsers.add_parser("clean", parents=[common], help="Remove build artifacts")
    clean.add_argument("target", type=Path, help="The target to clean (path to project directory)")
    clean.set_defaults(func=cmd_clean)

    cache = subparsers.add_parser("cache", help="Inspect or prune the module cache")
    cache_commands = cache.add_subparsers(dest="cache_command", required=True)

    cache_clean = cache_commands.add_parser("clean", parents=[common], help="Remove corrupt and expired cache entries")
    cache_clean.add_argument("target", type=Path, help="Path to project directory")
    cache_clean.add_argument("--max-age-days", type=float, help="Remove entries older than this (default: 7)")
    cache_clean.set_defaults(func=cmd_cache_clean)

    cache_list = cache_commands.add_parser("list", parents=[common], help="List cache entries")
    cache_list.add_argument("target", type=Path, help="Path to project directory")
    cache_list.set_defaults(func=cmd_cache_list)

    graph = subparsers.add_parser("graph", parents=[common], help="Validate the module graph and show build order")
    graph.add_argument("target", type=Path, help="Path to project directory")
    graph.add_argument("--levels", action="store_true", help="Also show scheduling levels")
    graph.add_argument("--level-strategy", choices=[s.value for s in LevelStrategy], help="How modules are grouped into levels")
    graph.set_defaults(func=cmd_graph)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return args.func(args)
    except MasonError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
