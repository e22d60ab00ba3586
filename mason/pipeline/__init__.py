"""
Build Pipeline Module

Provides dependency-aware build orchestration:
- Level-based parallel module builds
- Content-fingerprint module caching
- Phase timing and parallelism statistics
"""

from mason.pipeline.operation import (
    ModuleBuildOperation,
    ModuleBuildResult,
    ModuleHashes,
    ModuleStatus,
    find_source_files,
)
from mason.pipeline.scheduler import (
    BuildReport,
    BuildScheduler,
)
from mason.pipeline.tracking import (
    BuildTimer,
    LevelStatistics,
    ParallelBuildTracker,
    PhaseTiming,
)

__all__ = [
    "ModuleBuildOperation",
    "ModuleBuildResult",
    "ModuleHashes",
    "ModuleStatus",
    "find_source_files",
    "BuildReport",
    "BuildScheduler",
    "BuildTimer",
    "LevelStatistics",
    "ParallelBuildTracker",
    "PhaseTiming",
]
