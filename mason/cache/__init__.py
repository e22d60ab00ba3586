"""
Module Cache Package

Content-addressable caching of module build outputs:
- ModuleKey fingerprints (sources + dependency hashes + compiler args)
- ModuleCache store with restore, eviction and age-based cleaning
"""

from mason.cache.fingerprints import (
    ModuleKey,
    canonical_args,
    compute_module_key,
    hash_source_files,
)
from mason.cache.store import (
    DEFAULT_MAX_AGE,
    CachedModule,
    ModuleCache,
)

__all__ = [
    "ModuleKey",
    "canonical_args",
    "compute_module_key",
    "hash_source_files",
    "DEFAULT_MAX_AGE",
    "CachedModule",
    "ModuleCache",
]
