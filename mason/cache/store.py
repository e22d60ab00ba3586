"""
Module Cache

Content-addressable store of built module artifacts.

Layout:
    <cache_root>/<module>-<8 hex>/metadata.json
    <cache_root>/<module>-<8 hex>/<artifact paths relative to the build dir>

A metadata record that is unreadable, fails schema validation, or references
missing artifact files is treated as a cache miss, never as an error.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from mason.cache.fingerprints import ModuleKey, PathLike, compute_module_key
from mason.errors import CacheError
from mason.schemas import CACHE_METADATA_VALIDATOR

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"

# Entries older than this are removed by clean_cache (seconds)
DEFAULT_MAX_AGE = 60 * 60 * 24 * 7


@dataclass
class CachedModule:
    """Persisted record of one cached module build."""
    key: ModuleKey
    timestamp: datetime
    artifacts: List[str] = field(default_factory=list)

    def to_json_dict(self) -> Dict[str, object]:
        return {
            "key": self.key.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "artifacts": list(self.artifacts),
        }


class ModuleCache:
    """
    Stores and restores module build artifacts keyed by ModuleKey.

    Operations on the same key are serialised by an in-process lock so a
    concurrent cache_module cannot interleave with a lookup or restore.
    """

    def __init__(self, cache_dir: PathLike):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: ModuleKey) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key.cache_dir_name, threading.Lock())

    def _forget_lock(self, name: str) -> None:
        with self._locks_guard:
            self._locks.pop(name, None)

    def entry_path(self, key: ModuleKey) -> Path:
        return self.cache_dir / key.cache_dir_name

    def compute_key(
        self,
        name: str,
        source_files: Iterable[PathLike],
        dependency_hashes: Mapping[str, str],
        compiler_args: Union[str, Sequence[str]],
    ) -> ModuleKey:
        """Compute the fingerprint for a module build."""
        return compute_module_key(name, source_files, dependency_hashes, compiler_args)

    def _read_metadata(self, entry: Path) -> Optional[CachedModule]:
        metadata_path = entry / METADATA_FILE
        if not metadata_path.exists():
            return None

        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read cache metadata {metadata_path}: {e}")
            return None

        if not CACHE_METADATA_VALIDATOR.is_valid(data):
            logger.warning(f"Invalid cache metadata {metadata_path}")
            return None

        try:
            timestamp = datetime.fromisoformat(data["timestamp"])
        except ValueError:
            logger.warning(f"Invalid cache timestamp in {metadata_path}")
            return None

        # Entries are compared against naive local times
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)

        return CachedModule(
            key=ModuleKey.from_dict(data["key"]),
            timestamp=timestamp,
            artifacts=list(data["artifacts"]),
        )

    def _is_complete(self, key: ModuleKey) -> bool:
        entry = self.entry_path(key)
        cached = self._read_metadata(entry)
        if cached is None or cached.key != key:
            return False
        return all((entry / artifact).is_file() for artifact in cached.artifacts)

    def has_cached_module(self, key: ModuleKey) -> bool:
        """True when a metadata record exists and every listed artifact is present."""
        with self._lock_for(key):
            return self._is_complete(key)

    def cache_module(self, key: ModuleKey, build_dir: PathLike, artifacts: Sequence[str]) -> CachedModule:
        """
        Save a built module's artifacts.

        Args:
            key: Fingerprint of the build
            build_dir: Root the artifact paths are relative to
            artifacts: Artifact paths relative to build_dir

        Raises:
            CacheError: if an artifact is missing or cannot be copied
        """
        build_root = Path(build_dir)
        entry = self.entry_path(key)

        with self._lock_for(key):
            if entry.exists():
                shutil.rmtree(entry)
            entry.mkdir(parents=True)

            for artifact in artifacts:
                src = build_root / artifact
                dst = entry / artifact
                dst.parent.mkdir(parents=True, exist_ok=True)
                try:
                    shutil.copy2(src, dst)
                except OSError as e:
                    shutil.rmtree(entry, ignore_errors=True)
                    raise CacheError(f"Failed to cache {artifact} for {key.name}: {e}") from e

            cached = CachedModule(key=key, timestamp=datetime.now(), artifacts=list(artifacts))
            (entry / METADATA_FILE).write_text(
                json.dumps(cached.to_json_dict(), indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )

        logger.debug(f"Cached module {key.name} with {len(artifacts)} artifacts")
        return cached

    def restore_module(self, key: ModuleKey, build_dir: PathLike) -> CachedModule:
        """
        Copy every recorded artifact back into build_dir.

        Raises:
            CacheError: if no complete entry exists for key
        """
        build_root = Path(build_dir)
        entry = self.entry_path(key)

        with self._lock_for(key):
            cached = self._read_metadata(entry)
            if cached is None:
                raise CacheError(f"No cache entry for {key.name} ({key.cache_dir_name})")

            for artifact in cached.artifacts:
                src = entry / artifact
                dst = build_root / artifact
                dst.parent.mkdir(parents=True, exist_ok=True)
                try:
                    shutil.copy2(src, dst)
                except OSError as e:
                    raise CacheError(f"Failed to restore {artifact} for {key.name}: {e}") from e

        logger.debug(f"Restored cached module {key.name} with {len(cached.artifacts)} artifacts")
        return cached

    def evict(self, key: ModuleKey) -> bool:
        """Remove the entry for key. Returns True if something was removed."""
        entry = self.entry_path(key)
        with self._lock_for(key):
            if not entry.exists():
                return False
            shutil.rmtree(entry)
        self._forget_lock(key.cache_dir_name)
        return True

    def entries(self) -> List[CachedModule]:
        """All readable cache entries, oldest first."""
        found = []
        for item in sorted(self.cache_dir.iterdir()):
            if not item.is_dir():
                continue
            cached = self._read_metadata(item)
            if cached is not None:
                found.append(cached)
        return sorted(found, key=lambda c: c.timestamp)

    def clean_cache(self, max_age: float = DEFAULT_MAX_AGE) -> List[str]:
        """
        Remove corrupt entries and entries older than max_age seconds.

        Returns:
            Names of the removed cache directories.
        """
        cutoff = datetime.now() - timedelta(seconds=max_age)
        removed: List[str] = []

        for item in sorted(self.cache_dir.iterdir()):
            if not item.is_dir():
                continue

            cached = self._read_metadata(item)
            if cached is None:
                shutil.rmtree(item, ignore_errors=True)
                removed.append(item.name)
                self._forget_lock(item.name)
                logger.debug(f"Removed invalid cache entry {item.name}")
                continue

            if cached.timestamp < cutoff:
                shutil.rmtree(item)
                removed.append(item.name)
                self._forget_lock(item.name)
                logger.debug(f"Removed old cache entry for {cached.key.name}")

        return removed
