"""
Module fingerprints.

A ModuleKey identifies one cacheable module build by its own sources, the
recorded hashes of its direct dependencies, and the compiler arguments.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Sequence, Union

PathLike = Union[str, Path]

# Length of the digest prefix used in cache directory names
DIGEST_PREFIX_LENGTH = 8


def hash_source_files(source_files: Iterable[PathLike]) -> str:
    """Hash the contents of source files concatenated in sorted path order."""
    hasher = hashlib.sha256()
    for path in sorted(str(p) for p in source_files):
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                hasher.update(chunk)
    return hasher.hexdigest()


def canonical_args(compiler_args: Union[str, Sequence[str]]) -> str:
    """Flatten an argument list into the single string stored in a key."""
    if isinstance(compiler_args, str):
        return compiler_args
    return " ".join(compiler_args)


@dataclass(frozen=True)
class ModuleKey:
    """Content fingerprint of one module build."""
    name: str
    source_hash: str
    dependency_hashes: Dict[str, str] = field(default_factory=dict)
    compiler_args: str = ""

    def __hash__(self) -> int:
        return hash(self.digest)

    @property
    def digest(self) -> str:
        raw = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    @property
    def cache_dir_name(self) -> str:
        return f"{self.name}-{self.digest[:DIGEST_PREFIX_LENGTH]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source_hash": self.source_hash,
            "dependency_hashes": dict(sorted(self.dependency_hashes.items())),
            "compiler_args": self.compiler_args,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ModuleKey":
        return cls(
            name=str(data["name"]),
            source_hash=str(data["source_hash"]),
            dependency_hashes={str(k): str(v) for k, v in (data.get("dependency_hashes") or {}).items()},
            compiler_args=str(data.get("compiler_args", "")),
        )


def compute_module_key(
    name: str,
    source_files: Iterable[PathLike],
    dependency_hashes: Mapping[str, str],
    compiler_args: Union[str, Sequence[str]],
) -> ModuleKey:
    return ModuleKey(
        name=name,
        source_hash=hash_source_files(source_files),
        dependency_hashes=dict(dependency_hashes),
        compiler_args=canonical_args(compiler_args),
    )
