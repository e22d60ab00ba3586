"""
Toolchain Collaborators

Thin wrappers around platform tools used by the scheduler:
- CompilerBackend / SwiftcBackend: module compiles and the final link
- AppBundler (import from mason.backends.bundle): app bundle, Info.plist and code-signing
- ArtifactInstaller / SimctlInstaller: simulator install and launch
"""

from mason.backends.compiler import (
    CompileResult,
    CompilerBackend,
    SwiftcBackend,
    module_artifacts,
)
from mason.backends.installer import (
    ArtifactInstaller,
    SimctlInstaller,
)

__all__ = [
    "CompileResult",
    "CompilerBackend",
    "SwiftcBackend",
    "module_artifacts",
    "ArtifactInstaller",
    "SimctlInstaller",
]
