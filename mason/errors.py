"""
Build Errors

Exception types raised by the build orchestrator:
- CyclicDependency: a module transitively depends on itself
- CompilationFailed: compiler backend failure or a module without sources
- SigningFailed / InstallationFailed / LaunchFailed: collaborator failures
- ConfigError: invalid or missing project configuration
- CacheError: a cache entry could not be written
"""

from __future__ import annotations

from typing import List, Sequence


class MasonError(Exception):
    """Base class for all build errors."""


class CyclicDependency(MasonError):
    """Raised when dependency resolution revisits a module on the current path."""

    def __init__(self, path: Sequence[str]):
        self.path: List[str] = list(path)
        cycle = " ➜ ".join(f"[{name}]" for name in self.path)
        super().__init__(f"Cyclic dependency detected: {cycle}")


class CompilationFailed(MasonError):
    """Raised when a module or the final link fails to compile."""

    def __init__(self, module_name: str, detail: str = ""):
        self.module_name = module_name
        self.detail = detail
        message = f"Compilation failed for {module_name}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class SigningFailed(MasonError):
    """Raised when code-signing the app bundle fails."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Signing failed: {detail}" if detail else "Signing failed")


class InstallationFailed(MasonError):
    """Raised when the installer cannot install the bundle."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Installation failed: {detail}" if detail else "Installation failed")


class LaunchFailed(MasonError):
    """Raised when the installed app cannot be launched."""

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(f"Launch failed: {detail}" if detail else "Launch failed")


class ConfigError(MasonError):
    """Raised for missing or invalid app.yml / module.yml files."""


class CacheError(MasonError):
    """Raised when a module cache entry cannot be written."""
