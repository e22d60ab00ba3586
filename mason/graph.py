"""
Dependency Graph

Module adjacency list with dependency-first resolution:
- resolve_dependencies: transitive closure of one module, dependencies first
- validate_graph: cycle check over every module, missing dependencies reported

Usage:
    from mason.graph import DependencyGraph

    graph = DependencyGraph()
    graph.add_module("Core", [])
    graph.add_module("Feature", ["Core"])

    graph.resolve_dependencies("Feature")
    # -> ["Core", "Feature"]
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from mason.errors import CyclicDependency

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Directed graph of module -> direct dependencies.

    The graph is mutated only while it is being built (one add_module call
    per module) and is read-only while a build is scheduled.
    """

    def __init__(self) -> None:
        self.adjacency: Dict[str, List[str]] = {}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Optional[Iterable[str]]]) -> "DependencyGraph":
        """Build a graph from a name -> dependencies mapping."""
        graph = cls()
        for name, dependencies in mapping.items():
            graph.add_module(name, dependencies)
        return graph

    def add_module(self, name: str, dependencies: Optional[Iterable[str]] = None) -> None:
        """Register (or overwrite) a module's direct dependency list."""
        self.adjacency[name] = list(dependencies or [])

    @property
    def modules(self) -> List[str]:
        return list(self.adjacency)

    def dependencies_of(self, name: str) -> List[str]:
        return list(self.adjacency.get(name, []))

    def __contains__(self, name: object) -> bool:
        return name in self.adjacency

    def __len__(self) -> int:
        return len(self.adjacency)

    def __iter__(self) -> Iterator[str]:
        return iter(self.adjacency)

    def resolve_dependencies(self, name: str) -> List[str]:
        """
        Resolve every module transitively required by `name`.

        Returns:
            Module names in dependency-first order, without duplicates,
            with `name` itself last.

        Raises:
            CyclicDependency: if a module on the current path is revisited.
        """
        resolved: List[str] = []
        visited: Set[str] = set()
        self._resolve(name, resolved, visited)
        return resolved

    def _resolve(self, root: str, resolved: List[str], visited: Set[str]) -> None:
        # Iterative post-order DFS. Each frame is (module, iterator over its deps).
        recursion_stack: Set[str] = set()
        path_stack: List[str] = []
        frames: List[Tuple[str, Iterator[str]]] = []

        def enter(module: str) -> None:
            recursion_stack.add(module)
            path_stack.append(module)
            frames.append((module, iter(self.adjacency.get(module, []))))

        if root in visited:
            return
        enter(root)

        while frames:
            module, pending = frames[-1]
            dependency = next(pending, None)

            if dependency is None:
                frames.pop()
                path_stack.pop()
                recursion_stack.discard(module)
                visited.add(module)
                resolved.append(module)
                continue

            if dependency in recursion_stack:
                start = path_stack.index(dependency)
                raise CyclicDependency(path_stack[start:] + [dependency])

            if dependency not in visited:
                enter(dependency)

    def validate_graph(self) -> List[Tuple[str, str]]:
        """
        Check every module in the graph for cycles and missing dependencies.

        Missing dependencies are logged as warnings and returned; they are
        not fatal.

        Returns:
            List of (module, missing_dependency) pairs.

        Raises:
            CyclicDependency: on the first cycle found.
        """
        visited: Set[str] = set()
        for name in self.adjacency:
            self._resolve(name, [], visited)

        missing: List[Tuple[str, str]] = []
        for name, dependencies in self.adjacency.items():
            for dependency in dependencies:
                if dependency not in self.adjacency:
                    logger.warning(f"Module {name} depends on unknown module {dependency}")
                    missing.append((name, dependency))

        return missing
