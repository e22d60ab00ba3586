"""
Mason

Multi-module build orchestrator: dependency-graph resolution, level-parallel
module builds, content-addressable module caching, and a final link.
"""

__version__ = "1.0.0"
