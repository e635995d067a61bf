"""
Versions module for SchemaBridge.

This module provides the version model of every resource kind:
- Version ordering (Kubernetes-style priority comparator)
- VersionSet and conversion-edge definitions

Invariants:
    - Exactly one storage version per kind
    - Every version of a kind is reachable from every other
    - All kinds and edges must be registered before server start

How to change safely:
    - Add a version together with an edge to an existing version
    - Move the storage version only alongside a migration run
"""

from .comparator import Ordering, Version, compare, parse_version, sort_versions, version_key
from .types import (
    ConversionEdge,
    FunctionEdge,
    VersionConverter,
    VersionSet,
    VersionSpec,
    edge,
)

__all__ = [
    # Comparator
    "Ordering",
    "Version",
    "compare",
    "parse_version",
    "sort_versions",
    "version_key",
    # Types
    "ConversionEdge",
    "FunctionEdge",
    "VersionConverter",
    "VersionSet",
    "VersionSpec",
    "edge",
]
