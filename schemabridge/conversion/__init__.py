"""
Conversion engine for SchemaBridge.

This module provides:
- ConversionGraph: adjacency of author-supplied edges, validated once
- PathComposer: shortest-path multi-hop conversion with per-hop errors
- ConversionRegistry: per-kind VersionSet, graph and composer
- objects: apiVersion/kind helpers for raw encoded objects

Invariants:
    - Graphs are validated and frozen before serving
    - Item-level failures surface as exceptions carrying a stable code

How to change safely:
    - Keep path selection deterministic
    - Register every kind before freeze_registry()
"""

from .composer import ConversionResult, Hop, PathComposer
from .graph import ConversionGraph
from .objects import object_api_version, object_kind, split_api_version, stamp_version
from .registry import (
    ConversionRegistry,
    ResourceKind,
    freeze_registry,
    get_registry,
    reset_registry,
)

__all__ = [
    # Engine
    "ConversionGraph",
    "ConversionResult",
    "Hop",
    "PathComposer",
    # Registry
    "ConversionRegistry",
    "ResourceKind",
    "get_registry",
    "freeze_registry",
    "reset_registry",
    # Objects
    "object_api_version",
    "object_kind",
    "split_api_version",
    "stamp_version",
]
