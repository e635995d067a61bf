"""
Conversion graph for SchemaBridge.

The ConversionGraph holds the author-supplied conversion edges of one
resource kind. Edges are unordered pairs of adjacent versions; any version
can be converted to any other by walking edges, which requires the graph
to be connected over the kind's VersionSet.

Invariants:
    - At most one edge per unordered version pair
    - Graph is mutable during startup, frozen before serving
    - A frozen graph is connected over its VersionSet and never mutated,
      so concurrent readers need no locking
    - Fingerprint changes when the edge set changes

How to change safely:
    - Register all edges before calling freeze()
    - Adding a version requires an edge to an already-connected version
    - Never replace an edge at runtime; rebuild and re-freeze instead

Example:
    >>> graph = ConversionGraph()
    >>> graph.register(edge("v1beta1", "v1", upgrade=f, downgrade=g))
    >>> graph.freeze(version_set)
    'sha256:...'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections import deque
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from ..errors import (
    DuplicateEdgeError,
    GraphFrozenError,
    IncompleteCoverageError,
    InvalidEdgeError,
)
from ..versions.comparator import Ordering, compare, sort_versions
from ..versions.types import ConversionEdge, VersionSet

logger = logging.getLogger(__name__)


class ConversionGraph:
    """Adjacency structure of conversion edges for one resource kind.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the graph is frozen (immutable)
        fingerprint: SHA-256 hash of the edge set (computed on freeze)
    """

    def __init__(self, kind: Optional[str] = None) -> None:
        self.kind = kind
        self._edges: Dict[FrozenSet[str], ConversionEdge] = {}
        self._adjacency: Dict[str, Dict[str, ConversionEdge]] = {}
        self._neighbor_order: Dict[str, Tuple[str, ...]] = {}
        self._version_set: Optional[VersionSet] = None
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    @property
    def version_set(self) -> Optional[VersionSet]:
        """VersionSet the graph was frozen against (None before freeze)."""
        return self._version_set

    def register(self, edge: ConversionEdge) -> None:
        """Register a conversion edge.

        Raises:
            GraphFrozenError: If the graph is frozen
            InvalidEdgeError: If the edge is a self-loop or older >= newer
            DuplicateEdgeError: If the pair already has an edge
        """
        older, newer = edge.older, edge.newer
        if not older or not newer or older == newer:
            raise InvalidEdgeError(
                f"Conversion edge must join two distinct versions, got {older!r} and {newer!r}",
                older,
                newer,
            )
        if compare(older, newer) is not Ordering.LESS:
            raise InvalidEdgeError(
                f"Edge declares {older} as older than {newer}, but {older} has higher priority",
                older,
                newer,
            )

        pair = frozenset((older, newer))
        with self._lock:
            if self._frozen:
                raise GraphFrozenError(
                    f"Cannot register edge {older} <-> {newer}: graph is frozen"
                )
            if pair in self._edges:
                raise DuplicateEdgeError(older, newer)

            self._edges[pair] = edge
            self._adjacency.setdefault(older, {})[newer] = edge
            self._adjacency.setdefault(newer, {})[older] = edge
            logger.debug(f"Registered conversion edge {older} <-> {newer} (kind={self.kind})")

    def __contains__(self, version: object) -> bool:
        return version in self._adjacency

    def versions(self) -> List[str]:
        """All versions touched by at least one edge, highest priority first."""
        return sort_versions(self._adjacency)

    def edges(self) -> List[ConversionEdge]:
        return [self._edges[pair] for pair in sorted(self._edges, key=sorted)]

    def edge_between(self, a: str, b: str) -> Optional[ConversionEdge]:
        return self._adjacency.get(a, {}).get(b)

    def neighbors(self, version: str) -> Tuple[str, ...]:
        """Adjacent versions in path tie-break order.

        Closest in comparator rank comes first; between equally close
        neighbors the higher-priority one wins.
        """
        cached = self._neighbor_order.get(version)
        if cached is not None:
            return cached
        order = self._order_neighbors(version)
        if self._frozen:
            self._neighbor_order[version] = order
        return order

    def _order_neighbors(self, version: str) -> Tuple[str, ...]:
        adjacent = self._adjacency.get(version)
        if not adjacent:
            return ()
        rank = {name: i for i, name in enumerate(sort_versions(self._adjacency))}
        here = rank[version]
        return tuple(sorted(adjacent, key=lambda n: (abs(rank[n] - here), rank[n])))

    def components(self, members: List[str]) -> List[List[str]]:
        """Connected components restricted to ``members``, largest first."""
        member_set = set(members)
        seen: Set[str] = set()
        components: List[List[str]] = []

        for start in sort_versions(member_set):
            if start in seen:
                continue
            seen.add(start)
            component = [start]
            queue = deque([start])
            while queue:
                current = queue.popleft()
                for neighbor in self._adjacency.get(current, {}):
                    if neighbor in member_set and neighbor not in seen:
                        seen.add(neighbor)
                        component.append(neighbor)
                        queue.append(neighbor)
            components.append(sort_versions(component))

        components.sort(key=len, reverse=True)
        return components

    def validate(self, version_set: VersionSet) -> None:
        """Check that every version of the set can reach every other.

        Edges touching versions outside the set are ignored for coverage
        and logged as warnings.

        Raises:
            IncompleteCoverageError: If the graph is not connected over the set
        """
        members = version_set.names
        outside = [v for v in self.versions() if v not in version_set]
        if outside:
            logger.warning(
                f"Conversion edges reference versions outside the VersionSet: {outside}",
                extra={"kind": self.kind},
            )

        components = self.components(members)
        if len(components) <= 1:
            return

        component_of = {v: i for i, comp in enumerate(components) for v in comp}
        pairs = [
            (a, b)
            for a in members
            for b in members
            if a != b and component_of[a] != component_of[b]
        ]
        unreachable = sort_versions({a for a, _ in pairs})
        raise IncompleteCoverageError(
            unreachable_versions=unreachable,
            unreachable_pairs=pairs,
            components=components,
            kind=self.kind,
        )

    def freeze(self, version_set: VersionSet) -> str:
        """Validate against ``version_set`` and make the graph immutable.

        Edges touching versions outside the set are dropped so the composer
        can never route through an unsupported version.

        Returns:
            Graph fingerprint string

        Raises:
            GraphFrozenError: If already frozen
            IncompleteCoverageError: If the graph is not connected
        """
        with self._lock:
            if self._frozen:
                raise GraphFrozenError("Conversion graph is already frozen")

            self.validate(version_set)

            for pair in [p for p in self._edges if not p <= set(version_set.names)]:
                dropped = self._edges.pop(pair)
                self._adjacency[dropped.older].pop(dropped.newer, None)
                self._adjacency[dropped.newer].pop(dropped.older, None)
            for version in [v for v, adj in self._adjacency.items() if not adj]:
                del self._adjacency[version]
            # Single-version kinds have no edges but the version is still known.
            for name in version_set.names:
                self._adjacency.setdefault(name, {})

            self._version_set = version_set
            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            self._neighbor_order = {v: self._order_neighbors(v) for v in self._adjacency}

            logger.info(
                f"Conversion graph frozen with {len(self._adjacency)} versions, "
                f"{len(self._edges)} edges, fingerprint={self._fingerprint}",
                extra={"kind": self.kind},
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> dict:
        """Dictionary representation, sorted for determinism."""
        return {
            "versions": self.versions(),
            "edges": sorted([e.older, e.newer] for e in self._edges.values()),
        }
