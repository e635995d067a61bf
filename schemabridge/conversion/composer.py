"""
Path composer for SchemaBridge.

The PathComposer converts an object between any two versions of a kind by
finding the shortest walk through the ConversionGraph (breadth-first, by
edge count) and applying each edge's directional function in order.

Invariants:
    - Converting to the object's own version returns it unchanged
    - The caller's object is never mutated; the first hop gets a deep copy
    - A walk never revisits a version
    - The first failing hop aborts the conversion; no alternative path is tried
    - Paths are deterministic: BFS expands neighbors in the graph's fixed
      tie-break order

How to change safely:
    - Keep path selection deterministic; migration logs and tests rely on it
    - Edge functions are third-party code; every exception they raise must be
      wrapped into HopConversionError
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..errors import HopConversionError, UnknownVersionError
from ..versions.types import RawObject
from .graph import ConversionGraph
from .objects import stamp_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hop:
    """One applied conversion step."""

    from_version: str
    to_version: str
    direction: str  # "upgrade" or "downgrade"


@dataclass
class ConversionResult:
    """Converted object plus the hops that produced it."""

    obj: RawObject
    hops: List[Hop] = field(default_factory=list)

    @property
    def path(self) -> List[str]:
        if not self.hops:
            return []
        return [self.hops[0].from_version] + [h.to_version for h in self.hops]


class PathComposer:
    """Multi-hop converter over a ConversionGraph.

    Thread safety:
        Safe for concurrent use once the graph is frozen. The path cache is
        guarded by a lock; edge functions are called without holding it.

    Example:
        >>> composer = PathComposer(graph)
        >>> converted = composer.convert(obj, "v1alpha1", "v1")
    """

    def __init__(
        self,
        graph: ConversionGraph,
        hop_timeout: Optional[float] = None,
    ) -> None:
        """Initialize the composer.

        Args:
            graph: Conversion graph (should be frozen before serving)
            hop_timeout: Seconds allowed per hop (None = no limit). Timed hops
                run on their own daemon thread, abandoned when they overrun.
        """
        self.graph = graph
        self.hop_timeout = hop_timeout
        self._path_cache: Dict[Tuple[str, str], Tuple[str, ...]] = {}
        self._lock = threading.Lock()

    def find_path(self, from_version: str, to_version: str) -> List[str]:
        """Shortest version walk from ``from_version`` to ``to_version``.

        Raises:
            UnknownVersionError: If either version is not in the graph
        """
        for version in (from_version, to_version):
            if version not in self.graph:
                raise UnknownVersionError(version, self.graph.versions())
        if from_version == to_version:
            return [from_version]

        key = (from_version, to_version)
        cached = self._path_cache.get(key)
        if cached is not None:
            return list(cached)

        path = self._bfs(from_version, to_version)
        if self.graph.frozen:
            with self._lock:
                self._path_cache[key] = tuple(path)
        return path

    def _bfs(self, start: str, goal: str) -> List[str]:
        parents: Dict[str, Optional[str]] = {start: None}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current == goal:
                break
            for neighbor in self.graph.neighbors(current):
                if neighbor not in parents:
                    parents[neighbor] = current
                    queue.append(neighbor)

        if goal not in parents:
            # Only reachable on an unvalidated graph.
            raise UnknownVersionError(goal, sorted(parents))

        path = [goal]
        while path[-1] != start:
            path.append(parents[path[-1]])
        path.reverse()
        return path

    def convert(self, obj: RawObject, from_version: str, to_version: str) -> RawObject:
        """Convert ``obj`` from one version to another.

        Raises:
            UnknownVersionError: If either version is not in the graph
            HopConversionError: If any hop's function fails
        """
        return self.convert_with_trace(obj, from_version, to_version).obj

    def convert_with_trace(
        self,
        obj: RawObject,
        from_version: str,
        to_version: str,
    ) -> ConversionResult:
        """Like :meth:`convert`, also reporting the hops applied."""
        path = self.find_path(from_version, to_version)
        if len(path) == 1:
            return ConversionResult(obj=obj)

        current = copy.deepcopy(obj)
        hops: List[Hop] = []
        visited = {path[0]}

        for src, dst in zip(path, path[1:]):
            if dst in visited:
                raise HopConversionError(src, dst, RuntimeError(f"cycle detected at {dst}"))
            visited.add(dst)

            edge = self.graph.edge_between(src, dst)
            if edge is None:
                raise HopConversionError(src, dst, LookupError(f"no edge {src} -> {dst}"))
            if edge.newer == dst:
                direction, fn = "upgrade", edge.upgrade
            else:
                direction, fn = "downgrade", edge.downgrade

            try:
                result = self._run_hop(fn, current)
            except Exception as e:
                logger.warning(
                    f"Conversion hop {src} -> {dst} failed: {e}",
                    extra={"kind": self.graph.kind, "direction": direction},
                )
                raise HopConversionError(src, dst, e) from e

            if not isinstance(result, Mapping):
                raise HopConversionError(
                    src,
                    dst,
                    TypeError(f"{direction} returned {type(result).__name__}, expected a mapping"),
                )
            current = stamp_version(dict(result), dst)
            hops.append(Hop(from_version=src, to_version=dst, direction=direction))

        logger.debug(
            f"Converted {from_version} -> {to_version} in {len(hops)} hop(s)",
            extra={"kind": self.graph.kind, "path": path},
        )
        return ConversionResult(obj=current, hops=hops)

    def _run_hop(self, fn, obj: RawObject) -> RawObject:
        if self.hop_timeout is None:
            return fn(obj)
        outcome: Dict[str, object] = {}

        def target() -> None:
            try:
                outcome["result"] = fn(obj)
            except BaseException as e:
                outcome["error"] = e

        # One thread per hop: an overrunning hop is abandoned, never queued behind.
        thread = threading.Thread(
            target=target, name=f"schemabridge-hop-{self.graph.kind}", daemon=True
        )
        thread.start()
        thread.join(self.hop_timeout)
        if thread.is_alive():
            logger.warning(
                f"Hop exceeded {self.hop_timeout}s, abandoning its thread",
                extra={"kind": self.graph.kind},
            )
            raise TimeoutError(f"hop exceeded {self.hop_timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]
