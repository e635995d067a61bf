"""
Conversion registry for SchemaBridge.

The ConversionRegistry is the central authority for every resource kind
the service converts. For each kind it holds:
- The VersionSet (served/storage flags)
- The ConversionGraph of author-supplied edges
- A PathComposer built once the graph is frozen

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Freezing validates every kind; one disconnected graph aborts startup
    - Once frozen, no kinds or edges can be added
    - Fingerprint changes when any kind's versions or edges change

How to change safely:
    - Register all kinds and edges before calling freeze_registry()
    - Schema modules should only call register_kind / register_edge

Example:
    >>> registry = ConversionRegistry()
    >>> registry.register_kind("Widget", versions, group="example.com")
    >>> registry.register_edge("Widget", edge("v1beta1", "v1", upgrade=f, downgrade=g))
    >>> registry.freeze()
    'sha256:...'
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from ..errors import GraphFrozenError, InvalidVersionSetError, UnknownKindError
from ..versions.types import ConversionEdge, VersionSet
from .composer import PathComposer
from .graph import ConversionGraph

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[ConversionRegistry] = None
_registry_lock = threading.Lock()


@dataclass
class ResourceKind:
    """Everything the engine knows about one resource kind.

    Attributes:
        kind: Kind name (e.g. "Widget")
        group: API group ("" for the core group)
        version_set: Supported versions
        graph: Conversion edges between versions
        composer: Multi-hop converter (set on freeze)
    """

    kind: str
    group: str
    version_set: VersionSet
    graph: ConversionGraph
    composer: Optional[PathComposer] = field(default=None, repr=False)

    @property
    def storage_version(self) -> str:
        return self.version_set.storage_version

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "group": self.group,
            "versions": self.version_set.to_dict(),
            "graph": self.graph.to_dict(),
            "fingerprint": self.graph.fingerprint,
        }


class ConversionRegistry:
    """Registry of resource kinds and their conversion graphs.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible
    """

    def __init__(self, hop_timeout: Optional[float] = None) -> None:
        self._kinds: Dict[str, ResourceKind] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._hop_timeout = hop_timeout
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    def set_hop_timeout(self, hop_timeout: Optional[float]) -> None:
        """Per-hop timeout used by composers created on freeze."""
        if self._frozen:
            raise GraphFrozenError("Cannot change hop timeout: registry is frozen")
        self._hop_timeout = hop_timeout

    def register_kind(
        self,
        kind: str,
        version_set: VersionSet,
        group: str = "",
    ) -> ResourceKind:
        """Register a resource kind with its VersionSet.

        Raises:
            GraphFrozenError: If registry is frozen
            InvalidVersionSetError: If the kind is already registered
        """
        with self._lock:
            if self._frozen:
                raise GraphFrozenError(f"Cannot register kind '{kind}': registry is frozen")
            if kind in self._kinds:
                raise InvalidVersionSetError(f"Kind '{kind}' is already registered")

            resource = ResourceKind(
                kind=kind,
                group=group,
                version_set=version_set,
                graph=ConversionGraph(kind=kind),
            )
            self._kinds[kind] = resource
            logger.debug(
                f"Registered kind {kind} with versions {version_set.names} "
                f"(storage={version_set.storage_version})"
            )
            return resource

    def register_edge(self, kind: str, edge: ConversionEdge) -> None:
        """Register a conversion edge for a previously registered kind.

        Raises:
            UnknownKindError: If the kind is not registered
            DuplicateEdgeError, InvalidEdgeError, GraphFrozenError: From the graph
        """
        resource = self._kinds.get(kind)
        if resource is None:
            raise UnknownKindError(kind)
        resource.graph.register(edge)

    def get_kind(self, kind: str) -> ResourceKind:
        """Look up a kind.

        Raises:
            UnknownKindError: If the kind is not registered
        """
        resource = self._kinds.get(kind)
        if resource is None:
            raise UnknownKindError(kind)
        return resource

    def kinds(self) -> Iterator[ResourceKind]:
        for name in sorted(self._kinds):
            yield self._kinds[name]

    def composer(self, kind: str) -> PathComposer:
        """Return the PathComposer for a kind (built on freeze, or on demand)."""
        resource = self.get_kind(kind)
        if resource.composer is None:
            return PathComposer(resource.graph, hop_timeout=self._hop_timeout)
        return resource.composer

    def validate_all(self) -> List[str]:
        """Validate every kind without freezing.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        for resource in self.kinds():
            try:
                resource.graph.validate(resource.version_set)
            except ValueError as e:
                errors.append(str(e))
        return errors

    def freeze(self) -> str:
        """Validate and freeze every kind, then compute the registry fingerprint.

        Returns:
            Registry fingerprint string

        Raises:
            GraphFrozenError: If already frozen
            IncompleteCoverageError: If any kind's graph is not connected
        """
        with self._lock:
            if self._frozen:
                raise GraphFrozenError("Registry is already frozen")

            for resource in self._kinds.values():
                if not resource.graph.frozen:
                    resource.graph.freeze(resource.version_set)
                resource.composer = PathComposer(resource.graph, hop_timeout=self._hop_timeout)

            canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
            self._fingerprint = "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()
            self._frozen = True
            logger.info(
                f"Conversion registry frozen with {len(self._kinds)} kinds, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def to_dict(self) -> dict:
        return {"kinds": [resource.to_dict() for resource in self.kinds()]}


def get_registry() -> ConversionRegistry:
    """Get the global conversion registry.

    Creates a new registry if none exists.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = ConversionRegistry()
        return _global_registry


def freeze_registry() -> str:
    """Freeze the global registry.

    This should be called after all schema modules are imported
    and before the server starts accepting requests.
    """
    return get_registry().freeze()


def reset_registry() -> None:
    """Reset the global registry (for testing only)."""
    global _global_registry
    with _registry_lock:
        _global_registry = None
