"""
Version and conversion-edge type definitions for SchemaBridge.

This module defines:
- VersionSpec: One API version of a resource kind (served/storage flags)
- VersionSet: All versions of a kind, with exactly one storage version
- ConversionEdge: Protocol for an author-supplied pair of converters
- FunctionEdge / edge(): Edge built from two plain callables
- VersionConverter: Base class for edges declared with class attributes

Invariants:
    - A VersionSet has exactly one storage version and no duplicate names
    - An edge's ``older`` version compares lower than its ``newer`` version
    - ``upgrade`` maps older -> newer, ``downgrade`` maps newer -> older

How to change safely:
    - Adding a version means adding a VersionSpec plus at least one edge to
      an existing version, otherwise startup fails on coverage
    - Storage version changes go through the migration driver

Example:
    >>> versions = VersionSet([
    ...     VersionSpec("v1beta1"),
    ...     VersionSpec("v1", storage=True),
    ... ])
    >>> e = edge("v1beta1", "v1", upgrade=beta_to_v1, downgrade=v1_to_beta)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from ..errors import InvalidVersionSetError
from .comparator import sort_versions

RawObject = Dict[str, Any]
ConvertFn = Callable[[RawObject], RawObject]


@dataclass(frozen=True)
class VersionSpec:
    """One version of a resource kind.

    Attributes:
        name: Version identifier (e.g. "v1beta1")
        served: Whether the API accepts/returns this version
        storage: Whether this is the canonical persisted encoding
    """

    name: str
    served: bool = True
    storage: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "served": self.served,
            "storage": self.storage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VersionSpec:
        return cls(
            name=data["name"],
            served=data.get("served", True),
            storage=data.get("storage", False),
        )


class VersionSet:
    """The set of versions a resource kind supports.

    Raises:
        InvalidVersionSetError: If empty, names repeat, or the number of
            storage versions is not exactly one
    """

    def __init__(self, versions: Iterable[VersionSpec]) -> None:
        specs = list(versions)
        if not specs:
            raise InvalidVersionSetError("VersionSet must contain at least one version")

        by_name: Dict[str, VersionSpec] = {}
        for spec in specs:
            if spec.name in by_name:
                raise InvalidVersionSetError(f"Version '{spec.name}' is listed twice")
            by_name[spec.name] = spec

        storage = [s.name for s in specs if s.storage]
        if len(storage) != 1:
            raise InvalidVersionSetError(
                f"VersionSet must have exactly one storage version, found {len(storage)}: {storage}"
            )

        self._by_name = by_name
        self._storage_version = storage[0]

    @property
    def storage_version(self) -> str:
        return self._storage_version

    @property
    def names(self) -> List[str]:
        """Version names in priority order (highest first)."""
        return sort_versions(self._by_name)

    @property
    def served(self) -> List[str]:
        return [n for n in self.names if self._by_name[n].served]

    def get(self, name: str) -> Optional[VersionSpec]:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[VersionSpec]:
        for name in self.names:
            yield self._by_name[name]

    def __len__(self) -> int:
        return len(self._by_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "storage_version": self._storage_version,
            "versions": [spec.to_dict() for spec in self],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> VersionSet:
        return cls(VersionSpec.from_dict(v) for v in data.get("versions", []))

    def __repr__(self) -> str:
        return f"VersionSet({self.names!r}, storage={self._storage_version!r})"


@runtime_checkable
class ConversionEdge(Protocol):
    """Capability to convert objects between two adjacent versions.

    Implementations must be pure: they receive a private copy of the object
    and return the converted object, or raise to signal failure.
    """

    @property
    def older(self) -> str:
        """The lower-priority version of the pair."""
        ...

    @property
    def newer(self) -> str:
        """The higher-priority version of the pair."""
        ...

    def upgrade(self, obj: RawObject) -> RawObject:
        """Convert an object from ``older`` to ``newer``."""
        ...

    def downgrade(self, obj: RawObject) -> RawObject:
        """Convert an object from ``newer`` to ``older``."""
        ...


@dataclass(frozen=True)
class FunctionEdge:
    """ConversionEdge backed by two plain callables."""

    older: str
    newer: str
    upgrade_fn: ConvertFn
    downgrade_fn: ConvertFn

    def upgrade(self, obj: RawObject) -> RawObject:
        return self.upgrade_fn(obj)

    def downgrade(self, obj: RawObject) -> RawObject:
        return self.downgrade_fn(obj)


class VersionConverter:
    """Convenience base class implementing :class:`ConversionEdge`.

    Subclasses set ``older`` and ``newer`` and override both directions.

    Example::

        class WidgetV1Beta1ToV1(VersionConverter):
            older = "v1beta1"
            newer = "v1"

            def upgrade(self, obj):
                obj["spec"]["replicas"] = obj["spec"].pop("count", 1)
                return obj

            def downgrade(self, obj):
                obj["spec"]["count"] = obj["spec"].pop("replicas", 1)
                return obj
    """

    older: str = ""
    newer: str = ""

    def upgrade(self, obj: RawObject) -> RawObject:
        raise NotImplementedError

    def downgrade(self, obj: RawObject) -> RawObject:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.older} <-> {self.newer})"


def _identity(obj: RawObject) -> RawObject:
    return obj


def edge(
    older: str,
    newer: str,
    upgrade: Optional[ConvertFn] = None,
    downgrade: Optional[ConvertFn] = None,
) -> FunctionEdge:
    """Helper to create a FunctionEdge.

    Omitted directions pass the object through unchanged (the composer still
    stamps the new apiVersion), which suits versions with identical schemas.

    Example:
        >>> edge("v1alpha1", "v1beta1", upgrade=add_defaults)
    """
    return FunctionEdge(
        older=older,
        newer=newer,
        upgrade_fn=upgrade or _identity,
        downgrade_fn=downgrade or _identity,
    )
