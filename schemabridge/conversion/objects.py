"""
Helpers for raw encoded objects.

A raw object is a JSON-compatible mapping carrying its own type metadata::

    {"apiVersion": "example.com/v1beta1", "kind": "Widget", "spec": {...}}

``apiVersion`` is ``<group>/<version>`` or a bare ``<version>`` for the core
group. The embedded version is the source of truth for an object's current
encoding.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

from ..errors import MalformedObjectError

API_VERSION_FIELD = "apiVersion"
KIND_FIELD = "kind"


def split_api_version(api_version: str) -> Tuple[str, str]:
    """Split ``group/version`` into ``(group, version)``; group is "" if absent."""
    group, sep, version = api_version.rpartition("/")
    if not sep:
        return "", api_version
    return group, version


def join_api_version(group: str, version: str) -> str:
    return f"{group}/{version}" if group else version


def object_api_version(obj: Any) -> Tuple[str, str]:
    """Return ``(group, version)`` read from the object's metadata.

    Raises:
        MalformedObjectError: If obj is not a mapping or has no usable apiVersion
    """
    if not isinstance(obj, Mapping):
        raise MalformedObjectError(f"Expected an object, got {type(obj).__name__}")
    api_version = obj.get(API_VERSION_FIELD)
    if not isinstance(api_version, str) or not api_version:
        raise MalformedObjectError(f"Object has no '{API_VERSION_FIELD}' field")
    group, version = split_api_version(api_version)
    if not version:
        raise MalformedObjectError(f"Object apiVersion '{api_version}' has no version")
    return group, version


def object_version(obj: Any) -> str:
    return object_api_version(obj)[1]


def object_kind(obj: Any) -> str:
    """Return the object's kind.

    Raises:
        MalformedObjectError: If the kind field is missing or empty
    """
    if not isinstance(obj, Mapping):
        raise MalformedObjectError(f"Expected an object, got {type(obj).__name__}")
    kind = obj.get(KIND_FIELD)
    if not isinstance(kind, str) or not kind:
        raise MalformedObjectError(f"Object has no '{KIND_FIELD}' field")
    return kind


def stamp_version(obj: dict, version: str, group: Optional[str] = None) -> dict:
    """Set the object's apiVersion in place, keeping its group unless one is given."""
    if group is None:
        current = obj.get(API_VERSION_FIELD)
        group = split_api_version(current)[0] if isinstance(current, str) else ""
    obj[API_VERSION_FIELD] = join_api_version(group, version)
    return obj
