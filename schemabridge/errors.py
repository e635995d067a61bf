"""
Error types for SchemaBridge.

This module defines every exception raised by the conversion engine,
the object store and the migration driver:
- SchemaBridgeError: Base exception
- Registration errors: InvalidVersionSetError, InvalidEdgeError,
  DuplicateEdgeError, IncompleteCoverageError, GraphFrozenError
- Conversion errors: UnknownKindError, UnknownVersionError,
  HopConversionError, MalformedObjectError, BatchTooLargeError
- Migration errors: WriteConflictError, MigrationAbortedError,
  MigrationInProgressError, UnknownMigrationError

Invariants:
    - All errors inherit from SchemaBridgeError
    - Every error carries a stable ``code`` used verbatim in per-item
      failure payloads of the conversion service
    - Registration errors also subclass ValueError (fail fast at startup)

How to change safely:
    - Never change an existing ``code``; clients match on it
    - Add new error classes instead of overloading existing ones
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple


class SchemaBridgeError(Exception):
    """Base exception for all SchemaBridge errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SCHEMABRIDGE_ERROR"
        self.details = details or {}


# --- Registration (construction-time) errors ---


class InvalidVersionSetError(SchemaBridgeError, ValueError):
    """VersionSet violates its invariants (empty, duplicates, storage count != 1)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="InvalidVersionSet")


class InvalidEdgeError(SchemaBridgeError, ValueError):
    """Conversion edge is malformed (self-loop or inverted ordering)."""

    def __init__(self, message: str, older: str, newer: str) -> None:
        super().__init__(
            message,
            code="InvalidEdge",
            details={"older": older, "newer": newer},
        )
        self.older = older
        self.newer = newer


class DuplicateEdgeError(SchemaBridgeError, ValueError):
    """A second edge was registered for the same unordered version pair."""

    def __init__(self, first: str, second: str) -> None:
        super().__init__(
            f"Conversion edge between {first} and {second} is already registered",
            code="DuplicateEdge",
            details={"versions": [first, second]},
        )
        self.versions = (first, second)


class IncompleteCoverageError(SchemaBridgeError, ValueError):
    """The conversion graph does not connect every version of the VersionSet.

    Attributes:
        unreachable_versions: Versions that cannot reach at least one other member
        unreachable_pairs: Ordered pairs (a, b) with no path from a to b
        components: Connected components, each sorted by version priority
    """

    def __init__(
        self,
        unreachable_versions: List[str],
        unreachable_pairs: List[Tuple[str, str]],
        components: List[List[str]],
        kind: Optional[str] = None,
    ) -> None:
        where = f" for kind '{kind}'" if kind else ""
        super().__init__(
            f"Conversion graph{where} is not connected: "
            f"{len(components)} components, unreachable versions {unreachable_versions}",
            code="IncompleteCoverage",
            details={
                "kind": kind,
                "unreachable_versions": unreachable_versions,
                "components": components,
            },
        )
        self.kind = kind
        self.unreachable_versions = unreachable_versions
        self.unreachable_pairs = unreachable_pairs
        self.components = components


class GraphFrozenError(SchemaBridgeError):
    """Raised when attempting to modify a frozen graph or registry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="GraphFrozen")


# --- Conversion (per-item) errors ---


class MalformedObjectError(SchemaBridgeError):
    """Object is not a mapping or lacks its embedded type metadata."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="MalformedObject")


class BatchTooLargeError(SchemaBridgeError):
    """Request carries more objects than the configured limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Batch of {size} objects exceeds the limit of {limit}",
            code="BatchTooLarge",
            details={"size": size, "limit": limit},
        )


class UnknownKindError(SchemaBridgeError):
    """Object kind has no registered VersionSet."""

    def __init__(self, kind: str) -> None:
        super().__init__(
            f"Kind '{kind}' is not registered",
            code="UnknownKind",
            details={"kind": kind},
        )
        self.kind = kind


class UnknownVersionError(SchemaBridgeError):
    """Requested version is not part of the conversion graph."""

    def __init__(self, version: str, known: Iterable[str] = ()) -> None:
        known_list = list(known)
        super().__init__(
            f"Version '{version}' is not known to the conversion graph",
            code="UnknownVersion",
            details={"version": version, "known_versions": known_list},
        )
        self.version = version
        self.known_versions = known_list


class HopConversionError(SchemaBridgeError):
    """An author-supplied conversion function failed on one hop.

    Attributes:
        failed_at_version: Version the object was at when the hop failed
        target_version: Version the hop was converting to
        cause: Underlying exception raised by the conversion function
    """

    def __init__(
        self,
        failed_at_version: str,
        target_version: str,
        cause: BaseException,
    ) -> None:
        super().__init__(
            f"Conversion {failed_at_version} -> {target_version} failed: "
            f"{type(cause).__name__}: {cause}",
            code="HopConversionFailure",
            details={
                "failed_at_version": failed_at_version,
                "target_version": target_version,
                "cause": repr(cause),
            },
        )
        self.failed_at_version = failed_at_version
        self.target_version = target_version
        self.cause = cause


# --- Migration errors ---


class WriteConflictError(SchemaBridgeError):
    """Optimistic write lost a race with a concurrent writer."""

    def __init__(
        self,
        kind: str,
        key: str,
        expected: int,
        actual: Optional[int],
    ) -> None:
        super().__init__(
            f"Write conflict on {kind}/{key}: expected resource_version {expected}, "
            f"found {actual}",
            code="WriteConflict",
            details={"kind": kind, "key": key, "expected": expected, "actual": actual},
        )
        self.kind = kind
        self.key = key
        self.expected = expected
        self.actual = actual


class MigrationAbortedError(SchemaBridgeError):
    """Migration was cancelled between objects; the cursor is resumable."""

    def __init__(self, handle: str) -> None:
        super().__init__(
            f"Migration {handle} was cancelled",
            code="MigrationAborted",
            details={"handle": handle},
        )
        self.handle = handle


class MigrationInProgressError(SchemaBridgeError):
    """Another migration run holds the lease for this kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(
            f"A migration for kind '{kind}' is already running",
            code="MigrationInProgress",
            details={"kind": kind},
        )
        self.kind = kind


class UnknownMigrationError(SchemaBridgeError):
    """No migration is known under the given handle."""

    def __init__(self, handle: str) -> None:
        super().__init__(
            f"Migration handle '{handle}' not found",
            code="UnknownMigration",
            details={"handle": handle},
        )
        self.handle = handle
