"""
Conversion graph CLI tool for SchemaBridge.

This tool inspects the conversion registry without starting the server:
- versions: List each kind's versions in priority order
- validate: Check every kind's conversion graph is connected
- path: Show the hop sequence between two versions of a kind
- compare: Compare two version identifiers

Usage:
    schemabridge-graph versions --module myapp.conversions
    schemabridge-graph validate --module myapp.conversions
    schemabridge-graph path --module myapp.conversions --kind Widget --from v1alpha1 --to v2
    schemabridge-graph compare v1beta2 v1

Invariants:
    - Incomplete coverage causes non-zero exit code
    - JSON output is deterministic (sorted keys)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import os
import sys
from typing import Any

from ..conversion.registry import ConversionRegistry, get_registry
from ..errors import SchemaBridgeError
from ..versions.comparator import Ordering, compare, parse_version

logger = logging.getLogger(__name__)

_ORDERING_SYMBOLS = {
    Ordering.GREATER: ">",
    Ordering.EQUAL: "==",
    Ordering.LESS: "<",
}


class GraphCLI:
    """CLI tool for conversion graph inspection.

    Example:
        >>> cli = GraphCLI()
        >>> cli.versions(registry)
        {'Widget': ['v2', 'v1', 'v1beta1']}
        >>> cli.compare("v1", "v1beta2")
        <Ordering.GREATER: 1>
    """

    def versions(self, registry: ConversionRegistry) -> dict[str, Any]:
        """Versions per kind in priority order, with the storage version."""
        return {
            resource.kind: {
                "versions": resource.version_set.names,
                "storage_version": resource.storage_version,
            }
            for resource in registry.kinds()
        }

    def validate(self, registry: ConversionRegistry) -> list[str]:
        """Validate every kind's graph.

        Returns:
            List of validation errors
        """
        return registry.validate_all()

    def path(
        self,
        registry: ConversionRegistry,
        kind: str,
        from_version: str,
        to_version: str,
    ) -> list[str]:
        """Version walk the composer would take."""
        return registry.composer(kind).find_path(from_version, to_version)

    def compare(self, a: str, b: str) -> Ordering:
        return compare(a, b)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the graph tool."""
    parser = argparse.ArgumentParser(description="SchemaBridge conversion graph tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # versions command
    versions_parser = subparsers.add_parser("versions", help="List versions in priority order")
    versions_parser.add_argument("--module", help="Python module registering kinds and edges")
    versions_parser.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Check graph coverage")
    validate_parser.add_argument("--module", help="Python module registering kinds and edges")

    # path command
    path_parser = subparsers.add_parser("path", help="Show the conversion path between versions")
    path_parser.add_argument("--module", help="Python module registering kinds and edges")
    path_parser.add_argument("--kind", required=True, help="Resource kind")
    path_parser.add_argument("--from", dest="from_version", required=True, help="Source version")
    path_parser.add_argument("--to", dest="to_version", required=True, help="Target version")

    # compare command
    compare_parser = subparsers.add_parser("compare", help="Compare two version identifiers")
    compare_parser.add_argument("a", help="First version")
    compare_parser.add_argument("b", help="Second version")

    args = parser.parse_args(argv)
    cli = GraphCLI()

    if args.command == "versions":
        registry = _load_registry(args.module)
        result = cli.versions(registry)

        if args.format == "json":
            print(json.dumps(result, indent=2, sort_keys=True))
        else:
            for kind, info in result.items():
                print(f"{kind} (storage: {info['storage_version']})")
                for version in info["versions"]:
                    print(f"  {version}")
        sys.exit(0)

    elif args.command == "validate":
        registry = _load_registry(args.module)
        errors = cli.validate(registry)

        if not errors:
            print("Conversion graphs are complete")
            sys.exit(0)
        else:
            print(f"Conversion graph validation failed with {len(errors)} error(s):")
            for error in errors:
                print(f"  - {error}")
            sys.exit(1)

    elif args.command == "path":
        registry = _load_registry(args.module)
        try:
            path = cli.path(registry, args.kind, args.from_version, args.to_version)
        except SchemaBridgeError as e:
            print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
            sys.exit(1)
        print(" -> ".join(path))
        sys.exit(0)

    elif args.command == "compare":
        ordering = cli.compare(args.a, args.b)
        notes = [
            f"{name} is malformed" for name in (args.a, args.b) if not parse_version(name).well_formed
        ]
        print(f"{args.a} {_ORDERING_SYMBOLS[ordering]} {args.b}")
        for note in notes:
            print(f"  note: {note}")
        sys.exit(0)


def _load_registry(module_path: str | None = None) -> ConversionRegistry:
    """Load the conversion registry from a module.

    Args:
        module_path: Python module registering kinds and edges (falls back to
            SCHEMABRIDGE_CONVERSIONS_MODULE)

    Returns:
        ConversionRegistry instance
    """
    module_path = module_path or os.getenv("SCHEMABRIDGE_CONVERSIONS_MODULE")
    if module_path:
        module = importlib.import_module(module_path)
        if isinstance(getattr(module, "registry", None), ConversionRegistry):
            return module.registry

    # Return global registry
    return get_registry()


if __name__ == "__main__":
    main()
