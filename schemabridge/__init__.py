"""
SchemaBridge - Version conversion and storage migration for versioned resources.

This package converts objects of a versioned resource kind between any two
of its API versions and migrates persisted objects to the current storage
version:
- Version identifiers ordered by Kubernetes-style priority
- Author-supplied conversion edges between pairs of versions
- A connected conversion graph per kind, validated at startup
- Multi-hop conversion along the shortest path
- Online, resumable migration of the persisted objects of a kind

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────────┐
    │   Caller    │────▶│ HTTP Server  │────▶│ ConversionService│
    │ (webhook)   │     │  (FastAPI)   │     │  (batch, review) │
    └─────────────┘     └──────┬───────┘     └────────┬─────────┘
                               │                      │
                               ▼                      ▼
                      ┌─────────────────┐    ┌─────────────────┐
                      │MigrationManager │    │  PathComposer   │
                      │  + Driver       │───▶│ (per kind, BFS) │
                      └────────┬────────┘    └────────┬────────┘
                               │                      │
                               ▼                      ▼
                      ┌─────────────────┐    ┌─────────────────┐
                      │ SQLite object   │    │ ConversionGraph │
                      │ store (CAS)     │    │ + VersionSet    │
                      └─────────────────┘    └─────────────────┘

Invariants:
    - Every kind's conversion graph is connected before serving
    - A conversion never mutates the caller's object
    - One batch item's failure never affects another item
    - Migrations write with compare-and-swap and never copy objects forward
      without converting them

How to change safely:
    - Register kinds and edges in a conversions module before freeze
    - Never remove an edge that is the only link between two versions
    - Keep error codes stable; clients match on them
"""

from ._version import __version__

__all__ = ["__version__"]
