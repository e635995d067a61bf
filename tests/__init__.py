"""
SchemaBridge Test Suite.

This package contains:
- unit/: Unit tests (comparator, graph, composer, service, store, HTTP)
- integration/: Integration tests (migration driver and manager on SQLite)
"""
