"""
Object store for SchemaBridge.

The store persists objects plus migration bookkeeping (stored versions,
checkpoints, leases). The migration driver depends only on the ObjectStore
protocol; SqliteObjectStore is the bundled implementation.
"""

from .object_store import ObjectRef, ObjectStore, SqliteObjectStore, StoredObject

__all__ = [
    "ObjectRef",
    "ObjectStore",
    "SqliteObjectStore",
    "StoredObject",
]
