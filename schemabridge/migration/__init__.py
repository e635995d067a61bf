"""
Storage-version migration for SchemaBridge.

- MigrationCursor / MigrationState: resumable progress of one run
- MigrationDriver: Scanning -> Converting -> Finalizing -> Done
- MigrationManager: start / status / resume / cancel by handle
"""

from .cursor import MigrationCursor, MigrationState
from .driver import MigrationDriver
from .manager import MigrationManager

__all__ = [
    "MigrationCursor",
    "MigrationDriver",
    "MigrationManager",
    "MigrationState",
]
