"""
Migration cursor: resumable progress of one storage-version migration.

The cursor is created when a migration starts, updated after every
successful object write and on every state change, and checkpointed to the
object store so a failed or interrupted run resumes where it stopped.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MigrationState(str, Enum):
    """Lifecycle of a migration run."""

    IDLE = "Idle"
    SCANNING = "Scanning"
    CONVERTING = "Converting"
    FINALIZING = "Finalizing"
    DONE = "Done"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationState.DONE, MigrationState.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (
            MigrationState.SCANNING,
            MigrationState.CONVERTING,
            MigrationState.FINALIZING,
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class MigrationCursor:
    """Progress of a migration run.

    Attributes:
        handle: Migration handle (also the lease holder)
        kind: Resource kind being migrated
        target_version: Storage version objects are rewritten to
        state: Current lifecycle state
        completed: Keys confirmed at the target version
        deferred: Keys whose write lost a race; retried next pass
        failed: Keys whose conversion failed, with the failure reason
        converted: Number of objects rewritten by this migration
        passes: Conversion passes run so far (across resumes)
        attempts: Number of runs (first run plus resumes)
        error: Reason the last run failed, if it did
        error_code: Stable code of that failure
        remaining_versions: Versions still referenced after finalizing
    """

    handle: str
    kind: str
    target_version: str
    state: MigrationState = MigrationState.IDLE
    completed: set[str] = field(default_factory=set)
    deferred: set[str] = field(default_factory=set)
    failed: dict[str, str] = field(default_factory=dict)
    converted: int = 0
    passes: int = 0
    attempts: int = 0
    error: str | None = None
    error_code: str | None = None
    remaining_versions: list[str] = field(default_factory=list)
    started_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)

    def mark_completed(self, key: str, converted: bool = False) -> None:
        self.completed.add(key)
        self.deferred.discard(key)
        self.failed.pop(key, None)
        if converted:
            self.converted += 1
        self.touch()

    def defer(self, key: str) -> None:
        self.deferred.add(key)
        self.touch()

    def fail(self, key: str, reason: str) -> None:
        self.failed[key] = reason
        self.deferred.discard(key)
        self.touch()

    def touch(self) -> None:
        self.updated_at = _now_ms()

    def summary(self) -> dict[str, Any]:
        """Compact status for the bookkeeping API."""
        return {
            "handle": self.handle,
            "kind": self.kind,
            "target_version": self.target_version,
            "state": self.state.value,
            "completed": len(self.completed),
            "converted": self.converted,
            "deferred": len(self.deferred),
            "failed": dict(self.failed),
            "passes": self.passes,
            "attempts": self.attempts,
            "error": self.error,
            "error_code": self.error_code,
            "remaining_versions": list(self.remaining_versions),
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.summary()
        data["completed"] = sorted(self.completed)
        data["deferred"] = sorted(self.deferred)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationCursor:
        return cls(
            handle=data["handle"],
            kind=data["kind"],
            target_version=data["target_version"],
            state=MigrationState(data.get("state", MigrationState.IDLE.value)),
            completed=set(data.get("completed", [])),
            deferred=set(data.get("deferred", [])),
            failed=dict(data.get("failed", {})),
            converted=data.get("converted", 0),
            passes=data.get("passes", 0),
            attempts=data.get("attempts", 0),
            error=data.get("error"),
            error_code=data.get("error_code"),
            remaining_versions=list(data.get("remaining_versions", [])),
            started_at=data.get("started_at", _now_ms()),
            updated_at=data.get("updated_at", _now_ms()),
        )
