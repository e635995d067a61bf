"""
Migration driver for SchemaBridge.

The MigrationDriver rewrites every persisted object of a kind to the kind's
current storage version, online:

    Idle -> Scanning -> Converting -> Finalizing -> Done
                 \\            \\
                  +-> Failed <-+

- Scanning lists object keys and their stored versions (read-probing
  objects whose version the store cannot report)
- Converting converts each object not at the target version and writes it
  back with compare-and-swap; conflicts are deferred to the next pass
- Finalizing records which versions are still referenced by stored objects

Invariants:
    - Never overwrites a write made after the object was read (CAS only)
    - Only one run per kind at a time (store lease renewed for the whole run)
    - Cancellation is checked before each object; the cursor stays consistent
    - Done is terminal; re-running on a migrated kind writes nothing
    - Failed keeps the cursor so a resume continues instead of restarting

How to change safely:
    - Checkpoint the cursor after every state change and successful write
    - Test resume paths with injected failures mid-Converting
    - A missing conversion path fails the object; objects are never copied
      forward verbatim to the new version
"""

from __future__ import annotations

import asyncio
import logging

from ..conversion.registry import ConversionRegistry
from ..errors import (
    HopConversionError,
    MigrationAbortedError,
    MigrationInProgressError,
    UnknownVersionError,
    WriteConflictError,
)
from ..store.object_store import ObjectRef, ObjectStore
from ..versions.comparator import sort_versions
from .cursor import MigrationCursor, MigrationState

logger = logging.getLogger(__name__)


class MigrationDriver:
    """Runs one migration for one resource kind.

    Thread safety:
        Designed to run as a single asyncio task. Object conversions within
        a pass run concurrently, bounded by ``max_workers``.

    Example:
        >>> driver = MigrationDriver(store, registry, cursor)
        >>> cursor = await driver.run()
        >>> cursor.state
        <MigrationState.DONE: 'Done'>
    """

    def __init__(
        self,
        store: ObjectStore,
        registry: ConversionRegistry,
        cursor: MigrationCursor,
        max_workers: int = 4,
        max_passes: int = 3,
        lease_ttl_seconds: float = 300,
    ) -> None:
        """Initialize the driver.

        Args:
            store: Object store holding the kind's objects
            registry: Frozen conversion registry
            cursor: Cursor to start or resume from
            max_workers: Concurrent object conversions
            max_passes: Passes over deferred objects before failing
            lease_ttl_seconds: Lease lifetime, renewed every third of it while running
        """
        self.store = store
        self.registry = registry
        self.cursor = cursor
        self.max_workers = max_workers
        self.max_passes = max_passes
        self.lease_ttl_seconds = lease_ttl_seconds
        self._composer = registry.composer(cursor.kind)
        self._cancelled = asyncio.Event()
        self._lease_lost = asyncio.Event()

    @property
    def state(self) -> MigrationState:
        return self.cursor.state

    def cancel(self) -> None:
        """Request cooperative cancellation before the next object."""
        self._cancelled.set()

    async def run(self) -> MigrationCursor:
        """Run (or resume) the migration.

        Returns:
            The cursor in its final state (Done or Failed)

        Raises:
            MigrationInProgressError: If another run holds the kind's lease
        """
        cursor = self.cursor
        if cursor.state is MigrationState.DONE:
            logger.info(
                "Migration already done",
                extra={"handle": cursor.handle, "kind": cursor.kind},
            )
            return cursor

        if not await self._renew_lease():
            raise MigrationInProgressError(cursor.kind)

        cursor.attempts += 1
        cursor.error = None
        cursor.error_code = None
        logger.info(
            f"Starting migration of {cursor.kind} to {cursor.target_version}",
            extra={
                "handle": cursor.handle,
                "attempt": cursor.attempts,
                "already_completed": len(cursor.completed),
            },
        )

        heartbeat = asyncio.create_task(self._heartbeat())
        try:
            await self._transition(MigrationState.SCANNING)
            refs = await self._scan()

            await self._transition(MigrationState.CONVERTING)
            await self._convert(refs)

            await self._transition(MigrationState.FINALIZING)
            await self._finalize()

            await self._transition(MigrationState.DONE)
            logger.info(
                f"Migration of {cursor.kind} to {cursor.target_version} done",
                extra={
                    "handle": cursor.handle,
                    "converted": cursor.converted,
                    "passes": cursor.passes,
                },
            )
        except MigrationAbortedError as e:
            logger.warning(
                f"Migration {cursor.handle} cancelled",
                extra={"kind": cursor.kind, "completed": len(cursor.completed)},
            )
            await self._fail(e.message, e.code)
        except MigrationInProgressError as e:
            logger.error(
                f"Migration {cursor.handle} lost the lease for {cursor.kind}",
                extra={"kind": cursor.kind, "completed": len(cursor.completed)},
            )
            await self._fail(e.message, e.code)
        except _ConversionIncomplete as e:
            await self._fail(str(e), e.code)
        except Exception as e:
            logger.error(
                f"Migration {cursor.handle} failed: {e}",
                exc_info=True,
                extra={"kind": cursor.kind, "state": cursor.state.value},
            )
            await self._fail(f"{type(e).__name__}: {e}", "MigrationError")
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
            await self.store.release_lease(cursor.kind, cursor.handle)

        return cursor

    async def _renew_lease(self) -> bool:
        return await self.store.acquire_lease(
            self.cursor.kind, self.cursor.handle, self.lease_ttl_seconds
        )

    async def _heartbeat(self) -> None:
        """Keep the lease alive for the whole run; flag the run if it is lost."""
        interval = self.lease_ttl_seconds / 3
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self._renew_lease()
            except Exception as e:
                logger.error(
                    f"Lease renewal for {self.cursor.kind} failed: {e}",
                    extra={"handle": self.cursor.handle},
                )
                renewed = False
            if not renewed:
                self._lease_lost.set()
                return

    def _check_lease(self) -> None:
        if self._lease_lost.is_set():
            raise MigrationInProgressError(self.cursor.kind)

    async def _transition(self, state: MigrationState) -> None:
        logger.debug(
            f"Migration {self.cursor.handle}: {self.cursor.state.value} -> {state.value}"
        )
        self.cursor.state = state
        self.cursor.touch()
        await self._checkpoint()

    async def _checkpoint(self) -> None:
        cursor = self.cursor
        await self.store.save_checkpoint(
            cursor.handle, cursor.kind, cursor.state.value, cursor.to_dict()
        )

    async def _fail(self, reason: str, code: str) -> None:
        self.cursor.error = reason
        self.cursor.error_code = code
        await self._transition(MigrationState.FAILED)

    async def _scan(self) -> list[ObjectRef]:
        """List objects, read-probing any whose stored version is unknown."""
        refs = []
        for ref in await self.store.list_objects(self.cursor.kind):
            if ref.stored_version is None:
                stored = await self.store.get(self.cursor.kind, ref.key)
                if stored is None:
                    continue
                ref = ObjectRef(
                    key=ref.key,
                    stored_version=stored.stored_version,
                    resource_version=stored.resource_version,
                )
            refs.append(ref)

        pending = sum(1 for r in refs if r.stored_version != self.cursor.target_version)
        logger.info(
            f"Scanned {len(refs)} {self.cursor.kind} objects, {pending} to convert",
            extra={"handle": self.cursor.handle},
        )
        return refs

    async def _convert(self, refs: list[ObjectRef]) -> None:
        cursor = self.cursor
        # Keys deferred by an interrupted run are retried with everything else.
        cursor.deferred.clear()
        cursor.failed.clear()
        pending = refs

        for run_pass in range(1, self.max_passes + 1):
            cursor.passes += 1
            await self._convert_pass(pending)
            if not cursor.deferred:
                break
            logger.info(
                f"Pass {run_pass} deferred {len(cursor.deferred)} conflicting objects",
                extra={"handle": cursor.handle, "kind": cursor.kind},
            )
            pending = [ObjectRef(key, None, 0) for key in sorted(cursor.deferred)]
            self._check_lease()

        if cursor.failed:
            raise _ConversionIncomplete(
                f"{len(cursor.failed)} object(s) could not be converted to "
                f"{cursor.target_version}",
                "HopConversionFailure",
            )
        if cursor.deferred:
            raise _ConversionIncomplete(
                f"{len(cursor.deferred)} object(s) still conflicting after "
                f"{self.max_passes} passes",
                "WriteConflict",
            )

    async def _convert_pass(self, refs: list[ObjectRef]) -> None:
        semaphore = asyncio.Semaphore(self.max_workers)

        async def worker(ref: ObjectRef) -> None:
            async with semaphore:
                if self._cancelled.is_set():
                    return
                self._check_lease()
                await self._migrate_one(ref)

        tasks = [asyncio.create_task(worker(ref)) for ref in refs]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        if self._cancelled.is_set():
            raise MigrationAbortedError(self.cursor.handle)

    async def _migrate_one(self, ref: ObjectRef) -> None:
        cursor = self.cursor
        target = cursor.target_version

        if ref.stored_version == target:
            if ref.key not in cursor.completed:
                cursor.mark_completed(ref.key)
            return

        stored = await self.store.get(cursor.kind, ref.key)
        if stored is None:
            # Deleted since the scan; nothing left to migrate.
            cursor.deferred.discard(ref.key)
            return

        source = stored.stored_version
        if source == target:
            cursor.mark_completed(ref.key)
            return

        try:
            converted = await asyncio.to_thread(
                self._composer.convert, stored.obj, source, target
            )
        except (HopConversionError, UnknownVersionError) as e:
            logger.warning(
                f"Cannot convert {cursor.kind}/{ref.key} from {source}: {e.message}",
                extra={"handle": cursor.handle, "error_code": e.code},
            )
            cursor.fail(ref.key, f"{e.code}: {e.message}")
            return

        self._check_lease()
        try:
            await self.store.compare_and_swap(
                cursor.kind, ref.key, converted, stored.resource_version
            )
        except WriteConflictError:
            logger.info(
                f"Write conflict on {cursor.kind}/{ref.key}, deferring to next pass",
                extra={"handle": cursor.handle},
            )
            cursor.defer(ref.key)
            return

        cursor.mark_completed(ref.key, converted=True)
        await self._checkpoint()

    async def _finalize(self) -> None:
        """Record the versions still referenced by persisted objects."""
        cursor = self.cursor
        referenced = {cursor.target_version}
        for ref in await self._scan():
            referenced.add(ref.stored_version)

        remaining = sort_versions(referenced)
        await self.store.set_stored_versions(cursor.kind, remaining)
        cursor.remaining_versions = remaining
        if remaining != [cursor.target_version]:
            logger.warning(
                f"Versions {remaining} still referenced after migrating {cursor.kind}",
                extra={"handle": cursor.handle},
            )


class _ConversionIncomplete(Exception):
    """Objects remain unconverted at the end of Converting."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code
