"""
Migration bookkeeping surface for an external scheduler.

The MigrationManager starts, tracks, resumes and cancels MigrationDriver
runs. Each run is identified by an opaque handle; its cursor is
checkpointed in the object store so status and resume survive restarts.

Invariants:
    - At most one active run per kind in this process (plus the store lease
      across processes)
    - resume() on a Done migration is a no-op
    - resume() continues from the last checkpoint, never from scratch
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from ..config import MigrationConfig
from ..conversion.registry import ConversionRegistry
from ..errors import MigrationInProgressError, UnknownKindError, UnknownMigrationError
from ..store.object_store import ObjectStore
from .cursor import MigrationCursor, MigrationState
from .driver import MigrationDriver

logger = logging.getLogger(__name__)

_RESUMABLE_STATES = (
    MigrationState.IDLE.value,
    MigrationState.SCANNING.value,
    MigrationState.CONVERTING.value,
    MigrationState.FINALIZING.value,
)


@dataclass
class _Run:
    driver: MigrationDriver
    task: asyncio.Task | None = None

    @property
    def cursor(self) -> MigrationCursor:
        return self.driver.cursor

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


class MigrationManager:
    """Starts and tracks migrations.

    Example:
        >>> manager = MigrationManager(store, registry)
        >>> handle = await manager.start_migration("Widget")
        >>> await manager.wait(handle)
        >>> await manager.status(handle)
        <MigrationState.DONE: 'Done'>
    """

    def __init__(
        self,
        store: ObjectStore,
        registry: ConversionRegistry,
        config: MigrationConfig | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.config = config or MigrationConfig()
        self._runs: dict[str, _Run] = {}

    def _make_driver(self, cursor: MigrationCursor) -> MigrationDriver:
        return MigrationDriver(
            store=self.store,
            registry=self.registry,
            cursor=cursor,
            max_workers=self.config.max_workers,
            max_passes=self.config.max_passes,
            lease_ttl_seconds=self.config.lease_ttl_seconds,
        )

    def _active_handle(self, kind: str) -> str | None:
        for handle, run in self._runs.items():
            if run.cursor.kind == kind and run.running:
                return handle
        return None

    async def start_migration(self, kind: str) -> str:
        """Start migrating ``kind`` to its current storage version.

        Returns:
            Handle identifying the run

        Raises:
            UnknownKindError: If the kind is not registered
            MigrationInProgressError: If a run for the kind is active
        """
        resource = self.registry.get_kind(kind)
        if self._active_handle(kind) is not None:
            raise MigrationInProgressError(kind)

        handle = uuid.uuid4().hex
        cursor = MigrationCursor(
            handle=handle,
            kind=kind,
            target_version=resource.storage_version,
        )
        await self.store.save_checkpoint(handle, kind, cursor.state.value, cursor.to_dict())
        self._spawn(self._make_driver(cursor))
        logger.info(
            f"Migration {handle} started for {kind}",
            extra={"target_version": cursor.target_version},
        )
        return handle

    def _spawn(self, driver: MigrationDriver) -> None:
        run = _Run(driver=driver)
        self._runs[driver.cursor.handle] = run
        run.task = asyncio.create_task(self._execute(driver))

    async def _execute(self, driver: MigrationDriver) -> MigrationCursor:
        cursor = driver.cursor
        try:
            return await driver.run()
        except MigrationInProgressError as e:
            logger.warning(f"Migration {cursor.handle} not started: {e.message}")
            cursor.state = MigrationState.FAILED
            cursor.error = e.message
            cursor.error_code = e.code
            await self.store.save_checkpoint(
                cursor.handle, cursor.kind, cursor.state.value, cursor.to_dict()
            )
            return cursor

    async def _load(self, handle: str) -> MigrationCursor:
        run = self._runs.get(handle)
        if run is not None:
            return run.cursor
        data = await self.store.load_checkpoint(handle)
        if data is None:
            raise UnknownMigrationError(handle)
        return MigrationCursor.from_dict(data)

    async def status(self, handle: str) -> MigrationState:
        """Current state of a migration.

        Raises:
            UnknownMigrationError: If the handle is unknown
        """
        return (await self._load(handle)).state

    async def cursor(self, handle: str) -> MigrationCursor:
        return await self._load(handle)

    async def resume(self, handle: str) -> MigrationState:
        """Resume a failed or interrupted migration from its checkpoint.

        Returns:
            The state right after scheduling (Done if nothing to do)

        Raises:
            UnknownMigrationError: If the handle is unknown
            MigrationInProgressError: If another run for the kind is active
        """
        run = self._runs.get(handle)
        if run is not None and run.running:
            return run.cursor.state

        cursor = await self._load(handle)
        if cursor.state is MigrationState.DONE:
            return cursor.state

        active = self._active_handle(cursor.kind)
        if active is not None and active != handle:
            raise MigrationInProgressError(cursor.kind)

        logger.info(
            f"Resuming migration {handle} for {cursor.kind} from {cursor.state.value}",
            extra={"completed": len(cursor.completed)},
        )
        self._spawn(self._make_driver(cursor))
        return cursor.state

    def cancel(self, handle: str) -> None:
        """Request cancellation; the run stops before its next object.

        Raises:
            UnknownMigrationError: If no run with this handle is in memory
        """
        run = self._runs.get(handle)
        if run is None:
            raise UnknownMigrationError(handle)
        run.driver.cancel()

    async def wait(self, handle: str) -> MigrationCursor:
        """Wait for the in-memory run of ``handle`` to finish."""
        run = self._runs.get(handle)
        if run is None:
            raise UnknownMigrationError(handle)
        if run.task is not None:
            await run.task
        return run.cursor

    async def resume_pending(self) -> list[str]:
        """Resume every checkpoint left in a non-terminal state (after a restart)."""
        resumed = []
        for data in await self.store.list_checkpoints(_RESUMABLE_STATES):
            handle = data["handle"]
            if handle in self._runs:
                continue
            try:
                self.registry.get_kind(data["kind"])
            except UnknownKindError:
                logger.warning(f"Skipping resume of {handle}: kind {data['kind']} not registered")
                continue
            try:
                await self.resume(handle)
            except MigrationInProgressError:
                logger.warning(f"Skipping resume of {handle}: kind {data['kind']} busy")
                continue
            resumed.append(handle)
        return resumed

    async def close(self) -> None:
        """Cancel active runs and wait for them to checkpoint."""
        for run in self._runs.values():
            if run.running:
                run.driver.cancel()
        tasks = [run.task for run in self._runs.values() if run.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
