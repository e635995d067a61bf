"""
SchemaBridge - Main entry point.

This module starts the SchemaBridge service with all components:
- Conversion registry (populated by the configured conversions module)
- SQLite object store
- Migration manager (resuming interrupted migrations)
- HTTP server (conversion and migration endpoints)

Usage:
    python -m schemabridge.main

Configuration is entirely via environment variables.
See config.py and api/settings.py for all available settings.

Invariants:
    - The registry is frozen before the HTTP server accepts requests
    - A kind with a disconnected conversion graph aborts startup (exit 1)
    - Graceful shutdown lets active migrations checkpoint before exit

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys

import json_log_formatter
import uvicorn

from .api import ConversionService, HttpSettings, create_http_app
from .config import ServerConfig
from .conversion.registry import ConversionRegistry, freeze_registry, get_registry
from .errors import SchemaBridgeError
from .migration import MigrationManager
from .store import SqliteObjectStore

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.WARNING)


def load_conversions(module_name: str | None) -> ConversionRegistry:
    """Import the module that registers kinds and edges on the global registry."""
    registry = get_registry()
    if module_name:
        importlib.import_module(module_name)
        logger.info(f"Loaded conversions module {module_name}")
    else:
        logger.warning("No conversions module configured; serving an empty registry")
    return registry


class Server:
    """SchemaBridge server orchestrator.

    Manages the lifecycle of all server components:
    - Conversion registry and service
    - Object store and migration manager
    - HTTP server

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        http_settings: HttpSettings | None = None,
    ) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
            http_settings: Optional HTTP settings (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self.http_settings = http_settings or HttpSettings()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.registry: ConversionRegistry | None = None
        self.store: SqliteObjectStore | None = None
        self.service: ConversionService | None = None
        self.manager: MigrationManager | None = None
        self.http_server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the server and all components, then wait for shutdown."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting SchemaBridge server")
        self.config.log_config()

        try:
            registry = load_conversions(self.config.conversion.conversions_module)
            registry.set_hop_timeout(self.config.conversion.hop_timeout)
            fingerprint = freeze_registry()
            logger.info(f"Conversion registry frozen, fingerprint: {fingerprint}")
            self.registry = registry

            self.store = SqliteObjectStore(
                data_dir=self.config.storage.data_dir,
                db_filename=self.config.storage.db_filename,
                wal_mode=self.config.storage.wal_mode,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
            )
            await self.store.initialize()

            self.service = ConversionService(
                registry,
                max_workers=self.config.conversion.batch_workers,
                max_batch_size=self.config.conversion.max_batch_size,
            )

            self.manager = MigrationManager(self.store, registry, self.config.migration)
            if self.config.migration.auto_resume:
                resumed = await self.manager.resume_pending()
                if resumed:
                    logger.info(f"Resumed {len(resumed)} interrupted migrations")

            app = create_http_app(
                self.service,
                manager=self.manager,
                registry=registry,
                settings=self.http_settings,
            )
            self.http_server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.http_settings.host,
                    port=self.http_settings.port,
                    access_log=self.http_settings.access_log,
                    log_config=None,
                )
            )
            self._serve_task = asyncio.create_task(self.http_server.serve())
            self._serve_task.add_done_callback(lambda _: self._shutdown_event.set())

            self._running = True
            logger.info(f"SchemaBridge server listening on {self.http_settings.bind_address}")

            # Wait for shutdown signal
            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            self._running = True
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping SchemaBridge server")

        if self.http_server is not None:
            self.http_server.should_exit = True
        if self._serve_task is not None:
            await asyncio.gather(self._serve_task, return_exceptions=True)

        if self.manager is not None:
            await self.manager.close()

        if self.service is not None:
            self.service.close()

        self._running = False
        logger.info("SchemaBridge server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = ServerConfig.from_env()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Create server
    server = Server(config)

    # Setup signal handlers
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    # Run server
    exit_code = 0
    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    except SchemaBridgeError as e:
        # Registration errors (e.g. incomplete coverage) abort startup.
        print(f"Startup error [{e.code}]: {e.message}", file=sys.stderr)
        exit_code = 1
    finally:
        loop.run_until_complete(server.stop())
        loop.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
