"""
Patron Server - Main entry point.

Commands:
    serve   Start the aiohttp REST server; GET /events triggers a sync
    sync    Run one synchronization pass, print the JSON result and exit

Usage:
    python -m backend.patron_server.main serve
    python -m backend.patron_server.main sync

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Configuration errors exit with status 1 before anything starts
    - Per-event sync errors are reported in the result, exit status stays 0
    - Graceful shutdown closes the ledger client and the store

How to change safely:
    - Add new components to Server.start() and Server.stop() together
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

import json_log_formatter

from .api import PatronServicer, run_http_server
from .config import ServerConfig, StoreBackend
from .ledger import Ledger, create_ledger
from .store import Store, create_store
from .sync import EventSynchronizer

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """Patron indexer orchestrator.

    Manages the lifecycle of:
    - the ledger client
    - the materialized store
    - the synchronizer and the HTTP surface

    Example:
        >>> server = Server(config)
        >>> result = await server.run_sync_once()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        self.ledger: Ledger | None = None
        self.store: Store | None = None
        self.synchronizer: EventSynchronizer | None = None
        self.servicer: PatronServicer | None = None
        self._tasks: list[asyncio.Task] = []

    async def _init_components(self) -> tuple[EventSynchronizer, PatronServicer]:
        package_id = self.config.ledger.package_id
        if not package_id:
            raise ValueError("PACKAGE_ID is required for the indexer")

        if self.config.storage.backend == StoreBackend.SQLITE:
            Path(self.config.storage.data_dir).mkdir(parents=True, exist_ok=True)

        self.store = create_store(self.config.storage)
        await self.store.initialize()

        self.ledger = create_ledger(self.config.ledger)
        synchronizer = EventSynchronizer(
            ledger=self.ledger,
            store=self.store,
            package_id=package_id,
            page_size=self.config.sync.page_size,
            max_pages_per_run=self.config.sync.max_pages_per_run,
        )
        servicer = PatronServicer(self.store, synchronizer)
        self.synchronizer, self.servicer = synchronizer, servicer
        return synchronizer, servicer

    async def start(self) -> None:
        """Start the HTTP server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Patron indexer")
        self.config.log_config()

        try:
            _, servicer = await self._init_components()

            http_task = asyncio.create_task(
                run_http_server(servicer, self.config.http, self.config.sync.secret)
            )
            self._tasks.append(http_task)

            self._running = True
            logger.info("Patron indexer started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def run_sync_once(self) -> dict:
        """Initialize components, run one sync pass and release resources."""
        synchronizer, _ = await self._init_components()
        try:
            result = await synchronizer.sync()
            return result.to_dict()
        finally:
            await self._close_components()

    async def _close_components(self) -> None:
        if self.ledger:
            await self.ledger.close()
        if self.store:
            await self.store.close()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        await self._close_components()

        if self._running:
            self._running = False
            logger.info("Patron indexer stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="patron-server",
        description="Off-chain indexer for creator profiles, content and access passes",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the REST server (default)")
    subparsers.add_parser("sync", help="Run one synchronization pass and exit")
    return parser


def _serve(config: ServerConfig) -> None:
    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)

    if args.command == "sync":
        result = asyncio.run(Server(config).run_sync_once())
        print(json.dumps(result, indent=2))
        return 0

    _serve(config)
    return 0


if __name__ == "__main__":
    sys.exit(main())
