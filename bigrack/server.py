"""
MCP server lifecycle.

``MCPServer.start()`` does all initialisation that can fail (storage, app
construction, transport launch) and returns once the server is serving on
stdio. The serving task then owns the process; ``wait_closed()`` awaits it.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from fastmcp import FastMCP

from . import __version__
from .config import Config
from .logging_utils import DAEMON_LOGGER
from .storage import prepare_database

logger = logging.getLogger(__name__)

__all__ = ["MCPServer", "SERVER_NAME", "setup_signal_handlers"]

SERVER_NAME = "bigrack-mcp"
SERVER_INSTRUCTIONS = "BigRack - Intelligent MCP for complex projects."


class MCPServer:
    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.app: FastMCP | None = None
        self._serve_task: asyncio.Task | None = None

    @property
    def started(self) -> bool:
        return self._serve_task is not None

    def _build_app(self) -> FastMCP:
        return FastMCP(SERVER_NAME, instructions=SERVER_INSTRUCTIONS, version=__version__)

    async def start(self) -> None:
        """Prepare storage and begin serving MCP on stdio.

        Raises whatever the failing step raised; the server is not left
        half-started in that case.
        """
        if self._serve_task is not None:
            raise RuntimeError("MCP server already started")

        prepare_database(self.config.database_path)

        self.app = self._build_app()
        logger.debug("Created FastMCP app %r", SERVER_NAME)

        task = asyncio.create_task(
            self.app.run_async(transport="stdio"), name="bigrack-mcp-stdio"
        )
        # Let the transport run up to its first suspension so that an
        # immediate failure surfaces here instead of after "ready".
        await asyncio.sleep(0)
        if task.done() and not task.cancelled() and task.exception() is not None:
            raise task.exception()

        self._serve_task = task
        setup_signal_handlers(self)
        DAEMON_LOGGER.info("MCP Server started on stdio")

    async def wait_closed(self) -> None:
        """Block until the serving task ends; re-raise its failure if any."""
        task = self._serve_task
        if task is None:
            return
        await asyncio.wait({task})
        if task.cancelled():
            DAEMON_LOGGER.info("MCP Server stopped")
            return
        task.result()
        DAEMON_LOGGER.info("MCP Server transport closed")

    def close(self) -> None:
        if self._serve_task is not None and not self._serve_task.done():
            self._serve_task.cancel()


def setup_signal_handlers(server: MCPServer) -> None:
    """Close *server* and exit cleanly on SIGINT/SIGTERM."""

    def signal_handler(signum, frame):
        name = signal.Signals(signum).name
        DAEMON_LOGGER.info("Received %s, shutting down...", name)
        server.close()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
