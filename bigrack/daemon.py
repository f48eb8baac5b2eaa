"""
Daemon bootstrap.

Brings an MCP server from not-running to ready exactly once, reporting the
attempt to the structured log and to the console, and turns a failed start
into exit code 1. The logger, console and exit function are injected so the
sequence can be driven with fakes.
"""

from __future__ import annotations

import enum
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from . import console as default_console
from .logging_utils import DAEMON_LOGGER

__all__ = [
    "DaemonBootstrap",
    "DaemonState",
    "StartupError",
    "StartupOutcome",
    "describe_failure",
    "start_daemon",
]

STARTING_LOG = "BigRack MCP Daemon starting..."
STARTING_NOTICE = "Starting BigRack MCP Daemon..."
READY_LOG = "MCP Daemon ready"
READY_MESSAGE = "BigRack MCP Daemon started and ready"
FAILED_LOG = "Failed to start daemon"

EXIT_FAILURE = 1


class DaemonState(enum.Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"


class StartupError(Exception):
    """A start failure whose payload is not itself an exception."""

    def __init__(self, payload: Any) -> None:
        super().__init__(payload)
        self.payload = payload

    def __str__(self) -> str:
        return str(self.payload)


@dataclass(frozen=True)
class StartupOutcome:
    """Terminal result of one bootstrap attempt.

    ``reason`` is set only when ``state`` is ``FAILED``.
    """

    state: DaemonState
    reason: str | None = None

    @property
    def ready(self) -> bool:
        return self.state is DaemonState.READY

    @property
    def exit_code(self) -> int:
        return 0 if self.ready else EXIT_FAILURE


class ServerLifecycle(Protocol):
    async def start(self) -> None: ...


class ConsoleReporter(Protocol):
    def notice(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


def describe_failure(exc: BaseException) -> str:
    """Human-readable reason for a failed start, never empty."""
    reason = str(exc.payload) if isinstance(exc, StartupError) else str(exc)
    if reason:
        return reason
    return repr(exc) or type(exc).__name__


class DaemonBootstrap:
    """Drive a server through ``start()`` once.

    NOT_STARTED -> STARTING -> READY | FAILED. A failed start calls *exit*
    with code 1; a successful one returns and leaves the process to the
    server.
    """

    def __init__(
        self,
        server: ServerLifecycle,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        console: ConsoleReporter | None = None,
        exit: Callable[[int], Any] | None = None,
    ) -> None:
        self.server = server
        self.logger = logger or DAEMON_LOGGER
        self.console = console or default_console
        self._exit = exit
        self.state = DaemonState.NOT_STARTED

    async def run(self) -> StartupOutcome:
        if self.state is not DaemonState.NOT_STARTED:
            raise RuntimeError(f"daemon bootstrap already ran (state: {self.state.value})")

        self.state = DaemonState.STARTING
        # Both channels announce the attempt before start() is called.
        self.logger.info(STARTING_LOG)
        self.console.notice(STARTING_NOTICE)

        try:
            await self.server.start()
        except Exception as e:
            outcome = self._failed(e)
        else:
            outcome = self._ready()

        self.state = outcome.state
        if not outcome.ready:
            (self._exit or sys.exit)(outcome.exit_code)
        return outcome

    def _ready(self) -> StartupOutcome:
        self.logger.info(READY_LOG)
        self.console.success(READY_MESSAGE)
        return StartupOutcome(DaemonState.READY)

    def _failed(self, exc: Exception) -> StartupOutcome:
        reason = describe_failure(exc)
        self.logger.error(FAILED_LOG, exc_info=exc, extra={"reason": reason})
        self.console.error(f"{FAILED_LOG}: {reason}")
        return StartupOutcome(DaemonState.FAILED, reason)


async def start_daemon(
    server: ServerLifecycle,
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    console: ConsoleReporter | None = None,
    exit: Callable[[int], Any] | None = None,
) -> StartupOutcome:
    """Start *server* once and report the outcome; exits the process on failure."""
    bootstrap = DaemonBootstrap(server, logger=logger, console=console, exit=exit)
    return await bootstrap.run()
