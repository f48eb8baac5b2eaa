from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path

from . import console
from .config import Config, load_config
from .daemon import start_daemon
from .logging_utils import CLI_LOGGER, deferred_records, replay_records, setup_logging
from .server import MCPServer

PROG = "bigrack"
DESCRIPTION = "BigRack - Intelligent MCP for complex projects"


@dataclass
class StartAction:
    """Boot the MCP daemon and keep serving until the transport closes."""

    config: Config
    verbose: int = 0

    async def _run(self) -> None:
        server = MCPServer(self.config)
        await start_daemon(server)
        # start_daemon exits the process on failure; past this point the
        # server's serving task keeps the process alive.
        await server.wait_closed()

    def run(self) -> None:
        try:
            asyncio.run(self._run())
        except KeyboardInterrupt:
            CLI_LOGGER.info("Server shutdown requested (Ctrl+C)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description=DESCRIPTION)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; you can use -vv for more",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only show warnings and errors"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser(
        "start",
        help="Start the BigRack MCP daemon",
        description="Start the BigRack MCP daemon",
    )
    return parser


def parse_cli(argv: list[str]) -> tuple[StartAction, Path]:
    """Parse *argv*, configure logging and return the action to run.

    Prints help and exits with code 1 when no subcommand is given.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    verbosity = -1 if args.quiet else args.verbose

    with deferred_records() as early_records:
        config = load_config()

    # `start` serves MCP over stdio, so stdout carries protocol frames only.
    log_path = setup_logging(
        verbosity,
        config.log_dir,
        level=config.logging.level,
        max_files=config.logging.max_files,
        mcp_mode=True,
    )
    replay_records(early_records)
    console.set_mcp_mode(True)
    console.set_color_enabled(config.preferences.color_output)

    CLI_LOGGER.debug("Verbose log written to %s", log_path)

    return StartAction(config=config, verbose=verbosity), log_path


def cli() -> None:
    action, _ = parse_cli(sys.argv[1:])
    action.run()
