"""
BigRack: the MCP daemon for complex projects.

This package provides the ``bigrack`` command line, whose ``start`` command
boots the MCP server on stdio and reports startup progress to a structured
log file and to the console.
"""

# Package metadata
__version__ = "0.1.0"
__author__ = "BigRack Contributors"

from .config import Config, load_config
from .daemon import DaemonState, StartupError, StartupOutcome, start_daemon
from .server import MCPServer

# Public API
__all__ = [
    "Config",
    "DaemonState",
    "MCPServer",
    "StartupError",
    "StartupOutcome",
    "load_config",
    "start_daemon",
]
