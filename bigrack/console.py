import os
import sys

from rich.console import Console
from rich.markup import escape

from .logging_utils import is_mcp_mode

# User-facing output helpers. Rich on Unix, plain text on Windows or when
# colour is turned off in the preferences.

_color_enabled = True
_mcp_mode = False


def set_color_enabled(enabled: bool) -> None:
    global _color_enabled
    _color_enabled = enabled


def set_mcp_mode(enabled: bool) -> None:
    """Send every line to stderr; set by commands that serve MCP on stdio."""
    global _mcp_mode
    _mcp_mode = enabled


def _stream(to_stderr: bool):
    # In MCP mode stdout is the protocol channel.
    if to_stderr or _mcp_mode or is_mcp_mode():
        return sys.stderr
    return sys.stdout


def _emit(symbol: str, style: str, message: str, *, to_stderr: bool = False) -> None:
    stream = _stream(to_stderr)
    if os.name == "nt" or not _color_enabled:
        print(f"{symbol} {message}", file=stream)
        return
    console = Console(file=stream, highlight=False, emoji=False)
    console.print(f"[{style}]{symbol}[/{style}] {escape(message)}", soft_wrap=True)


def success(message: str) -> None:
    """Success message (green)."""
    _emit("✓", "green", message)


def error(message: str) -> None:
    """Error message (red), written to stderr."""
    _emit("✗", "red", message, to_stderr=True)


def warn(message: str) -> None:
    """Warning message (yellow), written to stderr."""
    _emit("⚠", "yellow", message, to_stderr=True)


def info(message: str) -> None:
    """Info message (blue)."""
    _emit("ℹ", "blue", message)


def notice(message: str) -> None:
    """Plain progress line without a status symbol."""
    print(message, file=_stream(False))
