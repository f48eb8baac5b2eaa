from __future__ import annotations

import json
import logging
import logging.handlers
import os
import socket
import sys
import traceback
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

LOGGER_NAME = "bigrack"
CLI_LOGGER_NAME = "bigrack.cli"
DAEMON_LOGGER_NAME = "bigrack.daemon"
STORAGE_LOGGER_NAME = "bigrack.storage"

LOG_FILENAME = "bigrack.log"
MAX_LOG_BYTES = 10 * 1024 * 1024

ENV_MCP_MODE = "MCP_MODE"

# Level names accepted in config files and BIG_RACK_LOG_LEVEL.
LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

SENSITIVE_KEYS = (
    "password",
    "masterpassword",
    "privatekey",
    "publickey",
    "secretkey",
    "encryptionkey",
    "token",
    "apikey",
    "cookie",
    "authorization",
    "recoveryphrase",
    "mnemonic",
)
REDACTED = "[REDACTED]"

_HOSTNAME = socket.gethostname()
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_current_log_path: Path | None = None


def get_log_path(log_dir: Path) -> Path:
    return log_dir / LOG_FILENAME


def get_current_log_path() -> Path | None:
    """Get the log path that was set during setup_logging."""
    return _current_log_path


def is_mcp_mode(
    environ: Mapping[str, str] | None = None, argv: Sequence[str] | None = None
) -> bool:
    """Return True when stdio carries the MCP protocol.

    Nothing but protocol frames may reach stdout in that mode, and the
    client usually does not expect log noise on stderr either.
    """
    environ = os.environ if environ is None else environ
    argv = sys.argv if argv is None else argv
    if environ.get(ENV_MCP_MODE) == "true":
        return True
    return bool(argv) and "bigrack-mcp" in argv[0]


def sanitize_log_data(data: Any) -> Any:
    """Return a copy of *data* with the values of sensitive keys redacted."""
    if isinstance(data, Mapping):
        sanitized = {}
        for key, value in data.items():
            key_lower = str(key).lower()
            if any(sk in key_lower for sk in SENSITIVE_KEYS):
                sanitized[key] = REDACTED
            else:
                sanitized[key] = sanitize_log_data(value)
        return sanitized
    if isinstance(data, (list, tuple)):
        return [sanitize_log_data(item) for item in data]
    return data


def extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra=`` when the record was logged."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


def _context_for(name: str) -> str:
    if name == LOGGER_NAME:
        return "app"
    if name.startswith(LOGGER_NAME + "."):
        return name[len(LOGGER_NAME) + 1 :]
    return name


class RedactingFilter(logging.Filter):
    """Redact sensitive ``extra`` fields in place before any handler sees them."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 – simple predicate
        for key, value in extra_fields(record).items():
            key_lower = key.lower()
            if any(sk in key_lower for sk in SENSITIVE_KEYS):
                setattr(record, key, REDACTED)
            else:
                setattr(record, key, sanitize_log_data(value))
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, context, msg, pid, hostname.

    ``extra`` fields are merged into the object but never replace those
    keys, and an attached exception is serialised under ``err`` as
    ``{type, message, stack}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "context": _context_for(record.name),
            "msg": record.getMessage(),
            "pid": record.process,
            "hostname": _HOSTNAME,
        }
        for key, value in extra_fields(record).items():
            payload.setdefault(key, value)
        if record.exc_info and record.exc_info[1] is not None:
            exc_type, exc, tb = record.exc_info
            payload["err"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "stack": "".join(traceback.format_exception(exc_type, exc, tb)),
            }
        return json.dumps(payload, default=str)


class CustomFormatter(logging.Formatter):
    grey = "\x1b[90;20m"
    regular = "\x1b[37;20m"
    yellow = "\x1b[33;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_ = "%(message)s"

    FORMATS = {
        logging.DEBUG: grey + format_ + reset,
        logging.INFO: grey + format_ + reset,
        logging.WARNING: regular + format_ + reset,
        logging.ERROR: yellow + format_ + reset,
        logging.CRITICAL: bold_red + format_ + reset,
    }

    def format(self, record):
        formatter = logging.Formatter(self.FORMATS.get(record.levelno))
        return formatter.format(record)


class _CliOnlyFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 – simple predicate
        return record.name.startswith(CLI_LOGGER_NAME)


def setup_logging(
    verbosity: int,
    log_dir: Path,
    *,
    level: str = "info",
    max_files: int = 10,
    mcp_mode: bool | None = None,
) -> Path:
    """Configure logging for the current *bigrack* invocation.

    A rotating file handler writes JSON lines at *level* to
    ``log_dir/bigrack.log`` (10 MiB per file, *max_files* backups kept).

    Unless the process is in MCP mode, a console handler on stderr is added
    according to *verbosity*: ``-1`` warnings from the CLI logger only, ``0``
    the CLI logger at INFO, ``1`` INFO from every logger, ``2`` and up DEBUG.

    The function ensures *log_dir* exists and returns the log file path.
    """
    global _current_log_path

    if mcp_mode is None:
        mcp_mode = is_mcp_mode()

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = get_log_path(log_dir)
    _current_log_path = log_path

    # Configure the root logger so fastmcp and friends land in the same file.
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=MAX_LOG_BYTES, backupCount=max_files, encoding="utf-8"
    )
    file_handler.setLevel(LOG_LEVELS.get(level, logging.INFO))
    file_handler.addFilter(RedactingFilter())
    file_handler.setFormatter(JsonFormatter())
    root_logger.addHandler(file_handler)

    if mcp_mode:
        return log_path

    console_handler = logging.StreamHandler()
    if verbosity <= -1:
        console_handler.setLevel(logging.WARNING)
        console_handler.addFilter(_CliOnlyFilter())
    elif verbosity == 0:
        console_handler.setLevel(logging.INFO)
        console_handler.addFilter(_CliOnlyFilter())
    elif verbosity == 1:
        console_handler.setLevel(logging.INFO)
    else:
        console_handler.setLevel(logging.DEBUG)

    if sys.stderr.isatty():
        console_handler.setFormatter(CustomFormatter())
    else:
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    return log_path


@contextmanager
def deferred_records(capacity: int = 1000) -> Iterator[list[logging.LogRecord]]:
    """Hold records logged before ``setup_logging`` so they can be replayed.

    Configuration is read before logging can be configured from it; warnings
    raised while doing so would otherwise never reach the log file.
    """
    handler = logging.handlers.BufferingHandler(capacity)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield handler.buffer
    finally:
        root_logger.removeHandler(handler)


def replay_records(records: list[logging.LogRecord]) -> None:
    """Send held records through the handlers installed since."""
    for record in records:
        logging.getLogger(record.name).handle(record)


CLI_LOGGER = logging.getLogger(CLI_LOGGER_NAME)
DAEMON_LOGGER = logging.getLogger(DAEMON_LOGGER_NAME)
STORAGE_LOGGER = logging.getLogger(STORAGE_LOGGER_NAME)
