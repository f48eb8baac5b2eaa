import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Iterable

import pytest

from bigrack import console

LOG_PATTERN = "bigrack.log*"

_ENV_VARS = (
    "BIG_RACK_DAEMON_PORT",
    "BIG_RACK_DAEMON_HOST",
    "BIG_RACK_LOG_LEVEL",
    "BIG_RACK_DB_PATH",
    "DATABASE_URL",
    "MCP_MODE",
    "NO_COLOR",
    "FORCE_COLOR",
)


def _find_latest_log(dirs: Iterable[Path]) -> Path | None:
    """Return the most recently modified log file among *dirs* (recursive)."""
    latest: Path | None = None
    for base in dirs:
        if not base.exists():
            continue
        for path in base.rglob(LOG_PATTERN):
            if latest is None or path.stat().st_mtime > latest.stat().st_mtime:
                latest = path
    return latest


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item, call):  # noqa: D401 – pytest hook
    outcome = yield
    rep = outcome.get_result()

    if rep.when != "call" or rep.passed:
        return

    candidate_dirs: list[Path] = []
    fixture_val = item.funcargs.get("tmp_path") if hasattr(item, "funcargs") else None
    if isinstance(fixture_val, Path):
        candidate_dirs.append(fixture_val)

    latest_log = _find_latest_log(candidate_dirs)
    if latest_log is None:
        rep.sections.append(("bigrack-log", "[no log file found]"))
        return

    try:
        contents = latest_log.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover – best-effort
        contents = f"<error reading log file {latest_log}: {exc}>"

    rep.sections.append(("bigrack-log", contents))


@pytest.fixture(autouse=True)
def _enforce_timeout(request):
    """Fail tests that run longer than the allowed time.

    Default timeout is 30 seconds unless a test is marked with
    ``@pytest.mark.timeout(N)`` specifying a custom limit.
    """

    marker = request.node.get_closest_marker("timeout")
    timeout = int(marker.args[0]) if marker and marker.args else 30

    if timeout <= 0 or sys.platform.startswith("win"):
        yield
        return

    def _alarm_handler(signum, frame):  # noqa: D401 – signal handler
        pytest.fail(f"Test timed out after {timeout} seconds", pytrace=False)

    previous = signal.signal(signal.SIGALRM, _alarm_handler)  # type: ignore[arg-type]
    signal.alarm(timeout)

    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point ``~`` at a scratch directory and clear bigrack env overrides."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(autouse=True)
def _restore_logging():
    """setup_logging() rewires the root logger; undo that after each test."""
    root = logging.getLogger()
    level = root.level
    yield
    # pytest's own capture handlers are subclasses; ours are the exact types.
    for handler in list(root.handlers):
        if type(handler) in (logging.handlers.RotatingFileHandler, logging.StreamHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    console.set_color_enabled(True)
    console.set_mcp_mode(False)
