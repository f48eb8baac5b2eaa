import json
from pathlib import Path
from unittest.mock import patch

import pytest

from bigrack import cli as cli_mod
from bigrack.cli import StartAction, build_parser, parse_cli
from bigrack.config import Config


@pytest.fixture
def mock_setup_logging():
    with patch("bigrack.cli.setup_logging", return_value=Path("/fake/log/path")) as mock:
        yield mock


def test_parse_cli_start(mock_setup_logging, isolated_home):
    action, log_path = parse_cli(["start"])

    assert isinstance(action, StartAction)
    assert action.verbose == 0
    assert action.config == Config()
    assert log_path == Path("/fake/log/path")
    mock_setup_logging.assert_called_once_with(
        0,
        isolated_home / ".bigrack" / "logs",
        level="info",
        max_files=10,
        mcp_mode=True,
    )


def test_parse_cli_verbose_and_quiet(mock_setup_logging):
    action, _ = parse_cli(["-vv", "start"])
    assert action.verbose == 2

    action, _ = parse_cli(["-q", "start"])
    assert action.verbose == -1


def test_parse_cli_uses_config_overrides(mock_setup_logging, monkeypatch):
    monkeypatch.setenv("BIG_RACK_LOG_LEVEL", "debug")

    action, _ = parse_cli(["start"])

    assert action.config.logging.level == "debug"
    assert mock_setup_logging.call_args.kwargs["level"] == "debug"


def test_parse_cli_logs_config_fallback_to_log_file(isolated_home):
    config_dir = isolated_home / ".bigrack"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"daemon": {"port": 80}}))

    action, log_path = parse_cli(["start"])

    assert action.config == Config()
    records = [json.loads(line) for line in log_path.read_text().splitlines()]
    (fallback,) = [r for r in records if r["context"] == "config"]
    assert fallback["level"] == "error"
    assert fallback["msg"].startswith("Invalid configuration, using defaults: daemon.port")


def test_parse_cli_without_command_prints_help(mock_setup_logging, capsys):
    with pytest.raises(SystemExit) as excinfo:
        parse_cli([])

    assert excinfo.value.code == 1
    assert "start" in capsys.readouterr().out
    mock_setup_logging.assert_not_called()


def test_parse_cli_rejects_start_arguments(mock_setup_logging):
    with pytest.raises(SystemExit) as excinfo:
        parse_cli(["start", "--port", "1234"])
    assert excinfo.value.code == 2


def test_start_subcommand_description():
    help_text = build_parser().format_help()
    assert "Start the BigRack MCP daemon" in help_text
    assert "BigRack - Intelligent MCP for complex projects" in help_text


class _FakeServer:
    instances = []

    def __init__(self, config, error=None):
        self.config = config
        self.error = error
        self.events = []
        _FakeServer.instances.append(self)

    async def start(self):
        self.events.append("start")
        if self.error is not None:
            raise self.error

    async def wait_closed(self):
        self.events.append("wait_closed")


@pytest.fixture
def fake_server(monkeypatch):
    _FakeServer.instances = []
    monkeypatch.setattr(cli_mod, "MCPServer", _FakeServer)
    return _FakeServer


def test_start_action_waits_on_server_after_ready(fake_server, mock_setup_logging, capsys):
    action, _ = parse_cli(["start"])
    action.run()

    (server,) = fake_server.instances
    assert server.events == ["start", "wait_closed"]
    captured = capsys.readouterr()
    # stdout is left to the MCP transport.
    assert captured.out == ""
    assert "Starting BigRack MCP Daemon..." in captured.err
    assert "✓ BigRack MCP Daemon started and ready" in captured.err


def test_start_action_exits_with_code_1_on_failure(fake_server, monkeypatch, capsys):
    monkeypatch.setattr(
        cli_mod,
        "MCPServer",
        lambda config: _FakeServer(config, error=OSError("port in use")),
    )

    with pytest.raises(SystemExit) as excinfo:
        StartAction(config=Config()).run()

    assert excinfo.value.code == 1
    (server,) = fake_server.instances
    assert server.events == ["start"]
    assert "✗ Failed to start daemon: port in use" in capsys.readouterr().err


def test_cli_runs_parsed_action(monkeypatch):
    ran = []

    class _Action:
        def run(self):
            ran.append(True)

    monkeypatch.setattr(cli_mod, "parse_cli", lambda argv: (_Action(), Path("/x")))
    monkeypatch.setattr(cli_mod.sys, "argv", ["bigrack", "start"])

    cli_mod.cli()

    assert ran == [True]
