"""Tests for the command-line entry points"""

import pytest
from click.testing import CliRunner

from mediasync import __version__
from mediasync.cli import cli
from mediasync.credentials import CredentialStore
from mediasync.network.connection import ConnectionManager, ConnectionResult


@pytest.fixture
def data_dir(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    monkeypatch.setenv("MEDIASYNC_DATA_DIR", str(temp_dir / "data"))
    return temp_dir / "data"


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Command wiring and exit codes"""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_servers_empty(self, runner, data_dir):
        result = runner.invoke(cli, ["servers"])

        assert result.exit_code == 0
        assert "No known servers" in result.output

    def test_servers_marks_active(self, runner, data_dir, server_record):
        credentials = CredentialStore(data_dir / "servers.json")
        credentials.add_or_update_server(server_record)
        credentials.set_active_server_id("server-1")

        result = runner.invoke(cli, ["servers"])

        assert result.exit_code == 0
        assert "* Home" in result.output
        assert "[signed in]" in result.output

    def test_invalid_config_exits_1(self, runner, data_dir, temp_dir):
        config = temp_dir / "bad.yaml"
        config.write_text("discovery:\n  port: 0\n", encoding="utf-8")

        result = runner.invoke(cli, ["--config", str(config), "servers"])

        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_connect_unavailable_exits_3(self, runner, data_dir, monkeypatch):
        monkeypatch.setattr(ConnectionManager, "connect", lambda self, cancellation=None: ConnectionResult())

        result = runner.invoke(cli, ["connect"])

        assert result.exit_code == 3
        assert "Server unavailable" in result.output
