"""Tests for the nexusdash CLI."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from click.testing import CliRunner

from nexusdash import cli as cli_module
from nexusdash.cli import cli

pytestmark = pytest.mark.unit


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def _no_logging_setup(monkeypatch):
    """Keep the group callback from replacing pytest's log handlers."""
    configure = MagicMock()
    monkeypatch.setattr(cli_module, "configure_logging", configure)
    return configure


class TestGroup:
    def test_version(self, runner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_logging_is_configured_from_env(self, runner, monkeypatch, _no_logging_setup) -> None:
        monkeypatch.setenv("NEXUSDASH_LOG_FORMAT", "json")
        monkeypatch.setenv("NEXUSDASH_LOG_LEVEL", "debug")
        monkeypatch.setattr("asyncio.run", lambda coro: coro.close())

        result = runner.invoke(cli, ["init-db"])

        assert result.exit_code == 0
        _no_logging_setup.assert_called_once_with(level="DEBUG", fmt="json", log_root=None)

    def test_invalid_logging_config_exits(self, runner, monkeypatch) -> None:
        monkeypatch.setenv("NEXUSDASH_LOG_FORMAT", "xml")
        result = runner.invoke(cli, ["init-db"])
        assert result.exit_code == 1
        assert "NEXUSDASH_LOG_FORMAT" in result.output


class TestServe:
    def test_serve_runs_uvicorn_factory(self, runner, monkeypatch) -> None:
        run = MagicMock()
        monkeypatch.setattr("uvicorn.run", run)

        result = runner.invoke(cli, ["serve", "--port", "4000"])

        assert result.exit_code == 0
        run.assert_called_once_with(
            "nexusdash.api.app:create_app",
            factory=True,
            host="127.0.0.1",
            port=4000,
            reload=False,
            log_config=None,
        )


class TestInitDb:
    def test_success(self, runner, monkeypatch) -> None:
        monkeypatch.setattr("asyncio.run", lambda coro: coro.close())
        result = runner.invoke(cli, ["init-db"])
        assert result.exit_code == 0
        assert "up to date" in result.output

    def test_connection_failure(self, runner, monkeypatch) -> None:
        def fail(coro):
            coro.close()
            raise ConnectionRefusedError("connection refused")

        monkeypatch.setattr("asyncio.run", fail)
        result = runner.invoke(cli, ["init-db"])

        assert result.exit_code == 1
        assert "Database initialization failed" in result.output
