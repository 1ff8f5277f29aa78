"""
Tests for Audit Toolkit CLI module.
"""

import json

import pytest
from click.testing import CliRunner

from audit_toolkit.cli import cli
from audit_toolkit.config import ToolkitConfig, set_config


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def test_config():
    """Install a fast, local configuration for every command."""
    config = ToolkitConfig(
        application_name="CLI Test",
        environment="test",
        database_url="sqlite://",
        database_retry_cap=1,
        database_retry_delay_seconds=0,
    )
    set_config(config)
    yield config
    set_config(None)


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_cli_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Audit Toolkit" in result.output

    def test_cli_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_cli_no_command(self, runner):
        result = runner.invoke(cli, [])
        assert result.exit_code == 0
        assert "Audit Toolkit" in result.output


class TestConfigCommands:
    """Test configuration-related commands."""

    def test_config_show_table(self, runner):
        result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "allow_hard_delete" in result.output
        assert "CLI Test" in result.output

    def test_config_show_json(self, runner):
        result = runner.invoke(cli, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["database_retry_cap"] == 1

    def test_config_show_yaml(self, runner):
        result = runner.invoke(cli, ["config", "show", "--format", "yaml"])
        assert result.exit_code == 0
        assert "environment: test" in result.output

    def test_config_validate(self, runner):
        result = runner.invoke(cli, ["config", "validate"])
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_config_validate_production_warnings(self, runner):
        set_config(ToolkitConfig(environment="production", database_url="sqlite://"))

        result = runner.invoke(cli, ["config", "validate"])

        assert result.exit_code == 0
        assert "SQLite" in result.output
        assert "Hard deletes" in result.output

    def test_config_validate_missing_catalog(self, runner):
        set_config(ToolkitConfig(supported_languages=["en", "xx"]))

        result = runner.invoke(cli, ["config", "validate"])

        assert result.exit_code == 1
        assert "xx" in result.output


class TestDatabaseCommands:
    """Test database connectivity commands."""

    def test_db_ping(self, runner):
        result = runner.invoke(cli, ["db", "ping"])
        assert result.exit_code == 0
        assert "Connected" in result.output

    def test_db_ping_url_override(self, runner, tmp_path):
        url = f"sqlite:///{tmp_path / 'records.db'}"

        result = runner.invoke(cli, ["db", "ping", "--url", url])

        assert result.exit_code == 0
        assert "Connected" in result.output
        assert (tmp_path / "records.db").exists()

    def test_db_ping_failure(self, runner, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'records.db'}"

        result = runner.invoke(cli, ["db", "ping", "--url", url])

        assert result.exit_code == 1
        assert "Could not connect" in result.output


class TestErrorCommands:
    """Test error catalog commands."""

    def test_errors_translate(self, runner):
        result = runner.invoke(
            cli, ["errors", "translate", "storage", "--extra", "delete"]
        )

        assert result.exit_code == 0
        payload = json.loads(result.output)
        assert payload["error_code"] == "storage"
        assert payload["extra_message"] == "The record is already deleted."

    def test_errors_translate_unknown_code(self, runner):
        result = runner.invoke(cli, ["errors", "translate", "teleport"])

        assert result.exit_code == 0
        assert json.loads(result.output)["error_code"] == "unknown"

    def test_errors_catalog(self, runner):
        result = runner.invoke(cli, ["errors", "catalog", "--language", "en"])

        assert result.exit_code == 0
        assert "storage" in result.output
        assert "retry_exhausted" in result.output
