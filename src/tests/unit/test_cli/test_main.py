"""Tests for the main CLI module."""

from unittest.mock import AsyncMock, patch

import yaml
from click.testing import CliRunner

from mongo_harness import __version__
from mongo_harness.main import cli
from mongo_harness.scenarios import ScenarioOutcome


class TestCLI:
    """Test the main CLI functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_cli_help(self):
        result = self.runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "list" in result.output
        assert "run" in result.output

    def test_cli_version(self):
        result = self.runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "mongo-harness" in result.output
        assert __version__ in result.output

    def test_list_scenarios(self):
        result = self.runner.invoke(cli, ["list"])

        assert result.exit_code == 0
        for name in ("auth", "lock_file", "crl_revoked", "srv_uri"):
            assert name in result.output
        assert "revoked" in result.output

    def test_run_unknown_scenario(self):
        result = self.runner.invoke(cli, ["run", "auth", "bogus"])

        assert result.exit_code == 1
        assert "Unknown scenario(s): bogus" in result.output
        assert "mongo-harness list" in result.output

    def test_run_reports_verdicts(self):
        """Each scenario gets a verdict and any failure makes the exit code 1."""
        outcomes = [
            ScenarioOutcome(name="auth", passed=True, duration=1.5),
            ScenarioOutcome(
                name="srv_uri",
                passed=False,
                duration=0.5,
                error="Failed to connect",
                error_type="AssertionFailure",
            ),
        ]

        with patch("mongo_harness.main.run_scenario", AsyncMock(side_effect=outcomes)) as run:
            result = self.runner.invoke(cli, ["run", "auth", "srv_uri", "--keep-data"])

        assert result.exit_code == 1
        assert "PASS auth (1.5s)" in result.output
        assert "FAIL srv_uri (0.5s) AssertionFailure: Failed to connect" in result.output
        assert run.await_count == 2
        assert run.await_args.kwargs["keep_data"] is True

    def test_run_all_passing(self):
        outcome = ScenarioOutcome(name="lock_file", passed=True, duration=0.2)

        with patch("mongo_harness.main.run_scenario", AsyncMock(return_value=outcome)):
            result = self.runner.invoke(cli, ["run", "lock_file"])

        assert result.exit_code == 0
        assert "PASS lock_file" in result.output

    def test_config_file(self, tmp_path):
        config_file = tmp_path / "harness.yaml"
        config_file.write_text(yaml.safe_dump({"startup_timeout": 3, "server_command": ["/usr/bin/mongod"]}))
        outcome = ScenarioOutcome(name="auth", passed=True, duration=0.1)

        with patch("mongo_harness.main.run_scenario", AsyncMock(return_value=outcome)) as run:
            result = self.runner.invoke(cli, ["--config", str(config_file), "run", "auth"])

        assert result.exit_code == 0
        settings = run.await_args.args[1]
        assert settings.startup_timeout == 3
        assert settings.server_command == ["/usr/bin/mongod"]

    def test_invalid_config_file(self, tmp_path):
        config_file = tmp_path / "harness.yaml"
        config_file.write_text("- not\n- a mapping\n")

        result = self.runner.invoke(cli, ["--config", str(config_file), "list"])

        assert result.exit_code == 1
        assert "Configuration file must contain a mapping" in result.output

    def test_invalid_config_value(self, tmp_path):
        """A bad setting is reported as an error, not a traceback."""
        config_file = tmp_path / "harness.yaml"
        config_file.write_text(yaml.safe_dump({"startup_timeout": "soon"}))

        result = self.runner.invoke(cli, ["--config", str(config_file), "list"])

        assert result.exit_code == 1
        assert "Invalid settings: startup_timeout" in result.output
        assert "Traceback" not in result.output
