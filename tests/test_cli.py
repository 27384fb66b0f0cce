"""Tests for the command line interface."""

import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner
from cnab_runtime.cli import cli

TESTDATA = Path(__file__).parent / "testdata"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def write_app(directory: Path) -> Path:
    """Write a dependency-free bundle and return its file."""
    path = directory / "bundle.json"
    path.write_text(
        json.dumps(
            {
                "name": "app",
                "version": "1.0.0",
                "parameters": {"port": {"type": "integer", "default": 80}},
                "actions": {"status": {"stateless": True}},
            }
        )
    )
    return path


class TestActionCommands:
    """Tests for install/upgrade/invoke/uninstall."""

    def test_invoke_requires_action(self, runner: CliRunner) -> None:
        """invoke without --action is a usage error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "invoke", "--name", "demo"])
        assert result.exit_code == 2
        assert "--action is required" in result.output

    @pytest.mark.parametrize("command", ["install", "upgrade", "uninstall"])
    def test_malformed_param(self, runner: CliRunner, command: str) -> None:
        """Every verb reports a malformed --param the same way."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, command, "--name", "demo", "--param", "A:B"])
        assert result.exit_code == 2
        assert "invalid parameter (A:B), must be in name=value format" in result.output

    def test_unknown_driver(self, runner: CliRunner) -> None:
        """An unsupported driver is a usage error."""
        with tempfile.TemporaryDirectory() as tmpdir:
            bundle = write_app(Path(tmpdir))
            result = runner.invoke(cli, ["--home", tmpdir, "install", "-f", str(bundle), "--driver", "warp"])
        assert result.exit_code == 2
        assert "unsupported driver 'warp'" in result.output

    def test_install_then_list(self, runner: CliRunner) -> None:
        """An install with the debug driver is recorded and listed."""
        with tempfile.TemporaryDirectory() as tmpdir:
            bundle = write_app(Path(tmpdir))

            installed = runner.invoke(
                cli, ["--home", tmpdir, "install", "-f", str(bundle), "--name", "demo", "--param", "port=8080"]
            )
            assert installed.exit_code == 0, installed.output

            listed = runner.invoke(cli, ["--home", tmpdir, "installation", "list", "-o", "json"])
            assert listed.exit_code == 0, listed.output
            rows = json.loads(listed.output)
            assert [(r["name"], r["bundle"], r["status"], r["revision"]) for r in rows] == [
                ("demo", "app", "succeeded", 1)
            ]

            shown = runner.invoke(cli, ["--home", tmpdir, "installation", "show", "demo", "-o", "json"])
            assert shown.exit_code == 0, shown.output
            claims = json.loads(shown.output)
            assert claims[0]["parameters"] == {"port": 8080}

    def test_upgrade_missing_installation_fails(self, runner: CliRunner) -> None:
        """A failed run exits with status 1."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "upgrade", "--name", "ghost"])
        assert result.exit_code == 1
        assert "installation ghost not found" in result.output

    def test_missing_dependency_fails(self, runner: CliRunner) -> None:
        """Unresolvable dependencies fail the run."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "install", "-f", str(TESTDATA / "bundle.json")])
        assert result.exit_code == 1


class TestInstallationCommands:
    """Tests for the installation group."""

    def test_invalid_format(self, runner: CliRunner) -> None:
        """Unknown output formats are usage errors."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "installation", "list", "-o", "xml"])
        assert result.exit_code == 2
        assert "invalid format: xml" in result.output

    def test_empty_list_yaml(self, runner: CliRunner) -> None:
        """No installations lists an empty document."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "installation", "list", "-o", "yaml"])
        assert result.exit_code == 0
        assert result.output.strip() == "[]"

    def test_show_unknown(self, runner: CliRunner) -> None:
        """Showing an unknown installation fails."""
        with tempfile.TemporaryDirectory() as tmpdir:
            result = runner.invoke(cli, ["--home", tmpdir, "installation", "show", "ghost"])
        assert result.exit_code == 1
        assert "installation ghost not found" in result.output
