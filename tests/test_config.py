"""Tests for runtime settings."""

import tempfile
from pathlib import Path

import pytest
from cnab_runtime.config import HOME_ENV_VAR
from cnab_runtime.config import RuntimeSettings
from cnab_runtime.config import SettingsPaths
from cnab_runtime.config import deep_merge
from cnab_runtime.config import get_runtime_home
from cnab_runtime.config import load_settings


class TestDeepMerge:
    """Tests for deep_merge."""

    def test_nested_dicts_merge(self) -> None:
        """Nested mappings merge; scalars and lists are replaced."""
        parent = {"drivers": {"command": {"timeout": 10, "command": ["a"]}}, "driver": "debug"}
        child = {"drivers": {"command": {"command": ["b"]}}, "driver": "command"}

        result = deep_merge(parent, child)

        assert result == {"drivers": {"command": {"timeout": 10, "command": ["b"]}}, "driver": "command"}
        assert parent["driver"] == "debug"


class TestRuntimeHome:
    """Tests for get_runtime_home."""

    def test_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """CNAB_RUNTIME_HOME overrides the default."""
        with tempfile.TemporaryDirectory() as tmpdir:
            monkeypatch.setenv(HOME_ENV_VAR, tmpdir)
            assert get_runtime_home() == Path(tmpdir).resolve()

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without the variable the home is under the user's home."""
        monkeypatch.delenv(HOME_ENV_VAR, raising=False)
        assert get_runtime_home() == Path.home() / ".cnab-runtime"


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self) -> None:
        """Missing files give default settings."""
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            paths = SettingsPaths(home / "settings.yaml", home / "project.yaml")

            settings = load_settings(home, paths)

            assert settings.driver == "debug"
            assert settings.claims_dir == home / "claims"
            assert settings.timeout is None

    def test_project_overrides_global(self) -> None:
        """The project file wins key by key."""
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            (home / "settings.yaml").write_text(
                "driver: command\n"
                "drivers:\n"
                "  command:\n"
                "    command: ['./run.sh']\n"
                "    timeout: 60\n"
                "bundles:\n"
                "  search_paths: ['/srv/bundles']\n"
                "log_level: info\n"
            )
            (home / "project.yaml").write_text("drivers:\n  command:\n    timeout: 5\ntimeout: 120\n")

            settings = load_settings(home, SettingsPaths(home / "settings.yaml", home / "project.yaml"))

            assert settings.driver == "command"
            assert settings.driver_config("command") == {"command": ["./run.sh"], "timeout": 5}
            assert settings.search_paths == [Path("/srv/bundles")]
            assert settings.log_level == "INFO"
            assert settings.timeout == 120.0

    def test_unreadable_file_skipped(self) -> None:
        """A broken settings file is skipped with a warning."""
        with tempfile.TemporaryDirectory() as tmpdir:
            home = Path(tmpdir)
            (home / "settings.yaml").write_text("driver: [unclosed\n")

            settings = load_settings(home, SettingsPaths(home / "settings.yaml", home / "project.yaml"))

            assert settings.driver == "debug"

    def test_from_dict_aliases(self) -> None:
        """Bundle aliases are read from the bundles section."""
        settings = RuntimeSettings.from_dict(
            {"bundles": {"aliases": {"somecloud/mysql": "./mysql"}}, "claims_dir": "/var/claims"},
            Path("/home/me/.cnab-runtime"),
        )
        assert settings.aliases == {"somecloud/mysql": "./mysql"}
        assert settings.claims_dir == Path("/var/claims")
