"""Runtime settings.

Philosophy: Simple, scope-aware YAML settings.

Scope priority (most specific wins):
1. project (./.cnab-runtime/settings.yaml) - committed, team-shared
2. global (<home>/settings.yaml) - user defaults

Example settings.yaml::

    driver: command
    drivers:
      command:
        command: ["./run-bundle.sh"]
        timeout: 600
    bundles:
      search_paths: ["./bundles"]
      aliases:
        mysql: ./bundles/mysql
    log_level: info
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "CNAB_RUNTIME_HOME"
PROJECT_DIR = ".cnab-runtime"
SETTINGS_FILENAME = "settings.yaml"


def get_runtime_home() -> Path:
    """Get the runtime home directory.

    Resolves in order:
    1. CNAB_RUNTIME_HOME environment variable
    2. ~/.cnab-runtime (default)
    """
    env_home = os.environ.get(HOME_ENV_VAR)
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".cnab-runtime"


def deep_merge(parent: dict[str, Any], child: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Child values override parent values. For nested dicts, merge recursively.
    For other types (including lists), child replaces parent.

    Returns:
        Merged dictionary (new dict, inputs not modified).
    """
    result = parent.copy()
    for key, child_value in child.items():
        parent_value = result.get(key)
        if isinstance(parent_value, dict) and isinstance(child_value, dict):
            result[key] = deep_merge(parent_value, child_value)
        else:
            result[key] = child_value
    return result


@dataclass
class SettingsPaths:
    """Standard paths for settings files."""

    global_settings: Path
    project_settings: Path

    @classmethod
    def default(cls, home: Path | None = None) -> SettingsPaths:
        home = home or get_runtime_home()
        return cls(
            global_settings=home / SETTINGS_FILENAME,
            project_settings=Path.cwd() / PROJECT_DIR / SETTINGS_FILENAME,
        )


@dataclass
class RuntimeSettings:
    """Merged runtime settings.

    Attributes:
        home: Runtime home directory.
        driver: Default driver name.
        drivers: Driver name to driver-specific config.
        claims_dir: Where FileClaimStore keeps claims.
        search_paths: Directories searched for bundle references.
        aliases: Bundle reference to local path.
        log_level: Logging level name.
        timeout: Default run timeout in seconds.
    """

    home: Path
    driver: str = "debug"
    drivers: dict[str, dict[str, Any]] = field(default_factory=dict)
    claims_dir: Path | None = None
    search_paths: list[Path] = field(default_factory=list)
    aliases: dict[str, str] = field(default_factory=dict)
    log_level: str = "WARNING"
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.claims_dir is None:
            self.claims_dir = self.home / "claims"

    def driver_config(self, name: str) -> dict[str, Any]:
        return dict(self.drivers.get(name) or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any], home: Path) -> RuntimeSettings:
        bundles = data.get("bundles") or {}
        claims_dir = data.get("claims_dir")
        timeout = data.get("timeout")
        return cls(
            home=home,
            driver=str(data.get("driver") or "debug"),
            drivers={str(k): dict(v or {}) for k, v in (data.get("drivers") or {}).items()},
            claims_dir=Path(claims_dir).expanduser() if claims_dir else None,
            search_paths=[Path(p).expanduser() for p in bundles.get("search_paths") or []],
            aliases={str(k): str(v) for k, v in (bundles.get("aliases") or {}).items()},
            log_level=str(data.get("log_level") or "WARNING").upper(),
            timeout=float(timeout) if timeout is not None else None,
        )


def read_settings_files(paths: SettingsPaths) -> dict[str, Any]:
    """Load and merge settings from all scopes (global, then project)."""
    result: dict[str, Any] = {}
    for path in (paths.global_settings, paths.project_settings):
        if not path.exists():
            continue
        try:
            with open(path, encoding="utf-8") as f:
                content = yaml.safe_load(f) or {}
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.warning(f"Skipping unreadable settings file {path}: {e}")
            continue
        if not isinstance(content, dict):
            logger.warning(f"Skipping settings file {path}: expected a mapping")
            continue
        result = deep_merge(result, content)
    return result


def load_settings(home: Path | None = None, paths: SettingsPaths | None = None) -> RuntimeSettings:
    """Load runtime settings.

    Args:
        home: Explicit home directory; otherwise ``CNAB_RUNTIME_HOME`` or ``~/.cnab-runtime``.
        paths: Explicit settings file locations.
    """
    home = home or get_runtime_home()
    paths = paths or SettingsPaths.default(home)
    return RuntimeSettings.from_dict(read_settings_files(paths), home)
