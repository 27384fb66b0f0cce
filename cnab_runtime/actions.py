"""Action options: what one install/upgrade/invoke/uninstall request asks for."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any

from cnab_runtime.claims import check_installation_name
from cnab_runtime.exceptions import ActionValidationError
from cnab_runtime.parameters import load_value_file
from cnab_runtime.parameters import parse_name_value_pairs


class Action(str, Enum):
    """Lifecycle verbs."""

    INSTALL = "install"
    UPGRADE = "upgrade"
    INVOKE = "invoke"
    UNINSTALL = "uninstall"


@dataclass
class ActionOptions:
    """Options for one action run.

    Attributes:
        action: Lifecycle verb.
        custom_action: Action name for ``invoke``; passed to drivers unchanged.
        installation: Installation name; defaults to the bundle name.
        file: Local bundle file or directory.
        reference: Bundle reference resolved through the bundle locator.
        params: ``name=value`` strings from ``--param``.
        param_files: YAML/JSON mapping files from ``--param-file``.
        creds: ``name=value`` strings from ``--cred``.
        cred_files: YAML/JSON mapping files from ``--cred-file``.
        driver: Driver name; None uses the configured default.
        allow_docker_host_access: Permission consulted by the docker extension.
        delete: For uninstall, remove claims after a successful uninstall.
        force_delete: For uninstall, remove claims even if the uninstall failed.
        timeout: Seconds before the whole run is cancelled.
    """

    action: Action
    custom_action: str | None = None
    installation: str | None = None
    file: str | None = None
    reference: str | None = None
    params: list[str] = field(default_factory=list)
    param_files: list[str] = field(default_factory=list)
    creds: list[str] = field(default_factory=list)
    cred_files: list[str] = field(default_factory=list)
    driver: str | None = None
    allow_docker_host_access: bool = False
    delete: bool = False
    force_delete: bool = False
    timeout: float | None = None

    # Populated by validate()
    parameters: dict[str, Any] = field(default_factory=dict, init=False)
    credentials: dict[str, Any] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self.action = Action(self.action)

    @property
    def action_name(self) -> str:
        """Name passed to drivers: the custom action for invoke, the verb otherwise."""
        if self.action is Action.INVOKE:
            return self.custom_action or ""
        return self.action.value

    def validate(self) -> None:
        """Check required inputs and parse values before planning starts.

        Raises:
            ActionValidationError: Missing or conflicting options.
            ParameterError: Malformed ``name=value`` string or value file.
        """
        if self.action is Action.INVOKE and not (self.custom_action or "").strip():
            raise ActionValidationError("--action is required")
        if self.action is not Action.INVOKE and self.custom_action:
            raise ActionValidationError(f"--action is only valid for invoke, not {self.action.value}")

        self.parameters = _collect(self.param_files, self.params, "parameter")
        self.credentials = _collect(self.cred_files, self.creds, "credential")

        if self.file and self.reference:
            raise ActionValidationError("--file and --reference cannot be used together")
        if self.action is Action.INSTALL and not (self.file or self.reference):
            raise ActionValidationError("install requires --file or --reference")
        if self.action is not Action.INSTALL and not (self.file or self.reference or self.installation):
            raise ActionValidationError(f"{self.action.value} requires --name, --file or --reference")

        if self.installation is not None:
            problem = check_installation_name(self.installation)
            if problem:
                raise ActionValidationError(problem)

        if (self.delete or self.force_delete) and self.action is not Action.UNINSTALL:
            raise ActionValidationError("--delete and --force-delete are only valid for uninstall")
        if self.timeout is not None and self.timeout <= 0:
            raise ActionValidationError("--timeout must be positive")


def _collect(files: list[str], pairs: list[str], kind: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for path in files:
        values.update(load_value_file(path, kind))
    values.update(parse_name_value_pairs(pairs, kind))
    return values
