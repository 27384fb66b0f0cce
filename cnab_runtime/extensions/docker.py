"""The docker extension: bundle needs access to the host's docker daemon."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from cnab_runtime.exceptions import ExtensionError

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle
    from cnab_runtime.extensions.registry import ProcessedExtensions

DOCKER_KEY = "io.cnab.docker"


@dataclass(frozen=True)
class DockerOptions:
    """Decoded docker extension.

    Attributes:
        privileged: Whether the bundle's containers must run privileged.
    """

    privileged: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"privileged": self.privileged}


class DockerExtension:
    """Requires the caller to opt in before a bundle may reach the docker host."""

    key = DOCKER_KEY

    def read(self, bundle: Bundle) -> DockerOptions:
        data = bundle.custom.get(DOCKER_KEY)
        if data is None:
            return DockerOptions()
        if isinstance(data, DockerOptions):
            return data
        if not isinstance(data, dict):
            raise ExtensionError(f"{DOCKER_KEY} must be a mapping, got {type(data).__name__}")
        privileged = data.get("privileged", False)
        if not isinstance(privileged, bool):
            raise ExtensionError(f"{DOCKER_KEY}: 'privileged' must be a boolean")
        return DockerOptions(privileged=privileged)

    def apply(self, value: DockerOptions, processed: ProcessedExtensions) -> None:
        if processed.is_required(DOCKER_KEY) and not processed.allow_docker_host_access:
            raise ExtensionError(
                f"extension {DOCKER_KEY} is required and requires access to the docker host, "
                "rerun with --allow-docker-host-access to grant it"
            )
        processed.docker = value
