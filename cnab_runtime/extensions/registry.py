"""Extension registry and processor.

A bundle lists extension identifiers it *requires*; the runtime must have a
handler for every one of them or refuse the bundle outright. Extensions that
are present but not required are processed when a handler exists and
ignored otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from cnab_runtime.exceptions import ExtensionError, UnsupportedExtensionError

if TYPE_CHECKING:
    from cnab_runtime.bundle import Bundle
    from cnab_runtime.extensions.dependencies import Dependencies
    from cnab_runtime.extensions.docker import DockerOptions
    from cnab_runtime.extensions.parameter_sources import ParameterSource

logger = logging.getLogger(__name__)


@dataclass
class ProcessedExtensions:
    """Orchestrator-visible configuration produced by extension handlers.

    Attributes:
        required: Extension identifiers the bundle marked as required.
        allow_docker_host_access: Caller's permission for privileged docker access.
        dependencies: Decoded dependencies extension, if declared.
        docker: Decoded docker extension, if declared.
        parameter_sources: Parameter name to where its value may come from.
        values: Every decoded extension value by identifier.
    """

    required: frozenset[str] = frozenset()
    allow_docker_host_access: bool = False
    dependencies: Dependencies | None = None
    docker: DockerOptions | None = None
    parameter_sources: dict[str, ParameterSource] = field(default_factory=dict)
    values: dict[str, Any] = field(default_factory=dict)

    def is_required(self, key: str) -> bool:
        return key in self.required


@runtime_checkable
class ExtensionHandler(Protocol):
    """Interface for extension handlers.

    ``read`` decodes and structurally validates the extension's data,
    raising an ExtensionError subclass when it is malformed. ``apply``
    records the bundle-level effect on ProcessedExtensions; it must never
    modify the bundle.
    """

    key: str

    def read(self, bundle: Bundle) -> Any: ...

    def apply(self, value: Any, processed: ProcessedExtensions) -> None: ...


class ExtensionRegistry:
    """Maps extension identifiers to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, ExtensionHandler] = {}

    def register(self, handler: ExtensionHandler) -> None:
        """Register a handler under its ``key``, replacing any existing one."""
        if handler.key in self._handlers:
            logger.debug(f"Replacing extension handler for {handler.key}")
        self._handlers[handler.key] = handler
        logger.debug(f"Registered extension handler: {handler.key}")

    def get(self, key: str) -> ExtensionHandler | None:
        return self._handlers.get(key)

    def keys(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, key: object) -> bool:
        return key in self._handlers


def default_registry() -> ExtensionRegistry:
    """Registry with every built-in extension handler."""
    from cnab_runtime.extensions.dependencies import DependenciesExtension
    from cnab_runtime.extensions.docker import DockerExtension
    from cnab_runtime.extensions.parameter_sources import ParameterSourcesExtension

    registry = ExtensionRegistry()
    registry.register(DependenciesExtension())
    registry.register(DockerExtension())
    registry.register(ParameterSourcesExtension())
    return registry


class ExtensionProcessor:
    """Validates and applies a bundle's extensions."""

    def __init__(self, registry: ExtensionRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def check_required(self, bundle: Bundle) -> None:
        """Fail if any required extension has no handler.

        Raises:
            UnsupportedExtensionError: Naming the first unsupported identifier.
        """
        for key in bundle.required_extensions:
            if key not in self.registry:
                error = UnsupportedExtensionError(key)
                error.with_context(bundle=bundle.name)
                raise error

    def process(
        self,
        bundle: Bundle,
        *,
        allow_docker_host_access: bool = False,
    ) -> ProcessedExtensions:
        """Process every extension the bundle declares.

        All required identifiers are checked before any handler runs, so a
        bundle is never partially understood.

        Args:
            bundle: Bundle to process.
            allow_docker_host_access: Caller permission consulted by the docker extension.

        Returns:
            ProcessedExtensions for the orchestrator.

        Raises:
            UnsupportedExtensionError: A required extension has no handler.
            ExtensionError: A handler rejected its extension's data.
        """
        self.check_required(bundle)

        processed = ProcessedExtensions(
            required=frozenset(bundle.required_extensions),
            allow_docker_host_access=allow_docker_host_access,
        )

        keys = list(bundle.custom)
        keys.extend(k for k in bundle.required_extensions if k not in bundle.custom)

        for key in keys:
            handler = self.registry.get(key)
            if handler is None:
                logger.debug(f"Ignoring unrecognized optional extension {key} in {bundle.name}")
                continue
            try:
                value = handler.read(bundle)
                processed.values[key] = value
                handler.apply(value, processed)
            except ExtensionError as e:
                e.with_context(bundle=bundle.name)
                raise

        return processed
