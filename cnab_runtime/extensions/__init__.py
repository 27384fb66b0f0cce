"""Bundle extensions and the processor that applies them."""

from cnab_runtime.extensions.dependencies import DEPENDENCIES_KEY
from cnab_runtime.extensions.dependencies import Dependencies
from cnab_runtime.extensions.dependencies import DependenciesExtension
from cnab_runtime.extensions.dependencies import Dependency
from cnab_runtime.extensions.dependencies import DependencyVersion
from cnab_runtime.extensions.dependencies import has_dependencies
from cnab_runtime.extensions.dependencies import read_dependencies
from cnab_runtime.extensions.docker import DOCKER_KEY
from cnab_runtime.extensions.docker import DockerExtension
from cnab_runtime.extensions.docker import DockerOptions
from cnab_runtime.extensions.parameter_sources import PARAMETER_SOURCES_KEY
from cnab_runtime.extensions.parameter_sources import ParameterSource
from cnab_runtime.extensions.parameter_sources import ParameterSourcesExtension
from cnab_runtime.extensions.registry import ExtensionHandler
from cnab_runtime.extensions.registry import ExtensionProcessor
from cnab_runtime.extensions.registry import ExtensionRegistry
from cnab_runtime.extensions.registry import ProcessedExtensions
from cnab_runtime.extensions.registry import default_registry

__all__ = [
    "DEPENDENCIES_KEY",
    "DOCKER_KEY",
    "PARAMETER_SOURCES_KEY",
    "Dependencies",
    "DependenciesExtension",
    "Dependency",
    "DependencyVersion",
    "DockerExtension",
    "DockerOptions",
    "ExtensionHandler",
    "ExtensionProcessor",
    "ExtensionRegistry",
    "ParameterSource",
    "ParameterSourcesExtension",
    "ProcessedExtensions",
    "default_registry",
    "has_dependencies",
    "read_dependencies",
]
