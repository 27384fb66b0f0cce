"""cnab-runtime - bundle dependency resolution and lifecycle action orchestration.

Consumes already-built bundle definitions, resolves their dependency
bundles into a dependency-first plan, and drives install / upgrade /
invoke / uninstall for every plan entry through a pluggable driver,
recording a claim for each attempt.

Flow: bundle -> ExtensionProcessor -> DependencyResolver -> ActionOrchestrator -> RunSummary
"""

from __future__ import annotations

# Actions
from cnab_runtime.actions import Action
from cnab_runtime.actions import ActionOptions

# Core classes
from cnab_runtime.bundle import Bundle
from cnab_runtime.bundle import CredentialDefinition
from cnab_runtime.bundle import ParameterDefinition

# Cancellation
from cnab_runtime.cancellation import CancellationState
from cnab_runtime.cancellation import CancellationToken

# Claims
from cnab_runtime.claims import Claim
from cnab_runtime.claims import ClaimStore
from cnab_runtime.claims import FileClaimStore
from cnab_runtime.claims import InMemoryClaimStore

# Settings
from cnab_runtime.config import RuntimeSettings
from cnab_runtime.config import load_settings

# Driver protocol
from cnab_runtime.driver import Driver
from cnab_runtime.driver import ExecutionResult
from cnab_runtime.driver import InvocationDocument
from cnab_runtime.drivers import create_driver

# Exceptions
from cnab_runtime.exceptions import CnabError
from cnab_runtime.exceptions import ExecutionError
from cnab_runtime.exceptions import InfrastructureError
from cnab_runtime.exceptions import ResolutionError
from cnab_runtime.exceptions import ValidationError

# Extensions
from cnab_runtime.extensions import Dependencies
from cnab_runtime.extensions import Dependency
from cnab_runtime.extensions import DependencyVersion
from cnab_runtime.extensions import ExtensionProcessor
from cnab_runtime.extensions import ExtensionRegistry
from cnab_runtime.extensions import has_dependencies
from cnab_runtime.extensions import read_dependencies
from cnab_runtime.loader import load_bundle

# Locators
from cnab_runtime.locators import CompositeBundleLocator
from cnab_runtime.locators import FileBundleLocator
from cnab_runtime.locators import HttpBundleLocator

# Orchestration
from cnab_runtime.orchestrator import ActionOrchestrator
from cnab_runtime.orchestrator import EntryStatus
from cnab_runtime.orchestrator import RunState
from cnab_runtime.orchestrator import RunSummary
from cnab_runtime.resolver import BundleLocator
from cnab_runtime.resolver import DependencyResolver
from cnab_runtime.resolver import Plan
from cnab_runtime.validator import BundleValidator
from cnab_runtime.validator import validate_bundle

__all__ = [
    # Actions
    "Action",
    "ActionOptions",
    # Core
    "Bundle",
    "CredentialDefinition",
    "ParameterDefinition",
    "BundleValidator",
    "validate_bundle",
    "load_bundle",
    # Cancellation
    "CancellationState",
    "CancellationToken",
    # Claims
    "Claim",
    "ClaimStore",
    "FileClaimStore",
    "InMemoryClaimStore",
    # Settings
    "RuntimeSettings",
    "load_settings",
    # Drivers
    "Driver",
    "ExecutionResult",
    "InvocationDocument",
    "create_driver",
    # Exceptions
    "CnabError",
    "ExecutionError",
    "InfrastructureError",
    "ResolutionError",
    "ValidationError",
    # Extensions
    "Dependencies",
    "Dependency",
    "DependencyVersion",
    "ExtensionProcessor",
    "ExtensionRegistry",
    "has_dependencies",
    "read_dependencies",
    # Resolution
    "BundleLocator",
    "CompositeBundleLocator",
    "DependencyResolver",
    "FileBundleLocator",
    "HttpBundleLocator",
    "Plan",
    # Orchestration
    "ActionOrchestrator",
    "EntryStatus",
    "RunState",
    "RunSummary",
]
