"""Exception hierarchy for cnab-runtime.

Four categories let callers tell "your bundle is broken" apart from
"the environment failed":

    CnabError
    ├── ValidationError       malformed input, caught before any side effect
    ├── ResolutionError       dependency graph cannot be planned
    ├── ExecutionError        a driver invocation failed
    └── InfrastructureError   claim store or cancellation/timeout
"""

from __future__ import annotations

from typing import Any


class CnabError(Exception):
    """Base exception for all cnab-runtime errors.

    ``str(error)`` is always the bare message. Plan-position context
    (bundle, action, position) is attached by the orchestrator through
    :meth:`with_context` and rendered by :meth:`describe`.
    """

    def __init__(
        self,
        message: str,
        *,
        bundle: str | None = None,
        action: str | None = None,
        position: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.bundle = bundle
        self.action = action
        self.position = position

    def with_context(
        self,
        *,
        bundle: str | None = None,
        action: str | None = None,
        position: int | None = None,
    ) -> CnabError:
        """Attach plan-position context without overwriting existing context."""
        if self.bundle is None:
            self.bundle = bundle
        if self.action is None:
            self.action = action
        if self.position is None:
            self.position = position
        return self

    def describe(self) -> str:
        """Message prefixed with whatever context is known."""
        parts: list[str] = []
        if self.position is not None:
            parts.append(f"entry {self.position}")
        if self.bundle:
            parts.append(f"bundle {self.bundle}")
        if self.action:
            parts.append(f"action {self.action}")
        if not parts:
            return self.message
        return f"{', '.join(parts)}: {self.message}"


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(CnabError):
    """Malformed input detected before any execution side effect."""


class BundleLoadError(ValidationError):
    """Bundle file could not be read or decoded."""


class BundleValidationError(ValidationError):
    """Bundle decoded but failed structural validation."""


class ExtensionError(ValidationError):
    """Extension data is malformed or its requirements are not met."""


class UnsupportedExtensionError(ExtensionError):
    """A required extension has no registered handler."""

    def __init__(self, key: str) -> None:
        super().__init__(f"unsupported required extension: {key}")
        self.key = key


class BundleDependencyError(ExtensionError):
    """Dependency declaration is malformed (sequence/requires mismatch, etc)."""


class ParameterError(ValidationError):
    """Parameter or credential value is malformed, missing, or mistyped."""


class ActionValidationError(ValidationError):
    """Action options are incomplete or inconsistent."""


class DriverNotFoundError(ValidationError):
    """No driver is registered under the requested name."""


class InstallationNotFoundError(ValidationError):
    """The action targets an installation that has no claim."""


# =============================================================================
# Resolution errors
# =============================================================================


class ResolutionError(CnabError):
    """Dependency graph could not be turned into an execution plan."""


class BundleNotFoundError(ResolutionError):
    """Bundle could not be located at the specified reference."""


class CircularDependencyError(ResolutionError):
    """Dependency graph contains a cycle."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__(f"circular dependency detected: {' -> '.join(chain)}")
        self.chain = chain


class VersionConstraintError(ResolutionError):
    """A version constraint cannot be satisfied."""


# =============================================================================
# Execution errors
# =============================================================================


class ExecutionError(CnabError):
    """A driver invocation failed."""


class DriverError(ExecutionError):
    """Driver reported failure; carries its error payload unchanged."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.payload = payload or {}


# =============================================================================
# Infrastructure errors
# =============================================================================


class InfrastructureError(CnabError):
    """The environment failed rather than the bundle."""


class ClaimStoreError(InfrastructureError):
    """Claim store could not be read or written."""


class RunCancelledError(InfrastructureError):
    """Run was cancelled or timed out by the caller."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(f"run cancelled: {reason}")
        self.reason = reason
